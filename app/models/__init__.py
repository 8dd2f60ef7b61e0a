"""Database models."""

from app.models.client import Client
from app.models.data_source import DataSource, DataSourceStatus, SourceType
from app.models.snapshot import Snapshot

__all__ = [
    "Client",
    "DataSource",
    "DataSourceStatus",
    "SourceType",
    "Snapshot",
]
