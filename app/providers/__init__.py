"""Metric source adapters."""

from typing import Dict, Type

import httpx

from app.models.data_source import SourceType
from app.providers.base import (
    ArtifactModel,
    ConnectedAccount,
    Credential,
    MetricSourceAdapter,
    UpstreamError,
    UpstreamFatalError,
    UpstreamRetryableError,
)
from app.providers.google_ads import GoogleAdsAdapter
from app.providers.google_analytics import GoogleAnalyticsAdapter
from app.providers.search_console import SearchConsoleAdapter

ADAPTERS: Dict[SourceType, Type[MetricSourceAdapter]] = {
    SourceType.GOOGLE_ANALYTICS: GoogleAnalyticsAdapter,
    SourceType.GOOGLE_ADS: GoogleAdsAdapter,
    SourceType.SEARCH_CONSOLE: SearchConsoleAdapter,
}


def get_adapter(source_type: SourceType, http_client: httpx.AsyncClient) -> MetricSourceAdapter:
    """Instantiate the adapter registered for a source type."""
    try:
        adapter_class = ADAPTERS[SourceType(source_type)]
    except (KeyError, ValueError):
        raise UpstreamFatalError(source_type, f"No adapter registered for source type {source_type!r}")
    return adapter_class(http_client)


__all__ = [
    "ADAPTERS",
    "ArtifactModel",
    "ConnectedAccount",
    "Credential",
    "MetricSourceAdapter",
    "UpstreamError",
    "UpstreamFatalError",
    "UpstreamRetryableError",
    "GoogleAnalyticsAdapter",
    "GoogleAdsAdapter",
    "SearchConsoleAdapter",
    "get_adapter",
]
