"""Connected account and credential resolution."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List

from sqlalchemy.orm import Session

from app.config import settings
from app.models.data_source import DataSource, DataSourceStatus, SourceType
from app.providers.base import (
    ConnectedAccount,
    Credential,
    MetricSourceAdapter,
    UpstreamFatalError,
)

logger = logging.getLogger(__name__)


class CredentialResolver(ABC):
    """Hands the pipeline connected accounts and usable credentials, never raw secrets."""

    @abstractmethod
    def list_active_connections(self, client_id: int) -> List[ConnectedAccount]:
        """One connection per source type with a usable credential."""
        pass

    @abstractmethod
    async def get_valid_credential(self, account: ConnectedAccount, adapter: MetricSourceAdapter) -> Credential:
        """A credential that is valid now, refreshed if needed."""
        pass


class DatabaseCredentialResolver(CredentialResolver):
    """Resolves connections and credentials from the data_sources table."""

    def __init__(self, db: Session, refresh_margin_seconds: int = None):
        self.db = db
        self.refresh_margin_seconds = (
            settings.credential_refresh_margin_seconds if refresh_margin_seconds is None else refresh_margin_seconds
        )

    def list_active_connections(self, client_id: int) -> List[ConnectedAccount]:
        enabled = set(settings.enabled_sources_list)
        rows = (
            self.db.query(DataSource)
            .filter(DataSource.client_id == client_id, DataSource.status == DataSourceStatus.ACTIVE)
            .order_by(DataSource.connected_at.desc(), DataSource.id.desc())
            .all()
        )

        connections = []
        seen = set()
        for row in rows:
            source_type = SourceType(row.type)
            if source_type in seen or source_type.value not in enabled:
                continue
            if not row.credentials or not row.credentials.get("access_token"):
                logger.info(f"Data source {row.id} ({source_type.value}) has no stored credential; skipping")
                continue
            seen.add(source_type)
            connections.append(
                ConnectedAccount(
                    data_source_id=row.id,
                    source_type=source_type,
                    account_ref=row.external_account_id or "",
                    account_name=row.external_account_name,
                    config=dict(row.config or {}),
                )
            )
        return connections

    async def get_valid_credential(self, account: ConnectedAccount, adapter: MetricSourceAdapter) -> Credential:
        row = self.db.query(DataSource).filter(DataSource.id == account.data_source_id).first()
        if not row or not row.credentials:
            raise UpstreamFatalError(account.source_type, f"Data source {account.data_source_id} has no credential")

        try:
            credential = Credential.from_dict(row.credentials)
        except (KeyError, TypeError, ValueError) as e:
            raise UpstreamFatalError(account.source_type, f"Stored credential is unreadable: {e}")

        if not credential.expires_within(self.refresh_margin_seconds, datetime.utcnow()):
            return credential

        logger.info(f"Refreshing {account.source_type.value} credential for data source {row.id}")
        try:
            refreshed = await adapter.refresh_credential(credential)
        except UpstreamFatalError:
            row.status = DataSourceStatus.EXPIRED
            self.db.commit()
            logger.warning(f"Data source {row.id} marked expired after a rejected refresh")
            raise

        row.credentials = refreshed.to_dict()
        row.expires_at = refreshed.expires_at
        self.db.commit()
        return refreshed


__all__ = [
    "ConnectedAccount",
    "Credential",
    "CredentialResolver",
    "DatabaseCredentialResolver",
]
