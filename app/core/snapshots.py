"""Snapshot generation and retrieval."""

import asyncio
import logging
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

import httpx
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session

from app.config import settings
from app.core import rendering
from app.core.artifact import SnapshotArtifact, build_metrics_summary
from app.core.credentials import CredentialResolver, DatabaseCredentialResolver
from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.core.periods import (
    DateRange,
    is_future_month,
    month_range,
    previous_month_range,
    snapshot_date_for,
)
from app.core.storage import LocalContentStorage, SnapshotStore
from app.models.client import Client
from app.models.snapshot import Snapshot
from app.providers import get_adapter
from app.providers.base import ArtifactModel, ConnectedAccount, MetricSourceAdapter, UpstreamError

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100

AdapterFactory = Callable[[Any, httpx.AsyncClient], MetricSourceAdapter]


class SnapshotSummary(BaseModel):
    """Metadata view of a snapshot, as returned to callers."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: int
    client_id: int
    snapshot_date: date
    template_version: str
    has_pdf: bool
    metrics_summary: Dict[str, float]
    created_at: datetime

    @classmethod
    def from_row(cls, snapshot: Snapshot) -> "SnapshotSummary":
        return cls(
            id=snapshot.id,
            client_id=snapshot.client_id,
            snapshot_date=snapshot.snapshot_date,
            template_version=snapshot.template_version,
            has_pdf=snapshot.has_pdf,
            metrics_summary=snapshot.metrics_summary or {},
            created_at=snapshot.created_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class OmittedSource(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    source_type: str
    reason: str
    retryable: bool


class GenerationResult(SnapshotSummary):
    """Summary of a generation, plus the sources left out of the artifact."""

    omitted_sources: List[OmittedSource] = []
    partial: bool = False


async def _gather_or_cancel(*coroutines):
    """gather() that cancels the remaining coroutines as soon as one fails."""
    tasks = [asyncio.ensure_future(c) for c in coroutines]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class SnapshotService:
    """
    Generates, reads and renders monthly snapshots.

    ``resolver``, ``adapter_factory`` and ``today`` can be injected; by
    default connections come from the data_sources table, adapters from the
    provider registry and "today" from the reporting timezone.
    """

    def __init__(
        self,
        db: Session,
        storage: Optional[LocalContentStorage] = None,
        resolver: Optional[CredentialResolver] = None,
        adapter_factory: AdapterFactory = get_adapter,
        today: Optional[date] = None,
    ):
        self.db = db
        self.store = SnapshotStore(db, storage)
        self.resolver = resolver or DatabaseCredentialResolver(db)
        self.adapter_factory = adapter_factory
        self._today = today

    def today(self) -> date:
        if self._today is not None:
            return self._today
        return datetime.now(ZoneInfo(settings.timezone)).date()

    def _get_client(self, client_id: int) -> Client:
        client = self.db.query(Client).filter(Client.id == client_id).first()
        if not client:
            raise NotFoundError(f"Client {client_id} not found")
        return client

    async def generate(self, client_id: int, year: int, month: int, regenerate: bool = False) -> GenerationResult:
        """
        Build and store the snapshot for one client-month.

        Raises ValidationError for an invalid or future month, NotFoundError
        for an unknown client, ConflictError when the month already has a
        snapshot and ``regenerate`` is false. A source that fails is left
        out of the artifact and reported in ``omitted_sources``.
        """
        snapshot_date = snapshot_date_for(year, month)
        if is_future_month(year, month, self.today()):
            raise ValidationError(f"Cannot generate a snapshot for future month {year:04d}-{month:02d}")

        client = self._get_client(client_id)
        existing = self.store.find(client_id, snapshot_date)
        if existing and not regenerate:
            raise ConflictError(
                f"Snapshot for {year:04d}-{month:02d} already exists. Use regenerate to overwrite."
            )

        current_range = month_range(year, month)
        previous_range = previous_month_range(year, month)
        connections = self.resolver.list_active_connections(client_id)
        logger.info(
            f"Generating snapshot for client {client_id} {year:04d}-{month:02d} "
            f"({len(connections)} sources, regenerate={regenerate})"
        )

        async with httpx.AsyncClient(timeout=settings.source_request_timeout) as http:
            outcomes = await asyncio.gather(
                *[self._fetch_source(http, account, current_range, previous_range) for account in connections]
            )

        blocks: Dict[str, ArtifactModel] = {}
        omitted = []
        for account, (artifact_key, block, omission) in zip(connections, outcomes):
            if omission is not None:
                omitted.append(omission)
            elif artifact_key in blocks:
                logger.warning(f"Duplicate {artifact_key} block for client {client_id}; keeping the first")
            else:
                blocks[artifact_key] = block

        artifact = SnapshotArtifact.model_validate(
            {
                "clientId": client.id,
                "clientName": client.name,
                "snapshotDate": snapshot_date,
                "periodStart": current_range.start,
                "periodEnd": current_range.end,
                "previousPeriodStart": previous_range.start,
                "previousPeriodEnd": previous_range.end,
                "templateVersion": settings.template_version,
                "generatedAt": datetime.now(timezone.utc),
                **blocks,
            }
        )

        locator = self.store.put(client_id, snapshot_date, artifact)
        snapshot = self.store.record(
            client_id,
            snapshot_date,
            locator,
            artifact.template_version,
            build_metrics_summary(artifact),
            existing=existing,
        )

        if omitted:
            names = ", ".join(o.source_type for o in omitted)
            logger.warning(f"Snapshot {snapshot.id} generated without: {names}")
        logger.info(f"Snapshot {snapshot.id} stored at {locator}")

        summary = SnapshotSummary.from_row(snapshot)
        return GenerationResult(**summary.model_dump(), omitted_sources=omitted, partial=bool(omitted))

    async def _fetch_source(
        self,
        http: httpx.AsyncClient,
        account: ConnectedAccount,
        current_range: DateRange,
        previous_range: DateRange,
    ) -> Tuple[Optional[str], Optional[ArtifactModel], Optional[OmittedSource]]:
        """Fetch one source's current and previous periods; failures become an omission."""
        source = getattr(account.source_type, "value", str(account.source_type))
        try:
            adapter = self.adapter_factory(account.source_type, http)
            parsed = replace(account, config=adapter.parse_config(account.config, account.account_ref))

            async def fetch_both():
                credential = await self.resolver.get_valid_credential(parsed, adapter)
                return await _gather_or_cancel(
                    adapter.fetch_metrics(parsed, credential, current_range),
                    adapter.fetch_metrics(parsed, credential, previous_range),
                )

            current, previous = await asyncio.wait_for(fetch_both(), timeout=settings.source_fetch_timeout)
            return adapter.artifact_key, adapter.build_block(parsed, current, previous), None
        except asyncio.TimeoutError:
            reason = f"timed out after {settings.source_fetch_timeout:.0f}s"
            logger.warning(f"Omitting {source} (data source {account.data_source_id}): {reason}")
            return None, None, OmittedSource(source_type=source, reason=reason, retryable=True)
        except UpstreamError as e:
            kind = "unavailable" if e.retryable else "failed"
            logger.warning(f"Omitting {source} (data source {account.data_source_id}), {kind}: {e.message}")
            return None, None, OmittedSource(source_type=source, reason=e.message, retryable=e.retryable)
        except Exception as e:
            logger.exception(f"Omitting {source} (data source {account.data_source_id}), unexpected error: {e}")
            return None, None, OmittedSource(source_type=source, reason=f"unexpected error: {e}", retryable=False)

    def get_summary(self, snapshot_id: int) -> SnapshotSummary:
        return SnapshotSummary.from_row(self.store.get_row(snapshot_id))

    def get_artifact_bytes(self, snapshot_id: int) -> bytes:
        """Stored artifact content, exactly as written."""
        return self.store.get_bytes(self.store.get_row(snapshot_id).storage_path)

    def get_artifact(self, snapshot_id: int) -> Dict[str, Any]:
        return self.store.get(self.store.get_row(snapshot_id).storage_path).to_dict()

    def list_summaries(self, client_id: int, limit: int = 12, offset: int = 0) -> Dict[str, Any]:
        """Page of snapshot summaries for a client, newest month first."""
        self._get_client(client_id)
        if limit < 1 or offset < 0:
            raise ValidationError("limit must be positive and offset non-negative")
        limit = min(limit, MAX_PAGE_SIZE)

        query = self.db.query(Snapshot).filter(Snapshot.client_id == client_id)
        total = query.count()
        rows = query.order_by(Snapshot.snapshot_date.desc()).offset(offset).limit(limit).all()
        return {"items": [SnapshotSummary.from_row(r) for r in rows], "total": total}

    def delete_snapshot(self, snapshot_id: int) -> None:
        snapshot = self.store.get_row(snapshot_id)
        self.store.delete_row(snapshot)
        logger.info(f"Deleted snapshot {snapshot_id}")

    def render_pdf(self, snapshot_id: int) -> SnapshotSummary:
        """Render the current artifact to PDF and attach it to the snapshot."""
        snapshot = self.store.get_row(snapshot_id)
        rendered_from = snapshot.storage_path
        artifact = self.store.get(rendered_from)

        content = rendering.render_pdf(artifact)
        pdf_path = self.store.put_pdf(snapshot, content)
        if not self.store.attach_pdf(snapshot, pdf_path, rendered_from):
            raise ConflictError(f"Snapshot {snapshot_id} was regenerated while rendering; render again")

        logger.info(f"Rendered snapshot {snapshot_id} to {pdf_path}")
        return SnapshotSummary.from_row(snapshot)

    def get_pdf(self, snapshot_id: int) -> bytes:
        snapshot = self.store.get_row(snapshot_id)
        if not snapshot.pdf_storage_path:
            raise NotFoundError(f"Snapshot {snapshot_id} has not been rendered")
        return self.store.storage.get(snapshot.pdf_storage_path)
