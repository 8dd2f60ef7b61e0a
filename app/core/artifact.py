"""Snapshot artifact schema.

The JSON produced here is the contract with renderers and with every
archived snapshot: field names and nesting must stay stable. Shape changes
require a new ``templateVersion`` so readers can branch on older artifacts.
"""

from datetime import date, datetime
from typing import Any, Dict, Optional

from pydantic.alias_generators import to_camel

from app.providers import ADAPTERS
from app.providers.base import ArtifactModel
from app.providers.google_ads import AdsBlock
from app.providers.google_analytics import Ga4Block
from app.providers.search_console import SearchConsoleBlock


class SnapshotArtifact(ArtifactModel):
    """One client-month of metrics, immutable once written."""

    client_id: int
    client_name: str
    snapshot_date: date
    period_start: date
    period_end: date
    previous_period_start: date
    previous_period_end: date
    template_version: str
    generated_at: datetime
    # Absent when the source was not connected or could not be fetched
    ga4: Optional[Ga4Block] = None
    google_ads: Optional[AdsBlock] = None
    search_console: Optional[SearchConsoleBlock] = None

    def to_json(self) -> bytes:
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=2).encode("utf-8")

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_json(cls, content: bytes) -> "SnapshotArtifact":
        return cls.model_validate_json(content)

    def source_block(self, artifact_key: str) -> Optional[ArtifactModel]:
        """Block stored under an artifact key ("ga4", "googleAds", ...), or None."""
        for name in type(self).model_fields:
            if to_camel(name) == artifact_key:
                return getattr(self, name)
        return None

    def present_sources(self) -> Dict[str, ArtifactModel]:
        """Artifact key -> block, for every source present in this artifact."""
        blocks = {}
        for name in type(self).model_fields:
            value = getattr(self, name)
            if isinstance(value, ArtifactModel) and hasattr(value, "changes"):
                blocks[to_camel(name)] = value
        return blocks


def build_metrics_summary(artifact: SnapshotArtifact) -> Dict[str, float]:
    """
    Headline figures for list views.

    Derived only from the artifact, so the metadata row's summary can always
    be rebuilt by re-reading the stored content.
    """
    summary = {}
    for adapter_class in ADAPTERS.values():
        block = artifact.source_block(adapter_class.artifact_key)
        if block is None:
            continue
        for summary_key, metric in adapter_class.summary_fields.items():
            summary[summary_key] = getattr(block.current, metric)
    return summary
