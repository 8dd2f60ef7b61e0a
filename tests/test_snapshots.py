"""Tests for snapshot generation, regeneration and retrieval."""

import asyncio
import json
from datetime import date

import httpx
import pytest

from app.config import settings
from app.core import rendering
from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.core.snapshots import SnapshotService
from app.models.data_source import SourceType
from app.models.snapshot import Snapshot
from app.providers.base import UpstreamFatalError, UpstreamRetryableError
from app.providers.google_ads import AdsMetrics
from app.providers.google_analytics import Ga4Metrics
from app.providers.search_console import SearchConsoleAdapter

MARCH = date(2025, 3, 1)
FEBRUARY = date(2025, 2, 1)


def ga4_script(current_sessions, previous_sessions):
    return {
        MARCH: Ga4Metrics(sessions=current_sessions, users=90, pageviews=400, bounce_rate=40.0),
        FEBRUARY: Ga4Metrics(sessions=previous_sessions, users=60, pageviews=300, bounce_rate=50.0),
    }


def generate(service, client_id, year=2025, month=3, regenerate=False):
    return asyncio.run(service.generate(client_id, year, month, regenerate=regenerate))


def test_end_to_end_generate_and_regenerate(service, sources, client_row):
    """Test 150 vs 100 sessions, then a regeneration reporting 80."""
    sources.set(SourceType.GOOGLE_ANALYTICS, ga4_script(150, 100))

    result = generate(service, client_row.id)
    artifact = service.get_artifact(result.id)

    assert artifact["ga4"]["changes"]["sessions"] == 50.00
    assert artifact["ga4"]["current"]["sessions"] == 150
    assert artifact["ga4"]["previous"]["sessions"] == 100
    assert artifact["periodStart"] == "2025-03-01"
    assert artifact["periodEnd"] == "2025-03-31"
    assert artifact["previousPeriodStart"] == "2025-02-01"
    assert artifact["previousPeriodEnd"] == "2025-02-28"
    assert artifact["templateVersion"] == settings.template_version
    assert artifact["clientName"] == "Acme Dental"
    assert result.metrics_summary["sessions"] == 150
    assert not result.partial

    sources.set(SourceType.GOOGLE_ANALYTICS, ga4_script(80, 100))
    regenerated = generate(service, client_row.id, regenerate=True)
    artifact = service.get_artifact(regenerated.id)

    assert regenerated.id == result.id
    assert artifact["ga4"]["current"]["sessions"] == 80
    assert artifact["ga4"]["previous"]["sessions"] == 100
    assert artifact["ga4"]["changes"]["sessions"] == -20.00
    assert service.get_summary(result.id).metrics_summary["sessions"] == 80


def test_current_and_previous_fetched_for_each_source(service, sources, client_row):
    """Test that both periods are requested with full calendar-month ranges."""
    sources.set(SourceType.GOOGLE_ANALYTICS, ga4_script(10, 5))
    generate(service, client_row.id)

    ranges = sorted((r.start, r.end) for _, r in sources.calls)
    assert ranges == [(FEBRUARY, date(2025, 2, 28)), (MARCH, date(2025, 3, 31))]


def test_idempotent_read(service, sources, client_row):
    """Test that reading the artifact twice returns identical bytes."""
    sources.set(SourceType.GOOGLE_ANALYTICS, ga4_script(150, 100))
    result = generate(service, client_row.id)

    first = service.get_artifact_bytes(result.id)
    second = service.get_artifact_bytes(result.id)

    assert first == second
    assert json.loads(first)["clientId"] == client_row.id


def test_conflict_guard(service, sources, client_row):
    """Test that a second generation without regenerate fails and touches nothing."""
    sources.set(SourceType.GOOGLE_ANALYTICS, ga4_script(150, 100))
    result = generate(service, client_row.id)
    before = service.get_artifact_bytes(result.id)
    calls = len(sources.calls)

    sources.set(SourceType.GOOGLE_ANALYTICS, ga4_script(999, 1))
    with pytest.raises(ConflictError):
        generate(service, client_row.id)

    assert len(sources.calls) == calls
    assert service.get_artifact_bytes(result.id) == before


def test_regeneration_invalidates_pdf(service, sources, client_row, monkeypatch):
    """Test that a rendered PDF is not presented as current after regeneration."""
    monkeypatch.setattr(rendering, "render_pdf", lambda artifact: b"%PDF-1.7 test")
    sources.set(SourceType.GOOGLE_ANALYTICS, ga4_script(150, 100))
    result = generate(service, client_row.id)

    rendered = service.render_pdf(result.id)
    assert rendered.has_pdf
    assert service.get_pdf(result.id) == b"%PDF-1.7 test"

    regenerated = generate(service, client_row.id, regenerate=True)
    assert not regenerated.has_pdf
    with pytest.raises(NotFoundError):
        service.get_pdf(result.id)


def test_partial_degradation_on_fatal_source(service, sources, client_row):
    """Test that a broken source is omitted while the other is fully populated."""
    sources.set(SourceType.GOOGLE_ANALYTICS, ga4_script(150, 100))
    sources.set(
        SourceType.GOOGLE_ADS,
        error=UpstreamFatalError(SourceType.GOOGLE_ADS, "invalid_grant", 401),
    )

    result = generate(service, client_row.id)
    artifact = service.get_artifact(result.id)

    assert result.partial
    assert [o.source_type for o in result.omitted_sources] == ["google_ads"]
    assert not result.omitted_sources[0].retryable
    assert "googleAds" not in artifact
    assert artifact["ga4"]["current"]["sessions"] == 150
    assert artifact["ga4"]["previous"]["sessions"] == 100
    assert artifact["ga4"]["changes"]["sessions"] == 50.0
    assert "adClicks" not in result.metrics_summary



def test_malformed_upstream_payload_omits_source(db, storage, sources, client_row):
    """Test that a source answering 200 with HTML is omitted and the others survive."""
    sources.set(SourceType.GOOGLE_ANALYTICS, ga4_script(150, 100))
    sources.set(SourceType.SEARCH_CONSOLE)
    upstream = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>proxy error</html>"))
    )

    def factory(source_type, http_client):
        if source_type == SourceType.SEARCH_CONSOLE:
            return SearchConsoleAdapter(upstream, retry_backoff=0)
        return sources.factory(source_type, http_client)

    service = SnapshotService(
        db, storage=storage, resolver=sources, adapter_factory=factory, today=date(2025, 4, 15)
    )
    result = generate(service, client_row.id)
    artifact = service.get_artifact(result.id)

    assert result.partial
    assert [o.source_type for o in result.omitted_sources] == ["search_console"]
    assert not result.omitted_sources[0].retryable
    assert "searchConsole" not in artifact
    assert artifact["ga4"]["changes"]["sessions"] == 50.0


def test_unexpected_adapter_error_omits_source(service, sources, client_row):
    """Test that an adapter bug in one source does not abort the generation."""
    sources.set(SourceType.GOOGLE_ANALYTICS, ga4_script(150, 100))
    sources.set(SourceType.GOOGLE_ADS, error=KeyError("results"))

    result = generate(service, client_row.id)

    assert [o.source_type for o in result.omitted_sources] == ["google_ads"]
    assert not result.omitted_sources[0].retryable
    assert result.metrics_summary["sessions"] == 150


def test_generated_at_is_utc(service, sources, client_row):
    """Test that the generation timestamp carries its UTC zone."""
    result = generate(service, client_row.id)
    generated_at = service.get_artifact(result.id)["generatedAt"]

    assert generated_at.endswith("Z") or generated_at.endswith("+00:00")

def test_retryable_failure_omits_source(service, sources, client_row):
    """Test that an exhausted retryable failure degrades to an omitted source."""
    sources.set(SourceType.GOOGLE_ANALYTICS, ga4_script(150, 100))
    sources.set(
        SourceType.SEARCH_CONSOLE,
        error=UpstreamRetryableError(SourceType.SEARCH_CONSOLE, "rate limited", 429),
    )

    result = generate(service, client_row.id)

    assert result.partial
    assert result.omitted_sources[0].retryable
    assert "searchConsole" not in service.get_artifact(result.id)


def test_slow_source_is_omitted(service, sources, client_row, monkeypatch):
    """Test that a source exceeding the fetch timeout is dropped."""
    monkeypatch.setattr(settings, "source_fetch_timeout", 0.05)
    sources.set(SourceType.GOOGLE_ANALYTICS, ga4_script(150, 100))
    sources.set(SourceType.GOOGLE_ADS, {MARCH: AdsMetrics(), FEBRUARY: AdsMetrics()}, delay=5)

    result = generate(service, client_row.id)

    assert [o.source_type for o in result.omitted_sources] == ["google_ads"]
    assert result.omitted_sources[0].retryable
    assert "ga4" in service.get_artifact(result.id)


def test_all_sources_present(service, sources, client_row):
    """Test an artifact with several blocks and the summary projection."""
    sources.set(SourceType.GOOGLE_ANALYTICS, ga4_script(150, 100))
    sources.set(
        SourceType.GOOGLE_ADS,
        {MARCH: AdsMetrics(clicks=40, cost=120.5), FEBRUARY: AdsMetrics(clicks=0, cost=100.0)},
    )

    result = generate(service, client_row.id)
    artifact = service.get_artifact(result.id)

    assert artifact["googleAds"]["customerId"] == "1234567890"
    assert artifact["googleAds"]["changes"]["clicks"] == 100
    assert artifact["googleAds"]["changes"]["cost"] == 20.5
    assert result.metrics_summary["adClicks"] == 40
    assert result.metrics_summary["sessions"] == 150


def test_no_connected_sources(service, sources, client_row):
    """Test that a client with nothing connected still gets a valid artifact."""
    result = generate(service, client_row.id)
    artifact = service.get_artifact(result.id)

    assert result.metrics_summary == {}
    assert not result.partial
    assert "ga4" not in artifact


def test_future_month_rejected_without_calls(service, sources, client_row):
    """Test that a month after the current one fails before any upstream work."""
    sources.set(SourceType.GOOGLE_ANALYTICS, ga4_script(150, 100))

    with pytest.raises(ValidationError):
        generate(service, client_row.id, 2025, 5)

    assert sources.calls == []
    assert sources.resolved == []


def test_current_month_allowed(service, sources, client_row):
    """Test that the in-progress month can be generated."""
    sources.set(SourceType.GOOGLE_ANALYTICS, {date(2025, 4, 1): Ga4Metrics(sessions=5), MARCH: Ga4Metrics()})
    result = generate(service, client_row.id, 2025, 4)
    assert result.snapshot_date == date(2025, 4, 1)


def test_invalid_month_and_unknown_client(service, client_row):
    """Test validation and not-found errors."""
    with pytest.raises(ValidationError):
        generate(service, client_row.id, 2025, 13)
    with pytest.raises(NotFoundError):
        generate(service, 9999)


def test_list_summaries_newest_first(service, sources, client_row):
    """Test ordering, total and paging."""
    sources.set(
        SourceType.GOOGLE_ANALYTICS,
        {
            date(2025, 1, 1): Ga4Metrics(sessions=1),
            date(2024, 12, 1): Ga4Metrics(),
            FEBRUARY: Ga4Metrics(sessions=2),
            MARCH: Ga4Metrics(sessions=3),
        },
    )
    for month in (1, 3, 2):
        generate(service, client_row.id, 2025, month)

    page = service.list_summaries(client_row.id, limit=2)
    assert page["total"] == 3
    assert [s.snapshot_date.month for s in page["items"]] == [3, 2]

    rest = service.list_summaries(client_row.id, limit=2, offset=2)
    assert [s.snapshot_date.month for s in rest["items"]] == [1]
    assert rest["items"][0].to_dict()["metricsSummary"] == {"sessions": 1.0, "users": 0.0, "pageviews": 0.0}

    with pytest.raises(NotFoundError):
        service.list_summaries(9999)


def test_delete_snapshot(service, sources, client_row, db, storage):
    """Test deleting a snapshot removes the row and content."""
    sources.set(SourceType.GOOGLE_ANALYTICS, ga4_script(150, 100))
    result = generate(service, client_row.id)
    locator = db.get(Snapshot, result.id).storage_path

    service.delete_snapshot(result.id)

    assert db.query(Snapshot).count() == 0
    assert not storage.exists(locator)
    with pytest.raises(NotFoundError):
        service.get_artifact(result.id)
