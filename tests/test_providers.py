"""Tests for metric source adapters against mocked upstream APIs."""

import asyncio
import json
from datetime import date, datetime, timedelta

import httpx
import pytest

from app.config import settings
from app.core.periods import month_range
from app.models.data_source import SourceType
from app.providers import get_adapter
from app.providers.base import (
    ConnectedAccount,
    Credential,
    UpstreamFatalError,
    UpstreamRetryableError,
)
from app.providers.google_ads import GoogleAdsAdapter
from app.providers.google_analytics import GoogleAnalyticsAdapter, format_ga4_date
from app.providers.search_console import SearchConsoleAdapter

CREDENTIAL = Credential(access_token="secret-token", refresh_token="refresh-token")
MARCH = month_range(2025, 3)


def run(coro):
    return asyncio.run(coro)


def make_adapter(adapter_class, handler, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return adapter_class(client, retry_backoff=0, **kwargs)


def connect(adapter, account_ref, account_name=None, config=None):
    account = ConnectedAccount(
        data_source_id=1,
        source_type=adapter.source_type,
        account_ref=account_ref,
        account_name=account_name,
        config=None,
    )
    account.config = adapter.parse_config(config, account_ref)
    return account


def ga4_row(values, dimensions=()):
    return {
        "dimensionValues": [{"value": d} for d in dimensions],
        "metricValues": [{"value": str(v)} for v in values],
    }


def ga4_handler(requests):
    totals = [1500, 1200, 300, 4200, 95.5, 0.45, 1100, 0.55, 120000]

    def handler(request):
        requests.append(request)
        body = json.loads(request.content)
        if request.url.path.endswith(":batchRunReports"):
            return httpx.Response(
                200,
                json={
                    "reports": [
                        {"rows": [ga4_row(totals)]},
                        {"rows": [ga4_row(totals, ["20250301"]), ga4_row(totals, ["20250302"])]},
                        {"rows": [ga4_row([900, 700], ["Organic Search"]), ga4_row([600, 500], ["Direct"])]},
                        {"rows": [ga4_row([800], ["/"]), ga4_row([300], ["/pricing"])]},
                        {"rows": [ga4_row([40], ["generate_lead"]), ga4_row([0], ["purchase"])]},
                    ]
                },
            )
        assert body["dimensionFilter"]["filter"]["inListFilter"]["values"] == ["generate_lead"]
        return httpx.Response(
            200,
            json={
                "rows": [
                    ga4_row([25], ["generate_lead", "Organic Search"]),
                    ga4_row([15], ["generate_lead", "Direct"]),
                ]
            },
        )

    return handler


def test_ga4_fetch_normalizes_rates_and_dates():
    """Test GA4 totals, rate scaling, daily dates, channels and key events."""
    requests = []
    adapter = make_adapter(GoogleAnalyticsAdapter, ga4_handler(requests))
    account = connect(adapter, "123456789", "Acme GA4")

    metrics = run(adapter.fetch_metrics(account, CREDENTIAL, MARCH))

    assert metrics.sessions == 1500
    assert metrics.bounce_rate == pytest.approx(45.0)
    assert metrics.engagement_rate == pytest.approx(55.0)
    assert [d.date for d in metrics.daily_metrics] == ["2025-03-01", "2025-03-02"]
    assert metrics.channels[0].name == "Organic Search"
    assert metrics.channels[0].percentage == 60.0
    assert [p.path for p in metrics.top_pages] == ["/", "/pricing"]
    assert [e.name for e in metrics.key_events] == ["generate_lead"]
    assert metrics.key_event_breakdowns[0].total == 40
    assert len(requests) == 2
    assert requests[0].headers["Authorization"] == "Bearer secret-token"
    assert "/properties/123456789:batchRunReports" in str(requests[0].url)
    batch = json.loads(requests[0].content)
    assert batch["requests"][0]["dateRanges"] == [{"startDate": "2025-03-01", "endDate": "2025-03-31"}]


def test_ga4_block_changes_and_identity():
    """Test the artifact block built from two periods."""
    adapter = make_adapter(GoogleAnalyticsAdapter, ga4_handler([]))
    account = connect(adapter, "123456789", "Acme GA4")
    current = run(adapter.fetch_metrics(account, CREDENTIAL, MARCH))
    previous = current.model_copy(update={"sessions": 1000.0})

    block = adapter.build_block(account, current, previous)
    data = block.model_dump(by_alias=True)

    assert data["propertyId"] == "123456789"
    assert data["propertyName"] == "Acme GA4"
    assert data["changes"]["sessions"] == 50.0
    assert data["changes"]["bounceRate"] == 0.0
    assert "avgSessionDuration" in data["current"]


def test_format_ga4_date():
    """Test GA4 YYYYMMDD conversion."""
    assert format_ga4_date("20250301") == "2025-03-01"
    assert format_ga4_date("") == ""


def test_retryable_status_is_retried_then_succeeds():
    """Test that a 503 is retried and a later success is returned."""
    attempts = []

    def handler(request):
        attempts.append(request)
        if len(attempts) < 3:
            return httpx.Response(503, text="unavailable")
        return httpx.Response(200, json={"rows": []})

    adapter = make_adapter(SearchConsoleAdapter, handler, retry_attempts=3)
    data = run(adapter._request("POST", "https://example.test/query", credential=CREDENTIAL, json={}))
    assert data == {"rows": []}
    assert len(attempts) == 3


def test_rate_limit_exhausts_as_retryable():
    """Test that persistent 429s surface as a retryable failure after bounded attempts."""
    attempts = []

    def handler(request):
        attempts.append(request)
        return httpx.Response(429, text="quota")

    adapter = make_adapter(SearchConsoleAdapter, handler, retry_attempts=3)
    with pytest.raises(UpstreamRetryableError) as exc_info:
        run(adapter._request("POST", "https://example.test/query", json={}))
    assert exc_info.value.status_code == 429
    assert exc_info.value.retryable
    assert len(attempts) == 3


def test_timeout_is_retryable():
    """Test that transport timeouts are classified as retryable."""

    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    adapter = make_adapter(SearchConsoleAdapter, handler, retry_attempts=2)
    with pytest.raises(UpstreamRetryableError):
        run(adapter._request("GET", "https://example.test/"))


def test_unauthorized_is_fatal_without_retry():
    """Test that a 401 is not retried."""
    attempts = []

    def handler(request):
        attempts.append(request)
        return httpx.Response(401, json={"error": "invalid_token"})

    adapter = make_adapter(GoogleAnalyticsAdapter, handler, retry_attempts=3)
    account = connect(adapter, "123456789")
    with pytest.raises(UpstreamFatalError) as exc_info:
        run(adapter.fetch_metrics(account, CREDENTIAL, MARCH))
    assert exc_info.value.status_code == 401
    assert not exc_info.value.retryable
    assert len(attempts) == 1


def test_ads_fetch_converts_micros_and_paginates(monkeypatch):
    """Test Google Ads money conversion, headers and pagination."""
    monkeypatch.setattr(settings, "google_ads_developer_token", "dev-token")
    requests = []

    def handler(request):
        requests.append(request)
        query = json.loads(request.content)["query"]
        if "FROM campaign" in query:
            return httpx.Response(
                200,
                json={
                    "results": [
                        {
                            "campaign": {"id": "11", "name": "Brand"},
                            "metrics": {"impressions": "500", "clicks": "50", "costMicros": "25000000"},
                        }
                    ]
                },
            )
        if "segments.date," in query:
            page_token = json.loads(request.content).get("pageToken")
            if not page_token:
                return httpx.Response(
                    200,
                    json={
                        "results": [{"segments": {"date": "2025-03-01"}, "metrics": {"clicks": "10"}}],
                        "nextPageToken": "page-2",
                    },
                )
            return httpx.Response(
                200, json={"results": [{"segments": {"date": "2025-03-02"}, "metrics": {"clicks": "12"}}]}
            )
        return httpx.Response(
            200,
            json={
                "results": [
                    {
                        "metrics": {
                            "impressions": "10000",
                            "clicks": "400",
                            "costMicros": "123456789",
                            "conversions": 12.0,
                            "conversionsValue": 980.456,
                            "ctr": 0.04,
                            "averageCpc": "308641",
                        }
                    }
                ]
            },
        )

    adapter = make_adapter(GoogleAdsAdapter, handler)
    account = connect(adapter, "123-456-7890", "Acme Ads", {"login_customer_id": "999-000-1111"})
    metrics = run(adapter.fetch_metrics(account, CREDENTIAL, MARCH))

    assert metrics.cost == 123.46
    assert metrics.average_cpc == 0.31
    assert metrics.ctr == pytest.approx(4.0)
    assert metrics.conversions_value == 980.46
    assert [d.date for d in metrics.daily_metrics] == ["2025-03-01", "2025-03-02"]
    assert metrics.campaigns[0].cost == 25.0
    assert len(requests) == 4
    assert all("/customers/1234567890/googleAds:search" in str(r.url) for r in requests)
    assert requests[0].headers["developer-token"] == "dev-token"
    assert requests[0].headers["login-customer-id"] == "9990001111"


def test_ads_without_developer_token_is_fatal(monkeypatch):
    """Test that a missing developer token fails fast."""
    monkeypatch.setattr(settings, "google_ads_developer_token", "")
    adapter = make_adapter(GoogleAdsAdapter, lambda request: httpx.Response(200, json={}))
    account = connect(adapter, "1234567890")
    with pytest.raises(UpstreamFatalError):
        run(adapter.fetch_metrics(account, CREDENTIAL, MARCH))


def test_invalid_config_is_fatal():
    """Test per-source config validation."""
    adapter = make_adapter(GoogleAdsAdapter, lambda request: httpx.Response(200, json={}))
    with pytest.raises(UpstreamFatalError):
        adapter.parse_config({}, "not-a-customer")


def test_search_console_fetch():
    """Test Search Console totals, ctr scaling and site URL encoding."""
    requests = []

    def handler(request):
        requests.append(request)
        body = json.loads(request.content)
        dimensions = body.get("dimensions")
        row = {"clicks": 120, "impressions": 4000, "ctr": 0.03, "position": 8.456}
        if dimensions == ["query"]:
            return httpx.Response(200, json={"rows": [dict(row, keys=["acme dental"])]})
        if dimensions == ["page"]:
            return httpx.Response(200, json={"rows": [dict(row, keys=["https://acme.example/"])]})
        if dimensions == ["date"]:
            return httpx.Response(200, json={"rows": [dict(row, keys=["2025-03-01"])]})
        return httpx.Response(200, json={"rows": [row]})

    adapter = make_adapter(SearchConsoleAdapter, handler)
    account = connect(adapter, "https://acme.example/")
    metrics = run(adapter.fetch_metrics(account, CREDENTIAL, MARCH))

    assert metrics.clicks == 120
    assert metrics.ctr == pytest.approx(3.0)
    assert metrics.position == 8.46
    assert metrics.top_queries[0].query == "acme dental"
    assert len(requests) == 4
    assert "/sites/https%3A%2F%2Facme.example%2F/searchAnalytics/query" in str(requests[0].url)


def test_search_console_empty_period():
    """Test a period with no rows at all."""
    adapter = make_adapter(SearchConsoleAdapter, lambda request: httpx.Response(200, json={}))
    account = connect(adapter, "sc-domain:acme.example")
    metrics = run(adapter.fetch_metrics(account, CREDENTIAL, MARCH))
    assert metrics.clicks == 0
    assert metrics.daily_metrics == []


def test_refresh_credential(monkeypatch):
    """Test OAuth refresh returning a new access token."""
    monkeypatch.setattr(settings, "google_client_id", "client-id")
    monkeypatch.setattr(settings, "google_client_secret", "client-secret")

    def handler(request):
        assert request.url.host == "oauth2.googleapis.com"
        assert b"grant_type=refresh_token" in request.content
        return httpx.Response(200, json={"access_token": "new-token", "expires_in": 3600})

    adapter = make_adapter(GoogleAnalyticsAdapter, handler)
    before = datetime.utcnow()
    refreshed = run(adapter.refresh_credential(CREDENTIAL))
    assert refreshed.access_token == "new-token"
    assert refreshed.refresh_token == "refresh-token"
    assert refreshed.expires_at > before + timedelta(minutes=59)


def test_refresh_rejected_grant_is_fatal(monkeypatch):
    """Test that a revoked refresh token is a hard failure."""
    monkeypatch.setattr(settings, "google_client_id", "client-id")
    monkeypatch.setattr(settings, "google_client_secret", "client-secret")
    adapter = make_adapter(
        GoogleAnalyticsAdapter, lambda request: httpx.Response(400, json={"error": "invalid_grant"})
    )
    with pytest.raises(UpstreamFatalError):
        run(adapter.refresh_credential(CREDENTIAL))


def test_credential_repr_hides_tokens():
    """Test that tokens never show up in logs via repr."""
    assert "secret-token" not in repr(CREDENTIAL)
    assert not CREDENTIAL.expires_within(300)
    expiring = Credential(access_token="x", expires_at=datetime.utcnow() + timedelta(seconds=60))
    assert expiring.expires_within(300)


def test_get_adapter_registry():
    """Test adapter dispatch by source type."""
    client = httpx.AsyncClient()
    assert isinstance(get_adapter(SourceType.GOOGLE_ANALYTICS, client), GoogleAnalyticsAdapter)
    assert isinstance(get_adapter("search_console", client), SearchConsoleAdapter)
    with pytest.raises(UpstreamFatalError):
        get_adapter("facebook_ads", client)


def test_date_range_days():
    """Test inclusive range length."""
    assert MARCH.days == 31
    assert MARCH.start == date(2025, 3, 1)


def test_non_json_success_body_is_fatal():
    """Test that a 2xx response with a non-JSON body fails as a fatal upstream error."""
    attempts = []

    def handler(request):
        attempts.append(request)
        return httpx.Response(200, text="<html>proxy error</html>")

    adapter = make_adapter(SearchConsoleAdapter, handler, retry_attempts=3)
    account = connect(adapter, "https://acme.example/")
    with pytest.raises(UpstreamFatalError) as exc_info:
        run(adapter.fetch_metrics(account, CREDENTIAL, MARCH))
    assert "malformed payload" in exc_info.value.message
    assert len(attempts) == 1
