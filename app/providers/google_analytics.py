"""Google Analytics 4 Data API adapter."""

import logging
from collections import OrderedDict
from typing import Any, Dict, List

from pydantic import BaseModel, Field

from app.core.periods import DateRange
from app.models.data_source import SourceType
from app.providers.base import (
    ArtifactModel,
    ConnectedAccount,
    Credential,
    MetricSourceAdapter,
)
from app.providers.google_auth import GoogleOAuthMixin

logger = logging.getLogger(__name__)

# Upstream metric names, in the order our totals fields are filled
GA4_METRICS = [
    "sessions",
    "totalUsers",
    "newUsers",
    "screenPageViews",
    "averageSessionDuration",
    "bounceRate",
    "activeUsers",
    "engagementRate",
    "userEngagementDuration",
]
TOTAL_FIELDS = [
    "sessions",
    "users",
    "new_users",
    "pageviews",
    "avg_session_duration",
    "bounce_rate",
    "active_users",
    "engagement_rate",
    "user_engagement_duration",
]
RATE_FIELDS = {"bounce_rate", "engagement_rate"}


class Ga4Config(BaseModel):
    """Per-property settings."""

    account_id: str = Field(min_length=1)  # GA4 property id
    channels_limit: int = 10
    top_pages_limit: int = 4
    key_events_limit: int = 20
    key_event_breakdowns: int = 4
    breakdown_channels_limit: int = 6


class Ga4Totals(ArtifactModel):
    sessions: float = 0
    users: float = 0
    new_users: float = 0
    pageviews: float = 0
    avg_session_duration: float = 0
    bounce_rate: float = 0  # 0-100
    active_users: float = 0
    engagement_rate: float = 0  # 0-100
    user_engagement_duration: float = 0


class Ga4DailyMetrics(Ga4Totals):
    date: str


class Ga4Page(ArtifactModel):
    path: str
    views: float


class Ga4Channel(ArtifactModel):
    name: str
    sessions: float
    users: float
    percentage: float


class Ga4KeyEvent(ArtifactModel):
    name: str
    count: float


class Ga4ChannelCount(ArtifactModel):
    name: str
    count: float


class Ga4KeyEventBreakdown(ArtifactModel):
    name: str
    total: float
    channels: List[Ga4ChannelCount] = []


class Ga4Metrics(Ga4Totals):
    daily_metrics: List[Ga4DailyMetrics] = []
    top_pages: List[Ga4Page] = []
    channels: List[Ga4Channel] = []
    key_events: List[Ga4KeyEvent] = []
    key_event_breakdowns: List[Ga4KeyEventBreakdown] = []


class Ga4Block(ArtifactModel):
    property_id: str
    property_name: str
    current: Ga4Metrics
    previous: Ga4Metrics
    changes: Dict[str, float]


def _dimension(row: Dict[str, Any], index: int, default: str = "") -> str:
    values = row.get("dimensionValues") or []
    if index < len(values):
        return values[index].get("value", default)
    return default


def _metric(row: Dict[str, Any], index: int) -> float:
    values = row.get("metricValues") or []
    if index < len(values):
        try:
            return float(values[index].get("value", 0) or 0)
        except (TypeError, ValueError):
            return 0.0
    return 0.0


def _totals(row: Dict[str, Any]) -> Dict[str, float]:
    totals = {}
    for index, field_name in enumerate(TOTAL_FIELDS):
        value = _metric(row, index)
        totals[field_name] = value * 100 if field_name in RATE_FIELDS else value
    return totals


def format_ga4_date(value: str) -> str:
    """GA4 reports dates as YYYYMMDD."""
    if not value or len(value) != 8:
        return value
    return f"{value[:4]}-{value[4:6]}-{value[6:]}"


class GoogleAnalyticsAdapter(GoogleOAuthMixin, MetricSourceAdapter):
    """GA4 adapter: totals, daily series, channels, top pages and key events."""

    BASE_URL = "https://analyticsdata.googleapis.com/v1beta"

    source_type = SourceType.GOOGLE_ANALYTICS
    artifact_key = "ga4"
    config_model = Ga4Config
    block_model = Ga4Block
    tracked_metrics = tuple(TOTAL_FIELDS)
    summary_fields = {"sessions": "sessions", "users": "users", "pageviews": "pageviews"}

    def block_identity(self, account: ConnectedAccount) -> Dict[str, Any]:
        return {
            "property_id": account.account_ref,
            "property_name": account.account_name or account.account_ref,
        }

    async def fetch_metrics(self, account: ConnectedAccount, credential: Credential, date_range: DateRange) -> Ga4Metrics:
        """Fetch GA4 metrics with one batch call plus one key-event breakdown call."""
        config: Ga4Config = account.config
        start, end = date_range.as_strings()
        date_ranges = [{"startDate": start, "endDate": end}]
        metrics = [{"name": m} for m in GA4_METRICS]

        batch = {
            "requests": [
                {"dateRanges": date_ranges, "metrics": metrics},
                {
                    "dateRanges": date_ranges,
                    "dimensions": [{"name": "date"}],
                    "metrics": metrics,
                    "orderBys": [{"dimension": {"dimensionName": "date"}}],
                },
                {
                    "dateRanges": date_ranges,
                    "dimensions": [{"name": "sessionDefaultChannelGroup"}],
                    "metrics": [{"name": "sessions"}, {"name": "totalUsers"}],
                    "orderBys": [{"metric": {"metricName": "sessions"}, "desc": True}],
                    "limit": str(config.channels_limit),
                },
                {
                    "dateRanges": date_ranges,
                    "dimensions": [{"name": "pagePath"}],
                    "metrics": [{"name": "screenPageViews"}],
                    "orderBys": [{"metric": {"metricName": "screenPageViews"}, "desc": True}],
                    "limit": str(config.top_pages_limit),
                },
                {
                    "dateRanges": date_ranges,
                    "dimensions": [{"name": "eventName"}],
                    "metrics": [{"name": "keyEvents"}],
                    "orderBys": [{"metric": {"metricName": "keyEvents"}, "desc": True}],
                    "limit": str(config.key_events_limit),
                },
            ]
        }
        url = f"{self.BASE_URL}/properties/{config.account_id}:batchRunReports"
        data = await self._request("POST", url, credential=credential, json=batch)
        reports = data.get("reports") or []
        reports += [{}] * (5 - len(reports))
        totals_report, daily_report, channel_report, pages_report, events_report = reports[:5]

        totals_rows = totals_report.get("rows") or []
        totals = _totals(totals_rows[0]) if totals_rows else {}
        total_sessions = totals.get("sessions", 0.0)

        daily_metrics = [
            Ga4DailyMetrics(date=format_ga4_date(_dimension(row, 0)), **_totals(row))
            for row in daily_report.get("rows") or []
        ]

        channels = []
        for row in channel_report.get("rows") or []:
            sessions = _metric(row, 0)
            channels.append(
                Ga4Channel(
                    name=_dimension(row, 0, "Unknown"),
                    sessions=sessions,
                    users=_metric(row, 1),
                    percentage=round(sessions / total_sessions * 100, 2) if total_sessions > 0 else 0.0,
                )
            )

        top_pages = [
            Ga4Page(path=_dimension(row, 0, "/"), views=_metric(row, 0))
            for row in pages_report.get("rows") or []
        ]

        key_events = [
            Ga4KeyEvent(name=_dimension(row, 0, "Unknown"), count=_metric(row, 0))
            for row in events_report.get("rows") or []
            if _metric(row, 0) > 0
        ]

        breakdowns = await self._fetch_key_event_breakdowns(
            config, credential, date_ranges, key_events[: config.key_event_breakdowns]
        )

        return Ga4Metrics(
            **totals,
            daily_metrics=daily_metrics,
            top_pages=top_pages,
            channels=channels,
            key_events=key_events,
            key_event_breakdowns=breakdowns,
        )

    async def _fetch_key_event_breakdowns(
        self,
        config: Ga4Config,
        credential: Credential,
        date_ranges: List[Dict[str, str]],
        top_events: List[Ga4KeyEvent],
    ) -> List[Ga4KeyEventBreakdown]:
        """Channel split of the top key events, in a single report."""
        if not top_events:
            return []

        names = [event.name for event in top_events]
        body = {
            "dateRanges": date_ranges,
            "dimensions": [{"name": "eventName"}, {"name": "sessionDefaultChannelGroup"}],
            "metrics": [{"name": "keyEvents"}],
            "dimensionFilter": {
                "filter": {"fieldName": "eventName", "inListFilter": {"values": names}}
            },
            "orderBys": [{"metric": {"metricName": "keyEvents"}, "desc": True}],
        }
        url = f"{self.BASE_URL}/properties/{config.account_id}:runReport"
        data = await self._request("POST", url, credential=credential, json=body)

        grouped: "OrderedDict[str, List[Ga4ChannelCount]]" = OrderedDict((name, []) for name in names)
        for row in data.get("rows") or []:
            event_name = _dimension(row, 0)
            count = _metric(row, 0)
            if event_name not in grouped or count <= 0:
                continue
            if len(grouped[event_name]) < config.breakdown_channels_limit:
                grouped[event_name].append(Ga4ChannelCount(name=_dimension(row, 1, "Unknown"), count=count))

        return [
            Ga4KeyEventBreakdown(name=name, total=sum(c.count for c in channels), channels=channels)
            for name, channels in grouped.items()
        ]
