"""Google Search Console adapter (organic ranking)."""

import asyncio
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from pydantic import BaseModel, Field

from app.core.periods import DateRange
from app.models.data_source import SourceType
from app.providers.base import ArtifactModel, ConnectedAccount, Credential, MetricSourceAdapter
from app.providers.google_auth import GoogleOAuthMixin

logger = logging.getLogger(__name__)


class SearchConsoleConfig(BaseModel):
    """Per-site settings."""

    account_id: str = Field(min_length=1)  # Site URL or sc-domain: property
    search_type: str = "web"
    top_queries_limit: int = 10
    top_pages_limit: int = 10


class SearchTotals(ArtifactModel):
    clicks: float = 0
    impressions: float = 0
    ctr: float = 0  # 0-100
    position: float = 0


class SearchDailyMetrics(SearchTotals):
    date: str


class SearchQueryRow(SearchTotals):
    query: str


class SearchPageRow(SearchTotals):
    page: str


class SearchMetrics(SearchTotals):
    daily_metrics: List[SearchDailyMetrics] = []
    top_queries: List[SearchQueryRow] = []
    top_pages: List[SearchPageRow] = []


class SearchConsoleBlock(ArtifactModel):
    site_url: str
    current: SearchMetrics
    previous: SearchMetrics
    changes: Dict[str, float]


def _totals(row: Dict[str, Any]) -> Dict[str, float]:
    return {
        "clicks": float(row.get("clicks", 0) or 0),
        "impressions": float(row.get("impressions", 0) or 0),
        "ctr": round(float(row.get("ctr", 0) or 0) * 100, 4),
        "position": round(float(row.get("position", 0) or 0), 2),
    }


def _key(row: Dict[str, Any]) -> str:
    keys = row.get("keys") or [""]
    return keys[0]


class SearchConsoleAdapter(GoogleOAuthMixin, MetricSourceAdapter):
    """Search Console adapter: totals, daily series, top queries and pages."""

    BASE_URL = "https://searchconsole.googleapis.com/webmasters/v3"

    source_type = SourceType.SEARCH_CONSOLE
    artifact_key = "searchConsole"
    config_model = SearchConsoleConfig
    block_model = SearchConsoleBlock
    tracked_metrics = ("clicks", "impressions", "ctr", "position")
    summary_fields = {"searchClicks": "clicks", "searchImpressions": "impressions", "avgPosition": "position"}

    def block_identity(self, account: ConnectedAccount) -> Dict[str, Any]:
        return {"site_url": account.config.account_id}

    async def query(
        self,
        config: SearchConsoleConfig,
        credential: Credential,
        date_range: DateRange,
        dimensions: Optional[List[str]] = None,
        row_limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        start, end = date_range.as_strings()
        body = {"startDate": start, "endDate": end, "type": config.search_type}
        if dimensions:
            body["dimensions"] = dimensions
        if row_limit:
            body["rowLimit"] = row_limit
        url = f"{self.BASE_URL}/sites/{quote(config.account_id, safe='')}/searchAnalytics/query"
        data = await self._request("POST", url, credential=credential, json=body)
        return data.get("rows") or []

    async def fetch_metrics(self, account: ConnectedAccount, credential: Credential, date_range: DateRange) -> SearchMetrics:
        config: SearchConsoleConfig = account.config
        totals_rows, daily_rows, query_rows, page_rows = await asyncio.gather(
            self.query(config, credential, date_range),
            self.query(config, credential, date_range, ["date"], date_range.days),
            self.query(config, credential, date_range, ["query"], config.top_queries_limit),
            self.query(config, credential, date_range, ["page"], config.top_pages_limit),
        )

        totals = _totals(totals_rows[0]) if totals_rows else {}
        return SearchMetrics(
            **totals,
            daily_metrics=[SearchDailyMetrics(date=_key(row), **_totals(row)) for row in daily_rows],
            top_queries=[SearchQueryRow(query=_key(row), **_totals(row)) for row in query_rows],
            top_pages=[SearchPageRow(page=_key(row), **_totals(row)) for row in page_rows],
        )
