"""Google Ads API adapter (GAQL over REST)."""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from app.config import settings
from app.core.periods import DateRange
from app.models.data_source import SourceType
from app.providers.base import (
    ArtifactModel,
    ConnectedAccount,
    Credential,
    MetricSourceAdapter,
    UpstreamFatalError,
)
from app.providers.google_auth import GoogleOAuthMixin

logger = logging.getLogger(__name__)

MICROS = 1_000_000


class GoogleAdsConfig(BaseModel):
    """Per-customer settings."""

    account_id: str = Field(min_length=1)  # Customer id, dashes allowed
    login_customer_id: Optional[str] = None  # Manager account, when accessed through one
    campaigns_limit: int = 10

    @field_validator("account_id", "login_customer_id")
    @classmethod
    def strip_dashes(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.replace("-", "").strip()
        if not value.isdigit():
            raise ValueError("customer ids must be numeric")
        return value


class AdsTotals(ArtifactModel):
    impressions: float = 0
    clicks: float = 0
    cost: float = 0
    conversions: float = 0
    conversions_value: float = 0
    ctr: float = 0  # 0-100
    average_cpc: float = 0


class AdsDailyMetrics(ArtifactModel):
    date: str
    impressions: float = 0
    clicks: float = 0
    cost: float = 0
    conversions: float = 0


class AdsCampaign(ArtifactModel):
    id: str
    name: str
    impressions: float = 0
    clicks: float = 0
    cost: float = 0
    conversions: float = 0


class AdsMetrics(AdsTotals):
    daily_metrics: List[AdsDailyMetrics] = []
    campaigns: List[AdsCampaign] = []


class AdsBlock(ArtifactModel):
    customer_id: str
    customer_name: str
    current: AdsMetrics
    previous: AdsMetrics
    changes: Dict[str, float]


def _num(metrics: Dict[str, Any], key: str) -> float:
    # proto3 JSON omits zero values and encodes int64 as strings
    try:
        return float(metrics.get(key, 0) or 0)
    except (TypeError, ValueError):
        return 0.0


def _money(micros: float) -> float:
    return round(micros / MICROS, 2)


class GoogleAdsAdapter(GoogleOAuthMixin, MetricSourceAdapter):
    """Google Ads adapter: account totals, daily series and top campaigns."""

    source_type = SourceType.GOOGLE_ADS
    artifact_key = "googleAds"
    config_model = GoogleAdsConfig
    block_model = AdsBlock
    tracked_metrics = ("impressions", "clicks", "cost", "conversions", "conversions_value", "ctr", "average_cpc")
    summary_fields = {"adClicks": "clicks", "adCost": "cost", "adConversions": "conversions"}

    @property
    def base_url(self) -> str:
        return f"https://googleads.googleapis.com/{settings.google_ads_api_version}"

    def block_identity(self, account: ConnectedAccount) -> Dict[str, Any]:
        return {
            "customer_id": account.config.account_id,
            "customer_name": account.account_name or account.config.account_id,
        }

    def _headers(self, config: GoogleAdsConfig) -> Dict[str, str]:
        if not settings.google_ads_developer_token:
            raise UpstreamFatalError(self.source_type, "Google Ads developer token is not configured")
        headers = {"developer-token": settings.google_ads_developer_token}
        if config.login_customer_id:
            headers["login-customer-id"] = config.login_customer_id
        return headers

    async def search(self, config: GoogleAdsConfig, credential: Credential, query: str) -> List[Dict[str, Any]]:
        """Execute a GAQL query and return all result rows (follows pagination)."""
        url = f"{self.base_url}/customers/{config.account_id}/googleAds:search"
        headers = self._headers(config)
        results = []
        page_token = None
        while True:
            payload = {"query": query}
            if page_token:
                payload["pageToken"] = page_token
            data = await self._request("POST", url, credential=credential, headers=headers, json=payload)
            results.extend(data.get("results") or [])
            page_token = data.get("nextPageToken")
            if not page_token:
                break
        return results

    async def fetch_metrics(self, account: ConnectedAccount, credential: Credential, date_range: DateRange) -> AdsMetrics:
        config: GoogleAdsConfig = account.config
        start, end = date_range.as_strings()
        where = f"segments.date BETWEEN '{start}' AND '{end}'"

        totals_query = f"""
            SELECT
                metrics.impressions,
                metrics.clicks,
                metrics.cost_micros,
                metrics.conversions,
                metrics.conversions_value,
                metrics.ctr,
                metrics.average_cpc
            FROM customer
            WHERE {where}
        """
        daily_query = f"""
            SELECT
                segments.date,
                metrics.impressions,
                metrics.clicks,
                metrics.cost_micros,
                metrics.conversions
            FROM customer
            WHERE {where}
            ORDER BY segments.date
        """
        campaign_query = f"""
            SELECT
                campaign.id,
                campaign.name,
                metrics.impressions,
                metrics.clicks,
                metrics.cost_micros,
                metrics.conversions
            FROM campaign
            WHERE {where}
                AND metrics.impressions > 0
            ORDER BY metrics.cost_micros DESC
            LIMIT {config.campaigns_limit}
        """

        totals_rows, daily_rows, campaign_rows = await asyncio.gather(
            self.search(config, credential, totals_query),
            self.search(config, credential, daily_query),
            self.search(config, credential, campaign_query),
        )

        totals = AdsTotals()
        if totals_rows:
            m = totals_rows[0].get("metrics") or {}
            totals = AdsTotals(
                impressions=_num(m, "impressions"),
                clicks=_num(m, "clicks"),
                cost=_money(_num(m, "costMicros")),
                conversions=_num(m, "conversions"),
                conversions_value=round(_num(m, "conversionsValue"), 2),
                ctr=round(_num(m, "ctr") * 100, 4),
                average_cpc=_money(_num(m, "averageCpc")),
            )

        daily_metrics = []
        for row in daily_rows:
            m = row.get("metrics") or {}
            daily_metrics.append(
                AdsDailyMetrics(
                    date=(row.get("segments") or {}).get("date", ""),
                    impressions=_num(m, "impressions"),
                    clicks=_num(m, "clicks"),
                    cost=_money(_num(m, "costMicros")),
                    conversions=_num(m, "conversions"),
                )
            )

        campaigns = []
        for row in campaign_rows:
            m = row.get("metrics") or {}
            campaign = row.get("campaign") or {}
            campaigns.append(
                AdsCampaign(
                    id=str(campaign.get("id", "")),
                    name=campaign.get("name", "Unknown"),
                    impressions=_num(m, "impressions"),
                    clicks=_num(m, "clicks"),
                    cost=_money(_num(m, "costMicros")),
                    conversions=_num(m, "conversions"),
                )
            )

        return AdsMetrics(**totals.model_dump(), daily_metrics=daily_metrics, campaigns=campaigns)
