"""Base metric source adapter interface."""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple, Type

import httpx
import pydantic
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from app.config import settings
from app.core.comparison import compute_changes
from app.core.periods import DateRange
from app.models.data_source import SourceType

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}


class UpstreamError(Exception):
    """Failure talking to a metric source."""

    retryable = False

    def __init__(self, source_type: SourceType, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.source_type = source_type
        self.message = message
        self.status_code = status_code


class UpstreamRetryableError(UpstreamError):
    """Timeout, rate limit or transient 5xx."""

    retryable = True


class UpstreamFatalError(UpstreamError):
    """Revoked credential, unknown account or invalid configuration."""

    retryable = False


class ArtifactModel(BaseModel):
    """Base for everything serialized into a snapshot artifact (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


@dataclass
class Credential:
    """Opaque OAuth credential handle for one connected account."""

    access_token: str = field(repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)
    expires_at: Optional[datetime] = None

    def authorization_header(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    def expires_within(self, seconds: int, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        now = now or datetime.utcnow()
        return self.expires_at - now < timedelta(seconds=seconds)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Credential":
        expires_at = data.get("expires_at")
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
        )


@dataclass
class ConnectedAccount:
    """An active connection of a client to one source."""

    data_source_id: int
    source_type: SourceType
    account_ref: str
    account_name: Optional[str]
    config: Any  # Raw stored dict until the adapter parses it into its config model


class MetricSourceAdapter(ABC):
    """
    Base class for metric source adapters.

    One subclass per source type. Subclasses declare which metrics are
    compared period over period (``tracked_metrics``), which ones feed the
    metadata summary (``summary_fields``) and the typed per-source config.
    """

    source_type: SourceType
    artifact_key: str
    config_model: Type[BaseModel]
    block_model: Type[ArtifactModel]
    tracked_metrics: Tuple[str, ...] = ()
    summary_fields: Dict[str, str] = {}

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        retry_attempts: Optional[int] = None,
        retry_backoff: Optional[float] = None,
        retry_max_delay: Optional[float] = None,
    ):
        self.http = http_client
        self.retry_attempts = max(1, retry_attempts or settings.source_retry_attempts)
        self.retry_backoff = settings.source_retry_backoff if retry_backoff is None else retry_backoff
        self.retry_max_delay = settings.source_retry_max_delay if retry_max_delay is None else retry_max_delay

    @property
    def name(self) -> str:
        return self.source_type.value

    def parse_config(self, config: Optional[Dict[str, Any]], external_account_id: Optional[str]) -> BaseModel:
        """Validate the stored per-source config into its typed shape."""
        data = dict(config or {})
        if external_account_id:
            data.setdefault("account_id", external_account_id)
        try:
            return self.config_model.model_validate(data)
        except pydantic.ValidationError as e:
            raise UpstreamFatalError(self.source_type, f"Invalid {self.name} configuration: {e}")

    @abstractmethod
    async def fetch_metrics(self, account: ConnectedAccount, credential: Credential, date_range: DateRange) -> BaseModel:
        """Fetch the metric set for an inclusive date range."""
        pass

    @abstractmethod
    async def refresh_credential(self, credential: Credential) -> Credential:
        """Exchange the refresh token for a new access token."""
        pass

    def build_block(self, account: ConnectedAccount, current: BaseModel, previous: BaseModel) -> ArtifactModel:
        """Assemble the artifact block for this source."""
        changes = compute_changes(current.model_dump(), previous.model_dump(), self.tracked_metrics)
        return self.block_model(
            **self.block_identity(account),
            current=current,
            previous=previous,
            changes=changes,
        )

    @abstractmethod
    def block_identity(self, account: ConnectedAccount) -> Dict[str, Any]:
        """Account identification fields of the artifact block."""
        pass

    async def _request(
        self,
        method: str,
        url: str,
        credential: Optional[Credential] = None,
        headers: Optional[Dict[str, str]] = None,
        **kwargs,
    ) -> Dict[str, Any]:
        """
        Perform an upstream call with bounded retries.

        Timeouts, transport errors, 429 and 5xx are retried with exponential
        backoff and raise UpstreamRetryableError once attempts run out. Any
        other 4xx raises UpstreamFatalError immediately.
        """
        request_headers = dict(headers or {})
        if credential is not None:
            request_headers.update(credential.authorization_header())

        for attempt in range(1, self.retry_attempts + 1):
            delay = self._backoff_delay(attempt)
            try:
                response = await self.http.request(method, url, headers=request_headers, **kwargs)
            except httpx.TimeoutException as e:
                error = UpstreamRetryableError(self.source_type, f"{self.name} request timed out: {e}")
            except httpx.TransportError as e:
                error = UpstreamRetryableError(self.source_type, f"{self.name} transport error: {e}")
            else:
                if response.status_code < 400:
                    try:
                        return response.json()
                    except ValueError:
                        raise UpstreamFatalError(
                            self.source_type,
                            f"{self.name} returned a malformed payload: {response.text[:200]}",
                            response.status_code,
                        )
                message = f"{self.name} returned {response.status_code}: {response.text[:500]}"
                if response.status_code not in RETRYABLE_STATUS_CODES:
                    raise UpstreamFatalError(self.source_type, message, response.status_code)
                error = UpstreamRetryableError(self.source_type, message, response.status_code)
                retry_after = response.headers.get("Retry-After")
                if retry_after and retry_after.isdigit():
                    delay = min(float(retry_after), self.retry_max_delay)

            if attempt == self.retry_attempts:
                logger.error(f"{self.name} request failed after {attempt} attempts: {error.message}")
                raise error
            logger.warning(f"{self.name} attempt {attempt} failed, retrying in {delay:.1f}s: {error.message}")
            await asyncio.sleep(delay)

        raise UpstreamRetryableError(self.source_type, f"{self.name} retries exhausted")

    def _backoff_delay(self, attempt: int) -> float:
        return min(self.retry_max_delay, self.retry_backoff * (2 ** (attempt - 1)))
