"""Google OAuth token refresh shared by the Google adapters."""

import logging
from datetime import datetime, timedelta

import httpx

from app.config import settings
from app.providers.base import Credential, UpstreamFatalError, UpstreamRetryableError

logger = logging.getLogger(__name__)

TOKEN_URL = "https://oauth2.googleapis.com/token"


class GoogleOAuthMixin:
    """refresh_credential for adapters backed by Google OAuth."""

    async def refresh_credential(self, credential: Credential) -> Credential:
        if not credential.refresh_token:
            raise UpstreamFatalError(self.source_type, f"{self.name} credential has no refresh token")
        if not settings.google_client_id or not settings.google_client_secret:
            raise UpstreamFatalError(self.source_type, "Google OAuth client is not configured")

        data = {
            "client_id": settings.google_client_id,
            "client_secret": settings.google_client_secret,
            "refresh_token": credential.refresh_token,
            "grant_type": "refresh_token",
        }
        try:
            payload = await self._request("POST", TOKEN_URL, data=data)
        except UpstreamFatalError as e:
            # invalid_grant: the user revoked access or the token expired
            logger.warning(f"{self.name} refresh token rejected: {e.message}")
            raise

        access_token = payload.get("access_token")
        if not access_token:
            raise UpstreamRetryableError(self.source_type, "Token refresh returned no access token")
        expires_in = int(payload.get("expires_in", 3600))
        return Credential(
            access_token=access_token,
            refresh_token=payload.get("refresh_token") or credential.refresh_token,
            expires_at=datetime.utcnow() + timedelta(seconds=expires_in),
        )
