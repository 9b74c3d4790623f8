# calendar_backend/oauth.py
"""Google OAuth 2.0 token endpoint access (authorization code exchange and refresh)."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx
from authlib.integrations.httpx_client import AsyncOAuth2Client, OAuthError
from authlib.oauth2.rfc6749.parameters import prepare_grant_uri

from calendar_backend.config import GOOGLE_AUTHORIZE_URL, GOOGLE_SCOPES, GOOGLE_TOKEN_URL, Settings
from calendar_backend.exceptions import ExchangeError, TokenRefreshError

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 3600


@dataclass(frozen=True)
class TokenSet:
    access_token: str
    refresh_token: str
    expires_at: datetime
    id_token: Optional[str] = None

    @classmethod
    def from_token_response(cls, token: dict[str, Any]) -> "TokenSet":
        if token.get("expires_at"):
            expires_at = datetime.fromtimestamp(int(token["expires_at"]), tz=timezone.utc)
        else:
            expires_in = int(token.get("expires_in") or DEFAULT_EXPIRES_IN)
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=expires_in)
        return cls(
            access_token=token["access_token"],
            refresh_token=token.get("refresh_token") or "",
            expires_at=expires_at,
            id_token=token.get("id_token"),
        )


class GoogleOAuthClient:
    """
    Thin wrapper around authlib's AsyncOAuth2Client.

    A fresh httpx-backed client is opened for every call and closed on exit,
    so no token state is shared between concurrent requests.
    """

    def __init__(self, settings: Settings, timeout: float = 10.0):
        self.client_id = settings.google_client_id
        self.client_secret = settings.google_client_secret
        self.redirect_uri = settings.google_redirect_url
        self.timeout = timeout

    def _client(self) -> AsyncOAuth2Client:
        return AsyncOAuth2Client(
            client_id=self.client_id,
            client_secret=self.client_secret,
            scope=" ".join(GOOGLE_SCOPES),
            redirect_uri=self.redirect_uri,
            timeout=self.timeout,
        )

    def authorization_url(self, state: str) -> str:
        return prepare_grant_uri(
            GOOGLE_AUTHORIZE_URL,
            self.client_id,
            "code",
            redirect_uri=self.redirect_uri,
            scope=" ".join(GOOGLE_SCOPES),
            state=state,
            access_type="offline",
            prompt="consent",
        )

    async def exchange_code(self, code: str) -> TokenSet:
        try:
            async with self._client() as client:
                token = await client.fetch_token(GOOGLE_TOKEN_URL, code=code)
            return TokenSet.from_token_response(token)
        except (OAuthError, httpx.HTTPError, KeyError, ValueError) as e:
            logger.warning(f"Authorization code exchange failed: {e}", extra={"error_type": "exchange_failed"})
            raise ExchangeError(f"token exchange failed: {e}") from e

    async def refresh(self, refresh_token: str) -> TokenSet:
        if not refresh_token:
            raise TokenRefreshError("failed to refresh token: no refresh token stored")
        try:
            async with self._client() as client:
                token = await client.refresh_token(GOOGLE_TOKEN_URL, refresh_token=refresh_token)
            return TokenSet.from_token_response(token)
        except (OAuthError, httpx.HTTPError, KeyError, ValueError) as e:
            logger.warning(f"Token refresh failed: {e}", extra={"error_type": "refresh_failed"})
            raise TokenRefreshError(f"failed to refresh token: {e}") from e
