"""Google OAuth 2.0 client for consent and token refresh."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlencode

import httpx

from ..core.config import GoogleSettings
from ..core.errors import UpstreamError

LOGGER = logging.getLogger(__name__)


class OAuthError(UpstreamError):
    """The OAuth token endpoint rejected a request or was unreachable."""


class GoogleOAuthClient:
    """Talk to Google's OAuth endpoints using httpx."""

    def __init__(
        self, settings: GoogleSettings, *, http_client: httpx.Client | None = None
    ) -> None:
        self._settings = settings
        self._client = http_client or httpx.Client(timeout=settings.timeout_seconds)
        self._owns_client = http_client is None

    def authorization_url(self, state: str) -> str:
        """Generate the consent URL that yields an offline refresh token."""
        params = {
            "client_id": self._settings.client_id or "",
            "redirect_uri": self._settings.redirect_uri or "",
            "response_type": "code",
            "scope": " ".join(self._settings.scopes),
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        }
        return f"{self._settings.auth_url}?{urlencode(params)}"

    def exchange_code(self, code: str) -> dict[str, Any]:
        """Exchange an authorization code for access and refresh tokens."""
        tokens = self._post_token(
            {
                "code": code,
                "client_id": self._settings.client_id,
                "client_secret": self._settings.client_secret,
                "redirect_uri": self._settings.redirect_uri,
                "grant_type": "authorization_code",
            }
        )
        LOGGER.info("Exchanged authorization code for tokens")
        return tokens

    def refresh_access_token(self, refresh_token: str) -> dict[str, Any]:
        """Exchange a refresh token for a fresh access token payload."""
        tokens = self._post_token(
            {
                "client_id": self._settings.client_id,
                "client_secret": self._settings.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            }
        )
        LOGGER.info("Refreshed access token")
        return tokens

    def close(self) -> None:
        """Release the HTTP client if this instance created it."""
        if self._owns_client:
            self._client.close()

    def _post_token(self, data: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self._client.post(self._settings.token_url, data=data)
        except httpx.HTTPError as exc:
            raise OAuthError(f"Token endpoint unreachable: {exc}") from exc
        if response.status_code != 200:
            LOGGER.error("Token request failed: %s", response.status_code)
            LOGGER.debug("Response: %s", response.text)
            raise OAuthError(
                f"Token endpoint returned {response.status_code}",
                status=response.status_code,
                detail=response.text,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise OAuthError("Token endpoint returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise OAuthError("Token endpoint returned an unexpected payload")
        return payload


__all__ = ["GoogleOAuthClient", "OAuthError"]
