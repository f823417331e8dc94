"""Valid access tokens on demand, refreshing stored credentials when stale."""

from __future__ import annotations

import logging
from datetime import timedelta

from ..core.datetime_utils import utc_now
from ..core.errors import RefreshFailed, TokenUnavailable
from ..core.interfaces import Clock, TokenExchanger, TokenStore
from ..core.models import ProviderToken
from .oauth import OAuthError

LOGGER = logging.getLogger(__name__)

DEFAULT_PROVIDER = "google"
DEFAULT_EXPIRES_IN = 3600


class TokenManager:
    """Hand out usable access tokens for a user's mailbox."""

    def __init__(
        self,
        store: TokenStore,
        exchanger: TokenExchanger,
        *,
        refresh_margin_seconds: float = 60,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._exchanger = exchanger
        self._margin = refresh_margin_seconds
        self._clock = clock

    def get_valid_token(self, user_id: str, provider: str = DEFAULT_PROVIDER) -> str:
        """Return an access token that will not expire within the margin.

        Raises:
            TokenUnavailable: No credentials are stored for the user.
            RefreshFailed: The stored refresh token could not be exchanged.
                Nothing is written in that case.
        """
        stored = self._store.get_token(user_id, provider)
        if stored is None:
            raise TokenUnavailable(f"No {provider} credentials for user {user_id}")

        now = self._clock()
        if not stored.expires_within(now, self._margin):
            return stored.access_token

        if not stored.refresh_token:
            raise RefreshFailed(
                f"Access token expired and no refresh token stored for user {user_id}"
            )

        LOGGER.info("Refreshing %s access token for user %s", provider, user_id)
        try:
            payload = self._exchanger.refresh_access_token(stored.refresh_token)
        except OAuthError as exc:
            LOGGER.warning("Token refresh rejected for user %s: %s", user_id, exc)
            raise RefreshFailed(f"Token refresh failed: {exc}") from exc

        access_token = payload.get("access_token")
        if not access_token:
            raise RefreshFailed("Token refresh response lacked an access token")

        expires_in = int(payload.get("expires_in") or DEFAULT_EXPIRES_IN)
        refreshed = ProviderToken(
            user_id=user_id,
            provider=provider,
            access_token=access_token,
            refresh_token=payload.get("refresh_token") or stored.refresh_token,
            expires_at=now + timedelta(seconds=expires_in),
            scope=payload.get("scope") or stored.scope,
        )
        self._store.upsert_token(refreshed)
        return refreshed.access_token


__all__ = ["DEFAULT_PROVIDER", "TokenManager"]
