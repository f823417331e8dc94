"""Tests for access-token refresh handling."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from inbox_triage.auth.oauth import OAuthError
from inbox_triage.auth.tokens import TokenManager
from inbox_triage.core.errors import ErrorKind, RefreshFailed, TokenUnavailable
from inbox_triage.core.models import ProviderToken

NOW = datetime(2025, 10, 24, 12, 0, tzinfo=timezone.utc)


class MemoryTokenStore:
    """In-memory token store recording writes."""

    def __init__(self, token: ProviderToken | None = None) -> None:
        self.token = token
        self.writes: list[ProviderToken] = []

    def get_token(self, user_id: str, provider: str) -> ProviderToken | None:
        return self.token

    def upsert_token(self, token: ProviderToken) -> None:
        self.writes.append(token)
        self.token = token


class StubExchanger:
    """Token endpoint stub returning a canned payload or raising."""

    def __init__(
        self, payload: dict[str, Any] | None = None, *, fail: bool = False
    ) -> None:
        self.payload = payload or {"access_token": "fresh", "expires_in": 3599}
        self.fail = fail
        self.calls: list[str] = []

    def refresh_access_token(self, refresh_token: str) -> dict[str, Any]:
        self.calls.append(refresh_token)
        if self.fail:
            raise OAuthError("invalid_grant", status=400)
        return self.payload


def _token(expires_at: datetime | None, refresh: str | None = "refresh-1") -> ProviderToken:
    return ProviderToken("u1", "google", "stale", refresh, expires_at, "gmail")


def _manager(store: MemoryTokenStore, exchanger: StubExchanger) -> TokenManager:
    return TokenManager(store, exchanger, refresh_margin_seconds=60, clock=lambda: NOW)


def test_unexpired_token_is_returned_without_refresh() -> None:
    store = MemoryTokenStore(_token(NOW + timedelta(minutes=5)))
    exchanger = StubExchanger()

    assert _manager(store, exchanger).get_valid_token("u1") == "stale"
    assert exchanger.calls == []
    assert store.writes == []


def test_token_inside_margin_is_refreshed_and_persisted() -> None:
    store = MemoryTokenStore(_token(NOW + timedelta(seconds=30)))
    exchanger = StubExchanger()

    assert _manager(store, exchanger).get_valid_token("u1") == "fresh"

    assert exchanger.calls == ["refresh-1"]
    assert len(store.writes) == 1
    written = store.writes[0]
    assert written.access_token == "fresh"
    assert written.refresh_token == "refresh-1"
    assert written.expires_at == NOW + timedelta(seconds=3599)
    assert written.expires_at > NOW


def test_new_refresh_token_replaces_old_one() -> None:
    store = MemoryTokenStore(_token(NOW - timedelta(hours=1)))
    exchanger = StubExchanger({"access_token": "fresh", "refresh_token": "refresh-2"})

    _manager(store, exchanger).get_valid_token("u1")

    assert store.writes[0].refresh_token == "refresh-2"
    assert store.writes[0].expires_at == NOW + timedelta(seconds=3600)


def test_missing_credentials_raise_token_unavailable() -> None:
    with pytest.raises(TokenUnavailable) as excinfo:
        _manager(MemoryTokenStore(), StubExchanger()).get_valid_token("u1")
    assert excinfo.value.kind is ErrorKind.AUTH


def test_rejected_refresh_writes_nothing() -> None:
    store = MemoryTokenStore(_token(NOW - timedelta(minutes=1)))
    exchanger = StubExchanger(fail=True)

    with pytest.raises(RefreshFailed) as excinfo:
        _manager(store, exchanger).get_valid_token("u1")

    assert excinfo.value.kind is ErrorKind.AUTH
    assert exchanger.calls == ["refresh-1"]
    assert store.writes == []


def test_expired_token_without_refresh_token_fails() -> None:
    store = MemoryTokenStore(_token(NOW - timedelta(minutes=1), refresh=None))
    exchanger = StubExchanger()

    with pytest.raises(RefreshFailed):
        _manager(store, exchanger).get_valid_token("u1")
    assert exchanger.calls == []
