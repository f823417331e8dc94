"""Protocol interfaces for decoupling components."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any, Protocol

from .models import EmailRecord, EmailStatus, ProviderToken, ToneProfile


class UserDirectory(Protocol):
    """Resolves mailbox addresses and session tokens to internal user ids."""

    def find_user_id(self, email_address: str) -> str | None:
        """Return the user owning ``email_address`` if one is registered."""
        raise NotImplementedError

    def resolve_session(self, token: str) -> str | None:
        """Return the user id for a live session token."""
        raise NotImplementedError


class TokenStore(Protocol):
    """Durable storage of provider OAuth credentials."""

    def get_token(self, user_id: str, provider: str) -> ProviderToken | None:
        """Return stored credentials for ``user_id`` and ``provider``."""
        raise NotImplementedError

    def upsert_token(self, token: ProviderToken) -> None:
        """Last-write-wins upsert keyed by (user, provider)."""
        raise NotImplementedError


class LedgerStore(Protocol):
    """Write-once markers for processed notification cursors."""

    def cursor_recorded(self, user_id: str, history_id: str) -> bool:
        """Return ``True`` when the cursor already has a marker."""
        raise NotImplementedError

    def record_cursor(self, user_id: str, history_id: str) -> bool:
        """Insert a marker; return ``False`` if one already existed."""
        raise NotImplementedError

    def email_exists(self, user_id: str, message_id: str) -> bool:
        """Return ``True`` when an email record exists for the message."""
        raise NotImplementedError


class EmailStore(Protocol):
    """Persistence for classified email records."""

    def insert_email(self, record: EmailRecord) -> bool:
        """Insert ``record``; return ``False`` if (user, message) already exists."""
        raise NotImplementedError

    def fetch_email(self, user_id: str, email_id: str) -> EmailRecord | None:
        """Return the record owned by ``user_id`` with id ``email_id``."""
        raise NotImplementedError

    def find_email_by_message_id(
        self, user_id: str, message_id: str
    ) -> EmailRecord | None:
        """Return the record stored for a provider message id."""
        raise NotImplementedError

    def update_draft(
        self,
        user_id: str,
        email_id: str,
        *,
        draft_reply: str,
        status: EmailStatus,
        allowed_from: Sequence[EmailStatus],
    ) -> bool:
        """Store a draft if the record is still in one of ``allowed_from``."""
        raise NotImplementedError


class ToneStore(Protocol):
    """Read access to per-user tone sliders."""

    def get_tone_profile(self, user_id: str) -> ToneProfile | None:
        """Return the stored profile, or ``None`` when never set."""
        raise NotImplementedError


class MailProvider(Protocol):
    """Subset of the Gmail REST API consumed by the pipeline."""

    def get_message(self, message_id: str, access_token: str) -> dict[str, Any]:
        """Return the full message resource."""
        raise NotImplementedError

    def list_history(
        self, start_history_id: str, access_token: str
    ) -> list[dict[str, Any]]:
        """Return history records newer than ``start_history_id``."""
        raise NotImplementedError

    def watch(
        self, access_token: str, *, topic_name: str, label_ids: Sequence[str]
    ) -> dict[str, Any]:
        """Register or renew the push subscription for the mailbox."""
        raise NotImplementedError


class TokenExchanger(Protocol):
    """OAuth token endpoint operations."""

    def refresh_access_token(self, refresh_token: str) -> dict[str, Any]:
        """Exchange a refresh token for a new access token payload."""
        raise NotImplementedError


class Clock(Protocol):
    """Callable returning the current aware UTC time."""

    def __call__(self) -> datetime:
        """Return now."""
        raise NotImplementedError


__all__ = [
    "Clock",
    "EmailStore",
    "LedgerStore",
    "MailProvider",
    "ToneStore",
    "TokenExchanger",
    "TokenStore",
    "UserDirectory",
]
