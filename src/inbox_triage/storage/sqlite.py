"""SQLite-backed repository for users, credentials, the ledger, and emails."""

from __future__ import annotations

import hashlib
import logging
import sqlite3
import uuid
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from types import TracebackType
from typing import cast

from ..core.config import StorageSettings
from ..core.datetime_utils import parse_datetime, serialize_datetime, utc_now
from ..core.errors import PersistenceError
from ..core.interfaces import (
    EmailStore,
    LedgerStore,
    TokenStore,
    ToneStore,
    UserDirectory,
)
from ..core.models import (
    EmailRecord,
    EmailStatus,
    ProviderToken,
    RequiredAction,
    RiskCategory,
    Sentiment,
    ToneProfile,
    Urgency,
)

LOGGER = logging.getLogger(__name__)

OAUTH_STATE_TTL = timedelta(minutes=10)

_EMAIL_COLUMNS = """
    id,
    user_id,
    message_id,
    subject,
    sender,
    body,
    category,
    urgency,
    sentiment,
    required_action,
    draft_reply,
    status,
    created_at,
    updated_at
"""


class SqliteTriageRepository(
    UserDirectory, TokenStore, LedgerStore, EmailStore, ToneStore
):
    """Persist triage state using SQLite."""

    def __init__(self, settings: StorageSettings) -> None:
        """Open the database and apply migrations."""
        self._settings = settings
        db_path = Path(settings.db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._connection = sqlite3.connect(
                db_path,
                timeout=settings.busy_timeout_seconds,
                check_same_thread=False,
            )
            self._connection.row_factory = sqlite3.Row
            self._configure_connection()
            self._apply_migrations()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Unable to open database {db_path}: {exc}") from exc

    # Context manager helpers -------------------------------------------------
    def __enter__(self) -> SqliteTriageRepository:
        """Enter context manager scope."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Ensure the connection is closed when exiting context manager."""
        self.close()

    # Users and sessions ------------------------------------------------------
    def register_user(self, email_address: str) -> str:
        """Create a user for ``email_address`` or return the existing id."""
        existing = self.find_user_id(email_address)
        if existing is not None:
            return existing
        user_id = str(uuid.uuid4())
        with self._write("register user"):
            self._connection.execute(
                """
                INSERT INTO users (id, email, created_at) VALUES (?, ?, ?)
                ON CONFLICT(email) DO NOTHING
                """,
                (user_id, email_address.strip(), serialize_datetime(utc_now())),
            )
        # A concurrent registration may have won the insert.
        return cast(str, self.find_user_id(email_address))

    def find_user_id(self, email_address: str) -> str | None:
        """Return the user id owning ``email_address``."""
        row = self._query_one(
            "SELECT id FROM users WHERE email = ?", (email_address.strip(),)
        )
        return row["id"] if row else None

    def create_session(
        self, user_id: str, token: str, *, expires_at: datetime | None = None
    ) -> None:
        """Store a hashed session token for ``user_id``."""
        with self._write("create session"):
            self._connection.execute(
                """
                INSERT INTO sessions (token_hash, user_id, expires_at)
                VALUES (?, ?, ?)
                ON CONFLICT(token_hash) DO UPDATE SET
                    user_id = excluded.user_id,
                    expires_at = excluded.expires_at
                """,
                (_hash_token(token), user_id, serialize_datetime(expires_at)),
            )

    def resolve_session(self, token: str) -> str | None:
        """Return the user id for ``token`` unless missing or expired."""
        row = self._query_one(
            "SELECT user_id, expires_at FROM sessions WHERE token_hash = ?",
            (_hash_token(token),),
        )
        if row is None:
            return None
        expires_at = parse_datetime(row["expires_at"])
        if expires_at is not None and expires_at <= utc_now():
            LOGGER.debug("Session for user %s has expired", row["user_id"])
            return None
        return row["user_id"]

    # Provider tokens ---------------------------------------------------------
    def get_token(self, user_id: str, provider: str) -> ProviderToken | None:
        """Return stored credentials for ``user_id`` and ``provider``."""
        row = self._query_one(
            """
            SELECT user_id, provider, access_token, refresh_token, expires_at, scope
            FROM provider_tokens
            WHERE user_id = ? AND provider = ?
            """,
            (user_id, provider),
        )
        if row is None:
            return None
        return ProviderToken(
            user_id=row["user_id"],
            provider=row["provider"],
            access_token=row["access_token"],
            refresh_token=row["refresh_token"],
            expires_at=parse_datetime(row["expires_at"]),
            scope=row["scope"],
        )

    def upsert_token(self, token: ProviderToken) -> None:
        """Last-write-wins upsert; an empty refresh token never replaces a stored one."""
        LOGGER.debug("Storing %s token for user %s", token.provider, token.user_id)
        with self._write("store provider token"):
            self._connection.execute(
                """
                INSERT INTO provider_tokens (
                    user_id,
                    provider,
                    access_token,
                    refresh_token,
                    expires_at,
                    scope,
                    updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, provider) DO UPDATE SET
                    access_token = excluded.access_token,
                    refresh_token = COALESCE(
                        NULLIF(excluded.refresh_token, ''),
                        provider_tokens.refresh_token
                    ),
                    expires_at = excluded.expires_at,
                    scope = COALESCE(excluded.scope, provider_tokens.scope),
                    updated_at = excluded.updated_at
                """,
                (
                    token.user_id,
                    token.provider,
                    token.access_token,
                    token.refresh_token or None,
                    serialize_datetime(token.expires_at),
                    token.scope,
                    serialize_datetime(utc_now()),
                ),
            )

    # Dedup ledger ------------------------------------------------------------
    def cursor_recorded(self, user_id: str, history_id: str) -> bool:
        """Return ``True`` when the cursor already has a processed marker."""
        row = self._query_one(
            "SELECT 1 FROM email_history WHERE user_id = ? AND history_id = ?",
            (user_id, history_id),
        )
        return row is not None

    def record_cursor(self, user_id: str, history_id: str) -> bool:
        """Insert a processed marker; ``False`` means another delivery owns it."""
        with self._write("record history cursor"):
            cur = self._connection.execute(
                """
                INSERT INTO email_history (user_id, history_id, processed_at)
                VALUES (?, ?, ?)
                ON CONFLICT(user_id, history_id) DO NOTHING
                """,
                (user_id, history_id, serialize_datetime(utc_now())),
            )
        return cur.rowcount == 1

    def email_exists(self, user_id: str, message_id: str) -> bool:
        """Return ``True`` when an email record exists for the message."""
        row = self._query_one(
            "SELECT 1 FROM emails WHERE user_id = ? AND message_id = ?",
            (user_id, message_id),
        )
        return row is not None

    # Emails ------------------------------------------------------------------
    def insert_email(self, record: EmailRecord) -> bool:
        """Insert ``record``; return ``False`` if the message is already stored."""
        LOGGER.debug(
            "Persisting email user=%s message=%s", record.user_id, record.message_id
        )
        with self._write("insert email"):
            cur = self._connection.execute(
                f"""
                INSERT INTO emails ({_EMAIL_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, message_id) DO NOTHING
                """,
                (
                    record.id,
                    record.user_id,
                    record.message_id,
                    record.subject,
                    record.sender,
                    record.body,
                    record.category.value,
                    record.urgency.value,
                    record.sentiment.value,
                    record.required_action.value,
                    record.draft_reply,
                    record.status.value,
                    serialize_datetime(record.created_at),
                    serialize_datetime(record.updated_at),
                ),
            )
        return cur.rowcount == 1

    def fetch_email(self, user_id: str, email_id: str) -> EmailRecord | None:
        """Return the record with ``email_id`` owned by ``user_id``."""
        row = self._query_one(
            f"SELECT {_EMAIL_COLUMNS} FROM emails WHERE id = ? AND user_id = ?",
            (email_id, user_id),
        )
        return _row_to_email(row) if row else None

    def find_email_by_message_id(
        self, user_id: str, message_id: str
    ) -> EmailRecord | None:
        """Return the record for a provider message id."""
        row = self._query_one(
            f"SELECT {_EMAIL_COLUMNS} FROM emails WHERE user_id = ? AND message_id = ?",
            (user_id, message_id),
        )
        return _row_to_email(row) if row else None

    def list_emails(
        self,
        user_id: str,
        *,
        status: EmailStatus | None = None,
        limit: int | None = None,
    ) -> list[EmailRecord]:
        """Return the user's records, newest first."""
        query = [f"SELECT {_EMAIL_COLUMNS} FROM emails WHERE user_id = ?"]
        params: list[object] = [user_id]
        if status is not None:
            query.append(" AND status = ?")
            params.append(status.value)
        query.append(" ORDER BY created_at DESC")
        if limit is not None:
            query.append(" LIMIT ?")
            params.append(limit)
        cur = self._connection.execute("".join(query), params)
        return [_row_to_email(row) for row in cur.fetchall()]

    def update_draft(
        self,
        user_id: str,
        email_id: str,
        *,
        draft_reply: str,
        status: EmailStatus,
        allowed_from: Sequence[EmailStatus],
    ) -> bool:
        """Store a draft and status while the record is in ``allowed_from``."""
        if not allowed_from:
            return False
        placeholders = ",".join("?" for _ in allowed_from)
        with self._write("update draft"):
            cur = self._connection.execute(
                f"""
                UPDATE emails
                SET draft_reply = ?, status = ?, updated_at = ?
                WHERE id = ? AND user_id = ? AND status IN ({placeholders})
                """,
                (
                    draft_reply,
                    status.value,
                    serialize_datetime(utc_now()),
                    email_id,
                    user_id,
                    *(item.value for item in allowed_from),
                ),
            )
        return cur.rowcount == 1

    # Tone preferences --------------------------------------------------------
    def get_tone_profile(self, user_id: str) -> ToneProfile | None:
        """Return the stored tone sliders for ``user_id``."""
        row = self._query_one(
            """
            SELECT formality, emoji_usage, brevity
            FROM user_preferences
            WHERE user_id = ?
            """,
            (user_id,),
        )
        if row is None:
            return None
        return ToneProfile(
            formality=row["formality"],
            emoji_usage=row["emoji_usage"],
            brevity=row["brevity"],
        )

    def upsert_tone_profile(self, user_id: str, profile: ToneProfile) -> None:
        """Store or update the tone sliders for ``user_id``."""
        with self._write("store tone profile"):
            self._connection.execute(
                """
                INSERT INTO user_preferences (
                    user_id, formality, emoji_usage, brevity, updated_at
                ) VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    formality = excluded.formality,
                    emoji_usage = excluded.emoji_usage,
                    brevity = excluded.brevity,
                    updated_at = excluded.updated_at
                """,
                (
                    user_id,
                    profile.formality,
                    profile.emoji_usage,
                    profile.brevity,
                    serialize_datetime(utc_now()),
                ),
            )

    # OAuth consent state -----------------------------------------------------
    def save_oauth_state(self, state: str, user_id: str) -> None:
        """Bind a one-shot consent ``state`` value to ``user_id``."""
        with self._write("save oauth state"):
            self._connection.execute(
                "INSERT INTO oauth_states (state, user_id, created_at) VALUES (?, ?, ?)",
                (state, user_id, serialize_datetime(utc_now())),
            )

    def consume_oauth_state(self, state: str) -> str | None:
        """Delete ``state`` and return its user id if it is still fresh."""
        with self._write("consume oauth state"):
            row = self._connection.execute(
                "SELECT user_id, created_at FROM oauth_states WHERE state = ?",
                (state,),
            ).fetchone()
            if row is None:
                return None
            cur = self._connection.execute(
                "DELETE FROM oauth_states WHERE state = ?", (state,)
            )
        if cur.rowcount != 1:
            return None
        created_at = parse_datetime(row["created_at"])
        if created_at is None or utc_now() - created_at > OAUTH_STATE_TTL:
            LOGGER.info("Discarding stale OAuth state for user %s", row["user_id"])
            return None
        return row["user_id"]

    def close(self) -> None:
        """Close the underlying SQLite connection."""
        self._connection.close()

    # Internal helpers --------------------------------------------------------
    @contextmanager
    def _write(self, operation: str) -> Iterator[None]:
        """Run a write inside a transaction, wrapping driver errors."""
        try:
            with self._connection:
                yield
        except sqlite3.Error as exc:
            LOGGER.error("Database error during %s: %s", operation, exc, exc_info=True)
            raise PersistenceError(f"Failed to {operation}: {exc}") from exc

    def _query_one(self, sql: str, params: Sequence[object]) -> sqlite3.Row | None:
        try:
            return self._connection.execute(sql, params).fetchone()
        except sqlite3.Error as exc:
            LOGGER.error("Database read failed: %s", exc, exc_info=True)
            raise PersistenceError(f"Database read failed: {exc}") from exc

    def _configure_connection(self) -> None:
        with self._connection:
            self._connection.execute("PRAGMA foreign_keys = ON")
        # WAL lets concurrent invocations read while one of them writes.
        self._connection.execute("PRAGMA journal_mode = WAL")

    def _apply_migrations(self) -> None:
        schema_dir = Path(__file__).resolve().parent / "schema"
        for migration in sorted(schema_dir.glob("*.sql")):
            LOGGER.debug("Applying migration %s", migration.name)
            script = migration.read_text(encoding="utf-8")
            with self._connection:
                self._connection.executescript(script)


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _row_to_email(row: sqlite3.Row) -> EmailRecord:
    return EmailRecord(
        id=row["id"],
        user_id=row["user_id"],
        message_id=row["message_id"],
        subject=row["subject"],
        sender=row["sender"],
        body=row["body"],
        category=RiskCategory(row["category"]),
        urgency=Urgency(row["urgency"]),
        sentiment=Sentiment(row["sentiment"]),
        required_action=RequiredAction(row["required_action"]),
        draft_reply=row["draft_reply"],
        status=EmailStatus(row["status"]),
        created_at=cast(datetime, parse_datetime(row["created_at"])),
        updated_at=parse_datetime(row["updated_at"]),
    )


__all__ = ["OAUTH_STATE_TTL", "SqliteTriageRepository"]
