"""Tests for the SQLite-backed triage repository."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from inbox_triage.core.config import StorageSettings
from inbox_triage.core.datetime_utils import utc_now
from inbox_triage.core.models import (
    EmailRecord,
    EmailStatus,
    ProviderToken,
    RequiredAction,
    RiskCategory,
    Sentiment,
    ToneProfile,
    Urgency,
)
from inbox_triage.storage import SqliteTriageRepository


def _record(user_id: str, message_id: str, *, record_id: str = "e1") -> EmailRecord:
    return EmailRecord(
        id=record_id,
        user_id=user_id,
        message_id=message_id,
        subject="Re: Budget",
        sender="cfo@example.com",
        body="Need sign-off by EOD.",
        category=RiskCategory.HIGH_RISK,
        urgency=Urgency.HIGH,
        sentiment=Sentiment.NEUTRAL,
        required_action=RequiredAction.REPLY,
        status=EmailStatus.CLASSIFIED,
        created_at=datetime(2025, 10, 24, 15, 0, tzinfo=timezone.utc),
    )


@pytest.fixture()
def repository(tmp_path: Path) -> SqliteTriageRepository:
    repo = SqliteTriageRepository(StorageSettings(db_path=tmp_path / "triage.db"))
    yield repo
    repo.close()


def test_register_user_is_idempotent_and_case_insensitive(
    repository: SqliteTriageRepository,
) -> None:
    user_id = repository.register_user("Alice@Example.com")
    assert repository.register_user("alice@example.com") == user_id
    assert repository.find_user_id("ALICE@example.com") == user_id
    assert repository.find_user_id("bob@example.com") is None


def test_sessions_resolve_until_expiry(repository: SqliteTriageRepository) -> None:
    user_id = repository.register_user("alice@example.com")
    repository.create_session(user_id, "live-token")
    repository.create_session(
        user_id, "old-token", expires_at=utc_now() - timedelta(minutes=1)
    )

    assert repository.resolve_session("live-token") == user_id
    assert repository.resolve_session("old-token") is None
    assert repository.resolve_session("unknown") is None


def test_session_tokens_are_stored_hashed(tmp_path: Path) -> None:
    db_path = tmp_path / "hashed.db"
    with SqliteTriageRepository(StorageSettings(db_path=db_path)) as repository:
        user_id = repository.register_user("alice@example.com")
        repository.create_session(user_id, "plain-secret")
        rows = repository._connection.execute(  # pylint: disable=protected-access
            "SELECT token_hash FROM sessions"
        ).fetchall()
    assert rows and rows[0]["token_hash"] != "plain-secret"


def test_upsert_token_keeps_refresh_token_when_new_one_is_empty(
    repository: SqliteTriageRepository,
) -> None:
    user_id = repository.register_user("alice@example.com")
    expires = datetime(2025, 10, 24, 16, 0, tzinfo=timezone.utc)
    repository.upsert_token(
        ProviderToken(user_id, "google", "access-1", "refresh-1", expires, "gmail")
    )
    repository.upsert_token(
        ProviderToken(user_id, "google", "access-2", "", expires + timedelta(hours=1))
    )

    stored = repository.get_token(user_id, "google")
    assert stored is not None
    assert stored.access_token == "access-2"
    assert stored.refresh_token == "refresh-1"
    assert stored.expires_at == expires + timedelta(hours=1)
    assert stored.scope == "gmail"


def test_record_cursor_is_write_once(repository: SqliteTriageRepository) -> None:
    user_id = repository.register_user("alice@example.com")

    assert repository.cursor_recorded(user_id, "1001") is False
    assert repository.record_cursor(user_id, "1001") is True
    assert repository.record_cursor(user_id, "1001") is False
    assert repository.cursor_recorded(user_id, "1001") is True


def test_insert_email_rejects_duplicate_message(
    repository: SqliteTriageRepository,
) -> None:
    user_id = repository.register_user("alice@example.com")

    assert repository.insert_email(_record(user_id, "m1")) is True
    assert repository.insert_email(_record(user_id, "m1", record_id="e2")) is False
    assert repository.email_exists(user_id, "m1") is True
    assert len(repository.list_emails(user_id)) == 1

    stored = repository.fetch_email(user_id, "e1")
    assert stored is not None
    assert stored.category is RiskCategory.HIGH_RISK
    assert stored.status is EmailStatus.CLASSIFIED
    assert repository.find_email_by_message_id(user_id, "m1") == stored


def test_fetch_email_is_scoped_to_owner(repository: SqliteTriageRepository) -> None:
    alice = repository.register_user("alice@example.com")
    bob = repository.register_user("bob@example.com")
    repository.insert_email(_record(alice, "m1"))

    assert repository.fetch_email(bob, "e1") is None


def test_update_draft_only_applies_from_allowed_statuses(
    repository: SqliteTriageRepository,
) -> None:
    user_id = repository.register_user("alice@example.com")
    repository.insert_email(_record(user_id, "m1"))
    allowed = (EmailStatus.CLASSIFIED, EmailStatus.PENDING)

    assert repository.update_draft(
        user_id,
        "e1",
        draft_reply="Approved.",
        status=EmailStatus.PENDING,
        allowed_from=allowed,
    )
    repository._connection.execute(  # pylint: disable=protected-access
        "UPDATE emails SET status = 'sent' WHERE id = 'e1'"
    )
    assert not repository.update_draft(
        user_id,
        "e1",
        draft_reply="Second attempt",
        status=EmailStatus.PENDING,
        allowed_from=allowed,
    )

    stored = repository.fetch_email(user_id, "e1")
    assert stored is not None
    assert stored.status is EmailStatus.SENT
    assert stored.draft_reply == "Approved."
    assert stored.updated_at is not None


def test_list_emails_filters_by_status(repository: SqliteTriageRepository) -> None:
    user_id = repository.register_user("alice@example.com")
    repository.insert_email(_record(user_id, "m1", record_id="e1"))
    repository.insert_email(_record(user_id, "m2", record_id="e2"))
    repository.update_draft(
        user_id,
        "e2",
        draft_reply="Thanks",
        status=EmailStatus.PENDING,
        allowed_from=(EmailStatus.CLASSIFIED,),
    )

    pending = repository.list_emails(user_id, status=EmailStatus.PENDING)
    assert [record.id for record in pending] == ["e2"]
    assert len(repository.list_emails(user_id, limit=1)) == 1


def test_tone_profile_round_trip(repository: SqliteTriageRepository) -> None:
    user_id = repository.register_user("alice@example.com")
    assert repository.get_tone_profile(user_id) is None

    repository.upsert_tone_profile(user_id, ToneProfile(80, 0, 20))
    repository.upsert_tone_profile(user_id, ToneProfile(70, 10, 30))

    assert repository.get_tone_profile(user_id) == ToneProfile(70, 10, 30)


def test_oauth_state_is_consumed_once(repository: SqliteTriageRepository) -> None:
    user_id = repository.register_user("alice@example.com")
    repository.save_oauth_state("state-1", user_id)

    assert repository.consume_oauth_state("state-1") == user_id
    assert repository.consume_oauth_state("state-1") is None
