"""Tests for the dedup ledger."""

from __future__ import annotations

from pathlib import Path

from inbox_triage.core.config import StorageSettings
from inbox_triage.ingestion.ledger import DedupLedger
from inbox_triage.storage import SqliteTriageRepository


def test_cursor_can_be_claimed_once(tmp_path: Path) -> None:
    settings = StorageSettings(db_path=tmp_path / "ledger.db")
    with SqliteTriageRepository(settings) as repository:
        user_id = repository.register_user("alice@example.com")
        ledger = DedupLedger(repository)

        assert ledger.already_processed(user_id, "1001") is False
        assert ledger.mark_processed(user_id, "1001") is True
        assert ledger.already_processed(user_id, "1001") is True
        assert ledger.mark_processed(user_id, "1001") is False


def test_concurrent_connections_agree_on_single_claim(tmp_path: Path) -> None:
    settings = StorageSettings(db_path=tmp_path / "shared.db")
    with SqliteTriageRepository(settings) as first, SqliteTriageRepository(
        settings
    ) as second:
        user_id = first.register_user("alice@example.com")

        claims = [
            DedupLedger(first).mark_processed(user_id, "2002"),
            DedupLedger(second).mark_processed(user_id, "2002"),
        ]

    assert sorted(claims) == [False, True]


def test_cursors_are_scoped_per_user(tmp_path: Path) -> None:
    settings = StorageSettings(db_path=tmp_path / "scoped.db")
    with SqliteTriageRepository(settings) as repository:
        alice = repository.register_user("alice@example.com")
        bob = repository.register_user("bob@example.com")
        ledger = DedupLedger(repository)

        assert ledger.mark_processed(alice, "1001") is True
        assert ledger.mark_processed(bob, "1001") is True


def test_message_processed_reflects_stored_emails(tmp_path: Path) -> None:
    settings = StorageSettings(db_path=tmp_path / "messages.db")
    with SqliteTriageRepository(settings) as repository:
        user_id = repository.register_user("alice@example.com")

        assert DedupLedger(repository).message_processed(user_id, "m1") is False
