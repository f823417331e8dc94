"""End-to-end tests for notification ingestion."""

from __future__ import annotations

import base64
import json
from collections.abc import Sequence
from datetime import timedelta
from pathlib import Path
from typing import Any

import pytest

from inbox_triage.auth.tokens import TokenManager
from inbox_triage.core.config import StorageSettings
from inbox_triage.core.datetime_utils import utc_now
from inbox_triage.core.errors import (
    ErrorKind,
    NotificationDecodeError,
    TokenUnavailable,
)
from inbox_triage.core.models import (
    EmailStatus,
    IngestionReport,
    MessageContent,
    MessageFailure,
    ProviderToken,
    RiskCategory,
    Urgency,
)
from inbox_triage.ingestion import DedupLedger, IngestionOrchestrator, MessageFetcher
from inbox_triage.intelligence import DraftGenerator
from inbox_triage.intelligence.classifier import EmailClassifier
from inbox_triage.storage import SqliteTriageRepository
from inbox_triage.transport import GmailApiError

HIGH_RISK = (
    '{"category": "high_risk", "urgency": "high", '
    '"sentiment": "neutral", "required_action": "reply"}'
)
MEDIUM_RISK = (
    '{"category": "medium_risk", "urgency": "medium", '
    '"sentiment": "neutral", "required_action": "reply"}'
)
LOW_RISK = (
    '{"category": "low_risk", "urgency": "low", '
    '"sentiment": "positive", "required_action": "archive"}'
)


def _b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii")


def _message(message_id: str, subject: str, body: str) -> dict[str, Any]:
    return {
        "id": message_id,
        "payload": {
            "headers": [
                {"name": "Subject", "value": subject},
                {"name": "From", "value": "cfo@example.com"},
            ],
            "body": {"data": _b64(body)},
        },
    }


class StubMail:
    """Gmail stand-in serving canned history and messages."""

    def __init__(self, history: dict[str, list[str]]) -> None:
        self.history = history
        self.messages = {
            "m1": _message("m1", "Re: Budget", "URGENT: need sign-off by EOD."),
            "m2": _message("m2", "Weekly digest", "Here is your newsletter."),
        }
        self.failing: set[str] = set()
        self.fetched: list[str] = []

    def get_message(self, message_id: str, access_token: str) -> dict[str, Any]:
        assert access_token == "access-ok"
        self.fetched.append(message_id)
        if message_id in self.failing:
            raise GmailApiError("Gmail API error 500", status=500, detail="backend")
        return self.messages[message_id]

    def list_history(
        self, start_history_id: str, access_token: str
    ) -> list[dict[str, Any]]:
        ids = self.history.get(start_history_id, [])
        return [
            {"id": start_history_id, "messagesAdded": [{"message": {"id": mid}}]}
            for mid in ids
        ]

    def watch(
        self, access_token: str, *, topic_name: str, label_ids: Sequence[str]
    ) -> dict[str, Any]:
        raise AssertionError("watch is not used during ingestion")


class KeywordLLM:
    """Stub LLM that flags budget mail as high risk and counts calls."""

    def __init__(self) -> None:
        self.calls = 0

    @property
    def provider_id(self) -> str:
        return "stub-model"

    def generate(
        self,
        prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        self.calls += 1
        return HIGH_RISK if "Re: Budget" in prompt else LOW_RISK


class UnusedExchanger:
    def refresh_access_token(self, refresh_token: str) -> dict[str, Any]:
        raise AssertionError("token should still be valid")


@pytest.fixture()
def repository(tmp_path: Path) -> SqliteTriageRepository:
    repo = SqliteTriageRepository(StorageSettings(db_path=tmp_path / "triage.db"))
    yield repo
    repo.close()


@pytest.fixture()
def user_id(repository: SqliteTriageRepository) -> str:
    user = repository.register_user("alice@example.com")
    repository.upsert_token(
        ProviderToken(
            user_id=user,
            provider="google",
            access_token="access-ok",
            refresh_token="refresh-1",
            expires_at=utc_now() + timedelta(hours=1),
        )
    )
    return user


def _orchestrator(
    repository: SqliteTriageRepository, mail: StubMail, llm: KeywordLLM
) -> IngestionOrchestrator:
    return IngestionOrchestrator(
        directory=repository,
        ledger=DedupLedger(repository),
        tokens=TokenManager(repository, UnusedExchanger()),
        mail=mail,
        fetcher=MessageFetcher(mail, body_char_limit=2000),
        classifier=EmailClassifier(llm, repository),
    )


def _push(history_id: str, email: str = "alice@example.com") -> dict[str, Any]:
    data = json.dumps({"emailAddress": email, "historyId": int(history_id)})
    return {"message": {"data": base64.b64encode(data.encode()).decode("ascii")}}


def test_budget_email_is_classified_high_risk(
    repository: SqliteTriageRepository, user_id: str
) -> None:
    mail = StubMail({"1001": ["m1"]})
    llm = KeywordLLM()

    report = _orchestrator(repository, mail, llm).handle(_push("1001"))

    assert report.message == "Batch processing complete"
    assert report.processed == 1
    assert report.failed == 0
    assert report.history_id == "1001"
    record = repository.find_email_by_message_id(user_id, "m1")
    assert record is not None
    assert record.category is RiskCategory.HIGH_RISK
    assert record.status is EmailStatus.CLASSIFIED
    assert record.subject == "Re: Budget"


def test_redelivered_notification_is_skipped_without_llm_call(
    repository: SqliteTriageRepository, user_id: str
) -> None:
    mail = StubMail({"1001": ["m1"]})
    llm = KeywordLLM()
    orchestrator = _orchestrator(repository, mail, llm)

    orchestrator.handle(_push("1001"))
    second = orchestrator.handle(_push("1001"))

    assert second.skipped is True
    assert second.message == "Already processed"
    assert llm.calls == 1
    assert mail.fetched == ["m1"]
    assert len(repository.list_emails(user_id)) == 1


def test_failed_message_does_not_stop_batch_and_is_retried_later(
    repository: SqliteTriageRepository, user_id: str
) -> None:
    mail = StubMail({"1001": ["m1", "m2"], "1002": ["m1", "m2"]})
    mail.failing.add("m2")
    llm = KeywordLLM()
    orchestrator = _orchestrator(repository, mail, llm)

    first = orchestrator.handle(_push("1001"))

    assert first.processed == 1
    assert first.failed == 1
    assert first.failures[0].message_id == "m2"
    assert first.failures[0].kind == ErrorKind.UPSTREAM.value

    mail.failing.clear()
    second = orchestrator.handle(_push("1002"))

    assert second.processed == 1
    assert second.duplicates == 1
    assert llm.calls == 2
    assert repository.email_exists(user_id, "m2")


def test_duplicate_ids_in_history_are_dispatched_once(
    repository: SqliteTriageRepository, user_id: str
) -> None:
    mail = StubMail({"1001": ["m1", "m1"]})
    llm = KeywordLLM()

    report = _orchestrator(repository, mail, llm).handle(_push("1001"))

    assert report.processed == 1
    assert llm.calls == 1


def test_unknown_mailbox_is_skipped(repository: SqliteTriageRepository) -> None:
    report = _orchestrator(repository, StubMail({}), KeywordLLM()).handle(
        _push("1001", email="stranger@example.com")
    )

    assert report.skipped is True
    assert report.message == "No user found for email: stranger@example.com"


def test_empty_history_reports_no_new_messages(
    repository: SqliteTriageRepository, user_id: str
) -> None:
    report = _orchestrator(repository, StubMail({}), KeywordLLM()).handle(
        {"emailAddress": "alice@example.com", "historyId": "1001"}
    )

    assert report.message == "No new messages in history"
    assert report.skipped is True
    assert repository.cursor_recorded(user_id, "1001")


def test_cursor_is_marked_before_token_failure(
    repository: SqliteTriageRepository,
) -> None:
    user = repository.register_user("alice@example.com")

    with pytest.raises(TokenUnavailable):
        _orchestrator(repository, StubMail({}), KeywordLLM()).handle(_push("1001"))

    assert repository.cursor_recorded(user, "1001")


def test_undecodable_payload_raises(repository: SqliteTriageRepository) -> None:
    with pytest.raises(NotificationDecodeError):
        _orchestrator(repository, StubMail({}), KeywordLLM()).handle({"bogus": 1})


def test_report_serialises_counts() -> None:
    report = IngestionReport(
        message="Batch processing complete",
        history_id="1001",
        processed=1,
        failed=1,
        failures=[MessageFailure("m2", "upstream", "boom")],
    )

    assert report.as_dict() == {
        "message": "Batch processing complete",
        "historyId": "1001",
        "skipped": False,
        "processedCount": 1,
        "errorCount": 1,
        "duplicateCount": 0,
        "failures": [{"message_id": "m2", "kind": "upstream", "error": "boom"}],
    }


class PolicyLLM:
    """Stub LLM applying the classification tiers to the message section only."""

    def __init__(self) -> None:
        self.prompts: list[str] = []

    @property
    def provider_id(self) -> str:
        return "stub-model"

    def generate(
        self,
        prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        self.prompts.append(prompt)
        if not prompt.startswith("Classify"):
            return "Thanks for the note."
        message = prompt.split("CLASSIFICATION RULES:")[0].lower()
        if "urgent" in message or "eod" in message:
            return HIGH_RISK
        if "meet" in message or "48 hours" in message:
            return MEDIUM_RISK
        return LOW_RISK


@pytest.mark.parametrize(
    ("subject", "body", "category", "urgency", "routed_to"),
    [
        (
            "Re: Budget",
            "URGENT: need sign-off on the budget by EOD.",
            RiskCategory.HIGH_RISK,
            Urgency.HIGH,
            EmailStatus.PENDING,
        ),
        (
            "Roadmap review",
            "Can we meet Thursday? Please confirm within 48 hours.",
            RiskCategory.MEDIUM_RISK,
            Urgency.MEDIUM,
            EmailStatus.PENDING,
        ),
        (
            "Weekly digest",
            "Here is this week's newsletter. FYI, no action needed.",
            RiskCategory.LOW_RISK,
            Urgency.LOW,
            EmailStatus.AUTO_SENT,
        ),
    ],
)
def test_policy_tiers_classify_and_route_drafts(
    repository: SqliteTriageRepository,
    user_id: str,
    subject: str,
    body: str,
    category: RiskCategory,
    urgency: Urgency,
    routed_to: EmailStatus,
) -> None:
    llm = PolicyLLM()
    content = MessageContent("m-tier", subject, "sender@example.com", body)

    verdict = EmailClassifier(llm, repository).classify(user_id, content)
    stored = repository.find_email_by_message_id(user_id, "m-tier")
    assert stored is not None
    result = DraftGenerator(llm, repository, repository).generate_draft(
        user_id, stored.id
    )

    classification_prompt = llm.prompts[0]
    assert "HIGH_RISK: Contains" in classification_prompt
    assert "MEDIUM_RISK: Time-sensitive" in classification_prompt
    assert "LOW_RISK: Newsletters" in classification_prompt
    assert (verdict.category, verdict.urgency) == (category, urgency)
    assert (stored.category, stored.urgency) == (category, urgency)
    assert stored.status is EmailStatus.CLASSIFIED
    assert result.status is routed_to
    drafted = repository.fetch_email(user_id, stored.id)
    assert drafted is not None and drafted.status is routed_to
