"""Core domain models used across the application."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum


class RiskCategory(str, Enum):
    """Risk tier assigned by the classifier."""

    LOW_RISK = "low_risk"
    MEDIUM_RISK = "medium_risk"
    HIGH_RISK = "high_risk"


class Urgency(str, Enum):
    """How soon the recipient needs to act."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Sentiment(str, Enum):
    """Overall tone of the incoming message."""

    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class RequiredAction(str, Enum):
    """What the recipient is expected to do with the message."""

    REPLY = "reply"
    ARCHIVE = "archive"
    NOTIFY = "notify"


class EmailStatus(str, Enum):
    """Lifecycle state of a stored email record."""

    CLASSIFIED = "classified"
    PENDING = "pending"
    AUTO_SENT = "auto_sent"
    SENT = "sent"
    ARCHIVED = "archived"

    @property
    def is_final(self) -> bool:
        """Return ``True`` once the record may no longer change."""
        return self in FINAL_STATUSES

    def can_transition_to(self, target: EmailStatus) -> bool:
        """Return whether moving from this status to ``target`` is allowed."""
        return target in _TRANSITIONS[self]


FINAL_STATUSES = frozenset({EmailStatus.SENT, EmailStatus.ARCHIVED})

_TRANSITIONS: dict[EmailStatus, frozenset[EmailStatus]] = {
    EmailStatus.CLASSIFIED: frozenset(
        {EmailStatus.PENDING, EmailStatus.AUTO_SENT, EmailStatus.ARCHIVED}
    ),
    EmailStatus.PENDING: frozenset(
        {EmailStatus.PENDING, EmailStatus.SENT, EmailStatus.ARCHIVED}
    ),
    EmailStatus.AUTO_SENT: frozenset({EmailStatus.SENT, EmailStatus.ARCHIVED}),
    EmailStatus.SENT: frozenset(),
    EmailStatus.ARCHIVED: frozenset(),
}

# Statuses from which a draft may be (re)generated.
DRAFTABLE_STATUSES = frozenset({EmailStatus.CLASSIFIED, EmailStatus.PENDING})


@dataclass(slots=True, frozen=True)
class Notification:
    """Normalised Gmail push notification."""

    email_address: str
    history_id: str


@dataclass(slots=True, frozen=True)
class MessageContent:
    """Subject, sender, and plain-text body of a provider message."""

    message_id: str
    subject: str
    sender: str
    body: str


@dataclass(slots=True, frozen=True)
class Verdict:
    """Four-field classification result."""

    category: RiskCategory
    urgency: Urgency
    sentiment: Sentiment
    required_action: RequiredAction

    def as_dict(self) -> dict[str, str]:
        """Return the verdict using its wire representation."""
        return {
            "category": self.category.value,
            "urgency": self.urgency.value,
            "sentiment": self.sentiment.value,
            "required_action": self.required_action.value,
        }


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True)
class EmailRecord:
    """Stored, classified email owned by a single user."""

    id: str
    user_id: str
    message_id: str
    subject: str
    sender: str
    body: str
    category: RiskCategory
    urgency: Urgency
    sentiment: Sentiment
    required_action: RequiredAction
    status: EmailStatus
    created_at: datetime
    draft_reply: str | None = None
    updated_at: datetime | None = None

    @property
    def verdict(self) -> Verdict:
        """Return the stored classification."""
        return Verdict(
            category=self.category,
            urgency=self.urgency,
            sentiment=self.sentiment,
            required_action=self.required_action,
        )


@dataclass(slots=True)
class ProviderToken:
    """OAuth credentials held for one user and provider."""

    user_id: str
    provider: str
    access_token: str
    refresh_token: str | None
    expires_at: datetime | None
    scope: str | None = None

    def expires_within(self, now: datetime, margin_seconds: float) -> bool:
        """Return ``True`` when the access token expires inside the margin."""
        if self.expires_at is None:
            return False
        return (self.expires_at - now).total_seconds() <= margin_seconds


@dataclass(slots=True, frozen=True)
class ToneProfile:
    """Per-user reply style sliders, each between 0 and 100."""

    formality: int = 50
    emoji_usage: int = 50
    brevity: int = 50


@dataclass(slots=True, frozen=True)
class DraftResult:
    """Outcome of generating a reply draft."""

    email_id: str
    draft: str
    status: EmailStatus


@dataclass(slots=True, frozen=True)
class WatchRegistration:
    """Active Gmail push subscription for a mailbox."""

    history_id: str
    expiration: str

    @property
    def expires_at(self) -> datetime:
        """Return the expiration, delivered in epoch milliseconds, as a datetime."""
        return datetime.fromtimestamp(int(self.expiration) / 1000, tz=UTC)


@dataclass(slots=True, frozen=True)
class MessageFailure:
    """A message inside a batch that could not be processed."""

    message_id: str
    kind: str
    error: str


@dataclass(slots=True)
class IngestionReport:
    """Outcome summary for one notification."""

    message: str
    history_id: str | None
    skipped: bool = False
    processed: int = 0
    failed: int = 0
    duplicates: int = 0
    failures: list[MessageFailure] = field(default_factory=list)

    def as_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable summary."""
        return {
            "message": self.message,
            "historyId": self.history_id,
            "skipped": self.skipped,
            "processedCount": self.processed,
            "errorCount": self.failed,
            "duplicateCount": self.duplicates,
            "failures": [
                {
                    "message_id": failure.message_id,
                    "kind": failure.kind,
                    "error": failure.error,
                }
                for failure in self.failures
            ],
        }


__all__ = [
    "DRAFTABLE_STATUSES",
    "DraftResult",
    "EmailRecord",
    "EmailStatus",
    "FINAL_STATUSES",
    "IngestionReport",
    "MessageContent",
    "MessageFailure",
    "Notification",
    "ProviderToken",
    "RequiredAction",
    "RiskCategory",
    "Sentiment",
    "ToneProfile",
    "Urgency",
    "Verdict",
    "WatchRegistration",
]
