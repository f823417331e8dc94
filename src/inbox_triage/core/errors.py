"""Closed error taxonomy shared by every pipeline component.

Each exception carries an :class:`ErrorKind`. The HTTP layer maps the kind to a
status code in one place (``inbox_triage.web.errors``); nothing inspects
exception messages to decide how a failure is reported.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Coarse failure classes understood by the HTTP boundary."""

    VALIDATION = "validation"
    AUTH = "auth"
    UPSTREAM = "upstream"
    PERSISTENCE = "persistence"


class TriageError(RuntimeError):
    """Base class for all expected pipeline failures."""

    kind: ErrorKind = ErrorKind.UPSTREAM

    def __init__(self, message: str, *, kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class ValidationError(TriageError):
    """Missing or malformed input supplied by the caller."""

    kind = ErrorKind.VALIDATION


class AuthError(TriageError):
    """Missing or invalid credentials; the user must re-authenticate."""

    kind = ErrorKind.AUTH


class UpstreamError(TriageError):
    """A provider or LLM call failed."""

    kind = ErrorKind.UPSTREAM

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        detail: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.detail = detail


class PersistenceError(TriageError):
    """A store read or write failed; the current unit of work is aborted."""

    kind = ErrorKind.PERSISTENCE


class NotificationDecodeError(ValidationError):
    """The inbound push payload could not be normalised."""


class TokenUnavailable(AuthError):
    """No stored credential exists for the user/provider pair."""


class RefreshFailed(AuthError):
    """The refresh-token exchange was rejected; re-authorisation is required."""


class FetchFailed(UpstreamError):
    """Retrieving a message from the mail provider failed."""


class MalformedVerdict(UpstreamError):
    """The LLM classification output was not a valid verdict."""


class WatchSetupFailed(UpstreamError):
    """The provider rejected the push-notification subscription."""


class DraftGenerationFailed(TriageError):
    """A reply draft could not be produced or stored."""


__all__ = [
    "AuthError",
    "DraftGenerationFailed",
    "ErrorKind",
    "FetchFailed",
    "MalformedVerdict",
    "NotificationDecodeError",
    "PersistenceError",
    "RefreshFailed",
    "TokenUnavailable",
    "TriageError",
    "UpstreamError",
    "ValidationError",
    "WatchSetupFailed",
]
