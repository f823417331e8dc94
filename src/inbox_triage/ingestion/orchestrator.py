"""Turn one push notification into classified email records."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any, Protocol

from ..auth.tokens import TokenManager
from ..core.errors import TriageError
from ..core.interfaces import MailProvider, UserDirectory
from ..core.models import IngestionReport, MessageContent, MessageFailure, Verdict
from .fetcher import MessageFetcher
from .ledger import DedupLedger
from .notification import parse_notification

LOGGER = logging.getLogger(__name__)


class Classifier(Protocol):
    """Anything that classifies and stores message content."""

    def classify(self, user_id: str, content: MessageContent) -> Verdict:
        """Classify ``content`` for ``user_id``."""
        raise NotImplementedError


class IngestionOrchestrator:
    """Entry point for Gmail push deliveries."""

    def __init__(
        self,
        *,
        directory: UserDirectory,
        ledger: DedupLedger,
        tokens: TokenManager,
        mail: MailProvider,
        fetcher: MessageFetcher,
        classifier: Classifier,
    ) -> None:
        # pylint: disable=too-many-arguments
        self._directory = directory
        self._ledger = ledger
        self._tokens = tokens
        self._mail = mail
        self._fetcher = fetcher
        self._classifier = classifier

    def handle(self, payload: Any) -> IngestionReport:
        """Process ``payload`` and return a batch summary.

        Batch-level failures (decoding, user lookup, token, history) raise.
        Per-message failures are recorded in the report and do not stop the
        batch.
        """
        notification = parse_notification(payload)
        cursor = notification.history_id
        LOGGER.info(
            "Notification received mailbox=%s cursor=%s",
            notification.email_address,
            cursor,
        )

        user_id = self._directory.find_user_id(notification.email_address)
        if user_id is None:
            LOGGER.warning("No user for mailbox %s", notification.email_address)
            return IngestionReport(
                message=f"No user found for email: {notification.email_address}",
                history_id=cursor,
                skipped=True,
            )

        if self._ledger.already_processed(user_id, cursor):
            LOGGER.info("Skipping processed cursor user=%s cursor=%s", user_id, cursor)
            return IngestionReport(
                message="Already processed", history_id=cursor, skipped=True
            )
        # Marked before dispatch: a crash below loses this batch rather than
        # double-processing it on redelivery.
        if not self._ledger.mark_processed(user_id, cursor):
            return IngestionReport(
                message="Already processed", history_id=cursor, skipped=True
            )

        access_token = self._tokens.get_valid_token(user_id)
        history = self._mail.list_history(cursor, access_token)
        message_ids = list(_added_message_ids(history))
        if not message_ids:
            LOGGER.info("No new messages user=%s cursor=%s", user_id, cursor)
            return IngestionReport(
                message="No new messages in history",
                history_id=cursor,
                skipped=True,
            )

        report = IngestionReport(message="Batch processing complete", history_id=cursor)
        for message_id in message_ids:
            self._process_message(user_id, cursor, message_id, access_token, report)

        LOGGER.info(
            "Batch complete user=%s cursor=%s processed=%d failed=%d duplicates=%d",
            user_id,
            cursor,
            report.processed,
            report.failed,
            report.duplicates,
        )
        return report

    def _process_message(
        self,
        user_id: str,
        cursor: str,
        message_id: str,
        access_token: str,
        report: IngestionReport,
    ) -> None:
        # pylint: disable=too-many-arguments
        try:
            if self._ledger.message_processed(user_id, message_id):
                LOGGER.debug(
                    "Message already stored user=%s message=%s", user_id, message_id
                )
                report.duplicates += 1
                return
            content = self._fetcher.fetch(message_id, access_token)
            self._classifier.classify(user_id, content)
        except TriageError as exc:
            LOGGER.error(
                "Message failed user=%s message=%s cursor=%s kind=%s: %s",
                user_id,
                message_id,
                cursor,
                exc.kind.value,
                exc,
            )
            report.failed += 1
            report.failures.append(
                MessageFailure(
                    message_id=message_id, kind=exc.kind.value, error=str(exc)
                )
            )
            return
        report.processed += 1


def _added_message_ids(history: Iterable[Mapping[str, Any]]) -> Iterable[str]:
    """Yield unique added message ids in delivery order."""
    seen: set[str] = set()
    for record in history:
        for added in record.get("messagesAdded") or []:
            message_id = (added.get("message") or {}).get("id")
            if message_id and message_id not in seen:
                seen.add(message_id)
                yield message_id


__all__ = ["Classifier", "IngestionOrchestrator"]
