"""Exactly-once guards for notification cursors and messages."""

from __future__ import annotations

import logging

from ..core.interfaces import LedgerStore

LOGGER = logging.getLogger(__name__)


class DedupLedger:
    """Record which cursors and messages have already been dispatched."""

    def __init__(self, store: LedgerStore) -> None:
        self._store = store

    def already_processed(self, user_id: str, history_id: str) -> bool:
        """Return ``True`` when the cursor already has a processed marker."""
        return self._store.cursor_recorded(user_id, history_id)

    def mark_processed(self, user_id: str, history_id: str) -> bool:
        """Claim the cursor; ``False`` means a concurrent delivery claimed it first."""
        claimed = self._store.record_cursor(user_id, history_id)
        if not claimed:
            LOGGER.info(
                "Cursor already claimed user=%s cursor=%s", user_id, history_id
            )
        return claimed

    def message_processed(self, user_id: str, message_id: str) -> bool:
        """Return ``True`` when a record already exists for the message."""
        return self._store.email_exists(user_id, message_id)


__all__ = ["DedupLedger"]
