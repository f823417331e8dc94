"""Resolve provider message ids into normalised content."""

from __future__ import annotations

import logging

from ..core.errors import FetchFailed, UpstreamError
from ..core.interfaces import MailProvider
from ..core.models import MessageContent
from .parser import GmailMessageParser

LOGGER = logging.getLogger(__name__)


class MessageFetcher:
    """Fetch a message from the provider and reduce it to subject, sender, body."""

    def __init__(self, mail: MailProvider, *, body_char_limit: int = 2000) -> None:
        if body_char_limit <= 0:
            raise ValueError("body_char_limit must be positive")
        self._mail = mail
        self._parser = GmailMessageParser(body_char_limit=body_char_limit)

    def fetch(self, message_id: str, access_token: str) -> MessageContent:
        """Return the content of ``message_id``; raise :class:`FetchFailed` on error."""
        try:
            resource = self._mail.get_message(message_id, access_token)
        except UpstreamError as exc:
            raise FetchFailed(
                f"Failed to fetch message {message_id}: {exc}",
                status=exc.status,
                detail=exc.detail,
            ) from exc
        content = self._parser.parse(resource)
        if not content.message_id:
            content = MessageContent(
                message_id=message_id,
                subject=content.subject,
                sender=content.sender,
                body=content.body,
            )
        return content


__all__ = ["MessageFetcher"]
