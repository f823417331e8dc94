"""Utilities for turning Gmail message resources into plain content."""

from __future__ import annotations

import base64
import binascii
from collections.abc import Iterable, Mapping
from typing import Any

from ..core.models import MessageContent

DEFAULT_SUBJECT = "No Subject"
DEFAULT_SENDER = "Unknown Sender"


class GmailMessageParser:
    """Convert a Gmail ``format=full`` resource into :class:`MessageContent`."""

    def __init__(self, *, body_char_limit: int | None = None) -> None:
        self._body_char_limit = body_char_limit

    def parse(self, resource: Mapping[str, Any]) -> MessageContent:
        """Extract subject, sender, and body from ``resource``."""
        payload = resource.get("payload") or {}
        headers = payload.get("headers") or []
        body = extract_plain_body(payload)
        if self._body_char_limit is not None:
            body = body[: self._body_char_limit]
        return MessageContent(
            message_id=str(resource.get("id", "")),
            subject=find_header(headers, "Subject") or DEFAULT_SUBJECT,
            sender=find_header(headers, "From") or DEFAULT_SENDER,
            body=body,
        )


def find_header(headers: Iterable[Mapping[str, Any]], name: str) -> str | None:
    """Return the first header value whose name matches case-insensitively."""
    wanted = name.lower()
    for header in headers:
        if str(header.get("name", "")).lower() == wanted:
            value = header.get("value")
            return str(value) if value else None
    return None


def extract_plain_body(payload: Mapping[str, Any]) -> str:
    """Return the direct body, else the first ``text/plain`` part found depth-first."""
    direct = (payload.get("body") or {}).get("data")
    if direct:
        return decode_base64url(direct)
    part = _first_plain_part(payload.get("parts") or [])
    if part is None:
        return ""
    return decode_base64url((part.get("body") or {}).get("data") or "")


def decode_base64url(data: str) -> str:
    """Decode URL-safe base64, tolerating missing padding and bad UTF-8."""
    padded = data + "=" * (-len(data) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError):
        return ""
    return raw.decode("utf-8", errors="replace")


def _first_plain_part(
    parts: Iterable[Mapping[str, Any]],
) -> Mapping[str, Any] | None:
    for part in parts:
        mime_type = str(part.get("mimeType", "")).lower()
        if mime_type == "text/plain" and (part.get("body") or {}).get("data"):
            return part
        nested = part.get("parts")
        if nested:
            found = _first_plain_part(nested)
            if found is not None:
                return found
    return None


__all__ = [
    "DEFAULT_SENDER",
    "DEFAULT_SUBJECT",
    "GmailMessageParser",
    "decode_base64url",
    "extract_plain_body",
    "find_header",
]
