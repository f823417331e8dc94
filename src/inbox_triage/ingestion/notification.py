"""Normalise inbound Gmail push payloads into a :class:`Notification`.

Two shapes are accepted. Pub/Sub push deliveries wrap the notification::

    {"message": {"data": "<base64 of {emailAddress, historyId}>"}}

while direct callers post ``{"emailAddress": ..., "historyId": ...}``. The
wrapped shape is tried first.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from collections.abc import Mapping
from typing import Any

from ..core.errors import NotificationDecodeError
from ..core.models import Notification

LOGGER = logging.getLogger(__name__)


def parse_notification(payload: Any) -> Notification:
    """Return the notification carried by ``payload`` or raise."""
    if not isinstance(payload, Mapping):
        raise NotificationDecodeError("Notification body must be a JSON object")

    wrapped = _unwrap_pubsub(payload)
    if wrapped is not None:
        return _from_fields(wrapped)
    return _from_fields(payload)


def _unwrap_pubsub(payload: Mapping[str, Any]) -> Mapping[str, Any] | None:
    message = payload.get("message")
    if not isinstance(message, Mapping):
        return None
    data = message.get("data")
    if not isinstance(data, str) or not data:
        return None
    try:
        # Accept both the standard and URL-safe alphabets.
        normalised = data.replace("-", "+").replace("_", "/")
        padded = normalised + "=" * (-len(normalised) % 4)
        decoded = json.loads(base64.b64decode(padded))
    except (binascii.Error, ValueError) as exc:
        LOGGER.debug("Wrapped notification data did not decode: %s", exc)
        return None
    return decoded if isinstance(decoded, Mapping) else None


def _from_fields(fields: Mapping[str, Any]) -> Notification:
    email_address = fields.get("emailAddress")
    history_id = fields.get("historyId")
    if not isinstance(email_address, str) or not email_address.strip():
        raise NotificationDecodeError("Notification is missing emailAddress")
    if isinstance(history_id, bool) or not isinstance(history_id, (str, int)):
        raise NotificationDecodeError("Notification is missing historyId")
    history_id = str(history_id).strip()
    if not history_id:
        raise NotificationDecodeError("Notification is missing historyId")
    return Notification(email_address=email_address.strip(), history_id=history_id)


__all__ = ["parse_notification"]
