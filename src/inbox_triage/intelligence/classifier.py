"""LLM-backed risk classification of incoming messages."""

from __future__ import annotations

import json
import logging
import re
import uuid
from typing import Any

from inbox_triage.core.datetime_utils import utc_now
from inbox_triage.core.errors import MalformedVerdict
from inbox_triage.core.interfaces import Clock, EmailStore
from inbox_triage.core.models import (
    EmailRecord,
    EmailStatus,
    MessageContent,
    RequiredAction,
    RiskCategory,
    Sentiment,
    Urgency,
    Verdict,
)

from .llm import LLMClient
from .prompts import build_classification_prompt

LOGGER = logging.getLogger(__name__)

_LEADING_FENCE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_TRAILING_FENCE = re.compile(r"\s*```$")


class EmailClassifier:
    """Ask the LLM for a verdict and persist it as a ``classified`` record."""

    def __init__(
        self,
        llm_client: LLMClient,
        store: EmailStore,
        *,
        temperature: float = 0.3,
        max_tokens: int = 100,
        clock: Clock = utc_now,
    ) -> None:
        self._llm_client = llm_client
        self._store = store
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._clock = clock

    def classify(self, user_id: str, content: MessageContent) -> Verdict:
        """Classify ``content`` for ``user_id`` and store the result.

        A message already stored for the user returns its stored verdict
        without an LLM call. LLM transport failures propagate as ``LLMError``;
        unusable output raises :class:`MalformedVerdict`. Both leave the store
        untouched.
        """
        existing = self._store.find_email_by_message_id(user_id, content.message_id)
        if existing is not None:
            LOGGER.info(
                "Reusing stored verdict user=%s message=%s",
                user_id,
                content.message_id,
            )
            return existing.verdict

        prompt = build_classification_prompt(content)
        raw_output = self._llm_client.generate(
            prompt, temperature=self._temperature, max_tokens=self._max_tokens
        )
        verdict = parse_verdict(raw_output)
        LOGGER.debug(
            "Verdict user=%s message=%s %s", user_id, content.message_id, verdict
        )

        record = EmailRecord(
            id=uuid.uuid4().hex,
            user_id=user_id,
            message_id=content.message_id,
            subject=content.subject,
            sender=content.sender,
            body=content.body,
            category=verdict.category,
            urgency=verdict.urgency,
            sentiment=verdict.sentiment,
            required_action=verdict.required_action,
            status=EmailStatus.CLASSIFIED,
            created_at=self._clock(),
        )
        if self._store.insert_email(record):
            return verdict
        # Lost an insert race; the first writer's verdict is authoritative.
        stored = self._store.find_email_by_message_id(user_id, content.message_id)
        LOGGER.info(
            "Record already exists user=%s message=%s", user_id, content.message_id
        )
        return stored.verdict if stored is not None else verdict


def strip_code_fences(text: str) -> str:
    """Remove a leading ``` or ```json fence and a trailing ``` fence."""
    cleaned = text.strip()
    cleaned = _LEADING_FENCE.sub("", cleaned)
    cleaned = _TRAILING_FENCE.sub("", cleaned)
    return cleaned.strip()


def parse_verdict(raw: str) -> Verdict:
    """Parse LLM output into a :class:`Verdict` or raise :class:`MalformedVerdict`."""
    cleaned = strip_code_fences(raw)
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise MalformedVerdict(
            "Classification output was not valid JSON", detail=raw
        ) from exc
    if not isinstance(payload, dict):
        raise MalformedVerdict("Classification output was not an object", detail=raw)

    return Verdict(
        category=_enum_field(payload, "category", RiskCategory, raw),
        urgency=_enum_field(payload, "urgency", Urgency, raw),
        sentiment=_enum_field(payload, "sentiment", Sentiment, raw),
        required_action=_enum_field(payload, "required_action", RequiredAction, raw),
    )


def _enum_field(payload: dict[str, Any], name: str, enum_type: Any, raw: str) -> Any:
    value = payload.get(name)
    if not isinstance(value, str):
        raise MalformedVerdict(f"Classification output missing '{name}'", detail=raw)
    try:
        return enum_type(value.strip().lower())
    except ValueError as exc:
        raise MalformedVerdict(
            f"Classification '{name}' has unexpected value {value!r}", detail=raw
        ) from exc


__all__ = ["EmailClassifier", "parse_verdict", "strip_code_fences"]
