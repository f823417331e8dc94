"""Tone-matched reply drafting for stored email records."""

from __future__ import annotations

import logging

from inbox_triage.core.errors import (
    DraftGenerationFailed,
    ErrorKind,
    UpstreamError,
)
from inbox_triage.core.interfaces import EmailStore, ToneStore
from inbox_triage.core.models import (
    DRAFTABLE_STATUSES,
    DraftResult,
    EmailRecord,
    EmailStatus,
    RiskCategory,
    ToneProfile,
)

from .llm import LLMClient
from .prompts import build_draft_prompt

LOGGER = logging.getLogger(__name__)


class DraftGenerator:
    """Generate a reply draft and decide whether it is sent unattended."""

    def __init__(
        self,
        llm_client: LLMClient,
        emails: EmailStore,
        tones: ToneStore,
        *,
        temperature: float = 0.7,
        max_tokens: int = 200,
    ) -> None:
        self._llm_client = llm_client
        self._emails = emails
        self._tones = tones
        self._temperature = temperature
        self._max_tokens = max_tokens

    def generate_draft(self, user_id: str, email_id: str) -> DraftResult:
        """Draft a reply for ``email_id`` and store it with the resulting status."""
        record = self._emails.fetch_email(user_id, email_id)
        if record is None:
            raise DraftGenerationFailed(
                "Email not found", kind=ErrorKind.VALIDATION
            )
        if record.status not in DRAFTABLE_STATUSES:
            raise DraftGenerationFailed(
                f"Email is {record.status.value} and cannot be drafted",
                kind=ErrorKind.VALIDATION,
            )

        status = decide_status(record)
        if not record.status.can_transition_to(status):
            raise DraftGenerationFailed(
                f"Email cannot move from {record.status.value} to {status.value}",
                kind=ErrorKind.VALIDATION,
            )

        tone = self._tones.get_tone_profile(user_id) or ToneProfile()
        draft = self._request_draft(record, tone)

        updated = self._emails.update_draft(
            user_id,
            email_id,
            draft_reply=draft,
            status=status,
            allowed_from=tuple(DRAFTABLE_STATUSES),
        )
        if not updated:
            # Status moved on while the LLM was drafting.
            raise DraftGenerationFailed(
                "Email is no longer eligible for drafting",
                kind=ErrorKind.VALIDATION,
            )
        LOGGER.info(
            "Draft stored user=%s email=%s status=%s", user_id, email_id, status.value
        )
        return DraftResult(email_id=email_id, draft=draft, status=status)

    def _request_draft(self, record: EmailRecord, tone: ToneProfile) -> str:
        prompt = build_draft_prompt(record, tone)
        try:
            raw_output = self._llm_client.generate(
                prompt, temperature=self._temperature, max_tokens=self._max_tokens
            )
        except UpstreamError as exc:
            LOGGER.warning(
                "Draft generation failed user=%s email=%s: %s",
                record.user_id,
                record.id,
                exc,
            )
            raise DraftGenerationFailed(
                f"Draft generation failed: {exc}", kind=ErrorKind.UPSTREAM
            ) from exc
        draft = raw_output.strip()
        if not draft:
            raise DraftGenerationFailed(
                "LLM returned an empty draft", kind=ErrorKind.UPSTREAM
            )
        return draft


def decide_status(record: EmailRecord) -> EmailStatus:
    """Low-risk mail is auto-sent; everything else waits for approval."""
    if record.category is RiskCategory.LOW_RISK:
        return EmailStatus.AUTO_SENT
    return EmailStatus.PENDING


__all__ = ["DraftGenerator", "decide_status"]
