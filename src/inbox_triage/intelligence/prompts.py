"""Prompt templates for classification and reply drafting."""

from __future__ import annotations

from textwrap import dedent

from inbox_triage.core.models import EmailRecord, MessageContent, ToneProfile

_CLASSIFICATION_RULES = """\
CLASSIFICATION RULES:
- HIGH_RISK: Contains "URGENT", "ASAP", "EOD", deadlines, budget approvals, legal matters, security issues, or requests requiring immediate action
- MEDIUM_RISK: Time-sensitive but not urgent, meeting requests, project updates requiring response within 24-48 hours
- LOW_RISK: Newsletters, notifications, FYI emails, marketing, no action needed

- HIGH URGENCY: Contains urgent keywords, tight deadlines (same day), critical business decisions
- MEDIUM URGENCY: Important but can wait 1-2 days, scheduled meetings, project deadlines
- LOW URGENCY: No deadline, informational, marketing emails

- REPLY: Requires a response from the recipient
- ARCHIVE: Can be filed away, no action needed
- NOTIFY: Important to read but may not need immediate response"""

_CLASSIFICATION_SCHEMA = (
    '{ "category": "low_risk|medium_risk|high_risk", '
    '"urgency": "low|medium|high", '
    '"sentiment": "positive|neutral|negative", '
    '"required_action": "reply|archive|notify" }'
)


def build_classification_prompt(content: MessageContent) -> str:
    """Compose the JSON-only classification prompt for one message."""
    return "\n".join(
        [
            "Classify this email with specific criteria:",
            "",
            f"Subject: {content.subject}",
            f"From: {content.sender}",
            f"Body: {content.body}",
            "",
            _CLASSIFICATION_RULES,
            "",
            f"Output JSON only: {_CLASSIFICATION_SCHEMA}",
        ]
    )


def build_draft_prompt(record: EmailRecord, tone: ToneProfile) -> str:
    """Compose a prompt asking for a tone-matched reply body."""
    # The body may span lines, so only the fixed instructions are dedented.
    instructions = f"""
    Match user tone: Formality {tone.formality}%, Emoji {tone.emoji_usage}%, Brevity {tone.brevity}%.
    Output reply text only.
    """
    return (
        f"Generate a reply to this email: Subject: {record.subject} "
        f"Body: {record.body}\n{dedent(instructions).strip()}"
    )


__all__ = ["build_classification_prompt", "build_draft_prompt"]
