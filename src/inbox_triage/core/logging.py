"""Logging setup with credential redaction."""

from __future__ import annotations

import logging
import logging.config
import re
from typing import Any

from .config import LoggingSettings

# httpx/httpcore echo request lines; anything below WARNING may carry tokens.
_HTTP_LOGGERS = ("httpx", "httpcore")

_BEARER = re.compile(r"(Bearer\s+)[^\s,;\"']+", re.IGNORECASE)
_SECRET_PARAM = re.compile(
    r"(\b(?:access_token|refresh_token|client_secret|code)[\"']?\s*[=:]\s*[\"']?)"
    r"[^&\s,\"']+"
)
REDACTED = "[redacted]"


def redact(text: str) -> str:
    """Mask bearer tokens and OAuth secrets in ``text``."""
    text = _BEARER.sub(rf"\g<1>{REDACTED}", text)
    return _SECRET_PARAM.sub(rf"\g<1>{REDACTED}", text)


class RedactSecretsFilter(logging.Filter):
    """Rewrite each record's rendered message with secrets masked."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


def build_logging_config(settings: LoggingSettings) -> dict[str, Any]:
    """Return the ``dictConfig`` mapping for ``settings``."""
    if settings.structured:
        formatter: dict[str, Any] = {
            "format": "ts={asctime} level={levelname} logger={name} msg={message}",
            "style": "{",
        }
    else:
        formatter = {"format": "%(asctime)s %(levelname)s %(name)s %(message)s"}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"redact": {"()": RedactSecretsFilter}},
        "formatters": {"triage": formatter},
        "handlers": {
            "stderr": {
                "class": "logging.StreamHandler",
                "formatter": "triage",
                "filters": ["redact"],
                "level": settings.level,
            },
        },
        "loggers": {name: {"level": "WARNING"} for name in _HTTP_LOGGERS},
        "root": {"handlers": ["stderr"], "level": settings.level},
    }


def configure_logging(settings: LoggingSettings) -> None:
    """Install the logging configuration built from ``settings``."""
    logging.config.dictConfig(build_logging_config(settings))


__all__ = [
    "REDACTED",
    "RedactSecretsFilter",
    "build_logging_config",
    "configure_logging",
    "redact",
]
