"""Application configuration models and loader utilities."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, cast

from dotenv import dotenv_values
from pydantic import BaseModel, Field


class GoogleSettings(BaseModel):
    """Settings for the Google OAuth endpoints and the Gmail REST API."""

    client_id: str | None = Field(default=None, description="OAuth client id")
    client_secret: str | None = Field(
        default=None, description="OAuth client secret"
    )
    redirect_uri: str | None = Field(
        default=None, description="Callback URL registered with Google"
    )
    auth_url: str = Field(
        default="https://accounts.google.com/o/oauth2/v2/auth",
        description="OAuth consent endpoint",
    )
    token_url: str = Field(
        default="https://oauth2.googleapis.com/token",
        description="OAuth token endpoint",
    )
    gmail_api_base: str = Field(
        default="https://gmail.googleapis.com/gmail/v1/users/me",
        description="Gmail REST base URL for the authorised mailbox",
    )
    scopes: list[str] = Field(
        default_factory=lambda: [
            "https://www.googleapis.com/auth/gmail.modify",
            "openid",
            "email",
            "profile",
        ],
        description="Scopes requested during consent",
    )
    pubsub_topic: str | None = Field(
        default=None,
        description="Fully qualified Pub/Sub topic receiving Gmail push events",
    )
    watch_label_ids: list[str] = Field(
        default_factory=lambda: ["INBOX"], description="Labels covered by watch"
    )
    timeout_seconds: float = Field(
        default=15.0, gt=0, description="HTTP timeout for Google requests"
    )


class LlmSettings(BaseModel):
    """Settings for the LLM completion backend."""

    provider: Literal["openai", "ollama"] = Field(
        default="openai", description="Completion API flavour"
    )
    base_url: str = Field(
        default="https://api.openai.com", description="LLM server URL"
    )
    api_key: str | None = Field(default=None, description="Bearer key if required")
    model: str = Field(default="gpt-4o", description="Model identifier")
    timeout_seconds: int = Field(
        default=30, description="Request timeout for LLM calls"
    )
    classification_temperature: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Sampling temperature for classification",
    )
    classification_max_tokens: int = Field(
        default=100, ge=16, description="Token cap for classification output"
    )
    draft_temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Sampling temperature for reply drafts",
    )
    draft_max_tokens: int = Field(
        default=200, ge=32, description="Token cap for reply drafts"
    )


class StorageSettings(BaseModel):
    """Settings for local persistence."""

    db_path: Path = Field(
        default=Path("./inbox_triage.db"), description="SQLite database path"
    )
    busy_timeout_seconds: float = Field(
        default=5.0, gt=0, description="Wait time for a locked database"
    )


class IngestSettings(BaseModel):
    """Bounds applied while turning notifications into classified emails."""

    body_char_limit: int = Field(
        default=2000, ge=1, description="Characters of body handed to the LLM"
    )
    history_page_size: int = Field(
        default=10, ge=1, le=500, description="History records per Gmail page"
    )
    token_refresh_margin_seconds: int = Field(
        default=60, ge=0, description="Refresh tokens this close to expiry"
    )


class AuthSettings(BaseModel):
    """Settings for request authentication and post-consent redirects."""

    service_key: str | None = Field(
        default=None, description="Credential presented by trusted internal callers"
    )
    app_url: str = Field(
        default="http://localhost:8080", description="Dashboard base URL"
    )


class LoggingSettings(BaseModel):
    """Logging preferences."""

    level: str = Field(default="INFO", description="Root logging level")
    structured: bool = Field(
        default=False, description="Toggle key=value structured logging"
    )


class AppSettings(BaseModel):
    """Aggregated application configuration."""

    google: GoogleSettings = Field(default_factory=GoogleSettings)
    llm: LlmSettings = Field(default_factory=LlmSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    ingest: IngestSettings = Field(default_factory=IngestSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


ENV_PREFIX = "INBOX_TRIAGE_"
_LIST_FIELDS = {"scopes", "watch_label_ids"}


def _normalize_key(raw_key: str) -> list[str]:
    """Convert an environment variable key into a nested attribute path."""
    trimmed = raw_key.removeprefix(ENV_PREFIX)
    return [segment.lower() for segment in trimmed.split("__") if segment]


def _merge_into_tree(tree: dict[str, Any], path: list[str], value: Any) -> None:
    """Assign a value to a nested dictionary given a path."""
    cursor = tree
    for segment in path[:-1]:
        next_node = cursor.setdefault(segment, {})
        cursor = cast(dict[str, Any], next_node)
    cursor[path[-1]] = value


def _coerce_value(field: str, value: Any) -> Any:
    if not isinstance(value, str):
        return value
    if value == "":
        return None
    if field in _LIST_FIELDS:
        return [item.strip() for item in value.split(",") if item.strip()]
    lowercase_value = value.lower()
    if lowercase_value == "true":
        return True
    if lowercase_value == "false":
        return False
    return value


def _collect_env_values(
    env_file: Path | str | None, *, include_environment: bool
) -> dict[str, Any]:
    """Load configuration values from environment variables and optional file."""
    collected: dict[str, Any] = {}

    file_values = {}
    if env_file:
        env_path = Path(env_file)
        if env_path.is_file():
            file_values = {
                key: value
                for key, value in dotenv_values(env_path).items()
                if key and key.startswith(ENV_PREFIX)
            }

    env_values: dict[str, str] = {}
    if include_environment:
        env_values = {
            key: value
            for key, value in os.environ.items()
            if key.startswith(ENV_PREFIX)
        }

    combined: dict[str, Any] = {**file_values, **env_values}

    for key, value in combined.items():
        path = _normalize_key(key)
        if not path:
            continue
        _merge_into_tree(collected, path, _coerce_value(path[-1], value))

    return collected


@lru_cache(maxsize=1)
def load_app_settings(
    env_file: Path | str | None = None,
    *,
    include_environment: bool = True,
    **overrides: Any,
) -> AppSettings:
    """Load application settings, applying env files and overrides."""
    collected = _collect_env_values(env_file, include_environment=include_environment)
    if overrides:
        collected.update(overrides)
    return AppSettings.model_validate(collected)


__all__ = [
    "AppSettings",
    "AuthSettings",
    "GoogleSettings",
    "IngestSettings",
    "LlmSettings",
    "LoggingSettings",
    "StorageSettings",
    "load_app_settings",
]
