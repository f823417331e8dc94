"""FastAPI application exposing the triage pipeline over HTTP."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import secrets
from collections.abc import Callable, Mapping
from contextlib import AbstractContextManager
from datetime import timedelta
from pathlib import Path
from typing import Any
from urllib.parse import urlencode

import httpx
from fastapi import FastAPI, Request, status as http_status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

from inbox_triage.auth import OAuthError, read_credential
from inbox_triage.auth.identity import ACTING_USER_HEADER, Credential
from inbox_triage.auth.tokens import DEFAULT_EXPIRES_IN, DEFAULT_PROVIDER
from inbox_triage.core import AppSettings, load_app_settings
from inbox_triage.core.datetime_utils import utc_now
from inbox_triage.core.errors import PersistenceError, TriageError, ValidationError
from inbox_triage.core.models import (
    DraftResult,
    IngestionReport,
    MessageContent,
    ProviderToken,
    ToneProfile,
    Verdict,
    WatchRegistration,
)
from inbox_triage.ingestion.parser import DEFAULT_SENDER, DEFAULT_SUBJECT
from inbox_triage.intelligence import LLMClient
from inbox_triage.pipeline import Pipeline, open_pipeline

from .errors import error_payload, error_response

LOGGER = logging.getLogger(__name__)

_ENV_FILE_OVERRIDE_VAR = "INBOX_TRIAGE_ENV_FILE"
_DEFAULT_ENV_FILE = Path(".env")

_CORS_HEADERS = (
    "authorization",
    "x-client-info",
    "apikey",
    "content-type",
    ACTING_USER_HEADER.lower(),
)

PipelineFactory = Callable[[], AbstractContextManager[Pipeline]]


def create_app(
    settings: AppSettings | None = None,
    *,
    http_client: httpx.Client | None = None,
    llm_client: LLMClient | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    app_settings = settings or load_app_settings(env_file=_resolve_env_file())
    app = FastAPI(title="Inbox Triage")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=list(_CORS_HEADERS),
    )

    def pipeline() -> AbstractContextManager[Pipeline]:
        return open_pipeline(
            app_settings, http_client=http_client, llm_client=llm_client
        )

    @app.post("/webhooks/gmail")
    async def gmail_webhook(request: Request) -> JSONResponse:
        """Receive a Gmail push notification."""
        try:
            payload = await _read_json(request)
            report = await asyncio.to_thread(_run_ingest, pipeline, payload)
        except TriageError as exc:
            LOGGER.error("Webhook batch failed (%s): %s", exc.kind.value, exc)
            return JSONResponse(
                status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
                content=error_payload(str(exc)),
            )
        return JSONResponse(content=report.as_dict())

    @app.post("/classify")
    async def classify(request: Request) -> JSONResponse:
        """Classify a message supplied by a user or a trusted service."""
        try:
            credential = read_credential(
                request.headers, service_key=app_settings.auth.service_key
            )
            payload = await _read_json(request)
            content = _parse_classify_body(
                payload, body_char_limit=app_settings.ingest.body_char_limit
            )
            verdict = await asyncio.to_thread(
                _run_classify, pipeline, credential, content
            )
        except TriageError as exc:
            LOGGER.warning("Classify failed (%s): %s", exc.kind.value, exc)
            return error_response(exc)
        return JSONResponse(
            content={
                **verdict.as_dict(),
                "message": "Email classified and saved",
                "message_id": content.message_id,
            }
        )

    @app.post("/drafts")
    async def generate_draft(request: Request) -> JSONResponse:
        """Generate a reply draft for a stored email."""
        try:
            credential = read_credential(
                request.headers, service_key=app_settings.auth.service_key
            )
            payload = await _read_json(request)
            email_id = _require_string(payload, "email_id")
            result = await asyncio.to_thread(_run_draft, pipeline, credential, email_id)
        except TriageError as exc:
            LOGGER.warning("Draft failed (%s): %s", exc.kind.value, exc)
            return error_response(exc, server_status=http_status.HTTP_400_BAD_REQUEST)
        return JSONResponse(
            content={
                "draft": result.draft,
                "status": result.status.value,
                "message": "Draft generated",
            }
        )

    @app.post("/watch")
    async def renew_watch(request: Request) -> JSONResponse:
        """Register or renew Gmail push notifications for the caller."""
        try:
            credential = read_credential(
                request.headers, service_key=app_settings.auth.service_key
            )
            registration = await asyncio.to_thread(_run_watch, pipeline, credential)
        except TriageError as exc:
            LOGGER.warning("Watch setup failed (%s): %s", exc.kind.value, exc)
            return error_response(exc, server_status=http_status.HTTP_400_BAD_REQUEST)
        return JSONResponse(
            content={
                "message": "Watch set up successfully",
                "expiration": registration.expiration,
                "historyId": registration.history_id,
            }
        )

    @app.post("/tone")
    async def update_tone(request: Request) -> JSONResponse:
        """Store the caller's reply tone sliders."""
        try:
            credential = read_credential(
                request.headers, service_key=app_settings.auth.service_key
            )
            payload = await _read_json(request)
            profile = _parse_tone_body(payload)
            await asyncio.to_thread(_run_tone, pipeline, credential, profile)
        except TriageError as exc:
            LOGGER.warning("Tone update failed (%s): %s", exc.kind.value, exc)
            return error_response(exc, server_status=http_status.HTTP_400_BAD_REQUEST)
        return JSONResponse(content={"message": "Tone settings updated"})

    @app.post("/oauth/google/start")
    async def start_google_consent(request: Request) -> JSONResponse:
        """Return the Google consent URL for the caller."""
        try:
            credential = read_credential(
                request.headers, service_key=app_settings.auth.service_key
            )
            auth_url = await asyncio.to_thread(_run_consent_start, pipeline, credential)
        except TriageError as exc:
            LOGGER.warning("OAuth start failed (%s): %s", exc.kind.value, exc)
            return error_response(exc)
        return JSONResponse(content={"auth_url": auth_url})

    @app.get("/oauth/google/callback")
    async def google_consent_callback(request: Request) -> RedirectResponse:
        """Finish the consent round-trip and send the browser back to the app."""
        code = request.query_params.get("code")
        state = request.query_params.get("state")
        if request.query_params.get("error") or not code or not state:
            reason = "missing_parameters"
        else:
            reason = await asyncio.to_thread(
                _run_consent_callback, pipeline, code, state
            )
        query = {"oauth": "success"} if reason is None else {"error": reason}
        target = f"{app_settings.auth.app_url.rstrip('/')}/oauth-callback"
        return RedirectResponse(
            url=f"{target}?{urlencode(query)}", status_code=http_status.HTTP_302_FOUND
        )

    return app


def _run_ingest(pipeline: PipelineFactory, payload: Any) -> IngestionReport:
    with pipeline() as components:
        return components.orchestrator.handle(payload)


def _run_classify(
    pipeline: PipelineFactory, credential: Credential, content: MessageContent
) -> Verdict:
    with pipeline() as components:
        identity = components.identity.resolve(credential, allow_service=True)
        LOGGER.info(
            "Classifying user=%s message=%s service=%s",
            identity.user_id,
            content.message_id,
            identity.via_service,
        )
        return components.classifier.classify(identity.user_id, content)


def _run_draft(
    pipeline: PipelineFactory, credential: Credential, email_id: str
) -> DraftResult:
    with pipeline() as components:
        identity = components.identity.resolve(credential)
        return components.drafter.generate_draft(identity.user_id, email_id)


def _run_watch(pipeline: PipelineFactory, credential: Credential) -> WatchRegistration:
    with pipeline() as components:
        identity = components.identity.resolve(credential)
        return components.watch.renew_watch(identity.user_id)


def _run_tone(
    pipeline: PipelineFactory, credential: Credential, profile: ToneProfile
) -> None:
    with pipeline() as components:
        identity = components.identity.resolve(credential)
        components.repository.upsert_tone_profile(identity.user_id, profile)


def _run_consent_start(pipeline: PipelineFactory, credential: Credential) -> str:
    with pipeline() as components:
        identity = components.identity.resolve(credential)
        state = secrets.token_urlsafe(24)
        components.repository.save_oauth_state(state, identity.user_id)
        return components.oauth.authorization_url(state)


def _run_consent_callback(
    pipeline: PipelineFactory, code: str, state: str
) -> str | None:
    """Return ``None`` on success, otherwise a short failure reason."""
    with pipeline() as components:
        try:
            user_id = components.repository.consume_oauth_state(state)
        except PersistenceError:
            return "database_error"
        if user_id is None:
            return "invalid_state"
        try:
            tokens = components.oauth.exchange_code(code)
        except OAuthError as exc:
            LOGGER.warning("Code exchange failed user=%s: %s", user_id, exc)
            return "token_exchange_failed"
        access_token = tokens.get("access_token")
        if not access_token:
            return "no_access_token"
        now = utc_now()
        expires_in = int(tokens.get("expires_in") or DEFAULT_EXPIRES_IN)
        try:
            components.repository.upsert_token(
                ProviderToken(
                    user_id=user_id,
                    provider=DEFAULT_PROVIDER,
                    access_token=access_token,
                    refresh_token=tokens.get("refresh_token"),
                    expires_at=now + timedelta(seconds=expires_in),
                    scope=tokens.get("scope"),
                )
            )
        except PersistenceError:
            return "database_error"
        LOGGER.info("Stored Google credentials for user %s", user_id)
        return None


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError(f"Invalid JSON in request body: {exc}") from exc


def _require_string(payload: Any, name: str) -> str:
    if not isinstance(payload, Mapping):
        raise ValidationError("Request body must be a JSON object")
    value = payload.get(name)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Missing required field: {name}")
    return value.strip()


def _optional_string(payload: Mapping[str, Any], name: str, default: str) -> str:
    value = payload.get(name)
    if isinstance(value, str) and value.strip():
        return value
    return default


def _parse_classify_body(payload: Any, *, body_char_limit: int) -> MessageContent:
    message_id = _require_string(payload, "message_id")
    body = _require_string(payload, "body")
    return MessageContent(
        message_id=message_id,
        subject=_optional_string(payload, "subject", DEFAULT_SUBJECT),
        sender=_optional_string(payload, "sender", DEFAULT_SENDER),
        body=body[:body_char_limit],
    )


def _parse_tone_body(payload: Any) -> ToneProfile:
    if not isinstance(payload, Mapping):
        raise ValidationError("Request body must be a JSON object")
    values: dict[str, int] = {}
    for field in ("formality", "emoji", "brevity"):
        value = payload.get(field)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"{field} must be an integer between 0 and 100")
        if not 0 <= value <= 100:
            raise ValidationError(f"{field} must be an integer between 0 and 100")
        values[field] = value
    return ToneProfile(
        formality=values["formality"],
        emoji_usage=values["emoji"],
        brevity=values["brevity"],
    )


def _resolve_env_file() -> Path:
    override = os.getenv(_ENV_FILE_OVERRIDE_VAR)
    if override:
        return Path(override)
    return _DEFAULT_ENV_FILE


__all__ = ["create_app"]
