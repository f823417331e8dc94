"""Command-line entry point for Inbox Triage."""

from __future__ import annotations

import argparse
import json
import secrets
from collections.abc import Sequence
from datetime import timedelta
from pathlib import Path

import uvicorn

from inbox_triage.core import (
    AppSettings,
    TriageError,
    configure_logging,
    load_app_settings,
)
from inbox_triage.core.datetime_utils import serialize_datetime, utc_now
from inbox_triage.core.models import EmailStatus
from inbox_triage.pipeline import open_pipeline
from inbox_triage.storage import SqliteTriageRepository
from inbox_triage.web import create_app


def build_parser() -> argparse.ArgumentParser:
    """Create and configure the CLI argument parser."""
    parser = argparse.ArgumentParser(description="Inbox Triage operator tools")
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to a .env file containing configuration overrides.",
    )
    commands = parser.add_subparsers(dest="command")

    commands.add_parser("info", help="Show the active configuration summary.")

    serve = commands.add_parser("serve", help="Run the HTTP API with uvicorn.")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address.")
    serve.add_argument("--port", type=int, default=8000, help="Bind port.")

    add_user = commands.add_parser("add-user", help="Register a mailbox user.")
    add_user.add_argument("email", help="Gmail address that push events name.")

    issue = commands.add_parser("issue-session", help="Print a new session token.")
    issue.add_argument("user_id")
    issue.add_argument(
        "--ttl-hours",
        dest="ttl_hours",
        type=float,
        default=None,
        help="Session lifetime in hours; omit for a non-expiring token.",
    )

    ingest = commands.add_parser(
        "ingest", help="Run ingestion on a saved notification body."
    )
    ingest.add_argument("payload_file", type=Path)

    draft = commands.add_parser("draft", help="Generate a reply draft.")
    draft.add_argument("user_id")
    draft.add_argument("email_id")

    watch = commands.add_parser("renew-watch", help="Renew Gmail push notifications.")
    watch.add_argument("user_id")

    emails = commands.add_parser("emails", help="List stored email records.")
    emails.add_argument("user_id")
    emails.add_argument(
        "--status",
        choices=[status.value for status in EmailStatus],
        default=None,
        help="Only list records in this status.",
    )
    emails.add_argument(
        "--limit",
        type=int,
        default=20,
        help="Maximum number of records; set to 0 for no limit (default: 20).",
    )
    return parser


def execute(args: argparse.Namespace, settings: AppSettings) -> int:
    """Execute the requested CLI command and return an exit code."""
    command = args.command or "info"
    try:
        if command == "info":
            _print_info(settings)
        elif command == "serve":
            uvicorn.run(
                create_app(settings),
                host=args.host,
                port=args.port,
                log_config=None,
            )
        elif command == "add-user":
            with SqliteTriageRepository(settings.storage) as repository:
                print(repository.register_user(args.email))
        elif command == "issue-session":
            _issue_session(settings, args.user_id, ttl_hours=args.ttl_hours)
        elif command == "ingest":
            payload = json.loads(args.payload_file.read_text(encoding="utf-8"))
            with open_pipeline(settings) as pipeline:
                report = pipeline.orchestrator.handle(payload)
            print(json.dumps(report.as_dict(), indent=2))
        elif command == "draft":
            with open_pipeline(settings) as pipeline:
                result = pipeline.drafter.generate_draft(args.user_id, args.email_id)
            print(f"Status: {result.status.value}")
            print(result.draft)
        elif command == "renew-watch":
            with open_pipeline(settings) as pipeline:
                registration = pipeline.watch.renew_watch(args.user_id)
            print(
                f"Watch active from history {registration.history_id} "
                f"until {registration.expires_at.isoformat()}"
            )
        elif command == "emails":
            _list_emails(settings, args.user_id, status=args.status, limit=args.limit)
    except TriageError as exc:
        print(f"{command} failed ({exc.kind.value}): {exc}")
        return 1
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = load_app_settings(env_file=args.env_file)
    configure_logging(settings.logging)
    return execute(args, settings)


def _print_info(settings: AppSettings) -> None:
    print("Inbox Triage is ready. Register a user and complete Google consent.")
    print(f"Database path: {settings.storage.db_path}")
    print(f"LLM: {settings.llm.provider} {settings.llm.model} at {settings.llm.base_url}")
    print(f"Pub/Sub topic: {settings.google.pubsub_topic or '(not configured)'}")
    print(f"OAuth client configured: {'yes' if settings.google.client_id else 'no'}")


def _issue_session(
    settings: AppSettings, user_id: str, *, ttl_hours: float | None
) -> None:
    token = secrets.token_urlsafe(32)
    expires_at = utc_now() + timedelta(hours=ttl_hours) if ttl_hours else None
    with SqliteTriageRepository(settings.storage) as repository:
        repository.create_session(user_id, token, expires_at=expires_at)
    print(token)
    if expires_at is not None:
        print(f"Expires: {serialize_datetime(expires_at)}")


def _list_emails(
    settings: AppSettings, user_id: str, *, status: str | None, limit: int
) -> None:
    """Print stored email records, newest first."""
    with SqliteTriageRepository(settings.storage) as repository:
        records = repository.list_emails(
            user_id,
            status=EmailStatus(status) if status else None,
            limit=limit if limit > 0 else None,
        )

    if not records:
        print("No emails found.")
        return

    for record in records:
        print(
            f"[{record.status.value}] {record.id} {record.category.value}/"
            f"{record.urgency.value} {record.subject} ({record.sender})"
        )


__all__ = ["build_parser", "execute", "main"]


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
