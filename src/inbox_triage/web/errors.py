"""Translate pipeline errors into HTTP responses."""

from __future__ import annotations

from fastapi import status as http_status
from fastapi.responses import JSONResponse

from inbox_triage.core.datetime_utils import serialize_datetime, utc_now
from inbox_triage.core.errors import ErrorKind, TriageError

_FIXED_STATUS: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: http_status.HTTP_400_BAD_REQUEST,
    ErrorKind.AUTH: http_status.HTTP_401_UNAUTHORIZED,
}


def status_for(
    kind: ErrorKind, *, server_status: int = http_status.HTTP_500_INTERNAL_SERVER_ERROR
) -> int:
    """Return the HTTP status for ``kind``.

    Validation and auth failures have fixed codes; upstream and persistence
    failures use the endpoint's ``server_status``.
    """
    return _FIXED_STATUS.get(kind, server_status)


def error_payload(message: str) -> dict[str, str | None]:
    """Return the ``{error, timestamp}`` body shared by every endpoint."""
    return {"error": message, "timestamp": serialize_datetime(utc_now())}


def error_response(
    exc: TriageError,
    *,
    server_status: int = http_status.HTTP_500_INTERNAL_SERVER_ERROR,
) -> JSONResponse:
    """Build the JSON error response for ``exc``."""
    return JSONResponse(
        status_code=status_for(exc.kind, server_status=server_status),
        content=error_payload(str(exc)),
    )


__all__ = ["error_payload", "error_response", "status_for"]
