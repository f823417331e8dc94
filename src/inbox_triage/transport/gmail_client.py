"""Gmail REST API client built on httpx."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import httpx

from ..core.config import GoogleSettings, IngestSettings
from ..core.errors import UpstreamError

LOGGER = logging.getLogger(__name__)


class GmailApiError(UpstreamError):
    """Gmail answered with a non-success status or could not be reached."""


class GmailClient:
    """Minimal Gmail client covering messages, history, and watch."""

    def __init__(
        self,
        settings: GoogleSettings,
        ingest: IngestSettings | None = None,
        *,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._base_url = settings.gmail_api_base.rstrip("/")
        self._page_size = (ingest or IngestSettings()).history_page_size
        self._client = http_client or httpx.Client(timeout=settings.timeout_seconds)
        self._owns_client = http_client is None

    def get_message(self, message_id: str, access_token: str) -> dict[str, Any]:
        """Return the full message resource for ``message_id``."""
        return self._request(
            "GET",
            f"/messages/{message_id}",
            access_token,
            params={"format": "full"},
        )

    def list_history(
        self, start_history_id: str, access_token: str
    ) -> list[dict[str, Any]]:
        """Return message-added history records newer than the cursor."""
        records: list[dict[str, Any]] = []
        page_token: str | None = None
        while True:
            params: dict[str, Any] = {
                "startHistoryId": start_history_id,
                "historyTypes": "messageAdded",
                "maxResults": self._page_size,
            }
            if page_token:
                params["pageToken"] = page_token
            data = self._request("GET", "/history", access_token, params=params)
            records.extend(data.get("history", []))
            page_token = data.get("nextPageToken")
            if not page_token:
                break
        LOGGER.debug(
            "Listed %d history records since %s", len(records), start_history_id
        )
        return records

    def watch(
        self, access_token: str, *, topic_name: str, label_ids: Sequence[str]
    ) -> dict[str, Any]:
        """Register or renew push notifications for the mailbox."""
        return self._request(
            "POST",
            "/watch",
            access_token,
            json={"topicName": topic_name, "labelIds": list(label_ids)},
        )

    def close(self) -> None:
        """Release the HTTP client if this instance created it."""
        if self._owns_client:
            self._client.close()

    def _request(
        self, method: str, path: str, access_token: str, **kwargs: Any
    ) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        headers = {"Authorization": f"Bearer {access_token}"}
        try:
            response = self._client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise GmailApiError(f"Gmail request to {path} failed: {exc}") from exc
        if response.status_code >= 400:
            LOGGER.error("Gmail %s %s returned %s", method, path, response.status_code)
            raise GmailApiError(
                f"Gmail API error {response.status_code}",
                status=response.status_code,
                detail=response.text,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise GmailApiError(f"Gmail returned invalid JSON for {path}") from exc


__all__ = ["GmailApiError", "GmailClient"]
