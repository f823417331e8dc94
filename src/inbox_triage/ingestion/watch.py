"""Register and renew the Gmail push subscription."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from ..auth.tokens import TokenManager
from ..core.errors import UpstreamError, WatchSetupFailed
from ..core.interfaces import MailProvider
from ..core.models import WatchRegistration

LOGGER = logging.getLogger(__name__)


class WatchRegistrar:
    """Keep a mailbox's push notifications flowing."""

    def __init__(
        self,
        tokens: TokenManager,
        mail: MailProvider,
        *,
        topic_name: str | None,
        label_ids: Sequence[str] = ("INBOX",),
    ) -> None:
        self._tokens = tokens
        self._mail = mail
        self._topic_name = topic_name
        self._label_ids = tuple(label_ids)

    def renew_watch(self, user_id: str) -> WatchRegistration:
        """Register or renew the watch and return its cursor and expiry."""
        if not self._topic_name:
            raise WatchSetupFailed("No Pub/Sub topic configured for Gmail watch")
        access_token = self._tokens.get_valid_token(user_id)
        try:
            response = self._mail.watch(
                access_token, topic_name=self._topic_name, label_ids=self._label_ids
            )
        except UpstreamError as exc:
            LOGGER.error("Watch setup failed user=%s: %s", user_id, exc)
            raise WatchSetupFailed(
                f"Failed to set up Gmail watch: {exc.detail or exc}",
                status=exc.status,
                detail=exc.detail,
            ) from exc

        history_id = response.get("historyId")
        expiration = response.get("expiration")
        if history_id is None or expiration is None:
            raise WatchSetupFailed(
                "Gmail watch response lacked historyId or expiration",
                detail=str(response),
            )
        registration = WatchRegistration(
            history_id=str(history_id), expiration=str(expiration)
        )
        LOGGER.info(
            "Watch renewed user=%s cursor=%s expires=%s",
            user_id,
            registration.history_id,
            registration.expires_at.isoformat(),
        )
        return registration


__all__ = ["WatchRegistrar"]
