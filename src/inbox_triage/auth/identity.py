"""Requestor identity: parse credentials once, resolve them to a user."""

from __future__ import annotations

import logging
import secrets
from collections.abc import Mapping
from dataclasses import dataclass

from ..core.config import AuthSettings
from ..core.errors import AuthError
from ..core.interfaces import UserDirectory

LOGGER = logging.getLogger(__name__)

ACTING_USER_HEADER = "X-User-Id"


@dataclass(slots=True, frozen=True)
class UserCredential:
    """Bearer session token presented by an end user."""

    token: str


@dataclass(slots=True, frozen=True)
class ServiceCredential:
    """Service key presented by a trusted caller acting for a user."""

    token: str
    acting_as_user: str


Credential = UserCredential | ServiceCredential


@dataclass(slots=True, frozen=True)
class RequestorIdentity:
    """The user a request acts for, and whether a service vouched for it."""

    user_id: str
    via_service: bool = False


def read_credential(
    headers: Mapping[str, str], *, service_key: str | None = None
) -> Credential:
    """Build a credential from ``Authorization`` and ``X-User-Id`` headers.

    The request is tagged as a service call only when the bearer token is the
    configured ``service_key`` and an acting user is named; any other bearer
    token is a user session and ``X-User-Id`` is ignored.

    ``headers`` must support case-insensitive lookup, as Starlette's does.
    """
    authorization = headers.get("authorization") or ""
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise AuthError("Missing authorization header")
    acting_as = (headers.get(ACTING_USER_HEADER.lower()) or "").strip()
    if acting_as and _is_service_key(token, service_key):
        return ServiceCredential(token=token, acting_as_user=acting_as)
    return UserCredential(token=token)


def _is_service_key(token: str, service_key: str | None) -> bool:
    if not service_key:
        return False
    return secrets.compare_digest(token.encode("utf-8"), service_key.encode("utf-8"))


class IdentityResolver:
    """Turn a parsed credential into a :class:`RequestorIdentity`."""

    def __init__(self, settings: AuthSettings, directory: UserDirectory) -> None:
        self._settings = settings
        self._directory = directory

    def resolve(
        self, credential: Credential, *, allow_service: bool = False
    ) -> RequestorIdentity:
        """Return the identity for ``credential`` or raise :class:`AuthError`."""
        if isinstance(credential, ServiceCredential):
            if not allow_service:
                raise AuthError("Service credentials are not accepted here")
            if not _is_service_key(credential.token, self._settings.service_key):
                LOGGER.warning("Rejected service credential")
                raise AuthError("Unauthorized")
            return RequestorIdentity(
                user_id=credential.acting_as_user, via_service=True
            )

        user_id = self._directory.resolve_session(credential.token)
        if user_id is None:
            raise AuthError("Unauthorized")
        return RequestorIdentity(user_id=user_id)


__all__ = [
    "ACTING_USER_HEADER",
    "Credential",
    "IdentityResolver",
    "RequestorIdentity",
    "ServiceCredential",
    "UserCredential",
    "read_credential",
]
