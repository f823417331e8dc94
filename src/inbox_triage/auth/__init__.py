"""OAuth credentials and request identity."""

from .identity import (
    IdentityResolver,
    RequestorIdentity,
    ServiceCredential,
    UserCredential,
    read_credential,
)
from .oauth import GoogleOAuthClient, OAuthError
from .tokens import TokenManager

__all__ = [
    "GoogleOAuthClient",
    "IdentityResolver",
    "OAuthError",
    "RequestorIdentity",
    "ServiceCredential",
    "TokenManager",
    "UserCredential",
    "read_credential",
]
