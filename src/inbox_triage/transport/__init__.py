"""Mail provider transport adapters."""

from .gmail_client import GmailApiError, GmailClient

__all__ = ["GmailApiError", "GmailClient"]
