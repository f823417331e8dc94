"""Notification ingestion: decode, dedupe, fetch, and dispatch."""

from .fetcher import MessageFetcher
from .ledger import DedupLedger
from .notification import parse_notification
from .orchestrator import IngestionOrchestrator
from .parser import GmailMessageParser
from .watch import WatchRegistrar

__all__ = [
    "DedupLedger",
    "GmailMessageParser",
    "IngestionOrchestrator",
    "MessageFetcher",
    "WatchRegistrar",
    "parse_notification",
]
