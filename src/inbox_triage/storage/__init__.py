"""Persistence adapters."""

from .sqlite import SqliteTriageRepository

__all__ = ["SqliteTriageRepository"]
