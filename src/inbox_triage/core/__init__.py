"""Core utilities for configuration, logging, errors, and domain models."""

from .config import AppSettings, load_app_settings
from .errors import ErrorKind, TriageError
from .logging import configure_logging

__all__ = [
    "AppSettings",
    "ErrorKind",
    "TriageError",
    "configure_logging",
    "load_app_settings",
]
