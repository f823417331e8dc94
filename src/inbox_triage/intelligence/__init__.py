"""LLM-backed classification and reply drafting."""

from .classifier import EmailClassifier
from .drafter import DraftGenerator
from .llm import LLMClient, LLMError, build_llm_client

__all__ = [
    "DraftGenerator",
    "EmailClassifier",
    "LLMClient",
    "LLMError",
    "build_llm_client",
]
