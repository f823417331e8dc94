"""Gmail triage pipeline: push ingestion, LLM classification, reply drafting."""

__version__ = "0.1.0"
