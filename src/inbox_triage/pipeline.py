"""Wire settings into the components used by one invocation."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

import httpx

from .auth import GoogleOAuthClient, IdentityResolver, TokenManager
from .core import AppSettings
from .ingestion import (
    DedupLedger,
    IngestionOrchestrator,
    MessageFetcher,
    WatchRegistrar,
)
from .intelligence import DraftGenerator, EmailClassifier, LLMClient, build_llm_client
from .storage import SqliteTriageRepository
from .transport import GmailClient


@dataclass(slots=True)
class Pipeline:
    """Components sharing one repository connection."""

    repository: SqliteTriageRepository
    oauth: GoogleOAuthClient
    gmail: GmailClient
    tokens: TokenManager
    classifier: EmailClassifier
    drafter: DraftGenerator
    orchestrator: IngestionOrchestrator
    watch: WatchRegistrar
    identity: IdentityResolver


@contextmanager
def open_pipeline(
    settings: AppSettings,
    *,
    http_client: httpx.Client | None = None,
    llm_client: LLMClient | None = None,
) -> Iterator[Pipeline]:
    """Yield a fully wired :class:`Pipeline`, closing resources on exit.

    ``http_client`` is shared by the Google clients when given; otherwise each
    creates and closes its own.
    """
    with SqliteTriageRepository(settings.storage) as repository:
        oauth = GoogleOAuthClient(settings.google, http_client=http_client)
        gmail = GmailClient(settings.google, settings.ingest, http_client=http_client)
        try:
            llm = llm_client or build_llm_client(settings.llm)
            tokens = TokenManager(
                repository,
                oauth,
                refresh_margin_seconds=settings.ingest.token_refresh_margin_seconds,
            )
            classifier = EmailClassifier(
                llm,
                repository,
                temperature=settings.llm.classification_temperature,
                max_tokens=settings.llm.classification_max_tokens,
            )
            drafter = DraftGenerator(
                llm,
                repository,
                repository,
                temperature=settings.llm.draft_temperature,
                max_tokens=settings.llm.draft_max_tokens,
            )
            orchestrator = IngestionOrchestrator(
                directory=repository,
                ledger=DedupLedger(repository),
                tokens=tokens,
                mail=gmail,
                fetcher=MessageFetcher(
                    gmail, body_char_limit=settings.ingest.body_char_limit
                ),
                classifier=classifier,
            )
            watch = WatchRegistrar(
                tokens,
                gmail,
                topic_name=settings.google.pubsub_topic,
                label_ids=settings.google.watch_label_ids,
            )
            yield Pipeline(
                repository=repository,
                oauth=oauth,
                gmail=gmail,
                tokens=tokens,
                classifier=classifier,
                drafter=drafter,
                orchestrator=orchestrator,
                watch=watch,
                identity=IdentityResolver(settings.auth, repository),
            )
        finally:
            gmail.close()
            oauth.close()


__all__ = ["Pipeline", "open_pipeline"]
