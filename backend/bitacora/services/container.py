"""
Dependency injection container for backend services.

We store a single Services instance on the Flask app (app.extensions["services"]).
Routes can then fetch dependencies via get_services() which makes route tests able
to inject fakes without importing/initializing global singletons.

The gateway is built once here and handed to every component, so all provider
calls in the process share one queue and one pacing clock.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from flask import current_app

from bitacora.config import Config

from .ask_service import AskService
from .book_context import BookContextService
from .embeddings import EmbeddingsService
from .entry_classifier import EntryClassifier
from .entry_matching import EntryMatcher
from .gateway import ProviderGateway
from .multi_topic import MultiTopicSplitter
from .openai_provider import OpenAIProvider
from .person_summary import PersonSummaryService
from .pipeline import BitacoraPipeline
from .provider import CompletionProvider
from .router import StepRouter
from .storage import BitacoraStorage
from .summarizer import AISummarizerService
from .thread_relation import ThreadRelationDetector


@dataclass(frozen=True)
class Services:
    storage: BitacoraStorage
    pipeline: BitacoraPipeline
    asker: AskService
    summarizer: AISummarizerService
    person_summaries: PersonSummaryService
    embeddings: EmbeddingsService


def build_services(
    storage: BitacoraStorage,
    provider: CompletionProvider,
    gateway: ProviderGateway,
    *,
    run_in_background: bool = True,
) -> Services:
    """Wire every component around one storage, one provider and one gateway."""
    embeddings = EmbeddingsService(provider, gateway, storage)
    pipeline = BitacoraPipeline(
        storage=storage,
        router=StepRouter(provider, gateway),
        classifier=EntryClassifier(provider, gateway),
        splitter=MultiTopicSplitter(provider, gateway),
        matcher=EntryMatcher(provider, gateway),
        thread_detector=ThreadRelationDetector(provider, gateway),
        embeddings=embeddings,
        book_context=BookContextService(provider, gateway),
        run_in_background=run_in_background,
    )
    return Services(
        storage=storage,
        pipeline=pipeline,
        asker=AskService(provider, gateway),
        summarizer=AISummarizerService(provider, gateway),
        person_summaries=PersonSummaryService(provider, gateway, storage),
        embeddings=embeddings,
    )


def create_services(*, database_url: Optional[str] = None) -> Services:
    """
    Build the production Services container.

    Args:
        database_url: Optional override for database URL (useful for tests).

    Raises:
        ValueError: If required configuration (the OpenAI key) is missing
    """
    Config.validate()
    storage = BitacoraStorage(database_url=database_url) if database_url else BitacoraStorage()
    return build_services(storage, OpenAIProvider(), ProviderGateway.from_config())


def get_services() -> Services:
    """
    Fetch the Services container from the current Flask app.

    Raises:
        RuntimeError if services have not been attached to the app.
    """
    services = current_app.extensions.get("services")
    if services is None:
        raise RuntimeError('Services not configured. Expected app.extensions["services"].')
    return services
