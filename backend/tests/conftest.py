"""
Shared fixtures: a scripted provider, a gateway that never waits, and a
SQLite-backed storage in a temp directory.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Optional

import pytest
from pydantic import BaseModel

from bitacora.services.gateway import ProviderGateway
from bitacora.services.provider import MalformedResponseError
from bitacora.services.storage import BitacoraStorage


class FakeProvider:
    """
    CompletionProvider that replays scripted responses in order.

    Each scripted item is a dict (validated against the requested schema), a
    ready-made model instance, or an exception to raise.
    """

    model_name = "fake-chat"
    embedding_model_name = "fake-embedding"

    def __init__(self, responses: Optional[list] = None, embedder: Any = None):
        self.responses = list(responses or [])
        self.embedder = embedder
        self.calls: list[dict[str, Any]] = []
        self.embed_calls: list[str] = []

    def complete(self, system_prompt, user_prompt, schema, *, attachment=None, temperature=0.3, max_tokens=None):
        self.calls.append(
            {
                "system": system_prompt,
                "user": user_prompt,
                "schema": schema,
                "attachment": attachment,
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
        )
        if not self.responses:
            raise MalformedResponseError("No scripted response left")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, BaseModel):
            return item
        return schema.model_validate(item)

    def embed(self, text: str) -> list[float]:
        self.embed_calls.append(text)
        if isinstance(self.embedder, Exception):
            raise self.embedder
        if callable(self.embedder):
            return self.embedder(text)
        if self.embedder is not None:
            return list(self.embedder)
        return [1.0, 0.0, 0.0]


def keyword_embedder(mapping: dict[str, list[float]], default: Optional[list[float]] = None) -> Callable[[str], list[float]]:
    """Embed text as the vector of the first keyword it contains."""

    def _embed(text: str) -> list[float]:
        lowered = text.lower()
        for keyword, vector in mapping.items():
            if keyword in lowered:
                return list(vector)
        return list(default or [0.0, 0.0, 1.0])

    return _embed


@pytest.fixture()
def make_provider():
    return FakeProvider


@pytest.fixture()
def make_embedder():
    return keyword_embedder


@pytest.fixture()
def gateway():
    """Gateway with real queueing but no waiting."""
    return ProviderGateway(max_concurrent=2, min_delay=0.0, base_delay=0.0, max_delay=0.0, sleep=lambda s: None)


@pytest.fixture()
def storage(tmp_path: Path):
    return BitacoraStorage(db_path=tmp_path / "bitacora_test.db")
