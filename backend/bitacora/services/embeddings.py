"""
Embeddings and semantic relations between notes.

- Embeds note text through the shared provider gateway.
- Stores one vector per (note, model) (SQLite: JSON/text; Postgres: pgvector).
- Materializes weighted relation edges to similar notes.

`embed` raises on empty text or provider failure; the pipeline decides that
embedding is optional, not this module.
"""

from __future__ import annotations

import hashlib
import logging
import math
from typing import Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from bitacora.config import Config

from .gateway import ProviderGateway
from .models import Entry, SimilarEntry
from .provider import CompletionProvider
from .storage import BitacoraStorage, NotFoundError

logger = logging.getLogger(__name__)

RelationEdge = Dict[str, object]


def build_entry_embedding_text(summary: str, original_text: str) -> str:
    return f"{summary}\n{(original_text or '')[:1000]}"


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity in [-1, 1].

    Raises:
        ValueError: If the vectors have different lengths
    """
    if len(a) != len(b):
        raise ValueError(f"Embeddings must have the same length ({len(a)} != {len(b)})")
    dot = sum(x * y for x, y in zip(a, b))
    na = math.sqrt(sum(x * x for x in a))
    nb = math.sqrt(sum(y * y for y in b))
    if na == 0.0 or nb == 0.0:
        return 0.0
    return max(-1.0, min(1.0, dot / (na * nb)))


class EmbeddingsService:
    def __init__(
        self,
        provider: CompletionProvider,
        gateway: ProviderGateway,
        storage: Optional["BitacoraStorage"] = None,
        max_chars: Optional[int] = None,
    ):
        self.provider = provider
        self.gateway = gateway
        self.storage = storage
        self.max_chars = Config.EMBEDDING_MAX_CHARS if max_chars is None else max_chars

    @property
    def model(self) -> str:
        return self.provider.embedding_model_name

    def embed(self, text: str) -> List[float]:
        """
        Raises:
            ValueError: If text is empty
            ProviderError: If the provider call fails
        """
        if not text or not text.strip():
            raise ValueError("Text cannot be empty")
        vector = self.gateway.call(self.provider.embed, text[: self.max_chars])
        if not vector:
            raise ValueError("Provider returned an empty embedding")
        return vector

    def embed_entry(self, entry: Entry) -> List[float]:
        """Embed a note and store the vector for (note, model). Unchanged content reuses the stored vector."""
        storage = self._require_storage()
        text = build_entry_embedding_text(entry.summary, entry.original_text)
        digest = content_hash(text)

        if storage.get_embedding_hash(entry.user_id, entry.id, self.model) == digest:
            stored = storage.get_embeddings_by_entry_ids(entry.user_id, [entry.id], self.model).get(entry.id)
            if stored:
                return stored

        vector = self.embed(text)
        storage.upsert_embedding(entry.user_id, entry.id, self.model, digest, vector)
        return vector

    def find_similar(
        self,
        vector: Sequence[float],
        user_id: str,
        limit: int = 10,
        threshold: Optional[float] = None,
        exclude_ids: Sequence[str] = (),
    ) -> List[SimilarEntry]:
        """The user's notes with similarity >= threshold, most similar first."""
        threshold = Config.RELATION_SIMILARITY_THRESHOLD if threshold is None else threshold
        storage = self._require_storage()
        stored = storage.get_embeddings_by_entry_ids(user_id, None, self.model)

        scored = []
        for entry_id, other in stored.items():
            if entry_id in exclude_ids:
                continue
            try:
                sim = cosine_similarity(vector, other)
            except ValueError:
                logger.warning("Skipping embedding for entry %s: dimension mismatch", entry_id)
                continue
            if sim >= threshold:
                scored.append((entry_id, sim))

        scored.sort(key=lambda x: x[1], reverse=True)
        scored = scored[: max(0, limit)]
        entries = {e.id: e for e in storage.get_entries_by_ids(user_id, [eid for eid, _ in scored])}
        return [
            SimilarEntry(entry=entries[eid], similarity=sim)
            for eid, sim in scored
            if eid in entries
        ]

    def detect_and_persist_relations(
        self,
        entry_id: str,
        vector: Sequence[float],
        candidates: Sequence[Entry],
        user_id: str,
        threshold: Optional[float] = None,
    ) -> List[RelationEdge]:
        """
        Score `entry_id` against every candidate note and upsert an edge for each
        one at or above the threshold. A failed edge write is logged and skipped.

        Returns:
            [{"target_id": str, "strength": float}, ...] strongest first
        """
        threshold = Config.RELATION_SIMILARITY_THRESHOLD if threshold is None else threshold
        storage = self._require_storage()

        other_ids = [c.id for c in candidates if c.id != entry_id]
        if not other_ids:
            return []
        stored = storage.get_embeddings_by_entry_ids(user_id, other_ids, self.model)

        relations: List[RelationEdge] = []
        for other_id in other_ids:
            other = stored.get(other_id)
            if not other:
                continue
            try:
                sim = cosine_similarity(vector, other)
            except ValueError:
                logger.warning("Skipping embedding for entry %s: dimension mismatch", other_id)
                continue
            if sim >= threshold:
                relations.append({"target_id": other_id, "strength": sim})

        relations.sort(key=lambda r: r["strength"], reverse=True)

        persisted: List[RelationEdge] = []
        for relation in relations:
            try:
                storage.upsert_relation(user_id, entry_id, relation["target_id"], relation["strength"])
            except (SQLAlchemyError, NotFoundError) as e:
                logger.warning("Could not save relation %s -> %s: %s", entry_id, relation["target_id"], e)
                continue
            persisted.append(relation)

        logger.debug("Entry %s: %d relations above %.2f", entry_id, len(persisted), threshold)
        return persisted

    def _require_storage(self) -> "BitacoraStorage":
        if self.storage is None:
            raise RuntimeError("EmbeddingsService needs storage for this operation")
        return self.storage
