"""
Per-person summaries with a content-hash cache.

A summary of everything the user's notes say about a person is expensive to
regenerate, so it is cached per (user, person). The cache is valid only while
the hash of the contributing notes (ids, summaries, texts and task states) is
unchanged and no newer contributing note exists.
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import List, Optional

from pydantic import BaseModel, Field

from bitacora.config import Config

from .gateway import ProviderGateway
from .models import Entry, EntityType, PersonSummary
from .provider import CompletionProvider, ProviderError, RateLimitError
from .storage import BitacoraStorage

logger = logging.getLogger(__name__)

MAX_ENTRIES = 40


class PersonSummaryText(BaseModel):
    summary: str = Field(description="What the notes say about this person: role, open items, recent interactions")


def entries_hash(entries: List[Entry]) -> str:
    """SHA-256 over the content that feeds a person summary, independent of input order."""
    payload = [
        {
            "id": e.id,
            "summary": e.summary,
            "text": e.original_text,
            "tasks": [[t.description, t.is_done, t.completion_notes] for t in e.tasks],
        }
        for e in sorted(entries, key=lambda e: e.id)
    ]
    return hashlib.sha256(json.dumps(payload, sort_keys=True, ensure_ascii=False).encode("utf-8")).hexdigest()


class PersonSummaryService:
    def __init__(self, provider: CompletionProvider, gateway: ProviderGateway, storage: BitacoraStorage):
        self.provider = provider
        self.gateway = gateway
        self.storage = storage

    def get_summary(self, user_id: str, person_name: str) -> Optional[PersonSummary]:
        """
        Cached summary for `person_name`, regenerated when stale.

        Returns None when no note mentions the person.

        Raises:
            RateLimitError: If regeneration is rate limited
            ProviderError: If regeneration fails and there is no cached summary to fall back on
        """
        name = (person_name or "").strip()
        if not name:
            raise ValueError("Person name cannot be empty")

        entries = self.storage.find_entries_mentioning(user_id, name, EntityType.PERSON)
        if not entries:
            return None

        current_hash = entries_hash(entries)
        latest = max(e.created_at for e in entries)
        cached = self.storage.get_person_summary(user_id, name)

        if cached and cached.content_hash == current_hash and (
            cached.latest_entry_at is None or cached.latest_entry_at >= latest
        ):
            return cached

        try:
            result = self.gateway.call(
                self.provider.complete,
                "You summarize what a person's notes say about someone they work with.",
                self._build_prompt(name, entries[:MAX_ENTRIES]),
                PersonSummaryText,
                temperature=0.5,
                max_tokens=600,
            )
        except RateLimitError:
            raise
        except ProviderError as e:
            if cached:
                logger.warning("Person summary for %r failed, serving stale cache: %s", name, e)
                return cached
            raise

        return self.storage.upsert_person_summary(user_id, name, result.summary.strip(), current_hash, latest)

    def _build_prompt(self, name: str, entries: List[Entry]) -> str:
        lines = []
        for e in entries:
            lines.append(f"- ({e.created_at.date().isoformat()}) [{e.type.value}] {e.summary}")
            for t in e.tasks:
                state = "done" if t.is_done else "pending"
                line = f"    task ({state}): {t.description}"
                if t.assignee:
                    line += f" [{t.assignee}]"
                if t.completion_notes:
                    line += f" | notes: {t.completion_notes}"
                lines.append(line)

        return f"""PERSON: {name}

NOTES MENTIONING THIS PERSON (newest first):
{chr(10).join(lines)}

Summarize in {Config.OUTPUT_LANGUAGE} what these notes say about {name}: who they are in the user's
work, what is pending with them, and the most recent interactions. Keep it under 150 words."""
