"""
Thread-relation detection.

Suggests whether new content continues an existing conversation thread,
should start a new one with related notes, or stands alone. A wrong
suggestion is a reversible UI hint, so the bar (70 by default) is lower than
for completion matching. Below the bar `has_relation` is forced to False but
confidence, reason and related note ids are still returned.

Advisory only: any failure returns `has_relation=False, confidence=0`.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, List, Optional

from bitacora.config import Config

from .gateway import ProviderGateway
from .models import Entry, Thread, ThreadRelationResult
from .provider import CompletionProvider
from .schemas import ThreadRelationResponse, clamp_confidence, truncate, truncate_optional

logger = logging.getLogger(__name__)

MAX_ENTRIES = 100
MAX_THREAD_SAMPLES = 5
MAX_SUMMARY_CHARS = 300

SYSTEM_PROMPT = """You decide whether a new note belongs to an existing conversation thread.

- related_thread_id: an EXISTING THREAD id when the note clearly continues that conversation.
- related_entry_ids: ids of EXISTING NOTES that discuss the same concrete subject (same project,
  same problem, same follow-up), whether or not they are in a thread.
- suggested_thread_title: a short title when the related notes have no thread yet.
- confidence: 0-100. Sharing a broad theme is not enough; the notes must be about the same thing."""


class ThreadRelationDetector:
    """Suggest thread placement for new content."""

    def __init__(
        self,
        provider: CompletionProvider,
        gateway: ProviderGateway,
        threshold: Optional[int] = None,
    ):
        self.provider = provider
        self.gateway = gateway
        self.threshold = Config.THREAD_RELATION_THRESHOLD if threshold is None else threshold

    def detect(
        self,
        text: str,
        entries: List[Entry],
        threads: List[Thread],
        book_id: Optional[str] = None,
    ) -> ThreadRelationResult:
        if not (text or "").strip() or (not entries and not threads):
            return ThreadRelationResult(has_relation=False, confidence=0, reason="Nothing to relate to")

        context_entries = prioritize_entries(entries, book_id, MAX_ENTRIES)
        try:
            response = self.gateway.call(
                self.provider.complete,
                SYSTEM_PROMPT,
                self._build_prompt(text, context_entries, threads, entries),
                ThreadRelationResponse,
                temperature=0.3,
                max_tokens=500,
            )
        except Exception as e:
            logger.warning("Thread relation detection failed: %s", e)
            return ThreadRelationResult(has_relation=False, confidence=0, reason="Error while analyzing")

        return self._gate(response, context_entries, threads)

    def _gate(
        self,
        response: ThreadRelationResponse,
        entries: List[Entry],
        threads: List[Thread],
    ) -> ThreadRelationResult:
        confidence = clamp_confidence(response.confidence)
        thread_ids = {t.id for t in threads}
        entry_ids = {e.id for e in entries}

        related_ids: List[str] = []
        for entry_id in response.related_entry_ids:
            if entry_id in entry_ids and entry_id not in related_ids:
                related_ids.append(entry_id)
        thread_id = response.related_thread_id if response.related_thread_id in thread_ids else None

        has_relation = bool(response.has_relation) and confidence >= self.threshold
        if has_relation and thread_id is None and not related_ids:
            has_relation = False

        return ThreadRelationResult(
            has_relation=has_relation,
            related_thread_id=thread_id if has_relation else None,
            related_entry_ids=related_ids,
            confidence=confidence,
            suggested_thread_title=truncate_optional(response.suggested_thread_title, 200) if has_relation else None,
            reason=truncate(response.reason, 500),
        )

    def _build_prompt(
        self,
        text: str,
        context_entries: List[Entry],
        threads: List[Thread],
        all_entries: List[Entry],
    ) -> str:
        members: Dict[str, List[Entry]] = defaultdict(list)
        for entry in all_entries:
            if entry.thread_id:
                members[entry.thread_id].append(entry)

        thread_lines = []
        for thread in threads:
            samples = members.get(thread.id, [])[:MAX_THREAD_SAMPLES]
            line = f"ID: {thread.id} | Title: {thread.title} | Notebook: {thread.book_id}"
            if samples:
                line += "\n" + "\n".join(f"    - {s.summary[:MAX_SUMMARY_CHARS]}" for s in samples)
            thread_lines.append(line)

        entry_lines = [
            f"ID: {e.id} | Notebook: {e.book_id} | Thread: {e.thread_id or '-'} | Summary: {e.summary[:MAX_SUMMARY_CHARS]}"
            for e in context_entries
        ]

        logger.debug("Thread detection with %d notes and %d threads", len(context_entries), len(threads))
        return f"""NEW NOTE:
\"\"\"
{text}
\"\"\"

EXISTING THREADS:
{chr(10).join(thread_lines) or "(none)"}

EXISTING NOTES:
{chr(10).join(entry_lines) or "(none)"}"""


def prioritize_entries(entries: List[Entry], book_id: Optional[str], limit: int) -> List[Entry]:
    """Same-notebook notes first (original order kept within each group), capped to `limit`."""
    if not book_id:
        return entries[:limit]
    same = [e for e in entries if e.book_id == book_id]
    others = [e for e in entries if e.book_id != book_id]
    return (same + others)[:limit]
