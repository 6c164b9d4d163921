"""
Entry-match / completion detection.

Decides whether an input reports completion (or update) of an existing task
rather than being new content. Acting on a wrong match silently completes the
wrong task, so the bar is high: the model must be confident (>= 85 by
default), the text must contain explicit completion language, and the task
must resolve to one of the user's pending tasks.

Advisory only: any failure returns `should_update=False, confidence=0`.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from bitacora.config import Config

from .gateway import ProviderGateway
from .models import Entry, MatchResult, TaskItem
from .provider import CompletionProvider
from .schemas import EntryMatchResponse, clamp_confidence, truncate, truncate_optional
from .text_signals import has_completion_language, match_task

logger = logging.getLogger(__name__)

MAX_RECENT_ENTRIES = 50
MAX_PENDING_TASKS = 30

SYSTEM_PROMPT = "You detect whether a text updates existing content or is new content."

RULES = """BE VERY RESTRICTIVE.

1. should_update = true ONLY if the text EXPLICITLY reports completion:
   "ya terminé", "ya completé", "ya hice", "ya envié", "ya revisé", "está listo", "terminado", "done", "finished".

2. NEVER should_update = true for:
   - new information, observations or notes
   - a new task or pending item
   - status updates that do not say something is done
   - questions, comments, descriptive information

3. Examples of NEW entries (should_update = false):
   - "El panel BI tiene un problema"
   - "Revisar el documento mañana"
   - "Panel de ventas: observación sobre métricas"

4. Examples of UPDATES (should_update = true):
   - "Ya terminé el modelo BI de Andina"
   - "Listo el documento para Juan"
   - "Ya envié el correo a María"

5. If the text adds remarks to the completion, put them in completion_notes:
   "Listo el modelo BI, nota: necesita revisión final" -> completion_notes: "necesita revisión final"

6. When in doubt, should_update = false. Creating a new note is better than completing the wrong task.

Set task_index to the index of the completed task in PENDING TASKS and copy its description into
task_description. Set entry_id only when the text updates one of the EXISTING NOTES."""


class EntryMatcher:
    """Detect whether an input completes an existing task."""

    def __init__(
        self,
        provider: CompletionProvider,
        gateway: ProviderGateway,
        threshold: Optional[int] = None,
    ):
        self.provider = provider
        self.gateway = gateway
        self.threshold = Config.ENTRY_MATCH_THRESHOLD if threshold is None else threshold

    def find_match(self, text: str, entries: List[Entry], tasks: List[TaskItem]) -> MatchResult:
        recent = entries[:MAX_RECENT_ENTRIES]
        pending = [t for t in tasks if not t.is_done][:MAX_PENDING_TASKS]

        if not (text or "").strip() or (not recent and not pending):
            return MatchResult(should_update=False, confidence=0, reason="Nothing to match against")

        try:
            response = self.gateway.call(
                self.provider.complete,
                SYSTEM_PROMPT,
                self._build_prompt(text, recent, pending),
                EntryMatchResponse,
                temperature=0.3,
                max_tokens=500,
            )
        except Exception as e:
            logger.warning("Entry matching failed, treating input as new: %s", e)
            return MatchResult(should_update=False, confidence=0, reason="Error while analyzing")

        return self._gate(response, text, recent, pending)

    def _gate(
        self,
        response: EntryMatchResponse,
        text: str,
        recent: List[Entry],
        pending: List[TaskItem],
    ) -> MatchResult:
        confidence = clamp_confidence(response.confidence)
        reason = truncate(response.reason, 500)
        rejected = MatchResult(should_update=False, confidence=confidence, reason=reason)

        if not response.should_update or confidence < self.threshold:
            return rejected
        if not has_completion_language(text):
            logger.debug("Match rejected: no completion language in input")
            return rejected

        task = self._resolve_task(response, pending)
        entry_ids = {e.id for e in recent}
        entry_id = response.entry_id if response.entry_id in entry_ids else None
        if task is not None and task.entry_id:
            entry_id = task.entry_id

        if task is None and entry_id is None:
            return rejected

        return MatchResult(
            should_update=True,
            entry_to_update=entry_id,
            task_to_update=task.id if task is not None else None,
            confidence=confidence,
            reason=reason,
            completion_notes=truncate_optional(response.completion_notes, 1000),
        )

    def _resolve_task(self, response: EntryMatchResponse, pending: List[TaskItem]) -> Optional[TaskItem]:
        index = response.task_index
        if index is not None and 0 <= index < len(pending):
            candidate = pending[index]
            # Trust the index only when it agrees with the description, if one was given.
            if not response.task_description or match_task(response.task_description, [candidate]):
                return candidate
        if response.task_description:
            return match_task(response.task_description, pending)
        return None

    def _build_prompt(self, text: str, recent: List[Entry], pending: List[TaskItem]) -> str:
        entries_str = "\n".join(
            f"ID: {e.id} | Type: {e.type.value} | Summary: {e.summary} | Notebook: {e.book_id}"
            for e in recent
        ) or "(none)"

        task_lines = []
        for idx, task in enumerate(pending):
            line = f"Index: {idx} | Description: {task.description}"
            if task.assignee:
                line += f" | Assignee: {task.assignee}"
            if task.due_date:
                line += f" | Due: {task.due_date.isoformat()}"
            task_lines.append(line)
        tasks_str = "\n".join(task_lines) or "(none)"

        logger.debug("Matching against %d notes and %d pending tasks", len(recent), len(pending))
        return f"""Is the following text an UPDATE/COMPLETION of an existing task, or a NEW entry?

USER TEXT: "{text}"

EXISTING NOTES:
{entries_str}

PENDING TASKS:
{tasks_str}

{RULES}"""
