"""
Ask service: answer a natural-language question from the user's notebooks,
recent notes and tasks.

Completed tasks carry their completion notes, which often hold the outcome
the question is about, so they are part of the context too.
"""

from __future__ import annotations

import logging
from typing import Dict, List

from pydantic import BaseModel, Field

from bitacora.config import Config

from .gateway import ProviderGateway
from .models import Book, Entry, TaskItem
from .provider import CompletionProvider

logger = logging.getLogger(__name__)

MAX_ENTRIES = 50
MAX_COMPLETED_TASKS = 30


class AskAnswer(BaseModel):
    answer_markdown: str = Field(
        description="A helpful, well-structured answer in markdown."
    )
    cited_entry_ids: list[str] = Field(
        default_factory=list,
        description="IDs of the notes that support the answer. Use only IDs from the provided notes.",
    )


class AskService:
    def __init__(self, provider: CompletionProvider, gateway: ProviderGateway):
        self.provider = provider
        self.gateway = gateway

    def answer(
        self,
        question: str,
        books: List[Book],
        entries: List[Entry],
        tasks: List[TaskItem],
    ) -> AskAnswer:
        """
        Raises:
            ValueError: If the question is empty
            RateLimitError: If the provider stays rate limited after retries
            ProviderError: On any other provider failure
        """
        if not question or not question.strip():
            raise ValueError("Question cannot be empty")

        recent = entries[:MAX_ENTRIES]
        prompt = self._build_prompt(question.strip(), books, recent, tasks)
        result = self.gateway.call(
            self.provider.complete,
            (
                "You are a careful assistant that answers questions about the user's log of notes. "
                "Answer only from the provided context. If information is missing, say so explicitly."
            ),
            prompt,
            AskAnswer,
            temperature=0.7,
            max_tokens=1000,
        )

        known_ids = {e.id for e in recent}
        result.cited_entry_ids = [eid for eid in result.cited_entry_ids if eid in known_ids]
        return result

    def _build_prompt(
        self,
        question: str,
        books: List[Book],
        entries: List[Entry],
        tasks: List[TaskItem],
    ) -> str:
        book_names: Dict[str, str] = {b.id: b.name for b in books}

        books_text = "\n".join(
            f"- {b.name}" + (f": {b.context}" if b.context else "") for b in books
        ) or "(none)"

        entries_text = "\n".join(
            f"- ID: {e.id} | [{e.type.value}] {e.summary} "
            f"({book_names.get(e.book_id, '?')}, {e.created_at.date().isoformat()})"
            for e in entries
        ) or "(none)"

        pending = [t for t in tasks if not t.is_done]
        pending_text = "\n".join(_task_line(t) for t in pending) or "(no active pending tasks)"

        completed = [t for t in tasks if t.is_done and t.completion_notes][:MAX_COMPLETED_TASKS]
        completed_text = "\n".join(
            f"{_task_line(t)} | Notes: {t.completion_notes}" for t in completed
        ) or "(no completed tasks with notes)"

        logger.debug(
            "Answering with %d notes, %d pending and %d completed tasks",
            len(entries),
            len(pending),
            len(completed),
        )
        return f"""NOTEBOOKS:
{books_text}

RECENT NOTES:
{entries_text}

ACTIVE PENDING TASKS:
{pending_text}

RECENTLY COMPLETED TASKS (with completion notes):
{completed_text}

The completion notes of finished tasks hold the outcome of that work; use them for questions about
what was done, found or decided.

USER QUESTION:
\"\"\"{question}\"\"\"

Answer clearly and directly in {Config.OUTPUT_LANGUAGE}. Cite the note IDs you used."""


def _task_line(task: TaskItem) -> str:
    line = f"- {task.description}"
    if task.assignee:
        line += f" ({task.assignee})"
    if task.due_date:
        line += f" [{task.due_date.isoformat()}]"
    return line
