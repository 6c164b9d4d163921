"""
Single-topic classification and extraction.

One provider call decides the target notebook, note type, summary, tasks and
entities for an input. The answer is bounded and checked before it is
returned:

- every string is truncated and every list capped
- a NOTE never carries tasks
- text without explicit pending-action language never produces tasks

Rate limiting propagates to the caller. Any other provider failure yields a
safe fallback (default notebook, NOTE, no tasks) so ingestion never fails
because classification did.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import List, Optional

from bitacora.config import Config

from .gateway import ProviderGateway
from .models import AnalysisResult, Attachment, Book, NoteType, TaskPriority
from .provider import CompletionProvider, ProviderError, RateLimitError
from .schemas import (
    ClassificationResponse,
    bound_entities,
    bound_tasks,
    coerce_enum,
    truncate,
)
from .text_signals import has_pending_action_language

logger = logging.getLogger(__name__)

MAX_BOOK_NAME = 100
MAX_SUMMARY = 2000
MAX_TASKS = 20
MAX_ENTITIES = 50
MAX_TEXT_WITH_DOCUMENT = 5000
MAX_TEXT = 10000

ATTACHMENT_ONLY_SUMMARY = "Archivo adjunto sin texto"

SYSTEM_PROMPT = """You are a personal assistant that files a user's notes (voice notes, quick thoughts, meeting summaries) into notebooks.

RULES:

1. NOTEBOOK
- Compare the content against the NAME and CONTEXT of every existing notebook.
- Everything in one input goes to ONE notebook, even when it mentions several items of the same theme.
- target_book_name must be EXACTLY an existing notebook name (case-insensitive) or, when nothing fits, a new short descriptive name.

2. INFORMATION vs TASKS (most important rule)
- Text that only describes current state, observations or information for reference is a NOTE with an EMPTY tasks list.
  e.g. "Panel de Supervisores muestra un problema con la actualización de datos" -> NOTE, no tasks.
- Create tasks ONLY for explicit pending actions: "hay que...", "tengo que...", "debo...", "pendiente...", "necesito...", "need to...".
  e.g. "Hay que revisar el Panel BI de Ventas antes del viernes" -> TASK, one task "Revisar Panel BI de Ventas" with its due date.
- Emails, reports and status lists are NOTEs unless they name an explicit pending action.

3. TYPE
- NOTE: information, observations, state. No pending tasks.
- TASK: only when there are explicit pending actions.
- DECISION: agreements or decisions taken.
- IDEA: proposals, suggestions, "we could...".
- RISK: problems, risks, blockers.

4. TASKS (only real pending actions)
- Extract the assignee when one is named and the due date (YYYY-MM-DD) when a date is mentioned, resolving relative dates against today.

5. SUMMARY
- A clean, direct summary written in {language}. Highlight real tasks when there are any.

6. ENTITIES
- People, companies, projects and topics mentioned, typed PERSON | COMPANY | PROJECT | TOPIC.

7. PRIORITY
- HIGH: urgent, close deadline, critical. MEDIUM: important, not urgent. LOW: no urgency."""


def format_books(books: List[Book]) -> str:
    lines = []
    for book in books:
        context = book.context or book.description
        lines.append(f'- "{book.name}"' + (f" (Context: {context})" if context else ""))
    return "\n".join(lines) if lines else "- (none)"


class EntryClassifier:
    """Classify one input against the user's notebooks."""

    def __init__(self, provider: CompletionProvider, gateway: ProviderGateway):
        self.provider = provider
        self.gateway = gateway

    def classify(
        self,
        text: str,
        books: List[Book],
        attachment: Optional[Attachment] = None,
        today: Optional[date] = None,
    ) -> AnalysisResult:
        """
        Classify `text` (plus optional attachment) into a single notebook.

        Raises:
            ValueError: If there is neither text nor attachment content
            RateLimitError: If the provider stays rate limited after retries
        """
        has_document_text = attachment is not None and attachment.has_text
        has_image = attachment is not None and attachment.kind == "image"
        if not (text or "").strip() and not (has_document_text or has_image):
            raise ValueError("Text cannot be empty")

        max_len = MAX_TEXT_WITH_DOCUMENT if has_document_text else MAX_TEXT
        sanitized = (text or "").strip()[:max_len]

        system_prompt = SYSTEM_PROMPT.format(language=Config.OUTPUT_LANGUAGE)
        user_prompt = self._build_prompt(sanitized, books, attachment, today or date.today())

        try:
            response = self.gateway.call(
                self.provider.complete,
                system_prompt,
                user_prompt,
                ClassificationResponse,
                attachment=attachment,
                temperature=0.5,
                max_tokens=2000,
            )
        except RateLimitError:
            raise
        except ProviderError as e:
            logger.warning("Classification failed, using fallback: %s", e)
            return self.fallback(sanitized)

        return self._bound(response, sanitized, books, attachment)

    def fallback(self, text: str) -> AnalysisResult:
        return AnalysisResult(
            target_book_name=Config.DEFAULT_BOOK_NAME,
            type=NoteType.NOTE,
            summary=truncate(text, MAX_SUMMARY) or ATTACHMENT_ONLY_SUMMARY,
            tasks=[],
            entities=[],
            suggested_priority=TaskPriority.MEDIUM,
        )

    def _bound(
        self,
        response: ClassificationResponse,
        text: str,
        books: List[Book],
        attachment: Optional[Attachment],
    ) -> AnalysisResult:
        note_type = coerce_enum(response.type, NoteType, NoteType.NOTE)
        tasks = bound_tasks(response.tasks, MAX_TASKS)

        if note_type == NoteType.NOTE:
            tasks = []

        # Images are opaque to the text check; trust the model for them.
        if attachment is None or attachment.kind != "image":
            guard_text = text
            if attachment is not None and attachment.has_text:
                guard_text = f"{text}\n{attachment.extracted_text}"
            if not has_pending_action_language(guard_text):
                if tasks:
                    logger.debug("Dropping %d tasks: no pending-action language", len(tasks))
                tasks = []
                if note_type == NoteType.TASK:
                    note_type = NoteType.NOTE

        return AnalysisResult(
            target_book_name=resolve_book_name(response.target_book_name, books),
            type=note_type,
            summary=truncate(response.summary, MAX_SUMMARY) or truncate(text, MAX_SUMMARY) or ATTACHMENT_ONLY_SUMMARY,
            tasks=tasks,
            entities=bound_entities(response.entities, MAX_ENTITIES),
            suggested_priority=coerce_enum(response.suggested_priority, TaskPriority, TaskPriority.MEDIUM),
        )

    def _build_prompt(
        self,
        text: str,
        books: List[Book],
        attachment: Optional[Attachment],
        today: date,
    ) -> str:
        if len(text) > 10:
            source = f'Analyze this text from the user:\n\n"{text}"'
        elif attachment is not None and attachment.has_text:
            source = (
                "The user uploaded a document without additional text. "
                "Analyze the document content that follows as if it were the user's text."
            )
        else:
            source = f'Analyze this text from the user:\n\n"{text or "(no additional text)"}"'

        return f"""TODAY: {today.isoformat()}

EXISTING NOTEBOOKS (with their context):
{format_books(books)}

{source}

1. Decide whether it is INFORMATION (NOTE, no tasks) or contains REAL PENDING TASKS (TASK).
2. Pick the notebook from the NAME and CONTEXT of the existing notebooks.
3. Several items of the same theme are ONE note in ONE notebook.
4. Descriptive content (emails, reports, status) never creates tasks."""


def resolve_book_name(name: Optional[str], books: List[Book]) -> str:
    """Snap a suggested name onto an existing notebook (case-insensitive), else keep it bounded."""
    bounded = truncate(name, MAX_BOOK_NAME)
    if not bounded:
        return Config.DEFAULT_BOOK_NAME
    key = bounded.casefold()
    for book in books:
        if book.name.strip().casefold() == key:
            return book.name
    return bounded
