"""
Multi-topic splitting.

One provider call decides whether an input spans several notebooks and, if
so, partitions it into per-topic records. Each topic carries its own
classification, tasks, entities and `task_actions` (existing pending tasks the
input reports as done, referenced by description).

Shape guarantees on every returned analysis:
- non-empty input always yields at least one topic
- topics never share a notebook (same-name topics are merged)
- `is_multi_topic` is true exactly when there is more than one topic
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Dict, List, Optional

from bitacora.config import Config

from .entry_classifier import format_books, resolve_book_name
from .gateway import ProviderGateway
from .models import (
    Attachment,
    Book,
    MultiTopicAnalysis,
    NoteType,
    TaskAction,
    TaskItem,
    TaskPriority,
    TopicAnalysis,
)
from .provider import CompletionProvider, ProviderError, RateLimitError
from .schemas import (
    MultiTopicResponse,
    RawTopic,
    bound_entities,
    bound_tasks,
    coerce_enum,
    truncate,
    truncate_optional,
)
from .text_signals import has_pending_action_language

logger = logging.getLogger(__name__)

MAX_CONTENT = 2000
MAX_SUMMARY = 1000
MAX_TASKS = 10
MAX_ENTITIES = 20
MAX_TASK_ACTIONS = 10
MAX_OVERALL_CONTEXT = 1000
MAX_PENDING_TASKS = 30

SYSTEM_PROMPT = """You split a user's input into topics, one per notebook.

RULES:
- If the whole input is about one theme, return exactly ONE topic covering all of it (is_multi_topic = false).
- Only split when the input clearly talks about different themes that belong to different notebooks.
- Never return two topics for the same notebook.
- For each topic:
  - target_book_name: EXACTLY an existing notebook name (case-insensitive) or a new short descriptive name.
  - content: the part of the input that belongs to this topic.
  - summary: written in {language}.
  - type: NOTE | TASK | DECISION | IDEA | RISK. Descriptive information is a NOTE with NO tasks.
  - tasks: ONLY explicit NEW pending actions ("hay que...", "tengo que...", "need to...").
  - task_actions: existing PENDING TASKS (from the list you are given) that the input reports as done,
    with the task description copied from the list and any completion notes.
  - entities: PERSON | COMPANY | PROJECT | TOPIC."""


class MultiTopicSplitter:
    """Split one input into notebook-scoped topics."""

    def __init__(self, provider: CompletionProvider, gateway: ProviderGateway):
        self.provider = provider
        self.gateway = gateway

    def split(
        self,
        text: str,
        books: List[Book],
        pending_tasks: List[TaskItem],
        attachment: Optional[Attachment] = None,
        today: Optional[date] = None,
    ) -> MultiTopicAnalysis:
        """
        Raises:
            ValueError: If there is neither text nor attachment content
            RateLimitError: If the provider stays rate limited after retries
        """
        text = (text or "").strip()
        has_content = attachment is not None and (attachment.has_text or attachment.kind == "image")
        if not text and not has_content:
            raise ValueError("Text cannot be empty")

        user_prompt = self._build_prompt(text, books, pending_tasks, today or date.today())
        try:
            response = self.gateway.call(
                self.provider.complete,
                SYSTEM_PROMPT.format(language=Config.OUTPUT_LANGUAGE),
                user_prompt,
                MultiTopicResponse,
                attachment=attachment,
                temperature=0.4,
                max_tokens=3000,
            )
        except RateLimitError:
            raise
        except ProviderError as e:
            logger.warning("Multi-topic split failed, using fallback: %s", e)
            return self.fallback(text, books)

        return self._bound(response, text, books, attachment)

    def fallback(self, text: str, books: Optional[List[Book]] = None) -> MultiTopicAnalysis:
        return MultiTopicAnalysis(
            is_multi_topic=False,
            overall_context=truncate(text, MAX_SUMMARY),
            suggested_priority=TaskPriority.MEDIUM,
            topics=[self._synthetic_topic(text, books or [])],
        )

    def _bound(
        self,
        response: MultiTopicResponse,
        text: str,
        books: List[Book],
        attachment: Optional[Attachment],
    ) -> MultiTopicAnalysis:
        topics: List[TopicAnalysis] = []
        by_book: Dict[str, TopicAnalysis] = {}

        for raw in response.topics:
            topic = self._bound_topic(raw, text, books, attachment)
            key = topic.target_book_name.casefold()
            if key in by_book:
                _merge_into(by_book[key], topic)
                continue
            by_book[key] = topic
            topics.append(topic)

        if not topics:
            topics = [self._synthetic_topic(text, books)]

        if response.is_multi_topic is False and len(topics) > 1:
            # The model said "one theme": keep one topic that covers everything.
            head = topics[0]
            for other in topics[1:]:
                _merge_into(head, other)
            head.content = truncate(text, MAX_CONTENT) or head.content
            topics = [head]

        return MultiTopicAnalysis(
            is_multi_topic=len(topics) > 1,
            overall_context=truncate(response.overall_context, MAX_OVERALL_CONTEXT),
            suggested_priority=coerce_enum(response.suggested_priority, TaskPriority, TaskPriority.MEDIUM),
            topics=topics,
        )

    def _bound_topic(
        self,
        raw: RawTopic,
        text: str,
        books: List[Book],
        attachment: Optional[Attachment],
    ) -> TopicAnalysis:
        book_name = resolve_book_name(raw.target_book_name, books)
        content = truncate(raw.content, MAX_CONTENT)
        note_type = coerce_enum(raw.type, NoteType, NoteType.NOTE)
        tasks = bound_tasks(raw.tasks, MAX_TASKS)

        if note_type == NoteType.NOTE:
            tasks = []
        if attachment is None or attachment.kind != "image":
            guard_text = content or text
            if attachment is not None and attachment.has_text:
                guard_text = f"{guard_text}\n{attachment.extracted_text}"
            if not has_pending_action_language(guard_text):
                tasks = []
                if note_type == NoteType.TASK:
                    note_type = NoteType.NOTE

        actions: List[TaskAction] = []
        for raw_action in raw.task_actions:
            if len(actions) >= MAX_TASK_ACTIONS:
                break
            description = truncate(raw_action.task_description, 500)
            if description:
                actions.append(
                    TaskAction(
                        task_description=description,
                        completion_notes=truncate_optional(raw_action.completion_notes, 1000),
                    )
                )

        return TopicAnalysis(
            target_book_name=book_name,
            is_new_book=not _is_known_book(book_name, books),
            type=note_type,
            content=content or truncate(text, MAX_CONTENT),
            summary=truncate(raw.summary, MAX_SUMMARY) or content[:MAX_SUMMARY],
            tasks=tasks,
            entities=bound_entities(raw.entities, MAX_ENTITIES),
            task_actions=actions,
        )

    def _synthetic_topic(self, text: str, books: List[Book]) -> TopicAnalysis:
        return TopicAnalysis(
            target_book_name=Config.DEFAULT_BOOK_NAME,
            is_new_book=not _is_known_book(Config.DEFAULT_BOOK_NAME, books),
            type=NoteType.NOTE,
            content=truncate(text, MAX_CONTENT),
            summary=truncate(text, MAX_SUMMARY),
        )

    def _build_prompt(
        self,
        text: str,
        books: List[Book],
        pending_tasks: List[TaskItem],
        today: date,
    ) -> str:
        pending = pending_tasks[:MAX_PENDING_TASKS]
        if pending:
            pending_str = "\n".join(
                f"- {t.description}" + (f" (assignee: {t.assignee})" if t.assignee else "")
                for t in pending
            )
        else:
            pending_str = "- (none)"

        logger.debug("Splitting input against %d books and %d pending tasks", len(books), len(pending))
        return f"""TODAY: {today.isoformat()}

EXISTING NOTEBOOKS (with their context):
{format_books(books)}

PENDING TASKS:
{pending_str}

INPUT:
\"\"\"
{text or "(no additional text, analyze the attachment)"}
\"\"\"

Split the input into topics following the rules."""


def _is_known_book(name: str, books: List[Book]) -> bool:
    key = name.strip().casefold()
    return any(book.name.strip().casefold() == key for book in books)


def _merge_into(target: TopicAnalysis, other: TopicAnalysis) -> None:
    """Fold `other` into `target` (same notebook), keeping every cap."""
    if other.content and other.content not in target.content:
        target.content = truncate(f"{target.content}\n\n{other.content}", MAX_CONTENT)
    if other.summary and other.summary not in target.summary:
        target.summary = truncate(f"{target.summary} {other.summary}", MAX_SUMMARY)
    if target.type == NoteType.NOTE and other.type != NoteType.NOTE:
        target.type = other.type

    for task in other.tasks:
        if len(target.tasks) >= MAX_TASKS:
            break
        target.tasks.append(task.model_copy(update={"position": len(target.tasks)}))

    seen = {(e.name.casefold(), e.type) for e in target.entities}
    for entity in other.entities:
        if len(target.entities) >= MAX_ENTITIES:
            break
        if (entity.name.casefold(), entity.type) not in seen:
            seen.add((entity.name.casefold(), entity.type))
            target.entities.append(entity)

    known = {a.task_description.casefold() for a in target.task_actions}
    for action in other.task_actions:
        if len(target.task_actions) >= MAX_TASK_ACTIONS:
            break
        if action.task_description.casefold() not in known:
            known.add(action.task_description.casefold())
            target.task_actions.append(action)
