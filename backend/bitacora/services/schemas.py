"""
Structured-output schemas for provider responses, and the bounding helpers
that turn them into trusted DTOs.

The response schemas are deliberately lenient (plain strings, everything
optional) so a loosely shaped answer still parses; all length caps, enum coercion
and date parsing happen in the helpers below, never in the prompt.
"""

from __future__ import annotations

from datetime import date
from typing import Iterable, List, Optional, TypeVar

from pydantic import BaseModel, Field

from .models import Entity, EntityType, NoteType, TaskItem, TaskPriority

EnumT = TypeVar("EnumT", NoteType, TaskPriority, EntityType)


# ============================================================================
# RAW RESPONSE SCHEMAS
# ============================================================================


class RawTask(BaseModel):
    description: Optional[str] = Field(None, description="Pending action, only if one is explicitly named")
    assignee: Optional[str] = Field(None, description="Person responsible, if mentioned")
    due_date: Optional[str] = Field(None, description="YYYY-MM-DD, if a date is mentioned")
    priority: Optional[str] = Field(None, description="LOW | MEDIUM | HIGH")


class RawEntity(BaseModel):
    name: Optional[str] = None
    type: Optional[str] = Field(None, description="PERSON | COMPANY | PROJECT | TOPIC")


class ClassificationResponse(BaseModel):
    target_book_name: Optional[str] = Field(
        None, description="Exactly an existing notebook name (case-insensitive) or a short new one"
    )
    type: Optional[str] = Field(None, description="NOTE | TASK | DECISION | IDEA | RISK")
    summary: Optional[str] = None
    tasks: List[RawTask] = Field(default_factory=list)
    entities: List[RawEntity] = Field(default_factory=list)
    suggested_priority: Optional[str] = Field(None, description="LOW | MEDIUM | HIGH")


class RawTaskAction(BaseModel):
    task_description: Optional[str] = Field(None, description="Description of the existing pending task")
    completion_notes: Optional[str] = None


class RawTopic(BaseModel):
    target_book_name: Optional[str] = None
    type: Optional[str] = None
    content: Optional[str] = Field(None, description="The part of the input that belongs to this topic")
    summary: Optional[str] = None
    tasks: List[RawTask] = Field(default_factory=list)
    entities: List[RawEntity] = Field(default_factory=list)
    task_actions: List[RawTaskAction] = Field(default_factory=list)


class MultiTopicResponse(BaseModel):
    is_multi_topic: Optional[bool] = None
    overall_context: Optional[str] = None
    suggested_priority: Optional[str] = None
    topics: List[RawTopic] = Field(default_factory=list)


class EntryMatchResponse(BaseModel):
    should_update: Optional[bool] = None
    entry_id: Optional[str] = Field(None, description="Id of the existing note being updated")
    task_index: Optional[int] = Field(None, description="Index in the PENDING TASKS list")
    task_description: Optional[str] = Field(None, description="Description of the task being completed")
    confidence: Optional[int] = Field(None, description="0-100")
    reason: Optional[str] = None
    completion_notes: Optional[str] = None


class ThreadRelationResponse(BaseModel):
    has_relation: Optional[bool] = None
    related_thread_id: Optional[str] = None
    related_entry_ids: List[str] = Field(default_factory=list)
    confidence: Optional[int] = Field(None, description="0-100")
    suggested_thread_title: Optional[str] = None
    reason: Optional[str] = None


# ============================================================================
# BOUNDING HELPERS
# ============================================================================


def truncate(value: Optional[str], limit: int) -> str:
    if not value:
        return ""
    return value.strip()[:limit]


def truncate_optional(value: Optional[str], limit: int) -> Optional[str]:
    text = truncate(value, limit)
    return text or None


def coerce_enum(value: Optional[str], enum_cls: type[EnumT], default: EnumT) -> EnumT:
    if not value:
        return default
    try:
        return enum_cls(value.strip().upper())
    except ValueError:
        return default


def parse_due_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


def clamp_confidence(value: Optional[int]) -> int:
    if value is None:
        return 0
    return max(0, min(100, int(value)))


def bound_tasks(raw_tasks: Iterable[RawTask], max_tasks: int, max_description: int = 500) -> List[TaskItem]:
    tasks: List[TaskItem] = []
    for raw in raw_tasks:
        if len(tasks) >= max_tasks:
            break
        description = truncate(raw.description, max_description)
        if not description:
            continue
        tasks.append(
            TaskItem(
                position=len(tasks),
                description=description,
                assignee=truncate_optional(raw.assignee, 100),
                due_date=parse_due_date(raw.due_date),
                priority=coerce_enum(raw.priority, TaskPriority, TaskPriority.MEDIUM),
            )
        )
    return tasks


def bound_entities(raw_entities: Iterable[RawEntity], max_entities: int) -> List[Entity]:
    entities: List[Entity] = []
    seen = set()
    for raw in raw_entities:
        if len(entities) >= max_entities:
            break
        name = truncate(raw.name, 100)
        entity_type = coerce_enum(raw.type, EntityType, EntityType.TOPIC)
        key = (name.casefold(), entity_type)
        if not name or key in seen:
            continue
        seen.add(key)
        entities.append(Entity(name=name, type=entity_type))
    return entities
