"""
Data models for the Bitácora domain.

Uses Pydantic for validation and serialization. These are the DTOs that cross
component boundaries; the SQLAlchemy rows live in bitacora/database.py.
"""

from datetime import date, datetime
from enum import Enum
from typing import List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator


class NoteType(str, Enum):
    NOTE = "NOTE"
    TASK = "TASK"
    DECISION = "DECISION"
    IDEA = "IDEA"
    RISK = "RISK"


class EntryStatus(str, Enum):
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


class TaskPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class EntityType(str, Enum):
    PERSON = "PERSON"
    COMPANY = "COMPANY"
    PROJECT = "PROJECT"
    TOPIC = "TOPIC"


class Attachment(BaseModel):
    """Image or document attached to an input. Only used as model context, never stored."""
    kind: Literal["image", "document"]
    mime_type: str
    file_name: str = ""
    data: str = Field(default="", description="Base64 payload, optionally as a data URL")
    extracted_text: Optional[str] = Field(None, description="Text extracted from a document")

    @property
    def has_text(self) -> bool:
        return bool(self.extracted_text and self.extracted_text.strip())


class TaskItem(BaseModel):
    id: Optional[str] = None
    entry_id: Optional[str] = None
    position: int = 0
    description: str
    assignee: Optional[str] = None
    due_date: Optional[date] = None
    is_done: bool = False
    priority: TaskPriority = TaskPriority.MEDIUM
    completion_notes: Optional[str] = None

    @model_validator(mode="after")
    def _notes_only_when_done(self) -> "TaskItem":
        if not self.is_done:
            self.completion_notes = None
        return self


class Entity(BaseModel):
    id: Optional[str] = None
    entry_id: Optional[str] = None
    name: str
    type: EntityType = EntityType.TOPIC


class Book(BaseModel):
    """A notebook: the single container every entry belongs to."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    name: str
    description: Optional[str] = None
    context: Optional[str] = Field(None, description="AI-maintained description")
    folder_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class Thread(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    title: str
    book_id: str
    created_at: datetime = Field(default_factory=datetime.now)


class Entry(BaseModel):
    """A classified note."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    original_text: str
    book_id: str
    type: NoteType = NoteType.NOTE
    summary: str = ""
    tasks: List[TaskItem] = Field(default_factory=list)
    entities: List[Entity] = Field(default_factory=list)
    thread_id: Optional[str] = None
    rewritten_text: Optional[str] = None
    status: EntryStatus = EntryStatus.COMPLETED
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class EntryRelation(BaseModel):
    id: str
    source_entry_id: str
    target_entry_id: str
    strength: float = Field(ge=0.0, le=1.0)

    def other_end(self, entry_id: str) -> str:
        return self.target_entry_id if self.source_entry_id == entry_id else self.source_entry_id


class SimilarEntry(BaseModel):
    entry: Entry
    similarity: float


class PersonSummary(BaseModel):
    id: str
    user_id: str
    person_name: str
    summary: str
    content_hash: str
    latest_entry_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=datetime.now)


# ============================================================================
# PIPELINE RESULTS
# ============================================================================


class AnalysisResult(BaseModel):
    """Single-topic classification of one input."""
    target_book_name: str
    type: NoteType = NoteType.NOTE
    summary: str = ""
    tasks: List[TaskItem] = Field(default_factory=list)
    entities: List[Entity] = Field(default_factory=list)
    suggested_priority: TaskPriority = TaskPriority.MEDIUM

    # Filled in by the pipeline, not by the classifier
    is_new_book: bool = False
    target_book_id: Optional[str] = None
    steps: List[str] = Field(default_factory=list)
    length: Optional[Literal["short", "long"]] = None
    related_entries: List[SimilarEntry] = Field(default_factory=list)


class TaskAction(BaseModel):
    """An existing task that a topic reports as done, referenced by description."""
    task_description: str
    completion_notes: Optional[str] = None


class TopicAnalysis(BaseModel):
    target_book_name: str
    is_new_book: bool = False
    type: NoteType = NoteType.NOTE
    content: str = ""
    summary: str = ""
    tasks: List[TaskItem] = Field(default_factory=list)
    entities: List[Entity] = Field(default_factory=list)
    task_actions: List[TaskAction] = Field(default_factory=list)


class MultiTopicAnalysis(BaseModel):
    is_multi_topic: bool = False
    overall_context: str = ""
    suggested_priority: TaskPriority = TaskPriority.MEDIUM
    topics: List[TopicAnalysis] = Field(default_factory=list)


class MatchResult(BaseModel):
    """Whether an input reports completion/update of something that already exists."""
    should_update: bool = False
    entry_to_update: Optional[str] = None
    task_to_update: Optional[str] = None
    confidence: int = Field(0, ge=0, le=100)
    reason: str = ""
    completion_notes: Optional[str] = None


class ThreadRelationResult(BaseModel):
    has_relation: bool = False
    related_thread_id: Optional[str] = None
    related_entry_ids: List[str] = Field(default_factory=list)
    confidence: int = Field(0, ge=0, le=100)
    suggested_thread_title: Optional[str] = None
    reason: str = ""


class PipelineContext(BaseModel):
    """Everything the pipeline knows about a user when it analyzes an input."""
    user_id: str
    books: List[Book] = Field(default_factory=list)
    entries: List[Entry] = Field(default_factory=list)
    pending_tasks: List[TaskItem] = Field(default_factory=list)
    threads: List[Thread] = Field(default_factory=list)

    def find_book(self, name: str) -> Optional[Book]:
        key = (name or "").strip().casefold()
        for book in self.books:
            if book.name.strip().casefold() == key:
                return book
        return None

    def book_by_id(self, book_id: Optional[str]) -> Optional[Book]:
        for book in self.books:
            if book.id == book_id:
                return book
        return None
