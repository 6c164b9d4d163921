"""
SQLAlchemy-backed storage for the Bitácora domain.

BitacoraStorage is the persistence collaborator of the pipeline: user-scoped
CRUD for notebooks, notes, tasks, entities, threads, embeddings, relation
edges and person summaries. Every query filters on user_id; ids belonging to
another user behave exactly like ids that do not exist.
"""

from __future__ import annotations

from collections import defaultdict
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Dict, Generator, Iterable, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy import desc, or_
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from ..database import (
    Base,
    Book as BookORM,
    EntityMention as EntityORM,
    Entry as EntryORM,
    EntryEmbedding as EntryEmbeddingORM,
    EntryRelation as EntryRelationORM,
    PersonSummary as PersonSummaryORM,
    Task as TaskORM,
    Thread as ThreadORM,
    create_engine_for_url,
    get_engine,
    get_session_factory,
    make_session_factory,
    utcnow,
)
from .models import (
    Book,
    Entity,
    EntityType,
    Entry,
    EntryRelation,
    EntryStatus,
    NoteType,
    PersonSummary,
    TaskItem,
    TaskPriority,
    Thread,
)


class NotFoundError(LookupError):
    """An id does not exist for the given user."""


def name_key(name: str) -> str:
    return (name or "").strip().casefold()


def _book_to_dto(row: BookORM) -> Book:
    return Book(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        description=row.description,
        context=row.context,
        folder_id=row.folder_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _thread_to_dto(row: ThreadORM) -> Thread:
    return Thread(
        id=row.id,
        user_id=row.user_id,
        title=row.title,
        book_id=row.book_id,
        created_at=row.created_at,
    )


def _task_to_dto(row: TaskORM) -> TaskItem:
    return TaskItem(
        id=row.id,
        entry_id=row.entry_id,
        position=row.position or 0,
        description=row.description,
        assignee=row.assignee,
        due_date=row.due_date,
        is_done=bool(row.is_done),
        priority=TaskPriority(row.priority or "MEDIUM"),
        completion_notes=row.completion_notes,
    )


def _entity_to_dto(row: EntityORM) -> Entity:
    return Entity(id=row.id, entry_id=row.entry_id, name=row.name, type=EntityType(row.type))


def _entry_to_dto(
    row: EntryORM,
    tasks: Optional[List[TaskItem]] = None,
    entities: Optional[List[Entity]] = None,
) -> Entry:
    return Entry(
        id=row.id,
        user_id=row.user_id,
        original_text=row.original_text,
        book_id=row.book_id,
        type=NoteType(row.type),
        summary=row.summary or "",
        tasks=tasks or [],
        entities=entities or [],
        thread_id=row.thread_id,
        rewritten_text=row.rewritten_text,
        status=EntryStatus(row.status),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _relation_to_dto(row: EntryRelationORM) -> EntryRelation:
    return EntryRelation(
        id=row.id,
        source_entry_id=row.source_entry_id,
        target_entry_id=row.target_entry_id,
        strength=max(0.0, min(1.0, float(row.strength))),
    )


def _person_summary_to_dto(row: PersonSummaryORM) -> PersonSummary:
    return PersonSummary(
        id=row.id,
        user_id=row.user_id,
        person_name=row.person_name,
        summary=row.summary,
        content_hash=row.content_hash,
        latest_entry_at=row.latest_entry_at,
        updated_at=row.updated_at,
    )


class BitacoraStorage:
    """
    SQLAlchemy-based storage facade used by the pipeline, Flask routes and services.
    """

    def __init__(self, db_path: Optional[Path] = None, database_url: Optional[str] = None):
        self.engine, self.session_factory = self._configure_engine(db_path, database_url)
        self.dialect = self.engine.dialect.name
        Base.metadata.create_all(self.engine)

    # ========================================================================
    # BOOKS
    # ========================================================================

    def list_books(self, user_id: str) -> List[Book]:
        with self._session_scope() as session:
            rows = (
                session.query(BookORM)
                .filter(BookORM.user_id == user_id)
                .order_by(BookORM.name)
                .all()
            )
            return [_book_to_dto(r) for r in rows]

    def get_book(self, user_id: str, book_id: str) -> Optional[Book]:
        with self._session_scope() as session:
            row = self._get_book_row(session, user_id, book_id)
            return _book_to_dto(row) if row else None

    def find_book_by_name(self, user_id: str, name: str) -> Optional[Book]:
        with self._session_scope() as session:
            row = (
                session.query(BookORM)
                .filter(BookORM.user_id == user_id, BookORM.name_key == name_key(name))
                .one_or_none()
            )
            return _book_to_dto(row) if row else None

    def get_or_create_book(
        self,
        user_id: str,
        name: str,
        description: Optional[str] = None,
    ) -> Tuple[Book, bool]:
        """
        Resolve a notebook by case-insensitive name, creating it if missing.

        Returns:
            (book, created)
        """
        clean_name = (name or "").strip()[:100]
        if not clean_name:
            raise ValueError("Book name cannot be empty")

        existing = self.find_book_by_name(user_id, clean_name)
        if existing:
            return existing, False

        now = utcnow()
        row = BookORM(
            id=str(uuid4()),
            user_id=user_id,
            name=clean_name,
            name_key=name_key(clean_name),
            description=description,
            created_at=now,
            updated_at=now,
        )
        try:
            with self._session_scope() as session:
                session.add(row)
        except IntegrityError:
            # Lost a race against a concurrent create of the same name.
            existing = self.find_book_by_name(user_id, clean_name)
            if existing is None:
                raise
            return existing, False
        return _book_to_dto(row), True

    def update_book_context(self, user_id: str, book_id: str, context: str) -> bool:
        with self._session_scope() as session:
            row = self._get_book_row(session, user_id, book_id)
            if not row:
                return False
            row.context = context
            row.updated_at = utcnow()
            return True

    # ========================================================================
    # ENTRIES
    # ========================================================================

    def create_entry(
        self,
        user_id: str,
        book_id: str,
        original_text: str,
        *,
        note_type: NoteType = NoteType.NOTE,
        summary: str = "",
        tasks: Iterable[TaskItem] = (),
        entities: Iterable[Entity] = (),
        thread_id: Optional[str] = None,
        status: EntryStatus = EntryStatus.COMPLETED,
    ) -> Entry:
        """
        Persist a note with its tasks and entities in one transaction. A note
        created inside a thread is stored in the thread's notebook.

        Raises:
            NotFoundError: If the book (or thread) does not belong to the user
        """
        now = utcnow()
        entry_id = str(uuid4())

        with self._session_scope() as session:
            if not self._get_book_row(session, user_id, book_id):
                raise NotFoundError(f"Book {book_id} not found")
            if thread_id:
                thread = self._get_thread_row(session, user_id, thread_id)
                if not thread:
                    raise NotFoundError(f"Thread {thread_id} not found")
                # A threaded note lives in its thread's notebook.
                book_id = thread.book_id

            entry_row = EntryORM(
                id=entry_id,
                user_id=user_id,
                book_id=book_id,
                thread_id=thread_id,
                original_text=original_text,
                summary=summary,
                type=NoteType(note_type).value,
                status=EntryStatus(status).value,
                created_at=now,
                updated_at=now,
            )
            session.add(entry_row)
            # Parent row first so the FK holds when children are flushed.
            session.flush()

            task_rows = []
            for position, task in enumerate(tasks):
                task_row = TaskORM(
                    id=str(uuid4()),
                    user_id=user_id,
                    entry_id=entry_id,
                    position=position,
                    description=task.description,
                    assignee=task.assignee,
                    due_date=task.due_date,
                    is_done=task.is_done,
                    priority=TaskPriority(task.priority).value,
                    completion_notes=task.completion_notes if task.is_done else None,
                    created_at=now,
                    completed_at=now if task.is_done else None,
                )
                task_rows.append(task_row)
                session.add(task_row)

            entity_rows = []
            for entity in entities:
                entity_row = EntityORM(
                    id=str(uuid4()),
                    user_id=user_id,
                    entry_id=entry_id,
                    name=entity.name,
                    type=EntityType(entity.type).value,
                )
                entity_rows.append(entity_row)
                session.add(entity_row)

        return _entry_to_dto(
            entry_row,
            tasks=[_task_to_dto(t) for t in task_rows],
            entities=[_entity_to_dto(e) for e in entity_rows],
        )

    def get_entry(self, user_id: str, entry_id: str) -> Optional[Entry]:
        entries = self.get_entries_by_ids(user_id, [entry_id])
        return entries[0] if entries else None

    def get_entries_by_ids(self, user_id: str, entry_ids: List[str]) -> List[Entry]:
        if not entry_ids:
            return []
        with self._session_scope() as session:
            rows = (
                session.query(EntryORM)
                .filter(EntryORM.user_id == user_id, EntryORM.id.in_(entry_ids))
                .all()
            )
        entries = self._hydrate(user_id, rows)
        by_id = {e.id: e for e in entries}
        return [by_id[eid] for eid in entry_ids if eid in by_id]

    def list_entries(
        self,
        user_id: str,
        limit: Optional[int] = None,
        book_id: Optional[str] = None,
        thread_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[Entry]:
        """Notes newest first, with tasks and entities loaded in two batch queries."""
        with self._session_scope() as session:
            query = session.query(EntryORM).filter(EntryORM.user_id == user_id)
            if book_id:
                query = query.filter(EntryORM.book_id == book_id)
            if thread_id:
                query = query.filter(EntryORM.thread_id == thread_id)
            if since:
                query = query.filter(EntryORM.created_at >= since)
            query = query.order_by(desc(EntryORM.created_at), desc(EntryORM.id))
            if limit:
                query = query.limit(limit)
            rows = query.all()
        return self._hydrate(user_id, rows)

    def update_entry(
        self,
        user_id: str,
        entry_id: str,
        *,
        summary: Optional[str] = None,
        rewritten_text: Optional[str] = None,
        status: Optional[EntryStatus] = None,
    ) -> bool:
        with self._session_scope() as session:
            row = self._get_entry_row(session, user_id, entry_id)
            if not row:
                return False
            if summary is not None:
                row.summary = summary
            if rewritten_text is not None:
                row.rewritten_text = rewritten_text
            if status is not None:
                row.status = EntryStatus(status).value
            row.updated_at = utcnow()
            return True

    def set_entry_thread(self, user_id: str, entry_id: str, thread_id: Optional[str]) -> Optional[Entry]:
        """
        Put a note in a thread (or take it out with None). When the thread lives
        in another notebook the note moves to that notebook.
        """
        with self._session_scope() as session:
            row = self._get_entry_row(session, user_id, entry_id)
            if not row:
                return None
            if thread_id is not None:
                thread = self._get_thread_row(session, user_id, thread_id)
                if not thread:
                    raise NotFoundError(f"Thread {thread_id} not found")
                if thread.book_id != row.book_id:
                    row.book_id = thread.book_id
            row.thread_id = thread_id
            row.updated_at = utcnow()
        return self.get_entry(user_id, entry_id)

    def delete_entry(self, user_id: str, entry_id: str) -> bool:
        """Delete a note together with its tasks, entities, embeddings and relation edges."""
        with self._session_scope() as session:
            if not self._get_entry_row(session, user_id, entry_id):
                return False
            session.query(EntryRelationORM).filter(
                EntryRelationORM.user_id == user_id,
                or_(
                    EntryRelationORM.source_entry_id == entry_id,
                    EntryRelationORM.target_entry_id == entry_id,
                ),
            ).delete(synchronize_session=False)
            for model in (EntryEmbeddingORM, TaskORM, EntityORM):
                session.query(model).filter(
                    model.user_id == user_id,
                    model.entry_id == entry_id,
                ).delete(synchronize_session=False)
            session.query(EntryORM).filter(
                EntryORM.user_id == user_id,
                EntryORM.id == entry_id,
            ).delete(synchronize_session=False)
            return True

    def find_entries_mentioning(
        self,
        user_id: str,
        name: str,
        entity_type: EntityType = EntityType.PERSON,
    ) -> List[Entry]:
        """Notes with an entity of `entity_type` named `name` (case-insensitive), newest first."""
        key = name_key(name)
        with self._session_scope() as session:
            mentions = (
                session.query(EntityORM.entry_id, EntityORM.name)
                .filter(EntityORM.user_id == user_id, EntityORM.type == EntityType(entity_type).value)
                .all()
            )
            entry_ids = sorted({eid for eid, ename in mentions if name_key(ename) == key})
            if not entry_ids:
                return []
            rows = (
                session.query(EntryORM)
                .filter(EntryORM.user_id == user_id, EntryORM.id.in_(entry_ids))
                .order_by(desc(EntryORM.created_at), desc(EntryORM.id))
                .all()
            )
        return self._hydrate(user_id, rows)

    # ========================================================================
    # TASKS
    # ========================================================================

    def get_tasks_by_entry_ids(self, user_id: str, entry_ids: List[str]) -> Dict[str, List[TaskItem]]:
        result: Dict[str, List[TaskItem]] = defaultdict(list)
        if not entry_ids:
            return result
        with self._session_scope() as session:
            rows = (
                session.query(TaskORM)
                .filter(TaskORM.user_id == user_id, TaskORM.entry_id.in_(entry_ids))
                .order_by(TaskORM.entry_id, TaskORM.position)
                .all()
            )
            for row in rows:
                result[row.entry_id].append(_task_to_dto(row))
        return result

    def list_tasks(self, user_id: str, is_done: Optional[bool] = None, limit: Optional[int] = None) -> List[TaskItem]:
        with self._session_scope() as session:
            query = (
                session.query(TaskORM)
                .join(EntryORM, EntryORM.id == TaskORM.entry_id)
                .filter(TaskORM.user_id == user_id)
            )
            if is_done is not None:
                query = query.filter(TaskORM.is_done == is_done)
            if is_done:
                query = query.order_by(desc(TaskORM.completed_at), TaskORM.position)
            else:
                query = query.order_by(desc(EntryORM.created_at), TaskORM.position)
            if limit:
                query = query.limit(limit)
            return [_task_to_dto(r) for r in query.all()]

    def list_pending_tasks(self, user_id: str, limit: Optional[int] = None) -> List[TaskItem]:
        return self.list_tasks(user_id, is_done=False, limit=limit)

    def get_task(self, user_id: str, task_id: str) -> Optional[TaskItem]:
        with self._session_scope() as session:
            row = self._get_task_row(session, user_id, task_id)
            return _task_to_dto(row) if row else None

    def complete_task(self, user_id: str, task_id: str, completion_notes: Optional[str] = None) -> bool:
        """
        Mark a pending task done.

        Returns:
            True if the task changed; False if it is missing or already done.
        """
        with self._session_scope() as session:
            row = self._get_task_row(session, user_id, task_id)
            if not row or row.is_done:
                return False
            row.is_done = True
            row.completion_notes = completion_notes
            row.completed_at = utcnow()
            return True

    def update_task(
        self,
        user_id: str,
        task_id: str,
        *,
        description: Optional[str] = None,
        assignee: Optional[str] = None,
        due_date: Optional[date] = None,
        priority: Optional[TaskPriority] = None,
        is_done: Optional[bool] = None,
        completion_notes: Optional[str] = None,
    ) -> Optional[TaskItem]:
        with self._session_scope() as session:
            row = self._get_task_row(session, user_id, task_id)
            if not row:
                return None
            if description is not None:
                row.description = description
            if assignee is not None:
                row.assignee = assignee or None
            if due_date is not None:
                row.due_date = due_date
            if priority is not None:
                row.priority = TaskPriority(priority).value
            if is_done is not None:
                if is_done and not row.is_done:
                    row.completed_at = utcnow()
                row.is_done = is_done
            if completion_notes is not None:
                row.completion_notes = completion_notes
            if not row.is_done:
                # Completion notes only mean something on a done task.
                row.completion_notes = None
                row.completed_at = None
            return _task_to_dto(row)

    # ========================================================================
    # ENTITIES
    # ========================================================================

    def get_entities_by_entry_ids(self, user_id: str, entry_ids: List[str]) -> Dict[str, List[Entity]]:
        result: Dict[str, List[Entity]] = defaultdict(list)
        if not entry_ids:
            return result
        with self._session_scope() as session:
            rows = (
                session.query(EntityORM)
                .filter(EntityORM.user_id == user_id, EntityORM.entry_id.in_(entry_ids))
                .all()
            )
            for row in rows:
                result[row.entry_id].append(_entity_to_dto(row))
        return result

    # ========================================================================
    # THREADS
    # ========================================================================

    def list_threads(self, user_id: str, book_id: Optional[str] = None) -> List[Thread]:
        with self._session_scope() as session:
            query = session.query(ThreadORM).filter(ThreadORM.user_id == user_id)
            if book_id:
                query = query.filter(ThreadORM.book_id == book_id)
            rows = query.order_by(desc(ThreadORM.created_at)).all()
            return [_thread_to_dto(r) for r in rows]

    def get_thread(self, user_id: str, thread_id: str) -> Optional[Thread]:
        with self._session_scope() as session:
            row = self._get_thread_row(session, user_id, thread_id)
            return _thread_to_dto(row) if row else None

    def create_thread(self, user_id: str, title: str, book_id: str) -> Thread:
        clean_title = (title or "").strip()[:200]
        if not clean_title:
            raise ValueError("Thread title cannot be empty")
        with self._session_scope() as session:
            if not self._get_book_row(session, user_id, book_id):
                raise NotFoundError(f"Book {book_id} not found")
            row = ThreadORM(
                id=str(uuid4()),
                user_id=user_id,
                title=clean_title,
                book_id=book_id,
                created_at=utcnow(),
            )
            session.add(row)
        return _thread_to_dto(row)

    # ========================================================================
    # EMBEDDINGS
    # ========================================================================

    def upsert_embedding(
        self,
        user_id: str,
        entry_id: str,
        embedding_model: str,
        content_hash: str,
        vector: List[float],
    ) -> None:
        """Store the embedding for (entry, model), replacing any previous one."""
        now = utcnow()
        with self._session_scope() as session:
            if not self._get_entry_row(session, user_id, entry_id):
                raise NotFoundError(f"Entry {entry_id} not found")
            existing = (
                session.query(EntryEmbeddingORM)
                .filter(
                    EntryEmbeddingORM.user_id == user_id,
                    EntryEmbeddingORM.entry_id == entry_id,
                    EntryEmbeddingORM.embedding_model == embedding_model,
                )
                .one_or_none()
            )
            if existing:
                existing.content_hash = content_hash
                existing.embedding = vector
                existing.updated_at = now
                return

            session.add(
                EntryEmbeddingORM(
                    id=str(uuid4()),
                    user_id=user_id,
                    entry_id=entry_id,
                    embedding_model=embedding_model,
                    content_hash=content_hash,
                    embedding=vector,
                    created_at=now,
                    updated_at=now,
                )
            )

    def get_embedding_hash(self, user_id: str, entry_id: str, embedding_model: str) -> Optional[str]:
        with self._session_scope() as session:
            row = (
                session.query(EntryEmbeddingORM.content_hash)
                .filter(
                    EntryEmbeddingORM.user_id == user_id,
                    EntryEmbeddingORM.entry_id == entry_id,
                    EntryEmbeddingORM.embedding_model == embedding_model,
                )
                .one_or_none()
            )
            return row[0] if row else None

    def get_embeddings_by_entry_ids(
        self,
        user_id: str,
        entry_ids: Optional[List[str]],
        embedding_model: str,
    ) -> Dict[str, List[float]]:
        """Vectors keyed by entry id. `entry_ids=None` loads every embedding of the user."""
        if entry_ids is not None and not entry_ids:
            return {}
        with self._session_scope() as session:
            query = session.query(EntryEmbeddingORM).filter(
                EntryEmbeddingORM.user_id == user_id,
                EntryEmbeddingORM.embedding_model == embedding_model,
            )
            if entry_ids is not None:
                query = query.filter(EntryEmbeddingORM.entry_id.in_(entry_ids))
            return {row.entry_id: row.embedding for row in query.all() if row.embedding}

    # ========================================================================
    # RELATIONS
    # ========================================================================

    def upsert_relation(self, user_id: str, source_entry_id: str, target_entry_id: str, strength: float) -> EntryRelation:
        """
        Create or update the edge between two notes. (a, b) and (b, a) are the
        same edge; an existing edge keeps its direction and gets the new strength.
        """
        if source_entry_id == target_entry_id:
            raise ValueError("A note cannot be related to itself")
        strength = max(0.0, min(1.0, float(strength)))
        now = utcnow()

        with self._session_scope() as session:
            owned = (
                session.query(EntryORM.id)
                .filter(EntryORM.user_id == user_id, EntryORM.id.in_([source_entry_id, target_entry_id]))
                .count()
            )
            if owned != 2:
                raise NotFoundError("Both notes must exist for this user")

            existing = (
                session.query(EntryRelationORM)
                .filter(
                    EntryRelationORM.user_id == user_id,
                    or_(
                        (EntryRelationORM.source_entry_id == source_entry_id)
                        & (EntryRelationORM.target_entry_id == target_entry_id),
                        (EntryRelationORM.source_entry_id == target_entry_id)
                        & (EntryRelationORM.target_entry_id == source_entry_id),
                    ),
                )
                .first()
            )
            if existing:
                existing.strength = strength
                existing.updated_at = now
                return _relation_to_dto(existing)

            row = EntryRelationORM(
                id=str(uuid4()),
                user_id=user_id,
                source_entry_id=source_entry_id,
                target_entry_id=target_entry_id,
                strength=strength,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            return _relation_to_dto(row)

    def list_relations(self, user_id: str, entry_id: str) -> List[EntryRelation]:
        """Edges touching `entry_id` from either end, strongest first."""
        with self._session_scope() as session:
            rows = (
                session.query(EntryRelationORM)
                .filter(
                    EntryRelationORM.user_id == user_id,
                    or_(
                        EntryRelationORM.source_entry_id == entry_id,
                        EntryRelationORM.target_entry_id == entry_id,
                    ),
                )
                .order_by(desc(EntryRelationORM.strength))
                .all()
            )
            return [_relation_to_dto(r) for r in rows]

    # ========================================================================
    # PERSON SUMMARIES
    # ========================================================================

    def get_person_summary(self, user_id: str, person_name: str) -> Optional[PersonSummary]:
        with self._session_scope() as session:
            row = (
                session.query(PersonSummaryORM)
                .filter(
                    PersonSummaryORM.user_id == user_id,
                    PersonSummaryORM.person_key == name_key(person_name),
                )
                .one_or_none()
            )
            return _person_summary_to_dto(row) if row else None

    def upsert_person_summary(
        self,
        user_id: str,
        person_name: str,
        summary: str,
        content_hash: str,
        latest_entry_at: Optional[datetime],
    ) -> PersonSummary:
        now = utcnow()
        with self._session_scope() as session:
            row = (
                session.query(PersonSummaryORM)
                .filter(
                    PersonSummaryORM.user_id == user_id,
                    PersonSummaryORM.person_key == name_key(person_name),
                )
                .one_or_none()
            )
            if row is None:
                row = PersonSummaryORM(
                    id=str(uuid4()),
                    user_id=user_id,
                    person_name=person_name.strip(),
                    person_key=name_key(person_name),
                )
                session.add(row)
            row.summary = summary
            row.content_hash = content_hash
            row.latest_entry_at = latest_entry_at
            row.updated_at = now
            return _person_summary_to_dto(row)

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _hydrate(self, user_id: str, rows: List[EntryORM]) -> List[Entry]:
        entry_ids = [r.id for r in rows]
        tasks = self.get_tasks_by_entry_ids(user_id, entry_ids)
        entities = self.get_entities_by_entry_ids(user_id, entry_ids)
        return [_entry_to_dto(r, tasks.get(r.id, []), entities.get(r.id, [])) for r in rows]

    def _get_book_row(self, session: Session, user_id: str, book_id: str) -> Optional[BookORM]:
        return (
            session.query(BookORM)
            .filter(BookORM.id == book_id, BookORM.user_id == user_id)
            .one_or_none()
        )

    def _get_thread_row(self, session: Session, user_id: str, thread_id: str) -> Optional[ThreadORM]:
        return (
            session.query(ThreadORM)
            .filter(ThreadORM.id == thread_id, ThreadORM.user_id == user_id)
            .one_or_none()
        )

    def _get_entry_row(self, session: Session, user_id: str, entry_id: str) -> Optional[EntryORM]:
        return (
            session.query(EntryORM)
            .filter(EntryORM.id == entry_id, EntryORM.user_id == user_id)
            .one_or_none()
        )

    def _get_task_row(self, session: Session, user_id: str, task_id: str) -> Optional[TaskORM]:
        return (
            session.query(TaskORM)
            .filter(TaskORM.id == task_id, TaskORM.user_id == user_id)
            .one_or_none()
        )

    def _configure_engine(
        self,
        db_path: Optional[Path],
        database_url: Optional[str],
    ) -> tuple[Engine, sessionmaker]:
        if database_url:
            engine = create_engine_for_url(database_url)
            return engine, make_session_factory(engine)

        if db_path:
            resolved = Path(db_path).resolve()
            engine = create_engine_for_url(f"sqlite:///{resolved}")
            return engine, make_session_factory(engine)

        return get_engine(), get_session_factory()

    @contextmanager
    def _session_scope(self) -> Generator[Session, None, None]:
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
