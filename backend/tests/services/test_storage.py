"""
Tests for BitacoraStorage against a temp SQLite database.

Covers:
- Notebook resolution by case-insensitive name
- Notes with tasks and entities, listing and filtering
- Task completion and updates
- Threads and moving notes between notebooks
- Embeddings, relation edges and cascade delete
- User scoping
"""
from __future__ import annotations

from datetime import date, timedelta

import pytest

from bitacora.database import Entry as EntryORM
from bitacora.database import utcnow
from bitacora.services.models import Entity, EntityType, NoteType, TaskItem, TaskPriority
from bitacora.services.storage import BitacoraStorage, NotFoundError

USER = "user-a"
OTHER = "user-b"


def _set_entry_created_at(storage: BitacoraStorage, user_id: str, entry_id: str, created_at) -> None:
    with storage._session_scope() as session:  # noqa: SLF001 - test helper
        row = session.query(EntryORM).filter(EntryORM.user_id == user_id, EntryORM.id == entry_id).one()
        row.created_at = created_at
        row.updated_at = created_at


@pytest.fixture()
def book(storage):
    book, _ = storage.get_or_create_book(USER, "Clientes")
    return book


# ============================================================================
# Books
# ============================================================================


def test_get_or_create_book_is_case_insensitive(storage):
    first, created = storage.get_or_create_book(USER, "Paneles BI")
    again, created_again = storage.get_or_create_book(USER, "  paneles bi ")

    assert created is True
    assert created_again is False
    assert again.id == first.id
    assert again.name == "Paneles BI"
    assert [b.name for b in storage.list_books(USER)] == ["Paneles BI"]


def test_same_book_name_for_different_users(storage):
    mine, _ = storage.get_or_create_book(USER, "Clientes")
    theirs, created = storage.get_or_create_book(OTHER, "Clientes")
    assert created is True
    assert mine.id != theirs.id


def test_empty_book_name_is_rejected(storage):
    with pytest.raises(ValueError):
        storage.get_or_create_book(USER, "   ")


def test_update_book_context(storage, book):
    assert storage.update_book_context(USER, book.id, "Clientes corporativos.") is True
    assert storage.get_book(USER, book.id).context == "Clientes corporativos."
    assert storage.update_book_context(OTHER, book.id, "x") is False


# ============================================================================
# Entries
# ============================================================================


def test_create_entry_with_tasks_and_entities(storage, book):
    entry = storage.create_entry(
        USER,
        book.id,
        "Hay que enviar la propuesta a Ana",
        note_type=NoteType.TASK,
        summary="Enviar propuesta",
        tasks=[
            TaskItem(description="Enviar propuesta", due_date=date(2026, 10, 23), priority=TaskPriority.HIGH),
            TaskItem(description="Llamar a Ana"),
        ],
        entities=[Entity(name="Ana", type=EntityType.PERSON)],
    )

    stored = storage.get_entry(USER, entry.id)
    assert stored.type == NoteType.TASK
    assert [t.description for t in stored.tasks] == ["Enviar propuesta", "Llamar a Ana"]
    assert [t.position for t in stored.tasks] == [0, 1]
    assert stored.tasks[0].due_date == date(2026, 10, 23)
    assert stored.tasks[0].priority == TaskPriority.HIGH
    assert [(e.name, e.type) for e in stored.entities] == [("Ana", EntityType.PERSON)]


def test_create_entry_in_foreign_book_fails(storage):
    theirs, _ = storage.get_or_create_book(OTHER, "Ajeno")
    with pytest.raises(NotFoundError):
        storage.create_entry(USER, theirs.id, "x")


def test_list_entries_newest_first_and_filtered(storage, book):
    other_book, _ = storage.get_or_create_book(USER, "Viajes")
    old = storage.create_entry(USER, book.id, "vieja")
    new = storage.create_entry(USER, other_book.id, "nueva")
    _set_entry_created_at(storage, USER, old.id, utcnow() - timedelta(days=10))

    assert [e.id for e in storage.list_entries(USER)] == [new.id, old.id]
    assert [e.id for e in storage.list_entries(USER, limit=1)] == [new.id]
    assert [e.id for e in storage.list_entries(USER, book_id=book.id)] == [old.id]
    assert [e.id for e in storage.list_entries(USER, since=utcnow() - timedelta(days=7))] == [new.id]


def test_entries_are_user_scoped(storage, book):
    entry = storage.create_entry(USER, book.id, "privada")
    assert storage.get_entry(OTHER, entry.id) is None
    assert storage.list_entries(OTHER) == []
    assert storage.delete_entry(OTHER, entry.id) is False


def test_find_entries_mentioning_person(storage, book):
    ana = storage.create_entry(USER, book.id, "con Ana", entities=[Entity(name="Ana", type=EntityType.PERSON)])
    storage.create_entry(USER, book.id, "Ana SA", entities=[Entity(name="Ana", type=EntityType.COMPANY)])

    assert [e.id for e in storage.find_entries_mentioning(USER, "ANA")] == [ana.id]
    assert storage.find_entries_mentioning(OTHER, "Ana") == []


def test_update_entry_fields(storage, book):
    entry = storage.create_entry(USER, book.id, "hay q llamar a andina", summary="Llamar a Andina")

    assert storage.update_entry(USER, entry.id, rewritten_text="Hay que llamar a Andina.", status="ERROR") is True
    stored = storage.get_entry(USER, entry.id)
    assert stored.rewritten_text == "Hay que llamar a Andina."
    assert stored.summary == "Llamar a Andina"
    assert stored.status.value == "ERROR"
    assert storage.update_entry(OTHER, entry.id, summary="x") is False


# ============================================================================
# Tasks
# ============================================================================


def test_complete_task_once(storage, book):
    entry = storage.create_entry(USER, book.id, "x", tasks=[TaskItem(description="Enviar propuesta")])
    task_id = entry.tasks[0].id

    assert storage.complete_task(USER, task_id, "Enviada") is True
    assert storage.complete_task(USER, task_id, "otra vez") is False

    task = storage.get_task(USER, task_id)
    assert task.is_done is True
    assert task.completion_notes == "Enviada"
    assert storage.list_pending_tasks(USER) == []
    assert [t.id for t in storage.list_tasks(USER, is_done=True)] == [task_id]


def test_reopening_task_clears_completion_notes(storage, book):
    entry = storage.create_entry(USER, book.id, "x", tasks=[TaskItem(description="Enviar propuesta")])
    task_id = entry.tasks[0].id
    storage.complete_task(USER, task_id, "Enviada")

    task = storage.update_task(USER, task_id, is_done=False)

    assert task.is_done is False
    assert task.completion_notes is None


def test_update_task_fields(storage, book):
    entry = storage.create_entry(USER, book.id, "x", tasks=[TaskItem(description="Enviar propuesta")])
    task = storage.update_task(
        USER,
        entry.tasks[0].id,
        description="Enviar propuesta final",
        due_date=date(2026, 11, 2),
        priority=TaskPriority.LOW,
    )
    assert task.description == "Enviar propuesta final"
    assert task.due_date == date(2026, 11, 2)
    assert task.priority == TaskPriority.LOW
    assert storage.update_task(OTHER, entry.tasks[0].id, description="x") is None


# ============================================================================
# Threads
# ============================================================================


def test_thread_assignment_moves_note_to_thread_book(storage, book):
    projects, _ = storage.get_or_create_book(USER, "Proyectos")
    thread = storage.create_thread(USER, "Migración ERP", projects.id)
    entry = storage.create_entry(USER, book.id, "avance ERP")

    moved = storage.set_entry_thread(USER, entry.id, thread.id)

    assert moved.thread_id == thread.id
    assert moved.book_id == projects.id
    assert [e.id for e in storage.list_entries(USER, thread_id=thread.id)] == [entry.id]


def test_entry_created_in_thread_uses_thread_book(storage, book):
    projects, _ = storage.get_or_create_book(USER, "Proyectos")
    thread = storage.create_thread(USER, "Migración ERP", projects.id)

    entry = storage.create_entry(USER, book.id, "avance ERP", thread_id=thread.id)

    assert entry.book_id == projects.id
    assert storage.get_thread(USER, thread.id).book_id == projects.id
    assert storage.get_thread(OTHER, thread.id) is None


def test_entry_with_unknown_thread_is_not_created(storage, book):
    with pytest.raises(NotFoundError):
        storage.create_entry(USER, book.id, "x", thread_id="missing")
    assert storage.list_entries(USER) == []


def test_thread_can_be_cleared(storage, book):
    thread = storage.create_thread(USER, "Andina", book.id)
    entry = storage.create_entry(USER, book.id, "x", thread_id=thread.id)
    assert storage.set_entry_thread(USER, entry.id, None).thread_id is None


def test_thread_errors(storage, book):
    entry = storage.create_entry(USER, book.id, "x")
    with pytest.raises(NotFoundError):
        storage.set_entry_thread(USER, entry.id, "missing")
    assert storage.set_entry_thread(USER, "missing", None) is None
    with pytest.raises(ValueError):
        storage.create_thread(USER, "  ", book.id)
    theirs, _ = storage.get_or_create_book(OTHER, "Ajeno")
    with pytest.raises(NotFoundError):
        storage.create_thread(USER, "Hilo", theirs.id)


# ============================================================================
# Embeddings and relations
# ============================================================================


def test_embedding_upsert_replaces_vector(storage, book):
    entry = storage.create_entry(USER, book.id, "x")
    storage.upsert_embedding(USER, entry.id, "m1", "h1", [1.0, 0.0])
    storage.upsert_embedding(USER, entry.id, "m1", "h2", [0.0, 1.0])
    storage.upsert_embedding(USER, entry.id, "m2", "h3", [0.5, 0.5])

    assert storage.get_embedding_hash(USER, entry.id, "m1") == "h2"
    assert storage.get_embeddings_by_entry_ids(USER, [entry.id], "m1") == {entry.id: [0.0, 1.0]}
    assert storage.get_embeddings_by_entry_ids(USER, None, "m2") == {entry.id: [0.5, 0.5]}
    assert storage.get_embeddings_by_entry_ids(OTHER, None, "m1") == {}


def test_relation_is_symmetric_and_clamped(storage, book):
    a = storage.create_entry(USER, book.id, "a")
    b = storage.create_entry(USER, book.id, "b")

    storage.upsert_relation(USER, a.id, b.id, 0.8)
    storage.upsert_relation(USER, b.id, a.id, 1.7)

    relations = storage.list_relations(USER, a.id)
    assert len(relations) == 1
    assert relations[0].strength == 1.0
    assert relations[0].other_end(a.id) == b.id
    assert storage.list_relations(USER, b.id)[0].id == relations[0].id


def test_relation_rules(storage, book):
    a = storage.create_entry(USER, book.id, "a")
    theirs_book, _ = storage.get_or_create_book(OTHER, "Ajeno")
    theirs = storage.create_entry(OTHER, theirs_book.id, "b")

    with pytest.raises(ValueError):
        storage.upsert_relation(USER, a.id, a.id, 0.9)
    with pytest.raises(NotFoundError):
        storage.upsert_relation(USER, a.id, theirs.id, 0.9)


def test_delete_entry_cascades(storage, book):
    a = storage.create_entry(
        USER,
        book.id,
        "a",
        tasks=[TaskItem(description="t")],
        entities=[Entity(name="Ana", type=EntityType.PERSON)],
    )
    b = storage.create_entry(USER, book.id, "b")
    storage.upsert_embedding(USER, a.id, "m1", "h", [1.0])
    storage.upsert_relation(USER, a.id, b.id, 0.9)

    assert storage.delete_entry(USER, a.id) is True

    assert storage.get_entry(USER, a.id) is None
    assert storage.list_tasks(USER) == []
    assert storage.list_relations(USER, b.id) == []
    assert storage.get_embeddings_by_entry_ids(USER, None, "m1") == {}
    assert storage.find_entries_mentioning(USER, "Ana") == []
    assert storage.delete_entry(USER, a.id) is False


# ============================================================================
# Person summaries
# ============================================================================


def test_person_summary_upsert_by_case_insensitive_name(storage):
    storage.upsert_person_summary(USER, "Ana Pérez", "v1", "h1", None)
    storage.upsert_person_summary(USER, "ana pérez", "v2", "h2", None)

    summary = storage.get_person_summary(USER, "ANA PÉREZ")
    assert summary.summary == "v2"
    assert summary.content_hash == "h2"
    assert storage.get_person_summary(OTHER, "Ana Pérez") is None
