"""
Tests for the question-answering, digest and notebook-context services.

The provider is scripted; prompts are inspected to check what context the
model sees.
"""
from __future__ import annotations

from datetime import date

import pytest

from bitacora.services.ask_service import MAX_ENTRIES, AskService
from bitacora.services.book_context import MAX_CONTEXT_CHARS, BookContextService
from bitacora.services.models import Book, Entry, NoteType, TaskItem
from bitacora.services.provider import ProviderError, RateLimitError
from bitacora.services.summarizer import AISummarizerService


def _entry(entry_id: str, summary: str, book_id: str = "b1", note_type: NoteType = NoteType.NOTE) -> Entry:
    return Entry(id=entry_id, user_id="u1", book_id=book_id, original_text=summary, summary=summary, type=note_type)


@pytest.fixture()
def books():
    return [Book(id="b1", user_id="u1", name="Clientes", context="Cuentas corporativas")]


# ============================================================================
# AskService
# ============================================================================


def test_answer_filters_unknown_citations(make_provider, gateway, books):
    provider = make_provider([{"answer_markdown": "Se envió el viernes.", "cited_entry_ids": ["e1", "e-made-up"]}])
    entries = [_entry("e1", "Propuesta enviada a Andina")]

    result = AskService(provider, gateway).answer("¿Cuándo enviamos la propuesta?", books, entries, [])

    assert result.answer_markdown == "Se envió el viernes."
    assert result.cited_entry_ids == ["e1"]


def test_prompt_includes_pending_and_completed_tasks(make_provider, gateway, books):
    provider = make_provider([{"answer_markdown": "ok"}])
    tasks = [
        TaskItem(description="Llamar a Ana", assignee="Luis", due_date=date(2026, 10, 23)),
        TaskItem(description="Enviar contrato", is_done=True, completion_notes="Firmado sin cambios"),
        TaskItem(description="Tarea hecha sin notas", is_done=True),
    ]

    AskService(provider, gateway).answer("¿Qué pasó con el contrato?", books, [_entry("e1", "Contrato")], tasks)

    prompt = provider.calls[0]["user"]
    assert "- Clientes: Cuentas corporativas" in prompt
    assert "- Llamar a Ana (Luis) [2026-10-23]" in prompt
    assert "- Enviar contrato | Notes: Firmado sin cambios" in prompt
    assert "Tarea hecha sin notas" not in prompt
    assert "ID: e1 | [NOTE] Contrato (Clientes," in prompt


def test_prompt_caps_recent_notes(make_provider, gateway, books):
    provider = make_provider([{"answer_markdown": "ok"}])
    entries = [_entry(f"e{i}", f"nota {i}") for i in range(MAX_ENTRIES + 10)]

    AskService(provider, gateway).answer("¿Qué hice?", books, entries, [])

    prompt = provider.calls[0]["user"]
    assert f"ID: e{MAX_ENTRIES - 1} " in prompt
    assert f"ID: e{MAX_ENTRIES} " not in prompt


def test_empty_question_is_rejected(make_provider, gateway, books):
    with pytest.raises(ValueError):
        AskService(make_provider(), gateway).answer("  ", books, [], [])


def test_answer_errors_propagate(make_provider, gateway, books):
    with pytest.raises(ProviderError):
        AskService(make_provider([ProviderError("down")]), gateway).answer("¿Algo?", books, [], [])
    with pytest.raises(RateLimitError):
        AskService(make_provider([RateLimitError("429")] * 4), gateway).answer("¿Algo?", books, [], [])


# ============================================================================
# AISummarizerService
# ============================================================================


def test_summarize_week(make_provider, gateway):
    provider = make_provider(
        [
            {
                "summary": "Semana centrada en Andina.",
                "key_decisions": ["Precio final acordado"],
                "pending_items": ["Enviar contrato"],
            }
        ]
    )
    entries = [_entry("e1", "Acordamos precio", note_type=NoteType.DECISION)]

    digest = AISummarizerService(provider, gateway).summarize(entries, "week")

    assert digest.summary == "Semana centrada en Andina."
    assert digest.key_decisions == ["Precio final acordado"]
    assert digest.key_themes == []
    assert "- [DECISION] Acordamos precio" in provider.calls[0]["user"]
    assert "their week of work" in provider.calls[0]["user"]


def test_summarize_without_notes_skips_provider(make_provider, gateway):
    provider = make_provider()
    digest = AISummarizerService(provider, gateway).summarize([], "day")
    assert digest.summary == "No notes available to summarize."
    assert provider.calls == []


def test_summarize_unknown_period(make_provider, gateway):
    with pytest.raises(ValueError):
        AISummarizerService(make_provider(), gateway).summarize([_entry("e1", "x")], "year")


# ============================================================================
# BookContextService
# ============================================================================


def test_refine_returns_new_description(make_provider, gateway):
    provider = make_provider([{"description": '"Cuentas corporativas y la propuesta de Andina."'}])

    context = BookContextService(provider, gateway).refine("Clientes", "Cuentas corporativas", "Propuesta Andina")

    assert context == "Cuentas corporativas y la propuesta de Andina."
    prompt = provider.calls[0]["user"]
    assert 'Current description: "Cuentas corporativas"' in prompt
    assert "Propuesta Andina" in prompt


def test_refine_caps_length(make_provider, gateway):
    provider = make_provider([{"description": "x" * 2000}])
    context = BookContextService(provider, gateway).refine("Clientes", None, "algo")
    assert len(context) == MAX_CONTEXT_CHARS


@pytest.mark.parametrize("response", [ProviderError("down"), RateLimitError("429"), {"description": "   "}])
def test_refine_keeps_current_on_failure(make_provider, gateway, response):
    provider = make_provider([response] * 4)
    assert BookContextService(provider, gateway).refine("Clientes", "Actual", "algo") == "Actual"


def test_refine_without_current_context_on_failure(make_provider, gateway):
    provider = make_provider([ProviderError("down")])
    assert BookContextService(provider, gateway).refine("Clientes", None, "algo") == ""
