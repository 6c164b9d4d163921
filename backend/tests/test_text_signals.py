"""
Tests for the deterministic language guards and fuzzy task matcher in
bitacora/services/text_signals.py.
"""
from __future__ import annotations

import pytest

from bitacora.services.models import TaskItem
from bitacora.services.text_signals import (
    has_completion_language,
    has_pending_action_language,
    match_task,
    normalize_for_match,
    task_similarity,
)


# ============================================================================
# normalize_for_match
# ============================================================================


def test_normalize_strips_accents_case_and_punctuation():
    assert normalize_for_match("  Ya TERMINÉ, el   modelo!! ") == "ya termine el modelo"


def test_normalize_empty():
    assert normalize_for_match("") == ""


# ============================================================================
# has_pending_action_language
# ============================================================================


@pytest.mark.parametrize(
    "text",
    [
        "Hay que revisar el Panel BI de Ventas antes del viernes",
        "Tengo que llamar a Marta",
        "Pendiente: enviar el informe",
        "Necesito preparar la demo",
        "No olvidar el cierre de mes",
        "We need to ship the fix",
        "Don't forget the invoice",
        "Comprar leche y confirmar la reunión con Pedro el jueves",
        "Pagar la factura",
        "Notas del día.\n- Confirmar la reunión con Pedro",
        "Buy milk on the way home",
    ],
)
def test_pending_action_detected(text):
    assert has_pending_action_language(text) is True


@pytest.mark.parametrize(
    "text",
    [
        "Panel de Supervisores muestra un problema con la actualización de datos",
        "Reunión con el equipo de datos, buena energía",
        "El cliente está contento con el resultado",
        "Ayer cerramos el trato con Andina",
        "Javier presentó el informe",
        "",
    ],
)
def test_no_pending_action(text):
    assert has_pending_action_language(text) is False


def test_markers_match_whole_words_only():
    # "debo" must not fire inside "adebolar"
    assert has_pending_action_language("adebolar") is False


# ============================================================================
# has_completion_language
# ============================================================================


@pytest.mark.parametrize(
    "text",
    [
        "ya terminé el modelo BI de Andina, nota: falta ajustar el formato",
        "Listo el reporte",
        "ya envié la propuesta",
        "Finished the migration",
        "done with the slides",
        "ya mandé el presupuesto",
        "Hecho lo del banco",
        "ya lo hice",
    ],
)
def test_completion_detected(text):
    assert has_completion_language(text) is True


@pytest.mark.parametrize(
    "text",
    [
        "Hay que terminar el modelo BI",
        "Mañana empezamos con la propuesta",
        "Lista de compras",
    ],
)
def test_no_completion(text):
    assert has_completion_language(text) is False


# ============================================================================
# task_similarity / match_task
# ============================================================================


def _task(task_id: str, description: str, is_done: bool = False) -> TaskItem:
    return TaskItem(id=task_id, description=description, is_done=is_done)


def test_similarity_containment_scores_one():
    assert task_similarity("modelo BI de Andina", "Terminar el modelo BI de Andina") == 1.0
    assert task_similarity("Terminar el MODELO bi de andina", "modelo BI de Andina") == 1.0


def test_similarity_is_accent_insensitive():
    assert task_similarity("Revisión del presupuesto", "revision del presupuesto") == 1.0


def test_similarity_of_empty_is_zero():
    assert task_similarity("", "algo") == 0.0


def test_similarity_of_unrelated_text_is_low():
    assert task_similarity("Enviar factura a Andina", "Reservar sala para el taller") < 0.75


def test_match_task_picks_best_pending_task():
    tasks = [
        _task("t1", "Enviar factura a Andina"),
        _task("t2", "Terminar el modelo BI de Andina"),
    ]
    assert match_task("modelo BI de Andina", tasks).id == "t2"


def test_match_task_ignores_done_tasks():
    tasks = [_task("t1", "Terminar el modelo BI de Andina", is_done=True)]
    assert match_task("modelo BI de Andina", tasks) is None


def test_match_task_respects_minimum_similarity():
    tasks = [_task("t1", "Reservar sala para el taller")]
    assert match_task("Enviar factura a Andina", tasks) is None
    assert match_task("Enviar factura a Andina", tasks, min_similarity=0.0) is not None


def test_match_task_with_small_typos():
    tasks = [_task("t1", "Actualizar el tablero de ventas")]
    assert match_task("Actualisar el tablero de bentas", tasks).id == "t1"


def test_match_task_no_tasks():
    assert match_task("algo", []) is None
