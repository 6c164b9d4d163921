"""
Deterministic text signals used around the model calls.

- has_pending_action_language: does the text name something still to be done?
- has_completion_language: does the text report something as done?
- match_task: fuzzy match of a free-text description against existing tasks

The model decides first; these checks are the floor under its answer. A note
with no action language never produces tasks, and a message with no completion
markers never completes one.
"""

from __future__ import annotations

import re
import unicodedata
from difflib import SequenceMatcher
from typing import Iterable, Optional

from bitacora.config import Config

from .models import TaskItem

PENDING_ACTION_MARKERS = (
    # Spanish
    "hay que",
    "tengo que",
    "tenemos que",
    "tienes que",
    "tiene que",
    "debo",
    "debemos",
    "debe ",
    "deberia",
    "pendiente",
    "necesito",
    "necesitamos",
    "por hacer",
    "recordar",
    "recuerda",
    "acordarme",
    "no olvidar",
    "falta ",
    "revisar",
    "enviar",
    "llamar a",
    "agendar",
    "programar",
    "preparar",
    "entregar",
    "antes del",
    "para el lunes",
    "para manana",
    "a mas tardar",
    # English
    "need to",
    "needs to",
    "have to",
    "has to",
    "must",
    "should",
    "to do",
    "follow up",
    "remind",
    "don't forget",
    "by tomorrow",
    "due ",
    "action item",
)

# English imperatives that commonly open a to-do line.
IMPERATIVE_LEADERS = frozenset(
    {
        "buy", "call", "send", "email", "pay", "book", "check", "review", "confirm",
        "schedule", "prepare", "fix", "update", "finish", "write", "ask", "submit",
        "order", "renew", "cancel", "plan", "follow", "pick", "contact", "reply",
    }
)

# Words ending in -ar/-er/-ir that are not infinitives.
NON_VERB_LEADERS = frozenset(
    {
        "ayer", "lugar", "hogar", "mujer", "alrededor", "mayor", "menor", "mejor",
        "peor", "primer", "tercer", "taller", "super", "placer", "amanecer",
        "atardecer", "dolar", "militar", "similar", "particular", "popular",
        "regular", "solar", "titular", "familiar", "escolar", "celular", "cualquier",
        "omar", "oscar", "cesar", "edgar", "javier", "xavier", "ester", "baltasar",
    }
)

COMPLETION_MARKERS = (
    # Spanish
    "ya termine",
    "ya terminamos",
    "termine",
    "terminado",
    "terminada",
    "complete",
    "completado",
    "completada",
    "ya envie",
    "ya enviamos",
    "enviado",
    "ya hice",
    "ya lo hice",
    "ya la hice",
    "ya los hice",
    "hecho",
    "hecha",
    "ya mande",
    "ya lo mande",
    "ya la mande",
    "ya mandamos",
    "mandado",
    "ya llame",
    "ya pague",
    "pagado",
    "pagada",
    "ya esta",
    "ya quedo",
    "quedo listo",
    "listo",
    "resuelto",
    "resuelta",
    "finalice",
    "finalizado",
    "cerrado",
    "entregado",
    "ya revise",
    # English
    "done",
    "finished",
    "completed",
    "already sent",
    "sent it",
    "resolved",
    "closed",
    "shipped",
    "delivered",
)

_WS_RE = re.compile(r"\s+")
_PUNCT_RE = re.compile(r"[^\w\s]")
# Sentence ends, line breaks and list bullets.
_CLAUSE_SPLIT_RE = re.compile(r"[.;:!?\n•]+|\s[-*]\s")
_INFINITIVE_RE = re.compile(r"^[a-z]{2,}(?:ar|er|ir)(?:se|lo|la|le|los|las|les|me|nos)?$")


def normalize_for_match(text: str) -> str:
    """Lower-case, strip accents and punctuation, collapse whitespace."""
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFKD", text)
    no_accents = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    no_punct = _PUNCT_RE.sub(" ", no_accents.lower())
    return _WS_RE.sub(" ", no_punct).strip()


def _contains_marker(text: str, markers: Iterable[str]) -> bool:
    haystack = normalize_for_match(text)
    for marker in markers:
        needle = normalize_for_match(marker)
        if not needle:
            continue
        if re.search(rf"(?<!\w){re.escape(needle)}(?!\w)", haystack):
            return True
    return False


def _starts_with_action_verb(clause: str) -> bool:
    words = normalize_for_match(clause).split()
    # A bare word is a label, not an instruction.
    if len(words) < 2:
        return False
    first = words[0]
    if first in IMPERATIVE_LEADERS:
        return True
    return bool(_INFINITIVE_RE.match(first)) and first not in NON_VERB_LEADERS


def has_pending_action_language(text: str) -> bool:
    """
    True when the text carries a pending-action marker, or when any clause or
    list item opens with an infinitive ("Comprar leche", "Pagar la factura")
    or a common English imperative ("Buy milk").
    """
    if _contains_marker(text or "", PENDING_ACTION_MARKERS):
        return True
    return any(_starts_with_action_verb(c) for c in _CLAUSE_SPLIT_RE.split(text or ""))


def has_completion_language(text: str) -> bool:
    return _contains_marker(text or "", COMPLETION_MARKERS)


def task_similarity(a: str, b: str) -> float:
    """
    Similarity in [0, 1] between two task descriptions.

    Containment in either direction (after normalisation) scores 1.0; otherwise
    the difflib ratio of the normalised strings.
    """
    na, nb = normalize_for_match(a), normalize_for_match(b)
    if not na or not nb:
        return 0.0
    if na in nb or nb in na:
        return 1.0
    return SequenceMatcher(None, na, nb).ratio()


def match_task(
    description: str,
    tasks: Iterable[TaskItem],
    min_similarity: Optional[float] = None,
) -> Optional[TaskItem]:
    """Best pending task whose description matches at or above `min_similarity`."""
    threshold = Config.TASK_MATCH_MIN_SIMILARITY if min_similarity is None else min_similarity
    best: Optional[TaskItem] = None
    best_score = 0.0
    for task in tasks:
        if task.is_done:
            continue
        score = task_similarity(description, task.description)
        if score >= threshold and score > best_score:
            best, best_score = task, score
    return best
