"""
Tests for text preprocessing in bitacora/services/preprocessing.py.
"""
from __future__ import annotations

from bitacora.services.preprocessing import (
    clean_text,
    count_sentences,
    count_words,
    detect_length,
    normalize_text,
    preprocess,
)


# ============================================================================
# clean_text
# ============================================================================


def test_clean_text_collapses_spaces_and_trims():
    assert clean_text("   hola    mundo\t\tyo  ") == "hola mundo yo"


def test_clean_text_keeps_newlines():
    assert clean_text("linea uno  \n   linea dos") == "linea uno\nlinea dos"


def test_clean_text_caps_blank_line_runs():
    assert clean_text("a\n\n\n\n\nb") == "a\n\nb"


def test_clean_text_strips_control_characters():
    assert clean_text("ho\x00la\x07 mundo") == "hola mundo"


def test_clean_text_normalizes_line_endings():
    assert clean_text("a\r\nb\rc") == "a\nb\nc"


def test_clean_text_empty_and_none():
    assert clean_text("") == ""
    assert clean_text(None) == ""
    assert clean_text("   \n\t ") == ""


# ============================================================================
# normalize_text / counters
# ============================================================================


def test_normalize_text_lowercases():
    assert normalize_text("Revisar el Panel BI") == "revisar el panel bi"


def test_count_sentences_ignores_empty_fragments():
    assert count_sentences("Uno. Dos! Tres?") == 3
    assert count_sentences("Sin puntuación") == 1
    assert count_sentences("...") == 0


def test_count_words():
    assert count_words("uno dos  tres\ncuatro") == 4


# ============================================================================
# detect_length
# ============================================================================


def test_short_note_under_all_limits():
    assert detect_length("Llamar a Ana mañana.") == "short"


def test_long_by_characters():
    assert detect_length("a" * 600) == "long"


def test_long_by_sentences():
    text = "Uno. Dos. Tres. Cuatro. Cinco. Seis."
    assert detect_length(text) == "long"


def test_long_by_words():
    text = " ".join(["palabra"] * 101)
    assert detect_length(text, max_chars=10_000) == "long"


def test_exact_character_limit_is_long():
    assert detect_length("a" * 10, max_chars=10, max_sentences=5, max_words=100) == "long"


def test_empty_is_short():
    assert detect_length("") == "short"


# ============================================================================
# preprocess
# ============================================================================


def test_preprocess_returns_all_fields():
    result = preprocess("  Hay que revisar   el Panel BI  ")
    assert result.cleaned == "Hay que revisar el Panel BI"
    assert result.normalized == "hay que revisar el panel bi"
    assert result.length == "short"


def test_preprocess_never_fails_on_none():
    result = preprocess(None)
    assert result.cleaned == ""
    assert result.length == "short"
