"""
Text preprocessing: cleaning, normalization and short/long detection.

Never fails; empty input comes back as empty strings and length "short".
"""

from __future__ import annotations

import re
import unicodedata
from typing import Literal, Optional

from pydantic import BaseModel

from bitacora.config import Config

NoteLength = Literal["short", "long"]

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_HORIZONTAL_WS_RE = re.compile(r"[^\S\n]+")
_BLANK_LINES_RE = re.compile(r"\n{3,}")
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")


class PreprocessedText(BaseModel):
    cleaned: str
    normalized: str
    length: NoteLength


def clean_text(text: Optional[str]) -> str:
    """Collapse whitespace, trim, strip control characters; newlines are kept."""
    if not text:
        return ""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _CONTROL_CHARS_RE.sub("", text)
    text = _HORIZONTAL_WS_RE.sub(" ", text)
    lines = [line.strip() for line in text.split("\n")]
    text = "\n".join(lines)
    text = _BLANK_LINES_RE.sub("\n\n", text)
    return text.strip()


def normalize_text(text: Optional[str]) -> str:
    if not text:
        return ""
    return unicodedata.normalize("NFC", text).lower().strip()


def count_sentences(text: str) -> int:
    return len([s for s in _SENTENCE_SPLIT_RE.split(text) if s.strip()])


def count_words(text: str) -> int:
    return len(text.split())


def detect_length(
    cleaned: str,
    max_chars: Optional[int] = None,
    max_sentences: Optional[int] = None,
    max_words: Optional[int] = None,
) -> NoteLength:
    """A note is short only when it is under every limit."""
    max_chars = Config.SHORT_NOTE_MAX_CHARS if max_chars is None else max_chars
    max_sentences = Config.SHORT_NOTE_MAX_SENTENCES if max_sentences is None else max_sentences
    max_words = Config.SHORT_NOTE_MAX_WORDS if max_words is None else max_words

    if not cleaned:
        return "short"
    if (
        len(cleaned) < max_chars
        and count_sentences(cleaned) <= max_sentences
        and count_words(cleaned) <= max_words
    ):
        return "short"
    return "long"


def preprocess(text: Optional[str]) -> PreprocessedText:
    cleaned = clean_text(text)
    return PreprocessedText(
        cleaned=cleaned,
        normalized=normalize_text(cleaned),
        length=detect_length(cleaned),
    )
