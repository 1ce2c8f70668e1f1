"""Transcript text normalization."""

from __future__ import annotations

import re
import unicodedata
from enum import Enum

_NON_LATIN = re.compile(r"[^a-z\s]")


class Alphabet(str, Enum):
    LATIN = "latin"
    CJK = "cjk"


def _strip_marks(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize(raw: str, alphabet: Alphabet = Alphabet.LATIN) -> str:
    """Return the comparable form of recognizer text.

    Lowercase, accents removed, runs of whitespace collapsed to one space.
    ``LATIN`` keeps only ``a-z``; ``CJK`` keeps every printable character
    and only blanks out control/format characters.
    """
    if not raw:
        return ""
    text = _strip_marks(raw.lower())
    if alphabet == Alphabet.LATIN:
        text = _NON_LATIN.sub(" ", text)
    else:
        text = "".join(
            " " if unicodedata.category(ch).startswith("C") else ch for ch in text
        )
    return " ".join(text.split())


def collapse(text: str) -> str:
    """Drop all whitespace from already-normalized text."""
    return "".join(text.split())
