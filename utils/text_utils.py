"""
Text utilities for Norwegian spreadsheet text.

Used for header normalization, vocabulary matching and name comparison.
"""

import math
import re
import unicodedata
from typing import Any, Optional

# Letters NFD does not decompose
_NORDIC_LETTERS = str.maketrans({
    "æ": "ae",
    "Æ": "AE",
    "ø": "o",
    "Ø": "O",
    "å": "a",
    "Å": "A",
})

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_WHITESPACE = re.compile(r"\s+")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def is_blank(value: Any) -> bool:
    """True for None, NaN and whitespace-only strings."""
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def collapse_whitespace(text: str) -> str:
    """
    Remove control characters and collapse runs of whitespace.

    - "  Storgata   1 " → "Storgata 1"
    - "Ola\\tNordmann" → "Ola Nordmann"
    """
    text = _CONTROL_CHARS.sub("", text)
    return _WHITESPACE.sub(" ", text).strip()


def strip_diacritics(text: str) -> str:
    """
    Fold accented and Nordic letters to ASCII.

    - "Næring" → "Naering"
    - "Bærum Ø" → "Baerum O"
    - "Tromsø" → "Tromso"

    Args:
        text: Original text

    Returns:
        ASCII-folded text (case preserved)
    """
    text = text.translate(_NORDIC_LETTERS)

    # NFD separates base chars from accents
    normalized = unicodedata.normalize("NFD", text)

    return "".join(
        c for c in normalized
        if unicodedata.category(c) != "Mn"
    )


def normalize_header(header: Optional[str]) -> str:
    """
    Normalize a column header for synonym lookup.

    Case-folds, trims, and collapses whitespace. Accents are kept so
    "Besøksadresse" still reads as Norwegian in the synonym table.
    """
    if header is None:
        return ""
    return collapse_whitespace(str(header)).casefold()


def compact_key(text: Optional[str]) -> str:
    """
    Reduce text to lowercase ASCII letters and digits only.

    Used for matching that ignores diacritics, punctuation and spacing:
    - "El-Kontroll" → "elkontroll"
    - "el kontroll" → "elkontroll"
    - "Næring" → "naering"
    """
    if not text:
        return ""
    folded = strip_diacritics(str(text)).lower()
    return _NON_ALNUM.sub("", folded)


def normalize_words(text: Optional[str]) -> str:
    """
    Lowercase ASCII words separated by single spaces.

    Like compact_key but keeps word boundaries, for token-based comparison.
    """
    if not text:
        return ""
    folded = strip_diacritics(str(text)).lower()
    return _NON_ALNUM.sub(" ", folded).strip()


def slugify_field_name(header: str) -> str:
    """
    Turn a source header into a custom field name.

    - "Antall dyr" → "antall_dyr"
    - "Måler-ID" → "maler_id"
    """
    words = normalize_words(header)
    return words.replace(" ", "_") or "felt"
