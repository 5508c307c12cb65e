"""
Text normalization for classification and duplicate detection.

Lowercases, strips combining marks (á → a, ñ → n) and trims, so keyword
matching and question signatures are insensitive to case and accents.
"""

import re
import unicodedata
from typing import Optional

_WHITESPACE = re.compile(r"\s+")


def normalize(text: Optional[str]) -> str:
    """
    Return a case- and accent-insensitive form of text.

    Total: None and "" give "". Idempotent: normalize(normalize(x)) == normalize(x).
    """
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFD", text.lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.strip()


def normalize_signature_text(text: Optional[str]) -> str:
    """normalize() plus collapsed inner whitespace, for duplicate signatures."""
    return _WHITESPACE.sub(" ", normalize(text))
