"""
Scalar SQL functions registered on every pooled SQLite connection.

SQLite ships no `unaccent`, no `regexp_replace` and no trigram operator, so the
search predicates call these Python implementations instead. All of them are
deterministic and NULL-propagating.
"""
from __future__ import annotations

import re
import unicodedata
from typing import Callable, Optional

LIKE_ESCAPE = "\\"
MAX_FTS_TOKENS = 16

_EXTENSION_RE = re.compile(r"\.[^.]+$")
_WORD_RE = re.compile(r"\w+", re.UNICODE)
_TRIGRAM_WORD_RE = re.compile(r"[^\W_]+", re.UNICODE)


def fold(value: Optional[str]) -> Optional[str]:
    """Lower-case and strip diacritics (`Été` -> `ete`)."""
    if value is None:
        return None
    decomposed = unicodedata.normalize("NFKD", str(value))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.casefold()


def escape_like(value: str) -> str:
    return (
        value.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


def like_prefix(value: Optional[str]) -> Optional[str]:
    """Folded, LIKE-escaped "starts with" pattern; pair with `ESCAPE '\\'`."""
    folded = fold(value)
    if folded is None:
        return None
    return escape_like(folded) + "%"


def strip_extension(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return _EXTENSION_RE.sub("", str(value))


def build_fts_query(value: Optional[str]) -> str:
    """
    Turn free text into a safe FTS5 MATCH expression.

    Every word becomes a quoted prefix term (`"dark"*`), so FTS5 operators and
    punctuation in user input are never interpreted. Returns "" when no word
    survives; callers must not MATCH against an empty expression.
    """
    if not value:
        return ""
    tokens = _WORD_RE.findall(str(value))[:MAX_FTS_TOKENS]
    return " ".join(f'"{token}"*' for token in tokens)


def _trigrams(value: str) -> set[str]:
    grams: set[str] = set()
    for word in _TRIGRAM_WORD_RE.findall(value.lower()):
        padded = f"  {word} "
        for i in range(len(padded) - 2):
            grams.add(padded[i:i + 3])
    return grams


def similarity(left: Optional[str], right: Optional[str]) -> Optional[float]:
    """Trigram similarity in [0, 1], computed the way pg_trgm does."""
    if left is None or right is None:
        return None
    a = _trigrams(str(left))
    b = _trigrams(str(right))
    if not a or not b:
        return 0.0
    return len(a & b) / float(len(a | b))


SQL_FUNCTIONS: dict[str, tuple[int, Callable]] = {
    "afm_fold": (1, fold),
    "afm_like_prefix": (1, like_prefix),
    "afm_strip_ext": (1, strip_extension),
    "afm_fts_query": (1, build_fts_query),
    "afm_similarity": (2, similarity),
}
