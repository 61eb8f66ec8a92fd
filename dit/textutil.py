"""Text helpers shared by the vectorizers and the feature decorators.

The tokenizer mirrors scikit-learn's Unicode word pattern so that vocabularies
built here match scikit-learn's on the same corpus. All
n-gram helpers work on Python strings (code points), never on bytes.
"""
from __future__ import annotations
import re
from typing import List, Sequence

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)
_NEWLINE_RE = re.compile(r"[\n\r]")
_MULTI_SPACE_RE = re.compile(r"\s{2,}")


def tokenize(text: str) -> List[str]:
    """Extracts word tokens (runs of letters, digits and underscores)."""
    return _TOKEN_RE.findall(text)


def ngrams(text: str, min_n: int, max_n: int) -> List[str]:
    """
    Returns all character n-grams of `text` for n in `[min_n, max_n]`.

    N-grams are emitted grouped by length, shortest first, and each group is
    ordered by start offset. Lengths longer than the text are skipped.
    """
    res: List[str] = []
    text_len = len(text)
    for n in range(min_n, min(max_n, text_len) + 1):
        for i in range(text_len - n + 1):
            res.append(text[i:i + n])
    return res


def token_ngrams(tokens: Sequence[str], min_n: int, max_n: int) -> List[str]:
    """Returns word n-grams of `tokens`, each joined by a single space."""
    res: List[str] = []
    t_len = len(tokens)
    for n in range(min_n, min(max_n, t_len) + 1):
        for i in range(t_len - n + 1):
            res.append(" ".join(tokens[i:i + n]))
    return res


def normalize_whitespaces(text: str) -> str:
    """Replaces newlines and runs of whitespace with a single space."""
    text = _NEWLINE_RE.sub(" ", text)
    return _MULTI_SPACE_RE.sub(" ", text)


def normalize(text: str) -> str:
    """Lowercases text and normalizes its whitespace."""
    return normalize_whitespaces(text.lower())

