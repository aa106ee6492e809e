"""Word-level text similarity used to break alignment ties."""

from __future__ import annotations

import re

from rapidfuzz.distance import Levenshtein

from subalign.core.models import strip_formatting

_WORD_RE = re.compile(r"\w+", re.UNICODE)


def tokenize(text: str) -> list[str]:
    """Lowercased word tokens of the plain (unformatted) text."""
    return _WORD_RE.findall(strip_formatting(text).lower())


def similarity(a: str, b: str) -> float:
    """Normalized token-level edit similarity in [0, 1].

    1.0 means identical token sequences; 0.0 means nothing in common.
    Two empty texts are identical; one empty text matches nothing.
    """
    tokens_a, tokens_b = tokenize(a), tokenize(b)
    if not tokens_a and not tokens_b:
        return 1.0
    if not tokens_a or not tokens_b:
        return 0.0
    return float(Levenshtein.normalized_similarity(tokens_a, tokens_b))
