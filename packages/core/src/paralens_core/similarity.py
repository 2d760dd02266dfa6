"""Token-set Jaccard similarity between two paragraphs.

The metric ignores word order and repetition: "A B" and "B A B B" are
identical to it. Short paragraphs are therefore more sensitive to a one-word
edit than long ones, which is why the match threshold is configurable rather
than fixed here.
"""

from __future__ import annotations

import re

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


def tokenize(text: str) -> frozenset[str]:
    """Return the set of case-normalised word tokens in text."""
    return frozenset(token.casefold() for token in _TOKEN_RE.findall(text))


def jaccard(left: frozenset[str], right: frozenset[str]) -> float:
    if not left and not right:
        return 1.0
    if not left or not right:
        return 0.0
    return len(left & right) / len(left | right)


def similarity(text_a: str, text_b: str) -> float:
    """Similarity in [0, 1]: 1 for identical token sets, 0 for disjoint ones.

    Two empty texts are identical (1.0); exactly one empty text never matches
    anything (0.0).
    """
    return jaccard(tokenize(text_a), tokenize(text_b))
