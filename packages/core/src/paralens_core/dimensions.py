"""Scoring dimensions, per-dimension scores and severity buckets.

The dimension set is closed: every score row, interaction and scoring request
refers to one of the four members of ``Dimension``. Severity is never stored;
it is derived from the 1-5 score whenever a comment is rendered.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

MIN_SCORE = 1
MAX_SCORE = 5


class Dimension(str, Enum):
    ACTIONABILITY = "Actionability"
    HELPFULNESS = "Helpfulness"
    GROUNDING = "Grounding"
    VERIFIABILITY = "Verifiability"

    @property
    def marker(self) -> str:
        """Single-letter code used by the deterministic test markers."""
        return self.value[0]

    @classmethod
    def parse(cls, value: str | Dimension) -> Dimension:
        """Accept a Dimension, its value ("Grounding") or its name ("grounding")."""
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        for member in cls:
            if text == member.value or text.upper() == member.name:
                return member
        raise ValueError(f"Unknown dimension: {value!r}. Choose one of {', '.join(d.value for d in cls)}.")


ALL_DIMENSIONS: tuple[Dimension, ...] = tuple(Dimension)


class Severity(str, Enum):
    CRITICAL = "critical"
    MODERATE = "moderate"
    HIDDEN = "hidden"


_SEVERITY_RANK = {Severity.CRITICAL: 2, Severity.MODERATE: 1, Severity.HIDDEN: 0}


def severity_for(score: int) -> Severity:
    """Map a 1-5 score to its severity bucket: 1-2 critical, 3-4 moderate, 5 hidden."""
    validate_score(score)
    if score <= 2:
        return Severity.CRITICAL
    if score <= 4:
        return Severity.MODERATE
    return Severity.HIDDEN


def validate_score(score: int) -> int:
    if isinstance(score, bool) or not isinstance(score, int):
        raise ValueError(f"Score must be an integer, got {score!r}")
    if not MIN_SCORE <= score <= MAX_SCORE:
        raise ValueError(f"Score must be between {MIN_SCORE} and {MAX_SCORE}, got {score}")
    return score


def worst_severity(severities: Iterable[Severity]) -> Severity | None:
    """Return the most severe bucket, or None when nothing is visible."""
    worst: Severity | None = None
    for severity in severities:
        if severity is Severity.HIDDEN:
            continue
        if worst is None or _SEVERITY_RANK[severity] > _SEVERITY_RANK[worst]:
            worst = severity
    return worst


@dataclass(frozen=True)
class DimensionScore:
    """One scored dimension for one paragraph, as returned by a scoring backend."""

    dimension: Dimension
    score: int
    comment: str = ""

    def __post_init__(self):
        object.__setattr__(self, "dimension", Dimension.parse(self.dimension))
        validate_score(self.score)

    @property
    def severity(self) -> Severity:
        return severity_for(self.score)
