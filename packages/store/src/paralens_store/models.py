"""Persisted review data: paragraph versions, scores and interactions.

Rows are keyed the way the persistence layer stores them:
    review items  — (review_id, stable_id, version)
    scores        — (review_id, stable_id, version, analysis_run_id, dimension)
    interactions  — (review_id, stable_id, dimension)
"""

from __future__ import annotations

from dataclasses import dataclass, field

from paralens_core.dimensions import Dimension, Severity, severity_for


@dataclass(frozen=True)
class ReviewItem:
    """One immutable snapshot of a paragraph's text."""

    review_id: str
    stable_id: int
    version: int
    text: str
    created_at: str  # ISO-8601 UTC timestamp
    is_deleted: bool = False
    deleted_at: str | None = None


@dataclass(frozen=True)
class ScoreRecord:
    review_id: str
    stable_id: int
    version: int
    analysis_run_id: str
    dimension: Dimension
    score: int
    comment: str
    created_at: str

    @property
    def severity(self) -> Severity:
        return severity_for(self.score)


@dataclass
class InteractionState:
    """View/dismiss state of one dimension's comment for one stable paragraph.

    ``version`` is the live version at the most recent transition; the state
    itself applies to every version of the paragraph.
    """

    review_id: str
    stable_id: int
    dimension: Dimension
    version: int
    viewed: bool = False
    viewed_at: str | None = None
    dismissed: bool = False
    dismissed_at: str | None = None
    created_at: str = ""
    updated_at: str = ""


@dataclass
class ReviewMeta:
    """Per-review bookkeeping that is not itself versioned."""

    review_id: str
    paragraph_order: list[int] = field(default_factory=list)
    draft_text: str | None = None
    draft_saved_at: str | None = None
    is_locked: bool = False
    created_at: str = ""
    updated_at: str = ""


@dataclass
class VersionSnapshot:
    """A paragraph version together with the scores of its latest analysis run."""

    item: ReviewItem
    scores: list[ScoreRecord] = field(default_factory=list)

    @property
    def version(self) -> int:
        return self.item.version

    @property
    def scored(self) -> bool:
        return bool(self.scores)


@dataclass(frozen=True)
class ScoreChange:
    dimension: Dimension
    previous: int
    current: int

    @property
    def change(self) -> str:
        """'improved' | 'worse' | 'unchanged' — a higher score is better."""
        if self.current > self.previous:
            return "improved"
        if self.current < self.previous:
            return "worse"
        return "unchanged"
