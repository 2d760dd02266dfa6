"""Paragraph identity resolution.

Maps the paragraphs of an edited document onto the stable IDs of the
previously saved version so that scores, comments and dismissals follow the
paragraph the author is actually editing.

    resolve(previous, current)
        → matcher.match()          ← greedy best-similarity bipartite matching
        → mint IDs for unmatched current paragraphs
        → report unmatched previous IDs as retired

The matcher sits behind BaseMatcher so a different strategy can be plugged
in without touching the resolver's bookkeeping. Merges and splits are not
detected: one side wins the best match, the other side is minted or retired.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Sequence

from paralens_core.similarity import similarity

logger = logging.getLogger(__name__)

DEFAULT_SIMILARITY_THRESHOLD = 0.5


@dataclass(frozen=True)
class Match:
    stable_id: int
    previous_position: int
    current_position: int
    similarity: float


@dataclass(frozen=True)
class ResolverAmbiguity:
    """A committed match that had an equally similar competitor.

    Informational only: the tie was broken deterministically (position
    proximity, then lowest stable ID) and the save goes ahead.
    """

    match: Match
    competing_stable_ids: tuple[int, ...] = ()
    competing_positions: tuple[int, ...] = ()

    def describe(self) -> str:
        parts = []
        if self.competing_stable_ids:
            parts.append(f"stable IDs {list(self.competing_stable_ids)}")
        if self.competing_positions:
            parts.append(f"positions {list(self.competing_positions)}")
        return (
            f"paragraph {self.match.current_position} matched stable ID {self.match.stable_id} "
            f"at similarity {self.match.similarity:.3f}; tied with {' and '.join(parts)}"
        )


@dataclass
class MatchOutcome:
    matches: list[Match] = field(default_factory=list)
    ambiguities: list[ResolverAmbiguity] = field(default_factory=list)


class BaseMatcher(ABC):
    @abstractmethod
    def match(
        self,
        previous: Sequence[tuple[int, str]],
        current: Sequence[str],
        threshold: float,
    ) -> MatchOutcome:
        """Pair previous paragraphs with current ones.

        Each previous stable ID and each current position may appear in at
        most one match, and only pairs with similarity >= threshold qualify.
        """


class GreedyMatcher(BaseMatcher):
    """Commit the best remaining pair until no eligible pair is left.

    Candidate order: descending similarity, then smallest distance between the
    previous and current positions, then lowest previous stable ID, then
    lowest current position. The order is total, so the same inputs always
    produce the same matching.
    """

    def __init__(self, metric: Callable[[str, str], float] = similarity):
        self._metric = metric

    def match(
        self,
        previous: Sequence[tuple[int, str]],
        current: Sequence[str],
        threshold: float,
    ) -> MatchOutcome:
        candidates: list[Match] = []
        for prev_pos, (stable_id, prev_text) in enumerate(previous):
            for cur_pos, cur_text in enumerate(current):
                score = self._metric(prev_text, cur_text)
                if score >= threshold:
                    candidates.append(Match(stable_id, prev_pos, cur_pos, score))

        candidates.sort(
            key=lambda m: (
                -m.similarity,
                abs(m.previous_position - m.current_position),
                m.stable_id,
                m.current_position,
            )
        )

        outcome = MatchOutcome()
        used_ids: set[int] = set()
        used_positions: set[int] = set()

        for candidate in candidates:
            if candidate.stable_id in used_ids or candidate.current_position in used_positions:
                continue
            ambiguity = self._find_tie(candidate, candidates, used_ids, used_positions)
            if ambiguity is not None:
                outcome.ambiguities.append(ambiguity)
            outcome.matches.append(candidate)
            used_ids.add(candidate.stable_id)
            used_positions.add(candidate.current_position)

        return outcome

    @staticmethod
    def _find_tie(
        chosen: Match,
        candidates: list[Match],
        used_ids: set[int],
        used_positions: set[int],
    ) -> ResolverAmbiguity | None:
        rival_ids: list[int] = []
        rival_positions: list[int] = []
        for other in candidates:
            if other is chosen or other.similarity != chosen.similarity:
                continue
            if other.stable_id in used_ids or other.current_position in used_positions:
                continue
            if other.current_position == chosen.current_position:
                rival_ids.append(other.stable_id)
            elif other.stable_id == chosen.stable_id:
                rival_positions.append(other.current_position)
        if not rival_ids and not rival_positions:
            return None
        return ResolverAmbiguity(chosen, tuple(rival_ids), tuple(rival_positions))


@dataclass
class Resolution:
    """Result of resolving a document against the previous version."""

    texts: list[str]
    stable_ids: list[int]
    matches: list[Match] = field(default_factory=list)
    minted: list[int] = field(default_factory=list)
    retired: list[int] = field(default_factory=list)
    ambiguities: list[ResolverAmbiguity] = field(default_factory=list)

    @property
    def paragraphs(self) -> list[tuple[int, str]]:
        """(stable_id, text) pairs in document order, the shape the store persists."""
        return list(zip(self.stable_ids, self.texts))

    @property
    def is_identity(self) -> bool:
        return not self.minted and not self.retired


class ParagraphResolver:
    """Assigns stable IDs to the paragraphs of an edited document.

    The threshold is the only tunable and is shared by every call site that
    resolves paragraphs; callers never pass their own per-call threshold.
    """

    def __init__(self, threshold: float = DEFAULT_SIMILARITY_THRESHOLD, matcher: BaseMatcher | None = None):
        if not 0.0 <= threshold <= 1.0:
            raise ValueError("Similarity threshold must be between 0.0 and 1.0")
        self._threshold = threshold
        self._matcher = matcher or GreedyMatcher()

    @property
    def threshold(self) -> float:
        return self._threshold

    def resolve(
        self,
        previous: Sequence[tuple[int, str]],
        current: Sequence[str],
        next_id: int | None = None,
    ) -> Resolution:
        """Resolve current paragraph texts against previous (stable_id, text) pairs.

        ``next_id`` is the first ID to mint for new paragraphs. It must be
        greater than every ID ever used in the review (including retired
        ones, which only the caller's store knows about); when omitted it
        defaults to one past the largest previous ID.
        """
        previous_ids = [stable_id for stable_id, _ in previous]
        if len(set(previous_ids)) != len(previous_ids):
            raise ValueError("Previous paragraphs contain duplicate stable IDs")

        floor = max(previous_ids) + 1 if previous_ids else 0
        if next_id is None:
            next_id = floor
        elif next_id < floor:
            raise ValueError(f"next_id {next_id} would reuse an existing stable ID (must be >= {floor})")

        outcome = self._matcher.match(previous, current, self._threshold)

        assigned: list[int | None] = [None] * len(current)
        for match in outcome.matches:
            assigned[match.current_position] = match.stable_id

        minted: list[int] = []
        for position, stable_id in enumerate(assigned):
            if stable_id is None:
                assigned[position] = next_id
                minted.append(next_id)
                next_id += 1

        matched_ids = {m.stable_id for m in outcome.matches}
        retired = [stable_id for stable_id in previous_ids if stable_id not in matched_ids]

        for ambiguity in outcome.ambiguities:
            logger.warning("Ambiguous paragraph match resolved by tie-break: %s", ambiguity.describe())

        logger.debug(
            "Resolved %d paragraph(s): %d matched, %d minted, %d retired",
            len(current),
            len(outcome.matches),
            len(minted),
            len(retired),
        )

        return Resolution(
            texts=list(current),
            stable_ids=[stable_id for stable_id in assigned if stable_id is not None],
            matches=sorted(outcome.matches, key=lambda m: m.current_position),
            minted=minted,
            retired=retired,
            ambiguities=outcome.ambiguities,
        )
