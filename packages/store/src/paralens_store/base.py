"""Versioned paragraph/score store.

Every backend shares the same versioning rules, so they live here once:

    record_version()   ← append a version only when the text changed
    apply_scores()     ← VersionConflict unless the target version is live
    mark_dismissed()   ← sticky per (stable_id, dimension), never reset
    current_scores()   ← latest run on the live version, dismissals removed

Backends implement only the row primitives (the ``_`` methods marked
abstract) plus ``_begin``/``_commit``/``_rollback``. Every public write runs
inside ``transaction()``, which serialises writers with a re-entrant lock and
rolls the backend back on any error, so a failed operation never leaves
partial rows behind.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable, Iterator, Sequence

from paralens_core.dimensions import ALL_DIMENSIONS, Dimension, DimensionScore, Severity, worst_severity
from paralens_store.errors import (
    ParagraphNotFound,
    RetiredParagraphError,
    ReviewLockedError,
    StoreWriteFailure,
    VersionConflict,
)
from paralens_store.models import (
    InteractionState,
    ReviewItem,
    ReviewMeta,
    ScoreChange,
    ScoreRecord,
    VersionSnapshot,
)

logger = logging.getLogger(__name__)

_DIMENSION_ORDER = {d: i for i, d in enumerate(ALL_DIMENSIONS)}


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class BaseStore(ABC):
    """Pluggable persistence layer for versioned review paragraphs.

    All operations are scoped by ``review_id``; one store can hold many
    reviews. Implementations must be safe to share between threads: the base
    class holds the lock, backends must not assume single-threaded callers.
    """

    # Backend exception types translated into StoreWriteFailure.
    _backend_errors: tuple[type[BaseException], ...] = ()

    def __init__(self):
        self._lock = threading.RLock()
        self._depth = 0

    # ------------------------------------------------------------------ #
    # Transactions                                                         #
    # ------------------------------------------------------------------ #

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group writes into one atomic unit. Nested calls join the outer unit."""
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            self._depth = 1
            try:
                try:
                    self._begin()
                except self._backend_errors as e:
                    logger.error("Store could not start a write: %s", e)
                    raise StoreWriteFailure(str(e)) from e
                try:
                    yield
                except BaseException as e:
                    self._rollback()
                    if isinstance(e, self._backend_errors):
                        logger.error("Store write failed and was rolled back: %s", e)
                        raise StoreWriteFailure(str(e)) from e
                    raise
                try:
                    self._commit()
                except self._backend_errors as e:
                    self._rollback()
                    logger.error("Store commit failed and was rolled back: %s", e)
                    raise StoreWriteFailure(str(e)) from e
            finally:
                self._depth = 0

    # ------------------------------------------------------------------ #
    # Paragraph versions                                                   #
    # ------------------------------------------------------------------ #

    def record_version(self, review_id: str, stable_id: int, text: str) -> int:
        """Append a new version if text differs from the live text; return the live version."""
        with self.transaction():
            meta = self._writable_review(review_id)
            latest = self._latest_item(review_id, stable_id)
            if latest is not None:
                if latest.is_deleted:
                    raise RetiredParagraphError(review_id, stable_id)
                if latest.text == text:
                    return latest.version
                version = latest.version + 1
            else:
                version = 1

            self._insert_item(
                ReviewItem(review_id=review_id, stable_id=stable_id, version=version, text=text, created_at=utcnow())
            )
            if stable_id not in meta.paragraph_order:
                meta.paragraph_order.append(stable_id)
                self._touch(meta)
            logger.debug("Recorded paragraph %d version %d in review %s", stable_id, version, review_id)
            return version

    def retire(self, review_id: str, stable_id: int) -> None:
        """Mark a paragraph's live version deleted. Its history is kept; the ID is never reused."""
        with self.transaction():
            meta = self._writable_review(review_id)
            latest = self._latest_item(review_id, stable_id)
            if latest is None:
                raise ParagraphNotFound(review_id, stable_id)
            if latest.is_deleted:
                return
            self._mark_deleted(review_id, stable_id, latest.version, utcnow())
            if stable_id in meta.paragraph_order:
                meta.paragraph_order.remove(stable_id)
                self._touch(meta)
            logger.debug("Retired paragraph %d (version %d) in review %s", stable_id, latest.version, review_id)

    def save_resolution(
        self,
        review_id: str,
        paragraphs: Sequence[tuple[int, str]],
        retired: Iterable[int] = (),
    ) -> dict[int, int]:
        """Persist one resolved document: versions, retirements and order, atomically.

        Returns the live version of every paragraph after the save.
        """
        retired = list(retired)
        with self.transaction():
            versions = {stable_id: self.record_version(review_id, stable_id, text) for stable_id, text in paragraphs}
            for stable_id in retired:
                self.retire(review_id, stable_id)
            meta = self._writable_review(review_id)
            meta.paragraph_order = [stable_id for stable_id, _ in paragraphs]
            self._touch(meta)
        logger.info("Saved review %s: %d paragraph(s), %d retired", review_id, len(versions), len(retired))
        return versions

    def live_item(self, review_id: str, stable_id: int) -> ReviewItem | None:
        with self._lock:
            latest = self._latest_item(review_id, stable_id)
        if latest is None or latest.is_deleted:
            return None
        return latest

    def live_version(self, review_id: str, stable_id: int) -> int | None:
        item = self.live_item(review_id, stable_id)
        return item.version if item is not None else None

    def next_stable_id(self, review_id: str) -> int:
        """First ID never used in this review, retired IDs included."""
        with self._lock:
            highest = self._max_stable_id(review_id)
        return 0 if highest is None else highest + 1

    def assemble_live_document(self, review_id: str) -> list[tuple[int, str]]:
        """Non-deleted, highest-version text per stable ID, in last resolution order."""
        with self._lock:
            meta = self._get_review(review_id)
            live = {item.stable_id: item for item in self._latest_items(review_id) if not item.is_deleted}
        order = meta.paragraph_order if meta is not None else []
        document = [(stable_id, live[stable_id].text) for stable_id in order if stable_id in live]
        placed = {stable_id for stable_id, _ in document}
        document.extend((stable_id, live[stable_id].text) for stable_id in sorted(live) if stable_id not in placed)
        return document

    def history(self, review_id: str, stable_id: int) -> list[VersionSnapshot]:
        """Every version of a paragraph, oldest first, with its latest run's scores."""
        with self._lock:
            items = self._item_versions(review_id, stable_id)
            if not items:
                raise ParagraphNotFound(review_id, stable_id)
            return [
                VersionSnapshot(item, _latest_run(self._scores(review_id, stable_id, item.version))) for item in items
            ]

    def paragraph_status(self, review_id: str, stable_id: int) -> str:
        """'new' | 'modified' | 'scored' | 'deleted'.

        A paragraph is 'modified' when its live version is unscored but an
        earlier version was scored, and 'new' when no version was ever scored.
        """
        snapshots = self.history(review_id, stable_id)
        live = snapshots[-1]
        if live.item.is_deleted:
            return "deleted"
        if live.scored:
            return "scored"
        if any(s.scored for s in snapshots[:-1]):
            return "modified"
        return "new"

    def pending_paragraphs(self, review_id: str) -> list[int]:
        """Live stable IDs whose current text has not been scored yet, in document order."""
        return [
            stable_id
            for stable_id, _ in self.assemble_live_document(review_id)
            if self.paragraph_status(review_id, stable_id) in ("new", "modified")
        ]

    # ------------------------------------------------------------------ #
    # Scores                                                               #
    # ------------------------------------------------------------------ #

    def apply_scores(
        self,
        review_id: str,
        stable_id: int,
        version: int,
        analysis_run_id: str,
        scores: Iterable[DimensionScore],
    ) -> list[ScoreRecord]:
        """Attach one analysis run's scores to a paragraph version.

        Raises VersionConflict, writing nothing, when ``version`` is not the
        live version at call time.
        """
        scores = list(scores)
        dimensions = [s.dimension for s in scores]
        if len(set(dimensions)) != len(dimensions):
            raise ValueError(f"Duplicate dimensions in scores for paragraph {stable_id}")

        with self.transaction():
            self._writable_review(review_id)
            latest = self._latest_item(review_id, stable_id)
            if latest is None:
                raise ParagraphNotFound(review_id, stable_id)
            if latest.is_deleted or latest.version != version:
                raise VersionConflict(review_id, stable_id, version, None if latest.is_deleted else latest.version)

            now = utcnow()
            records = [
                ScoreRecord(
                    review_id=review_id,
                    stable_id=stable_id,
                    version=version,
                    analysis_run_id=analysis_run_id,
                    dimension=s.dimension,
                    score=s.score,
                    comment=s.comment,
                    created_at=now,
                )
                for s in scores
            ]
            self._insert_scores(records)
        logger.debug(
            "Applied %d score(s) to paragraph %d v%d (run %s)", len(records), stable_id, version, analysis_run_id
        )
        return records

    def current_scores(self, review_id: str, stable_id: int, include_dismissed: bool = False) -> list[ScoreRecord]:
        """Scores of the most recent run on the live version.

        A newer version without scores yet has no current scores: older
        versions' scores are history, never carried forward.
        """
        with self._lock:
            latest = self._latest_item(review_id, stable_id)
            if latest is None or latest.is_deleted:
                return []
            records = _latest_run(self._scores(review_id, stable_id, latest.version))
            dismissed = set() if include_dismissed else self.dismissed_dimensions(review_id, stable_id)
        return sorted((r for r in records if r.dimension not in dismissed), key=lambda r: _DIMENSION_ORDER[r.dimension])

    def visible_comments(self, review_id: str, stable_id: int) -> list[ScoreRecord]:
        return [r for r in self.current_scores(review_id, stable_id) if r.severity is not Severity.HIDDEN]

    def paragraph_severity(self, review_id: str, stable_id: int) -> Severity | None:
        """Worst severity among non-dismissed, non-hidden dimensions, or None."""
        return worst_severity(r.severity for r in self.visible_comments(review_id, stable_id))

    def score_changes(self, review_id: str, stable_id: int) -> dict[Dimension, ScoreChange]:
        """Per-dimension change between the two most recent scored versions."""
        scored = [s for s in self.history(review_id, stable_id) if s.scored]
        if len(scored) < 2:
            return {}
        previous = {r.dimension: r.score for r in scored[-2].scores}
        current = {r.dimension: r.score for r in scored[-1].scores}
        return {
            d: ScoreChange(d, previous[d], current[d]) for d in ALL_DIMENSIONS if d in previous and d in current
        }

    # ------------------------------------------------------------------ #
    # Interactions                                                         #
    # ------------------------------------------------------------------ #

    def mark_viewed(self, review_id: str, stable_id: int, dimension: Dimension | str) -> InteractionState:
        return self._transition(review_id, stable_id, Dimension.parse(dimension), dismiss=False)

    def mark_dismissed(self, review_id: str, stable_id: int, dimension: Dimension | str) -> InteractionState:
        """Dismiss a dimension for this paragraph and every later version of it."""
        return self._transition(review_id, stable_id, Dimension.parse(dimension), dismiss=True)

    def interaction(self, review_id: str, stable_id: int, dimension: Dimension | str) -> InteractionState | None:
        with self._lock:
            return self._get_interaction(review_id, stable_id, Dimension.parse(dimension))

    def dismissed_dimensions(self, review_id: str, stable_id: int) -> set[Dimension]:
        with self._lock:
            return {s.dimension for s in self._interactions(review_id, stable_id) if s.dismissed}

    def active_dimensions(self, review_id: str, stable_id: int) -> frozenset[Dimension]:
        """Dimensions still requested from the scoring service for this paragraph."""
        return frozenset(ALL_DIMENSIONS) - self.dismissed_dimensions(review_id, stable_id)

    def _transition(self, review_id: str, stable_id: int, dimension: Dimension, dismiss: bool) -> InteractionState:
        with self.transaction():
            self._writable_review(review_id)
            latest = self._latest_item(review_id, stable_id)
            if latest is None:
                raise ParagraphNotFound(review_id, stable_id)
            now = utcnow()
            state = self._get_interaction(review_id, stable_id, dimension)
            if state is None:
                state = InteractionState(
                    review_id=review_id,
                    stable_id=stable_id,
                    dimension=dimension,
                    version=latest.version,
                    created_at=now,
                    updated_at=now,
                )
            elif (dismiss and state.dismissed) or (not dismiss and state.viewed):
                return state

            if dismiss:
                state.dismissed, state.dismissed_at = True, now
            else:
                state.viewed, state.viewed_at = True, now
            state.version = latest.version
            state.updated_at = now
            self._put_interaction(state)
        logger.debug(
            "Paragraph %d %s %s in review %s",
            stable_id,
            "dismissed" if dismiss else "viewed",
            dimension.value,
            review_id,
        )
        return state

    # ------------------------------------------------------------------ #
    # Drafts and locking                                                   #
    # ------------------------------------------------------------------ #

    def save_draft(self, review_id: str, text: str) -> None:
        """Store the author's full working text. Never creates paragraph versions."""
        with self.transaction():
            meta = self._writable_review(review_id)
            meta.draft_text = text
            meta.draft_saved_at = utcnow()
            self._touch(meta)

    def load_draft(self, review_id: str) -> str | None:
        with self._lock:
            meta = self._get_review(review_id)
        return meta.draft_text if meta is not None else None

    def lock_review(self, review_id: str) -> None:
        with self.transaction():
            meta = self._ensure_review(review_id)
            if not meta.is_locked:
                meta.is_locked = True
                self._touch(meta)
                logger.info("Locked review %s", review_id)

    def is_locked(self, review_id: str) -> bool:
        with self._lock:
            meta = self._get_review(review_id)
        return bool(meta and meta.is_locked)

    def list_reviews(self) -> list[str]:
        with self._lock:
            return self._review_ids()

    def close(self) -> None:
        """Release any resources held by the store (connections, file handles).

        Optional — subclasses that need cleanup should override this.
        Default is a no-op so callers can always call close() safely.
        """

    # ------------------------------------------------------------------ #
    # Helpers shared by every backend                                      #
    # ------------------------------------------------------------------ #

    def _ensure_review(self, review_id: str) -> ReviewMeta:
        meta = self._get_review(review_id)
        if meta is None:
            now = utcnow()
            meta = ReviewMeta(review_id=review_id, created_at=now, updated_at=now)
            self._put_review(meta)
        return meta

    def _writable_review(self, review_id: str) -> ReviewMeta:
        meta = self._ensure_review(review_id)
        if meta.is_locked:
            raise ReviewLockedError(review_id)
        return meta

    def _touch(self, meta: ReviewMeta) -> None:
        meta.updated_at = utcnow()
        self._put_review(meta)

    # ------------------------------------------------------------------ #
    # Abstract: implement in each backend                                 #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def _begin(self) -> None: ...

    @abstractmethod
    def _commit(self) -> None: ...

    @abstractmethod
    def _rollback(self) -> None: ...

    @abstractmethod
    def _get_review(self, review_id: str) -> ReviewMeta | None:
        """Return a copy of the review's metadata; mutating it must not change the store."""

    @abstractmethod
    def _put_review(self, meta: ReviewMeta) -> None: ...

    @abstractmethod
    def _review_ids(self) -> list[str]: ...

    @abstractmethod
    def _latest_item(self, review_id: str, stable_id: int) -> ReviewItem | None:
        """Highest version of a paragraph, deleted or not."""

    @abstractmethod
    def _latest_items(self, review_id: str) -> list[ReviewItem]:
        """Highest version of every paragraph in the review, deleted or not."""

    @abstractmethod
    def _item_versions(self, review_id: str, stable_id: int) -> list[ReviewItem]:
        """Every version of a paragraph, oldest first."""

    @abstractmethod
    def _insert_item(self, item: ReviewItem) -> None: ...

    @abstractmethod
    def _mark_deleted(self, review_id: str, stable_id: int, version: int, deleted_at: str) -> None: ...

    @abstractmethod
    def _max_stable_id(self, review_id: str) -> int | None: ...

    @abstractmethod
    def _insert_scores(self, records: list[ScoreRecord]) -> None: ...

    @abstractmethod
    def _scores(self, review_id: str, stable_id: int, version: int) -> list[ScoreRecord]:
        """Score rows of one version in insertion order."""

    @abstractmethod
    def _get_interaction(self, review_id: str, stable_id: int, dimension: Dimension) -> InteractionState | None:
        """Return a copy of the interaction state, or None."""

    @abstractmethod
    def _put_interaction(self, state: InteractionState) -> None: ...

    @abstractmethod
    def _interactions(self, review_id: str, stable_id: int) -> list[InteractionState]: ...


def _latest_run(records: list[ScoreRecord]) -> list[ScoreRecord]:
    """Keep only the rows of the last analysis run among insertion-ordered records."""
    if not records:
        return []
    run_id = records[-1].analysis_run_id
    return [r for r in records if r.analysis_run_id == run_id]
