"""ReviewWorkspace — the bridge between resolver, analysis client and store.

paralens_core knows nothing about persistence and paralens_store knows
nothing about scoring services; the workspace owns the mapping between them:

    save(text)     → split → resolve against the live document → persist
    analyze()      → unscored live paragraphs → AnalysisClient → apply_scores per batch
    render()       → live paragraphs with visible comments and severity

It also enforces the single-writer rule: saves to one review are serialised,
and only one analysis per review may run at a time.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

from paralens_core.analyzer import (
    AnalysisClient,
    AnalysisResult,
    BatchResult,
    CancellationToken,
    ParagraphRequest,
    ProgressCallback,
)
from paralens_core.dimensions import Dimension, Severity
from paralens_core.paragraphs import split_paragraphs
from paralens_core.resolver import ParagraphResolver, Resolution
from paralens_store.base import BaseStore
from paralens_store.errors import ReviewLockedError, VersionConflict
from paralens_store.models import InteractionState, ScoreRecord

logger = logging.getLogger(__name__)


class AnalysisInProgress(Exception):
    def __init__(self, review_id: str):
        self.review_id = review_id
        super().__init__(f"An analysis of review {review_id} is already running")


@dataclass
class SaveResult:
    review_id: str
    resolution: Resolution
    versions: dict[int, int]
    changed: list[int] = field(default_factory=list)


@dataclass
class AnalysisReport:
    """What one analysis run did to the store."""

    review_id: str
    result: AnalysisResult
    applied: dict[int, int] = field(default_factory=dict)  # stable_id → version scored
    conflicts: list[int] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.result.ok


@dataclass
class RenderedParagraph:
    stable_id: int
    position: int
    text: str
    version: int
    status: str
    comments: list[ScoreRecord] = field(default_factory=list)
    severity: Severity | None = None


class ReviewWorkspace:
    def __init__(
        self,
        store: BaseStore,
        client: AnalysisClient | None = None,
        resolver: ParagraphResolver | None = None,
    ):
        self.store = store
        self.client = client
        self.resolver = resolver or ParagraphResolver()
        self._save_locks: dict[str, threading.Lock] = {}
        self._analysis_locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @classmethod
    def from_config(cls, store: BaseStore, config: dict, backend=None) -> ReviewWorkspace:
        """Wire a workspace from a loaded config; the similarity threshold comes from config only."""
        return cls(
            store=store,
            client=AnalysisClient.from_config(config, backend=backend),
            resolver=ParagraphResolver(threshold=config["similarity_threshold"]),
        )

    def close(self) -> None:
        if self.client is not None:
            self.client.close()

    def save(self, review_id: str, text: str) -> SaveResult:
        """Resolve text against the review's live document and persist the result.

        Saves to the same review queue behind one another; every paragraph
        whose text changed gets a new version, every vanished one is retired.
        """
        with self._lock_for(self._save_locks, review_id):
            previous = self.store.assemble_live_document(review_id)
            before = {stable_id: self.store.live_version(review_id, stable_id) for stable_id, _ in previous}
            paragraphs = split_paragraphs(text)
            resolution = self.resolver.resolve(
                previous,
                [p.text for p in paragraphs],
                next_id=self.store.next_stable_id(review_id),
            )
            with self.store.transaction():
                versions = self.store.save_resolution(review_id, resolution.paragraphs, resolution.retired)
                self.store.save_draft(review_id, text)

        changed = [stable_id for stable_id, version in versions.items() if before.get(stable_id) != version]
        logger.info(
            "Review %s saved: %d paragraph(s), %d changed, %d new, %d retired",
            review_id,
            len(versions),
            len(changed),
            len(resolution.minted),
            len(resolution.retired),
        )
        return SaveResult(review_id=review_id, resolution=resolution, versions=versions, changed=changed)

    def analyze(
        self,
        review_id: str,
        on_progress: ProgressCallback | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> AnalysisReport:
        """Score every live paragraph whose current version has no scores yet.

        Results are written one batch at a time as batches finish. A paragraph
        edited while its batch was in flight raises VersionConflict in the
        store; it is logged, left unscored and picked up by the next run.
        """
        if self.client is None:
            raise RuntimeError("This workspace has no analysis client")
        lock = self._lock_for(self._analysis_locks, review_id)
        if not lock.acquire(blocking=False):
            raise AnalysisInProgress(review_id)
        try:
            if self.store.is_locked(review_id):
                raise ReviewLockedError(review_id)

            submitted: dict[int, int] = {}
            requests = []
            for stable_id in self.store.pending_paragraphs(review_id):
                item = self.store.live_item(review_id, stable_id)
                if item is None:
                    continue
                submitted[stable_id] = item.version
                requests.append(
                    ParagraphRequest(
                        stable_id=stable_id,
                        text=item.text,
                        active_dimensions=self.store.active_dimensions(review_id, stable_id),
                    )
                )

            applied: dict[int, int] = {}
            conflicts: list[int] = []

            def apply_batch(batch: BatchResult) -> None:
                written = {}
                stale = []
                with self.store.transaction():
                    for stable_id, scores in batch.scores.items():
                        if not scores:
                            continue
                        try:
                            self.store.apply_scores(review_id, stable_id, submitted[stable_id], batch.run_id, scores)
                        except VersionConflict as e:
                            logger.warning("Discarding stale scores: %s", e)
                            stale.append(stable_id)
                        else:
                            written[stable_id] = submitted[stable_id]
                applied.update(written)
                conflicts.extend(stale)

            result = self.client.analyze(
                requests, on_progress=on_progress, on_batch=apply_batch, cancel_token=cancel_token
            )
            return AnalysisReport(review_id=review_id, result=result, applied=applied, conflicts=conflicts)
        finally:
            lock.release()

    def dismiss(self, review_id: str, stable_id: int, dimension: Dimension | str) -> InteractionState:
        return self.store.mark_dismissed(review_id, stable_id, dimension)

    def view(self, review_id: str, stable_id: int, dimension: Dimension | str) -> InteractionState:
        return self.store.mark_viewed(review_id, stable_id, dimension)

    def render(self, review_id: str) -> list[RenderedParagraph]:
        rendered = []
        for position, (stable_id, text) in enumerate(self.store.assemble_live_document(review_id)):
            comments = self.store.visible_comments(review_id, stable_id)
            rendered.append(
                RenderedParagraph(
                    stable_id=stable_id,
                    position=position,
                    text=text,
                    version=self.store.live_version(review_id, stable_id),
                    status=self.store.paragraph_status(review_id, stable_id),
                    comments=comments,
                    severity=self.store.paragraph_severity(review_id, stable_id),
                )
            )
        return rendered

    def _lock_for(self, locks: dict[str, threading.Lock], review_id: str) -> threading.Lock:
        with self._locks_guard:
            return locks.setdefault(review_id, threading.Lock())
