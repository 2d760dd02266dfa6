"""Analysis orchestration: batch, submit, poll, retry, report.

    analyze(requests)
        → make_batches()                 ← fixed paragraph count per job
        → _run_batch() per batch          ← concurrent, one worker thread each
              → _attempt()                ← submit → poll until done/failed/timeout
              → retry transient failures with a fixed delay
        → on_batch(BatchResult)           ← caller applies results to its store
        → on_progress(AnalysisProgress)   ← after every finished batch

Callbacks run on the caller's thread as batches finish, so the caller never
has to synchronise its own state. A failed batch is recorded in the result
and never aborts its siblings. Cancellation is checked before every submit
and at every poll/retry tick.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from typing import Callable, Iterable

from paralens_core.backends.base import BaseScoringBackend, JobState, JobStatus
from paralens_core.backends.markers import MarkerBackend, apply_markers
from paralens_core.backends.service import ServiceBackend
from paralens_core.dimensions import ALL_DIMENSIONS, Dimension, DimensionScore
from paralens_core.errors import AnalysisCancelled, AnalysisError, BatchTransientFailure, BatchValidationFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParagraphRequest:
    """One paragraph to score, identified by its stable ID.

    ``active_dimensions`` excludes dimensions the author dismissed; a request
    with no active dimension is skipped entirely.
    """

    stable_id: int
    text: str
    active_dimensions: frozenset[Dimension] = frozenset(ALL_DIMENSIONS)


@dataclass
class BatchResult:
    index: int
    run_id: str
    stable_ids: list[int]
    scores: dict[int, list[DimensionScore]]
    attempts: int = 1

    @property
    def missing(self) -> list[int]:
        """Stable IDs the service returned no scores for."""
        return [stable_id for stable_id in self.stable_ids if stable_id not in self.scores]


@dataclass
class BatchFailure:
    index: int
    stable_ids: list[int]
    error: str
    transient: bool
    attempts: int


@dataclass
class AnalysisProgress:
    completed_batches: int
    total_batches: int
    analyzed_paragraphs: int
    total_paragraphs: int
    failed_batches: int = 0

    @property
    def percentage(self) -> int:
        if not self.total_batches:
            return 100
        return round(self.completed_batches * 100 / self.total_batches)


@dataclass
class AnalysisResult:
    run_id: str
    total_batches: int
    scores: dict[int, list[DimensionScore]] = field(default_factory=dict)
    failures: list[BatchFailure] = field(default_factory=list)
    cancelled_batches: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)

    @property
    def cancelled(self) -> bool:
        return bool(self.cancelled_batches)

    @property
    def ok(self) -> bool:
        return not self.failures and not self.cancelled_batches

    @property
    def failed_ids(self) -> list[int]:
        return [stable_id for failure in self.failures for stable_id in failure.stable_ids]


class CancellationToken:
    """Cooperative cancellation shared between the caller and batch workers."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to seconds; return True as soon as cancellation is requested."""
        if seconds <= 0:
            return self._event.is_set()
        return self._event.wait(seconds)


ProgressCallback = Callable[[AnalysisProgress], None]
BatchCallback = Callable[[BatchResult], None]


class AnalysisClient:
    def __init__(
        self,
        backend: BaseScoringBackend,
        batch_size: int = 32,
        max_concurrency: int = 4,
        poll_interval: float = 2.0,
        base_timeout: float = 30.0,
        per_paragraph_timeout: float = 5.0,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        apply_test_markers: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if max_retries < 0:
            raise ValueError("max_retries must not be negative")
        self.backend = backend
        self.batch_size = batch_size
        self.max_concurrency = max_concurrency
        self.poll_interval = poll_interval
        self.base_timeout = base_timeout
        self.per_paragraph_timeout = per_paragraph_timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.apply_test_markers = apply_test_markers
        self._clock = clock

    @classmethod
    def from_config(cls, config: dict, backend: BaseScoringBackend | None = None) -> AnalysisClient:
        return cls(
            backend=backend or build_backend(config),
            batch_size=config["batch_size"],
            max_concurrency=config["max_concurrency"],
            poll_interval=config["poll_interval"],
            base_timeout=config["base_timeout"],
            per_paragraph_timeout=config["per_paragraph_timeout"],
            max_retries=config["max_retries"],
            retry_delay=config["retry_delay"],
            apply_test_markers=config.get("test_markers", False),
        )

    def close(self) -> None:
        self.backend.close()

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    def batch_timeout(self, paragraph_count: int) -> float:
        """Wall-clock budget for one attempt: larger batches get proportionally longer."""
        return self.base_timeout + self.per_paragraph_timeout * paragraph_count

    def make_batches(self, requests: Iterable[ParagraphRequest]) -> list[list[ParagraphRequest]]:
        items = list(requests)
        return [items[i : i + self.batch_size] for i in range(0, len(items), self.batch_size)]

    def analyze(
        self,
        requests: Iterable[ParagraphRequest],
        on_progress: ProgressCallback | None = None,
        on_batch: BatchCallback | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> AnalysisResult:
        """Score requests and return per-stable-ID results.

        Never raises for batch-level failures: inspect ``result.failures`` and
        ``result.cancelled_batches``. Scores already delivered through
        ``on_batch`` stay delivered even if later batches fail or the run is
        cancelled.
        """
        token = cancel_token or CancellationToken()
        run_id = uuid.uuid4().hex

        eligible: list[ParagraphRequest] = []
        skipped: list[int] = []
        for request in requests:
            if request.active_dimensions:
                eligible.append(request)
            else:
                skipped.append(request.stable_id)

        batches = self.make_batches(eligible)
        result = AnalysisResult(run_id=run_id, total_batches=len(batches), skipped=skipped)
        if skipped:
            logger.info("Skipping %d paragraph(s) with every dimension dismissed", len(skipped))
        if not batches:
            logger.info("Nothing to analyze")
            return result

        logger.info(
            "Analysis %s: %d paragraph(s) in %d batch(es) of at most %d via %s backend",
            run_id,
            len(eligible),
            len(batches),
            self.batch_size,
            self.backend.name,
        )

        progress = AnalysisProgress(
            completed_batches=0,
            total_batches=len(batches),
            analyzed_paragraphs=0,
            total_paragraphs=len(eligible),
        )
        workers = min(self.max_concurrency, len(batches))

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="paralens-batch") as pool:
            futures = {
                pool.submit(self._run_batch, index, batch, run_id, token): (index, batch)
                for index, batch in enumerate(batches)
            }
            for future in as_completed(futures):
                index, batch = futures[future]
                stable_ids = [r.stable_id for r in batch]
                try:
                    batch_result = future.result()
                except AnalysisCancelled:
                    logger.info("Batch %d cancelled before completion", index + 1)
                    result.cancelled_batches.append(index)
                except AnalysisError as e:
                    result.failures.append(BatchFailure(index, stable_ids, e.message, e.transient, e.attempts))
                    progress.failed_batches += 1
                except Exception as e:
                    # A misbehaving backend must not take sibling batches down with it.
                    logger.exception("Batch %d raised an unexpected error", index + 1)
                    result.failures.append(BatchFailure(index, stable_ids, f"{type(e).__name__}: {e}", False, 1))
                    progress.failed_batches += 1
                else:
                    if self._deliver(batch_result, on_batch, result):
                        result.scores.update(batch_result.scores)
                        progress.analyzed_paragraphs += len(batch_result.scores)
                    else:
                        progress.failed_batches += 1

                progress.completed_batches += 1
                if on_progress is not None:
                    on_progress(replace(progress))

        result.failures.sort(key=lambda f: f.index)
        result.cancelled_batches.sort()
        logger.info(
            "Analysis %s finished: %d paragraph(s) scored, %d batch failure(s), %d cancelled",
            run_id,
            len(result.scores),
            len(result.failures),
            len(result.cancelled_batches),
        )
        return result

    # ------------------------------------------------------------------ #
    # Batch execution                                                      #
    # ------------------------------------------------------------------ #

    def _deliver(self, batch_result: BatchResult, on_batch: BatchCallback | None, result: AnalysisResult) -> bool:
        if on_batch is None:
            return True
        try:
            on_batch(batch_result)
        except Exception as e:
            logger.exception("Applying results of batch %d failed", batch_result.index + 1)
            result.failures.append(
                BatchFailure(
                    batch_result.index,
                    batch_result.stable_ids,
                    f"{type(e).__name__}: {e}",
                    False,
                    batch_result.attempts,
                )
            )
            return False
        return True

    def _run_batch(
        self,
        index: int,
        batch: list[ParagraphRequest],
        run_id: str,
        token: CancellationToken,
    ) -> BatchResult:
        """Run one batch to completion, retrying transient failures.

        Retry lives here rather than in the backend so every backend gets the
        same policy: up to max_retries extra attempts, retry_delay apart.
        """
        total_attempts = self.max_retries + 1
        for attempt in range(1, total_attempts + 1):
            if token.cancelled:
                raise AnalysisCancelled("Analysis cancelled", batch_index=index, attempts=attempt - 1)
            try:
                if attempt > 1:
                    logger.info("Batch %d: retry %d/%d", index + 1, attempt - 1, self.max_retries)
                scores = self._attempt(index, batch, token)
                return BatchResult(
                    index=index,
                    run_id=run_id,
                    stable_ids=[r.stable_id for r in batch],
                    scores=scores,
                    attempts=attempt,
                )
            except BatchValidationFailure as e:
                e.batch_index, e.attempts = index, attempt
                logger.error("Batch %d rejected by the scoring service: %s", index + 1, e.message)
                raise
            except BatchTransientFailure as e:
                e.batch_index, e.attempts = index, attempt
                if attempt == total_attempts:
                    logger.error("Batch %d failed after %d attempt(s): %s", index + 1, attempt, e.message)
                    raise
                logger.warning(
                    "Batch %d transient failure (attempt %d/%d): %s. Retrying in %.1fs...",
                    index + 1,
                    attempt,
                    total_attempts,
                    e.message,
                    self.retry_delay,
                )
                if token.wait(self.retry_delay):
                    raise AnalysisCancelled("Analysis cancelled", batch_index=index, attempts=attempt) from e
        raise AssertionError("unreachable")

    def _attempt(self, index: int, batch: list[ParagraphRequest], token: CancellationToken) -> dict:
        timeout = self.batch_timeout(len(batch))
        job_id = self.backend.submit([r.text for r in batch])
        deadline = self._clock() + timeout
        polls = 0

        while True:
            status = self.backend.poll(job_id)
            polls += 1
            if status.state is JobState.DONE:
                logger.info("Batch %d: job %s completed after %d poll(s)", index + 1, job_id, polls)
                return self._collect(index, batch, status)
            if status.state is JobState.FAILED:
                raise BatchTransientFailure(f"Job {job_id} failed: {status.error or 'Unknown error'}")
            if self._clock() >= deadline:
                raise BatchTransientFailure(f"Job {job_id} timed out after {timeout:.1f}s ({polls} polls)")
            logger.debug("Batch %d: job %s pending (poll %d)", index + 1, job_id, polls)
            if token.wait(self.poll_interval):
                raise AnalysisCancelled("Analysis cancelled", batch_index=index)

    def _collect(self, index: int, batch: list[ParagraphRequest], status: JobStatus) -> dict:
        scores: dict[int, list[DimensionScore]] = {}
        for position, request in enumerate(batch):
            returned = status.results.get(position)
            if returned is None:
                logger.warning("Batch %d: no scores returned for paragraph %s", index + 1, request.stable_id)
                continue
            if self.apply_test_markers:
                returned = apply_markers(request.text, returned)
            by_dimension = {s.dimension: s for s in returned if s.dimension in request.active_dimensions}
            scores[request.stable_id] = [by_dimension[d] for d in ALL_DIMENSIONS if d in by_dimension]
        return scores


def build_backend(config: dict) -> BaseScoringBackend:
    """Instantiate the scoring backend named in config."""
    backend = config.get("backend", "service")
    if backend == "markers":
        return MarkerBackend(default_score=config.get("marker_default_score"))
    if backend == "service":
        return ServiceBackend(
            base_url=config["api_base_url"],
            api_key=config.get("api_key"),
            timeout=config.get("request_timeout", 15.0),
        )
    raise ValueError(f"Unknown scoring backend: {backend!r}. Choose 'service' or 'markers'.")
