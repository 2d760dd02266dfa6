"""Deterministic test-marker scoring.

Paragraph text may embed sentinel tokens that pin a dimension's score:

    LOW_<D>  → 1    MID_<D>  → 3    HIGH_<D> → 5

where <D> is the first letter of the dimension (A, H, G, V). Markers for
different dimensions combine independently; if one paragraph carries several
markers for the same dimension, the lowest score wins.

MarkerBackend implements the ordinary submit/poll job protocol so tests and
offline demos exercise the real batching, polling, retry and progress code in
AnalysisClient without touching the network.
"""

from __future__ import annotations

import hashlib
import itertools
import logging
import re
import threading

from paralens_core.backends.base import BaseScoringBackend, JobState, JobStatus
from paralens_core.dimensions import ALL_DIMENSIONS, Dimension, DimensionScore

logger = logging.getLogger(__name__)

_LEVELS = {"LOW": 1, "MID": 3, "HIGH": 5}
_MARKER_RE = re.compile(r"\b(LOW|MID|HIGH)_([AHGV])\b")


def marker_scores(text: str) -> dict[Dimension, int]:
    """Return the scores forced by markers in text, keyed by dimension."""
    by_letter = {d.marker: d for d in ALL_DIMENSIONS}
    forced: dict[Dimension, int] = {}
    for level, letter in _MARKER_RE.findall(text):
        dimension = by_letter[letter]
        score = _LEVELS[level]
        if dimension not in forced or score < forced[dimension]:
            forced[dimension] = score
    return forced


def apply_markers(text: str, scores: list[DimensionScore]) -> list[DimensionScore]:
    """Override scores with any markers found in text.

    A forced dimension the backend did not return at all is added, so a
    marker always yields a score.
    """
    forced = marker_scores(text)
    if not forced:
        return scores
    result = []
    seen = set()
    for item in scores:
        seen.add(item.dimension)
        if item.dimension in forced:
            score = forced[item.dimension]
            result.append(DimensionScore(item.dimension, score, _comment(item.dimension, score, text)))
        else:
            result.append(item)
    for dimension, score in forced.items():
        if dimension not in seen:
            result.append(DimensionScore(dimension, score, _comment(dimension, score, text)))
    return result


def _comment(dimension: Dimension, score: int, text: str) -> str:
    excerpt = text[:50] + ("..." if len(text) > 50 else "")
    return f"{dimension.value} feedback for paragraph: Score {score}/5. {excerpt}"


def _derived_score(dimension: Dimension, text: str) -> int:
    digest = hashlib.sha256(f"{dimension.value}\x00{text}".encode("utf-8")).digest()
    return digest[0] % 5 + 1


class MarkerBackend(BaseScoringBackend):
    """In-process scorer driven by test markers.

    Unmarked dimensions get ``default_score`` when set, otherwise a score
    derived from a hash of the text, so the same text always scores the same.
    ``pending_polls`` makes each job report PENDING that many times before
    completing, which exercises the client's polling loop.
    """

    name = "markers"

    def __init__(self, default_score: int | None = None, pending_polls: int = 0):
        if default_score is not None:
            DimensionScore(Dimension.ACTIONABILITY, default_score)  # validates the range
        self._default_score = default_score
        self._pending_polls = pending_polls
        self._jobs: dict[str, dict] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def submit(self, texts: list[str]) -> str:
        results = {index: self.score_text(text) for index, text in enumerate(texts)}
        with self._lock:
            job_id = f"marker-{next(self._ids)}"
            self._jobs[job_id] = {"results": results, "remaining": self._pending_polls}
        logger.debug("Marker job %s created for %d paragraph(s)", job_id, len(texts))
        return job_id

    def poll(self, job_id: str) -> JobStatus:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return JobStatus(state=JobState.FAILED, error=f"Unknown job {job_id}")
            if job["remaining"] > 0:
                job["remaining"] -= 1
                return JobStatus(state=JobState.PENDING)
            del self._jobs[job_id]
        return JobStatus(state=JobState.DONE, results=job["results"])

    def score_text(self, text: str) -> list[DimensionScore]:
        scores = []
        for dimension in ALL_DIMENSIONS:
            if self._default_score is not None:
                score = self._default_score
            else:
                score = _derived_score(dimension, text)
            scores.append(DimensionScore(dimension, score, _comment(dimension, score, text)))
        return apply_markers(text, scores)
