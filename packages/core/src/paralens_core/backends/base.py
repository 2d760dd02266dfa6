"""Scoring backend interface.

Every backend exposes the same two-step job protocol the remote scoring
service speaks:

    submit(texts) → job_id
    poll(job_id)  → JobStatus(pending | done | failed)

Batching, polling cadence, timeouts, retries, progress and cancellation all
live in AnalysisClient, not here. A backend only performs single attempts and
reports failures as BatchTransientFailure (worth retrying) or
BatchValidationFailure (not worth retrying). That keeps the deterministic
marker backend on exactly the same control path as the network backend.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum

from paralens_core.dimensions import DimensionScore


class JobState(str, Enum):
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


@dataclass
class JobStatus:
    """Snapshot of a job returned by poll().

    ``results`` maps the 0-based index of a submitted text to its scores and
    is only meaningful once the job is DONE. An index missing from a DONE
    job means the service could not score that paragraph.
    """

    state: JobState
    results: dict[int, list[DimensionScore]] = field(default_factory=dict)
    error: str | None = None


class BaseScoringBackend(ABC):
    name: str = "base"

    @abstractmethod
    def submit(self, texts: list[str]) -> str:
        """Create a scoring job for texts and return its identifier."""

    @abstractmethod
    def poll(self, job_id: str) -> JobStatus:
        """Return the current status of a job. Must not block waiting for completion."""

    def close(self) -> None:
        """Release any resources held by the backend (HTTP connection pools).

        Optional — default is a no-op so callers can always call close() safely.
        """
