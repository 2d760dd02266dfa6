"""Analysis error taxonomy.

Backends raise BatchTransientFailure or BatchValidationFailure for a single
attempt; the analysis client decides whether to retry. Neither error ever
escapes AnalysisClient.analyze() — failed batches are reported in the
AnalysisResult so sibling batches keep their results.
"""

from __future__ import annotations


class AnalysisError(Exception):
    """Base class for errors raised while scoring a batch."""

    def __init__(self, message: str, batch_index: int | None = None, attempts: int = 0):
        super().__init__(message)
        self.message = message
        self.batch_index = batch_index
        self.attempts = attempts


class BatchTransientFailure(AnalysisError):
    """Network error, 5xx, 408/429, job reported failed, or poll timeout. Retried."""

    transient = True


class BatchValidationFailure(AnalysisError):
    """4xx or malformed response. The request would fail again, so it is not retried."""

    transient = False


class AnalysisCancelled(AnalysisError):
    """Raised inside a batch worker when the caller cancels the analysis."""

    transient = False
