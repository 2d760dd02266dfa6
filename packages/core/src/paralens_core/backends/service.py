"""HTTP backend for the remote comment-scoring service.

Protocol:
    POST {base}/get_comments/v1/jobs          {"points": [text, ...]} → {"job_id", "status"}
    GET  {base}/get_comments/v1/jobs/{job_id} → {"status", "error"?, "response": {"results": [...]}}

Each result carries an ``aspects`` mapping of aspect name to
``{"score": "1".."5" | "X", "rationale": str}``. Results are matched to the
submitted texts by list order.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from paralens_core.backends.base import BaseScoringBackend, JobState, JobStatus
from paralens_core.dimensions import MAX_SCORE, MIN_SCORE, Dimension, DimensionScore
from paralens_core.errors import BatchTransientFailure, BatchValidationFailure

logger = logging.getLogger(__name__)

_JOBS_PATH = "/get_comments/v1/jobs"

# Client errors that say "try again later" rather than "this request is wrong".
_RETRYABLE_CLIENT_STATUSES = {408, 425, 429}

_ASPECTS = {
    "actionability": Dimension.ACTIONABILITY,
    "helpfulness": Dimension.HELPFULNESS,
    "grounding_specificity": Dimension.GROUNDING,
    "grounding": Dimension.GROUNDING,
    "verifiability": Dimension.VERIFIABILITY,
}

_PENDING_STATUSES = {"queued", "running", "pending"}


class ServiceBackend(BaseScoringBackend):
    name = "service"

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ):
        headers = {"accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    def submit(self, texts: list[str]) -> str:
        data = self._request("POST", _JOBS_PATH, json={"points": texts})
        job_id = data.get("job_id")
        if not job_id:
            raise BatchValidationFailure(f"Scoring service did not return a job_id: {data!r}"[:300])
        logger.info("Created scoring job %s for %d paragraph(s) (status: %s)", job_id, len(texts), data.get("status"))
        return str(job_id)

    def poll(self, job_id: str) -> JobStatus:
        data = self._request("GET", f"{_JOBS_PATH}/{job_id}")
        status = str(data.get("status", "")).lower()

        if status == "completed":
            return JobStatus(state=JobState.DONE, results=parse_results(data))
        if status == "failed":
            return JobStatus(state=JobState.FAILED, error=data.get("error") or "Unknown error")
        if status not in _PENDING_STATUSES:
            logger.debug("Job %s reported unrecognised status %r; treating as pending", job_id, status)
        return JobStatus(state=JobState.PENDING)

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> dict:
        logger.debug("%s %s", method, path)
        try:
            response = self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            code = e.response.status_code
            detail = f"{method} {path} failed: {code} {e.response.reason_phrase}"
            if code >= 500 or code in _RETRYABLE_CLIENT_STATUSES:
                raise BatchTransientFailure(detail) from e
            raise BatchValidationFailure(detail) from e
        except httpx.TransportError as e:
            # Connection and read failures are worth retrying.
            raise BatchTransientFailure(f"{method} {path} failed: {type(e).__name__}: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise BatchValidationFailure(f"{method} {path} returned a non-JSON body") from e
        if not isinstance(data, dict):
            raise BatchValidationFailure(f"{method} {path} returned {type(data).__name__}, expected an object")
        return data


def parse_results(data: dict) -> dict[int, list[DimensionScore]]:
    """Convert a completed job payload into per-index DimensionScores.

    Entries with an ``error`` field and aspects with unparseable scores are
    skipped; the paragraph then simply lacks scores for that dimension.
    """
    results = (data.get("response") or {}).get("results")
    if results is None:
        logger.warning("Completed job payload is missing response.results")
        return {}

    parsed: dict[int, list[DimensionScore]] = {}
    for index, result in enumerate(results):
        if not isinstance(result, dict):
            continue
        if result.get("error"):
            logger.warning("Scoring service returned an error for paragraph %d: %s", index, result["error"])
            continue
        scores = []
        for aspect, payload in (result.get("aspects") or {}).items():
            dimension = _ASPECTS.get(str(aspect).lower())
            if dimension is None or not isinstance(payload, dict):
                continue
            score = _parse_score(dimension, payload.get("score"))
            if score is None:
                logger.debug("Paragraph %d: unparseable %s score %r", index, dimension.value, payload.get("score"))
                continue
            scores.append(DimensionScore(dimension, score, payload.get("rationale") or ""))
        parsed[index] = scores
    return parsed


def _parse_score(dimension: Dimension, raw: Any) -> int | None:
    text = str(raw).strip() if raw is not None else ""
    # "X" means verifiability does not apply to this paragraph; score it as
    # hidden rather than dropping it so the paragraph counts as analysed.
    if dimension is Dimension.VERIFIABILITY and text.upper() == "X":
        return MAX_SCORE
    try:
        score = int(text)
    except ValueError:
        return None
    if not MIN_SCORE <= score <= MAX_SCORE:
        return None
    return score
