"""Store error taxonomy."""

from __future__ import annotations


class StoreError(Exception):
    """Base class for every error raised by a store."""


class VersionConflict(StoreError):
    """Scores were addressed to a version that is no longer live.

    Raised when a paragraph was edited (or retired) after its text was sent
    for analysis. The caller should re-resolve and re-analyze rather than
    write the stale scores.
    """

    def __init__(self, review_id: str, stable_id: int, expected: int, live: int | None):
        self.review_id = review_id
        self.stable_id = stable_id
        self.expected = expected
        self.live = live
        live_text = f"live version is {live}" if live is not None else "paragraph is retired"
        super().__init__(
            f"Paragraph {stable_id} in review {review_id}: scores target version {expected} but {live_text}"
        )


class StoreWriteFailure(StoreError):
    """The underlying storage rejected a write. The operation was rolled back."""


class ParagraphNotFound(StoreError):
    def __init__(self, review_id: str, stable_id: int):
        self.review_id = review_id
        self.stable_id = stable_id
        super().__init__(f"No paragraph {stable_id} in review {review_id}")


class RetiredParagraphError(StoreError):
    """A retired stable ID was addressed as if it were live. Retired IDs are never reused."""

    def __init__(self, review_id: str, stable_id: int):
        self.review_id = review_id
        self.stable_id = stable_id
        super().__init__(f"Paragraph {stable_id} in review {review_id} was retired and cannot receive new versions")


class ReviewLockedError(StoreError):
    def __init__(self, review_id: str):
        self.review_id = review_id
        super().__init__(f"Review {review_id} is locked")
