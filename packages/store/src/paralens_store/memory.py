"""In-memory store — the default for tests and one-shot CLI runs.

Nothing survives the process. Transactions snapshot the whole state on begin
and restore it on rollback, so the versioning rules in BaseStore behave the
same here as against SQLite.
"""

from __future__ import annotations

import copy
import dataclasses

from paralens_core.dimensions import Dimension
from paralens_store.base import BaseStore
from paralens_store.models import InteractionState, ReviewItem, ReviewMeta, ScoreRecord


class MemoryStore(BaseStore):
    """Keeps every review in plain dicts."""

    def __init__(self):
        super().__init__()
        self._reviews: dict[str, ReviewMeta] = {}
        self._items: dict[tuple[str, int], list[ReviewItem]] = {}
        self._score_rows: dict[tuple[str, int, int], list[ScoreRecord]] = {}
        self._interaction_rows: dict[tuple[str, int, Dimension], InteractionState] = {}
        self._snapshot = None

    def _begin(self) -> None:
        self._snapshot = copy.deepcopy((self._reviews, self._items, self._score_rows, self._interaction_rows))

    def _commit(self) -> None:
        self._snapshot = None

    def _rollback(self) -> None:
        if self._snapshot is not None:
            self._reviews, self._items, self._score_rows, self._interaction_rows = self._snapshot
            self._snapshot = None

    def _get_review(self, review_id: str) -> ReviewMeta | None:
        meta = self._reviews.get(review_id)
        return copy.deepcopy(meta) if meta is not None else None

    def _put_review(self, meta: ReviewMeta) -> None:
        self._reviews[meta.review_id] = copy.deepcopy(meta)

    def _review_ids(self) -> list[str]:
        return sorted(self._reviews)

    def _latest_item(self, review_id: str, stable_id: int) -> ReviewItem | None:
        versions = self._items.get((review_id, stable_id))
        return versions[-1] if versions else None

    def _latest_items(self, review_id: str) -> list[ReviewItem]:
        return [versions[-1] for (rid, _), versions in sorted(self._items.items()) if rid == review_id and versions]

    def _item_versions(self, review_id: str, stable_id: int) -> list[ReviewItem]:
        return list(self._items.get((review_id, stable_id), []))

    def _insert_item(self, item: ReviewItem) -> None:
        self._items.setdefault((item.review_id, item.stable_id), []).append(item)

    def _mark_deleted(self, review_id: str, stable_id: int, version: int, deleted_at: str) -> None:
        versions = self._items[(review_id, stable_id)]
        for i, item in enumerate(versions):
            if item.version == version:
                versions[i] = dataclasses.replace(item, is_deleted=True, deleted_at=deleted_at)

    def _max_stable_id(self, review_id: str) -> int | None:
        ids = [stable_id for rid, stable_id in self._items if rid == review_id]
        return max(ids) if ids else None

    def _insert_scores(self, records: list[ScoreRecord]) -> None:
        for record in records:
            self._score_rows.setdefault((record.review_id, record.stable_id, record.version), []).append(record)

    def _scores(self, review_id: str, stable_id: int, version: int) -> list[ScoreRecord]:
        return list(self._score_rows.get((review_id, stable_id, version), []))

    def _get_interaction(self, review_id: str, stable_id: int, dimension: Dimension) -> InteractionState | None:
        state = self._interaction_rows.get((review_id, stable_id, dimension))
        return dataclasses.replace(state) if state is not None else None

    def _put_interaction(self, state: InteractionState) -> None:
        self._interaction_rows[(state.review_id, state.stable_id, state.dimension)] = dataclasses.replace(state)

    def _interactions(self, review_id: str, stable_id: int) -> list[InteractionState]:
        return [
            dataclasses.replace(state)
            for (rid, sid, _), state in self._interaction_rows.items()
            if rid == review_id and sid == stable_id
        ]
