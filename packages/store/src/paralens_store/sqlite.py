"""SQLiteStore — local file-based store for review history.

Why SQLite as the persistent store:
- Batteries included: ships with Python, no extra dependencies.
- Real transactions: a save or a batch of scores either lands whole or not at
  all, which the versioning rules depend on.
- Good for single-author workflows and CI caching (point store_path at a path
  shared between jobs).

Schema:
  reviews                   — per-review order, draft text and lock flag.
  review_items              — one immutable row per (stable_id, version).
  review_item_scores        — one row per (version, analysis run, dimension).
  review_item_interactions  — view/dismiss state per (stable_id, dimension).
"""

from __future__ import annotations

import json
import logging
import sqlite3

from paralens_core.dimensions import ALL_DIMENSIONS, Dimension
from paralens_store.base import BaseStore
from paralens_store.models import InteractionState, ReviewItem, ReviewMeta, ScoreRecord

logger = logging.getLogger(__name__)

_DIMENSIONS_SQL = ", ".join(f"'{d.value}'" for d in ALL_DIMENSIONS)

_SCHEMA = f"""
CREATE TABLE IF NOT EXISTS reviews (
    review_id        TEXT PRIMARY KEY,
    paragraph_order  TEXT NOT NULL DEFAULT '[]',
    draft_text       TEXT,
    draft_saved_at   TEXT,
    is_locked        INTEGER NOT NULL DEFAULT 0,
    created_at       TEXT,
    updated_at       TEXT
);
CREATE TABLE IF NOT EXISTS review_items (
    review_id   TEXT NOT NULL,
    stable_id   INTEGER NOT NULL,
    version     INTEGER NOT NULL CHECK (version >= 1),
    text        TEXT NOT NULL,
    is_deleted  INTEGER NOT NULL DEFAULT 0,
    deleted_at  TEXT,
    created_at  TEXT NOT NULL,
    PRIMARY KEY (review_id, stable_id, version)
);
CREATE TABLE IF NOT EXISTS review_item_scores (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    review_id        TEXT NOT NULL,
    stable_id        INTEGER NOT NULL,
    version          INTEGER NOT NULL,
    analysis_run_id  TEXT NOT NULL,
    dimension        TEXT NOT NULL CHECK (dimension IN ({_DIMENSIONS_SQL})),
    score            INTEGER NOT NULL CHECK (score BETWEEN 1 AND 5),
    comment          TEXT NOT NULL DEFAULT '',
    created_at       TEXT NOT NULL,
    UNIQUE (review_id, stable_id, version, analysis_run_id, dimension),
    FOREIGN KEY (review_id, stable_id, version) REFERENCES review_items (review_id, stable_id, version)
);
CREATE INDEX IF NOT EXISTS idx_scores_item ON review_item_scores (review_id, stable_id, version);
CREATE TABLE IF NOT EXISTS review_item_interactions (
    review_id     TEXT NOT NULL,
    stable_id     INTEGER NOT NULL,
    dimension     TEXT NOT NULL,
    version       INTEGER NOT NULL,
    viewed        INTEGER NOT NULL DEFAULT 0,
    viewed_at     TEXT,
    dismissed     INTEGER NOT NULL DEFAULT 0,
    dismissed_at  TEXT,
    created_at    TEXT,
    updated_at    TEXT,
    PRIMARY KEY (review_id, stable_id, dimension)
);
"""


class SQLiteStore(BaseStore):
    """Stores review history in a local SQLite database file.

    The database file path defaults to `.paralens.db` in the current working
    directory. Configure via .paralens.yml: `store_path: /path/to/paralens.db`.
    Pass ":memory:" for a throwaway database.
    """

    _backend_errors = (sqlite3.Error,)

    def __init__(self, db_path: str = ".paralens.db", timeout: float = 5.0):
        super().__init__()
        # Transactions are managed explicitly; the connection is shared across
        # threads under BaseStore's lock.
        self._conn = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None, timeout=timeout)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._conn.executescript(_SCHEMA)
        logger.debug("Opened SQLite store at %s", db_path)

    def close(self) -> None:
        self._conn.close()

    def _begin(self) -> None:
        self._conn.execute("BEGIN IMMEDIATE")

    def _commit(self) -> None:
        self._conn.execute("COMMIT")

    def _rollback(self) -> None:
        if self._conn.in_transaction:
            self._conn.execute("ROLLBACK")

    # -- reviews ----------------------------------------------------------

    def _get_review(self, review_id: str) -> ReviewMeta | None:
        row = self._conn.execute("SELECT * FROM reviews WHERE review_id=?", (review_id,)).fetchone()
        if row is None:
            return None
        return ReviewMeta(
            review_id=row["review_id"],
            paragraph_order=json.loads(row["paragraph_order"] or "[]"),
            draft_text=row["draft_text"],
            draft_saved_at=row["draft_saved_at"],
            is_locked=bool(row["is_locked"]),
            created_at=row["created_at"] or "",
            updated_at=row["updated_at"] or "",
        )

    def _put_review(self, meta: ReviewMeta) -> None:
        self._conn.execute(
            """
            INSERT INTO reviews
              (review_id, paragraph_order, draft_text, draft_saved_at, is_locked, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (review_id) DO UPDATE SET
              paragraph_order=excluded.paragraph_order,
              draft_text=excluded.draft_text,
              draft_saved_at=excluded.draft_saved_at,
              is_locked=excluded.is_locked,
              updated_at=excluded.updated_at
            """,
            (
                meta.review_id,
                json.dumps(meta.paragraph_order),
                meta.draft_text,
                meta.draft_saved_at,
                int(meta.is_locked),
                meta.created_at,
                meta.updated_at,
            ),
        )

    def _review_ids(self) -> list[str]:
        return [r["review_id"] for r in self._conn.execute("SELECT review_id FROM reviews ORDER BY review_id")]

    # -- items ------------------------------------------------------------

    def _latest_item(self, review_id: str, stable_id: int) -> ReviewItem | None:
        row = self._conn.execute(
            "SELECT * FROM review_items WHERE review_id=? AND stable_id=? ORDER BY version DESC LIMIT 1",
            (review_id, stable_id),
        ).fetchone()
        return self._row_to_item(row) if row is not None else None

    def _latest_items(self, review_id: str) -> list[ReviewItem]:
        rows = self._conn.execute(
            """
            SELECT i.* FROM review_items i
            JOIN (
              SELECT stable_id, MAX(version) AS version FROM review_items
              WHERE review_id=? GROUP BY stable_id
            ) latest ON i.stable_id = latest.stable_id AND i.version = latest.version
            WHERE i.review_id=?
            ORDER BY i.stable_id
            """,
            (review_id, review_id),
        ).fetchall()
        return [self._row_to_item(r) for r in rows]

    def _item_versions(self, review_id: str, stable_id: int) -> list[ReviewItem]:
        rows = self._conn.execute(
            "SELECT * FROM review_items WHERE review_id=? AND stable_id=? ORDER BY version",
            (review_id, stable_id),
        ).fetchall()
        return [self._row_to_item(r) for r in rows]

    def _insert_item(self, item: ReviewItem) -> None:
        self._conn.execute(
            """
            INSERT INTO review_items (review_id, stable_id, version, text, is_deleted, deleted_at, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                item.review_id,
                item.stable_id,
                item.version,
                item.text,
                int(item.is_deleted),
                item.deleted_at,
                item.created_at,
            ),
        )

    def _mark_deleted(self, review_id: str, stable_id: int, version: int, deleted_at: str) -> None:
        self._conn.execute(
            "UPDATE review_items SET is_deleted=1, deleted_at=? WHERE review_id=? AND stable_id=? AND version=?",
            (deleted_at, review_id, stable_id, version),
        )

    def _max_stable_id(self, review_id: str) -> int | None:
        row = self._conn.execute(
            "SELECT MAX(stable_id) AS m FROM review_items WHERE review_id=?", (review_id,)
        ).fetchone()
        return row["m"]

    # -- scores -----------------------------------------------------------

    def _insert_scores(self, records: list[ScoreRecord]) -> None:
        self._conn.executemany(
            """
            INSERT INTO review_item_scores
              (review_id, stable_id, version, analysis_run_id, dimension, score, comment, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    r.review_id,
                    r.stable_id,
                    r.version,
                    r.analysis_run_id,
                    r.dimension.value,
                    r.score,
                    r.comment,
                    r.created_at,
                )
                for r in records
            ],
        )

    def _scores(self, review_id: str, stable_id: int, version: int) -> list[ScoreRecord]:
        rows = self._conn.execute(
            "SELECT * FROM review_item_scores WHERE review_id=? AND stable_id=? AND version=? ORDER BY id",
            (review_id, stable_id, version),
        ).fetchall()
        return [
            ScoreRecord(
                review_id=r["review_id"],
                stable_id=r["stable_id"],
                version=r["version"],
                analysis_run_id=r["analysis_run_id"],
                dimension=Dimension(r["dimension"]),
                score=r["score"],
                comment=r["comment"],
                created_at=r["created_at"],
            )
            for r in rows
        ]

    # -- interactions -----------------------------------------------------

    def _get_interaction(self, review_id: str, stable_id: int, dimension: Dimension) -> InteractionState | None:
        row = self._conn.execute(
            "SELECT * FROM review_item_interactions WHERE review_id=? AND stable_id=? AND dimension=?",
            (review_id, stable_id, dimension.value),
        ).fetchone()
        return self._row_to_interaction(row) if row is not None else None

    def _put_interaction(self, state: InteractionState) -> None:
        self._conn.execute(
            """
            INSERT INTO review_item_interactions
              (review_id, stable_id, dimension, version, viewed, viewed_at,
               dismissed, dismissed_at, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (review_id, stable_id, dimension) DO UPDATE SET
              version=excluded.version,
              viewed=excluded.viewed,
              viewed_at=excluded.viewed_at,
              dismissed=excluded.dismissed,
              dismissed_at=excluded.dismissed_at,
              updated_at=excluded.updated_at
            """,
            (
                state.review_id,
                state.stable_id,
                state.dimension.value,
                state.version,
                int(state.viewed),
                state.viewed_at,
                int(state.dismissed),
                state.dismissed_at,
                state.created_at,
                state.updated_at,
            ),
        )

    def _interactions(self, review_id: str, stable_id: int) -> list[InteractionState]:
        rows = self._conn.execute(
            "SELECT * FROM review_item_interactions WHERE review_id=? AND stable_id=?",
            (review_id, stable_id),
        ).fetchall()
        return [self._row_to_interaction(r) for r in rows]

    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> ReviewItem:
        return ReviewItem(
            review_id=row["review_id"],
            stable_id=row["stable_id"],
            version=row["version"],
            text=row["text"],
            created_at=row["created_at"],
            is_deleted=bool(row["is_deleted"]),
            deleted_at=row["deleted_at"],
        )

    @staticmethod
    def _row_to_interaction(row: sqlite3.Row) -> InteractionState:
        return InteractionState(
            review_id=row["review_id"],
            stable_id=row["stable_id"],
            dimension=Dimension(row["dimension"]),
            version=row["version"],
            viewed=bool(row["viewed"]),
            viewed_at=row["viewed_at"],
            dismissed=bool(row["dismissed"]),
            dismissed_at=row["dismissed_at"],
            created_at=row["created_at"] or "",
            updated_at=row["updated_at"] or "",
        )
