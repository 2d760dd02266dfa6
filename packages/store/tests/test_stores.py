"""Tests for paralens-store implementations.

Every behavioural test runs against both MemoryStore and SQLiteStore.
"""

from __future__ import annotations

import pytest

from paralens_core.dimensions import Dimension, DimensionScore, Severity
from paralens_store.errors import (
    ParagraphNotFound,
    RetiredParagraphError,
    ReviewLockedError,
    VersionConflict,
)
from paralens_store.memory import MemoryStore
from paralens_store.sqlite import SQLiteStore

R = "review-1"


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        s = MemoryStore()
    else:
        s = SQLiteStore(db_path=str(tmp_path / "test.db"))
    yield s
    s.close()


def scores(**by_name):
    return [DimensionScore(Dimension.parse(name), score, f"{name} comment") for name, score in by_name.items()]


# ---------------------------------------------------------------------------
# Versioning
# ---------------------------------------------------------------------------


class TestVersions:
    def test_first_version_is_one(self, store):
        assert store.record_version(R, 0, "Para one.") == 1
        assert store.live_version(R, 0) == 1

    def test_unchanged_text_creates_no_version(self, store):
        store.record_version(R, 0, "Para one.")
        assert store.record_version(R, 0, "Para one.") == 1
        assert len(store.history(R, 0)) == 1

    def test_changed_text_appends_version(self, store):
        store.record_version(R, 0, "Para one.")
        assert store.record_version(R, 0, "Para one, revised.") == 2
        assert [s.item.text for s in store.history(R, 0)] == ["Para one.", "Para one, revised."]

    def test_retire_keeps_history(self, store):
        store.record_version(R, 0, "Para one.")
        store.retire(R, 0)
        assert store.live_version(R, 0) is None
        history = store.history(R, 0)
        assert len(history) == 1
        assert history[0].item.is_deleted

    def test_retired_id_cannot_receive_versions(self, store):
        store.record_version(R, 0, "Para one.")
        store.retire(R, 0)
        with pytest.raises(RetiredParagraphError):
            store.record_version(R, 0, "Back again.")

    def test_retire_unknown_paragraph(self, store):
        with pytest.raises(ParagraphNotFound):
            store.retire(R, 42)

    def test_next_stable_id_counts_retired(self, store):
        assert store.next_stable_id(R) == 0
        store.save_resolution(R, [(0, "a"), (1, "b")])
        store.save_resolution(R, [(0, "a")], retired=[1])
        assert store.next_stable_id(R) == 2

    def test_reviews_are_isolated(self, store):
        store.record_version("a", 0, "text a")
        store.record_version("b", 0, "text b")
        assert store.assemble_live_document("a") == [(0, "text a")]
        assert store.list_reviews() == ["a", "b"]


class TestAssemble:
    def test_follows_resolution_order(self, store):
        store.save_resolution(R, [(1, "second"), (0, "first")])
        assert store.assemble_live_document(R) == [(1, "second"), (0, "first")]

    def test_after_add_edit_delete_dismiss(self, store):
        store.save_resolution(R, [(0, "alpha"), (1, "beta"), (2, "gamma")])
        store.mark_dismissed(R, 1, Dimension.HELPFULNESS)
        store.save_resolution(R, [(0, "alpha edited"), (3, "delta"), (1, "beta")], retired=[2])
        assert store.assemble_live_document(R) == [(0, "alpha edited"), (3, "delta"), (1, "beta")]
        assert store.live_version(R, 0) == 2
        assert store.live_version(R, 1) == 1

    def test_ids_recorded_outside_a_resolution_are_appended(self, store):
        store.save_resolution(R, [(5, "five")])
        store.record_version(R, 2, "two")
        assert store.assemble_live_document(R) == [(5, "five"), (2, "two")]

    def test_empty_review(self, store):
        assert store.assemble_live_document("nothing") == []


# ---------------------------------------------------------------------------
# Scores
# ---------------------------------------------------------------------------


class TestScores:
    def test_apply_and_read_current_scores(self, store):
        store.record_version(R, 0, "Para one.")
        store.apply_scores(R, 0, 1, "run-1", scores(actionability=1, helpfulness=5))
        current = store.current_scores(R, 0)
        assert [(r.dimension, r.score) for r in current] == [(Dimension.ACTIONABILITY, 1), (Dimension.HELPFULNESS, 5)]
        assert current[0].severity is Severity.CRITICAL

    def test_stale_version_raises_and_writes_nothing(self, store):
        store.record_version(R, 0, "Para one.")
        store.record_version(R, 0, "Para one, edited.")
        with pytest.raises(VersionConflict) as excinfo:
            store.apply_scores(R, 0, 1, "run-1", scores(actionability=2))
        assert excinfo.value.expected == 1
        assert excinfo.value.live == 2
        assert all(not s.scored for s in store.history(R, 0))

    def test_scores_for_retired_paragraph_conflict(self, store):
        store.record_version(R, 0, "Para one.")
        store.retire(R, 0)
        with pytest.raises(VersionConflict) as excinfo:
            store.apply_scores(R, 0, 1, "run-1", scores(actionability=2))
        assert excinfo.value.live is None

    def test_new_version_has_no_current_scores(self, store):
        store.record_version(R, 0, "v1")
        store.apply_scores(R, 0, 1, "run-1", scores(actionability=2))
        store.record_version(R, 0, "v2")
        assert store.current_scores(R, 0) == []
        assert store.paragraph_status(R, 0) == "modified"

    def test_latest_run_wins(self, store):
        store.record_version(R, 0, "v1")
        store.apply_scores(R, 0, 1, "run-1", scores(actionability=2, helpfulness=2))
        store.apply_scores(R, 0, 1, "run-2", scores(actionability=4))
        assert [(r.dimension, r.score) for r in store.current_scores(R, 0)] == [(Dimension.ACTIONABILITY, 4)]

    def test_duplicate_dimension_rejected(self, store):
        store.record_version(R, 0, "v1")
        with pytest.raises(ValueError):
            store.apply_scores(
                R, 0, 1, "run-1", [DimensionScore(Dimension.GROUNDING, 1), DimensionScore(Dimension.GROUNDING, 2)]
            )

    def test_visible_comments_and_severity(self, store):
        store.record_version(R, 0, "v1")
        store.apply_scores(R, 0, 1, "run-1", scores(actionability=3, helpfulness=5, grounding=4))
        visible = store.visible_comments(R, 0)
        assert [r.dimension for r in visible] == [Dimension.ACTIONABILITY, Dimension.GROUNDING]
        assert store.paragraph_severity(R, 0) is Severity.MODERATE

    def test_all_hidden_has_no_severity(self, store):
        store.record_version(R, 0, "v1")
        store.apply_scores(R, 0, 1, "run-1", scores(actionability=5))
        assert store.paragraph_severity(R, 0) is None

    def test_paragraph_status_and_pending(self, store):
        store.save_resolution(R, [(0, "scored"), (1, "fresh")])
        store.apply_scores(R, 0, 1, "run-1", scores(actionability=3))
        assert store.paragraph_status(R, 0) == "scored"
        assert store.paragraph_status(R, 1) == "new"
        assert store.pending_paragraphs(R) == [1]

    def test_score_changes_between_versions(self, store):
        store.record_version(R, 0, "v1")
        store.apply_scores(R, 0, 1, "run-1", scores(actionability=1, helpfulness=4))
        store.record_version(R, 0, "v2")
        assert store.score_changes(R, 0) == {}
        store.apply_scores(R, 0, 2, "run-2", scores(actionability=3, helpfulness=4))
        changes = store.score_changes(R, 0)
        assert changes[Dimension.ACTIONABILITY].change == "improved"
        assert changes[Dimension.HELPFULNESS].change == "unchanged"

    def test_history_unknown_paragraph(self, store):
        with pytest.raises(ParagraphNotFound):
            store.history(R, 9)


# ---------------------------------------------------------------------------
# Interactions
# ---------------------------------------------------------------------------


class TestInteractions:
    def test_view_then_dismiss(self, store):
        store.record_version(R, 0, "v1")
        viewed = store.mark_viewed(R, 0, Dimension.ACTIONABILITY)
        assert viewed.viewed and not viewed.dismissed
        dismissed = store.mark_dismissed(R, 0, "Actionability")
        assert dismissed.viewed and dismissed.dismissed
        assert dismissed.dismissed_at is not None

    def test_dismiss_is_idempotent(self, store):
        store.record_version(R, 0, "v1")
        first = store.mark_dismissed(R, 0, Dimension.GROUNDING)
        second = store.mark_dismissed(R, 0, Dimension.GROUNDING)
        assert first.dismissed_at == second.dismissed_at

    def test_viewing_after_dismiss_keeps_dismissal(self, store):
        store.record_version(R, 0, "v1")
        store.mark_dismissed(R, 0, Dimension.GROUNDING)
        store.mark_viewed(R, 0, Dimension.GROUNDING)
        assert store.dismissed_dimensions(R, 0) == {Dimension.GROUNDING}

    def test_dismissal_carries_forward_to_new_versions(self, store):
        store.record_version(R, 0, "v1")
        store.apply_scores(R, 0, 1, "run-1", scores(actionability=1, helpfulness=2))
        store.mark_dismissed(R, 0, Dimension.ACTIONABILITY)
        assert [r.dimension for r in store.current_scores(R, 0)] == [Dimension.HELPFULNESS]

        store.record_version(R, 0, "v2")
        assert Dimension.ACTIONABILITY not in store.active_dimensions(R, 0)
        # even if a later run produces the dismissed dimension, it stays hidden
        store.apply_scores(R, 0, 2, "run-2", scores(actionability=1, helpfulness=3))
        assert [r.dimension for r in store.current_scores(R, 0)] == [Dimension.HELPFULNESS]
        assert len(store.current_scores(R, 0, include_dismissed=True)) == 2

    def test_interaction_on_unknown_paragraph(self, store):
        with pytest.raises(ParagraphNotFound):
            store.mark_viewed(R, 3, Dimension.ACTIONABILITY)

    def test_unknown_dimension_rejected(self, store):
        store.record_version(R, 0, "v1")
        with pytest.raises(ValueError):
            store.mark_dismissed(R, 0, "Tone")


# ---------------------------------------------------------------------------
# Drafts, locking, transactions
# ---------------------------------------------------------------------------


class TestDraftsAndLocks:
    def test_draft_round_trip_creates_no_versions(self, store):
        assert store.load_draft(R) is None
        store.save_draft(R, "Work in progress.\n\nMore.")
        assert store.load_draft(R) == "Work in progress.\n\nMore."
        assert store.assemble_live_document(R) == []

    def test_locked_review_rejects_writes(self, store):
        store.record_version(R, 0, "v1")
        store.lock_review(R)
        assert store.is_locked(R)
        with pytest.raises(ReviewLockedError):
            store.record_version(R, 0, "v2")
        with pytest.raises(ReviewLockedError):
            store.apply_scores(R, 0, 1, "run-1", scores(actionability=2))
        with pytest.raises(ReviewLockedError):
            store.save_draft(R, "text")
        with pytest.raises(ReviewLockedError):
            store.mark_dismissed(R, 0, Dimension.ACTIONABILITY)
        assert store.live_version(R, 0) == 1

    def test_failed_transaction_rolls_back(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction():
                store.record_version(R, 0, "v1")
                store.save_draft(R, "draft")
                raise RuntimeError("interrupted")
        assert store.assemble_live_document(R) == []
        assert store.load_draft(R) is None

    def test_save_resolution_is_atomic(self, store):
        store.save_resolution(R, [(0, "a"), (1, "b")])
        store.retire(R, 1)
        with pytest.raises(RetiredParagraphError):
            store.save_resolution(R, [(0, "a edited"), (1, "b again")])
        assert store.live_version(R, 0) == 1
        assert store.assemble_live_document(R) == [(0, "a")]

    def test_nested_transactions_join_the_outer_one(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction():
                with store.transaction():
                    store.record_version(R, 0, "v1")
                raise RuntimeError("outer failed")
        assert store.live_version(R, 0) is None
