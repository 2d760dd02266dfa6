"""Tests for the CLI entry point."""

from unittest.mock import MagicMock

import pytest
import yaml
from click.testing import CliRunner

from paralens_cli.cli import _build_store, main
from paralens_core.backends.markers import MarkerBackend
from paralens_core.dimensions import Dimension
from paralens_core.errors import BatchTransientFailure
from paralens_store.memory import MemoryStore
from paralens_store.sqlite import SQLiteStore

ORIGINAL = "Para one text. LOW_A\n\nPara two text. HIGH_H"
EDITED = "Para one revised text. MID_A\n\nPara two text. HIGH_H"


@pytest.fixture
def config_file(tmp_path):
    """A config that scores with deterministic markers into a throwaway SQLite file."""
    path = tmp_path / ".paralens.yml"
    path.write_text(
        yaml.dump(
            {
                "backend": "markers",
                "marker_default_score": 5,
                "store": "sqlite",
                "store_path": str(tmp_path / "cli.db"),
                "poll_interval": 0,
                "retry_delay": 0,
                "max_retries": 1,
            }
        )
    )
    return str(path)


def run(config_file, *args, **kwargs):
    return CliRunner().invoke(main, ["--config", config_file, *args], **kwargs)


def open_store(tmp_path):
    return SQLiteStore(db_path=str(tmp_path / "cli.db"))


# ---------------------------------------------------------------------------
# _build_store
# ---------------------------------------------------------------------------


class TestBuildStore:
    def test_returns_memory_store(self):
        assert isinstance(_build_store({"store": "memory"}), MemoryStore)

    def test_returns_sqlite_store(self, tmp_path):
        store = _build_store({"store": "sqlite", "store_path": str(tmp_path / "test.db")})
        assert isinstance(store, SQLiteStore)
        store.close()

    def test_sqlite_uses_default_path_when_not_specified(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        store = _build_store({})
        assert isinstance(store, SQLiteStore)
        store.close()
        assert (tmp_path / ".paralens.db").exists()


class TestConfigErrors:
    def test_invalid_config_is_usage_error(self, tmp_path):
        cfg = tmp_path / "bad.yml"
        cfg.write_text("batch_size: 0\n")
        result = CliRunner().invoke(main, ["--config", str(cfg), "stats"])
        assert result.exit_code == 2
        assert "Invalid configuration" in result.output


# ---------------------------------------------------------------------------
# analyze command
# ---------------------------------------------------------------------------


class TestAnalyzeCommand:
    def test_requires_exactly_one_input(self, config_file):
        assert run(config_file, "analyze").exit_code == 2
        result = run(config_file, "analyze", "--text", "x", "--file", config_file)
        assert result.exit_code == 2
        assert "exactly one" in result.output

    def test_scratch_analysis_prints_summary(self, config_file, tmp_path):
        result = run(config_file, "analyze", "--text", ORIGINAL)
        assert result.exit_code == 0, result.output
        assert "critical: 1" in result.output
        assert "moderate: 0" in result.output
        # without --review nothing is persisted
        assert not (tmp_path / "cli.db").exists()
        store = open_store(tmp_path)
        assert store.list_reviews() == []
        store.close()

    def test_reads_file(self, config_file, tmp_path):
        draft = tmp_path / "draft.txt"
        draft.write_text(ORIGINAL)
        result = run(config_file, "analyze", "--file", str(draft))
        assert result.exit_code == 0, result.output
        assert "Paragraphs: 2" in result.output

    def test_review_persists_and_rescores_edits(self, config_file, tmp_path):
        assert run(config_file, "analyze", "--text", ORIGINAL, "--review", "r1").exit_code == 0
        result = run(config_file, "analyze", "--text", EDITED, "--review", "r1")
        assert result.exit_code == 0, result.output
        assert "1 changed" in result.output

        store = open_store(tmp_path)
        assert [sid for sid, _ in store.assemble_live_document("r1")] == [0, 1]
        assert store.live_version("r1", 0) == 2
        scores = {r.dimension: r.score for r in store.current_scores("r1", 0)}
        assert scores[Dimension.ACTIONABILITY] == 3
        assert store.load_draft("r1") == EDITED
        store.close()

    def test_backend_override(self, config_file, mocker):
        build = mocker.patch("paralens_core.analyzer.build_backend", return_value=MarkerBackend(default_score=5))
        run(config_file, "analyze", "--text", "Hello.", "--backend", "service", "--batch-size", "4")
        config = build.call_args.args[0]
        assert config["backend"] == "service"
        assert config["batch_size"] == 4

    def test_failed_batches_exit_nonzero(self, config_file, mocker):
        class Down(MarkerBackend):
            def submit(self, texts):
                raise BatchTransientFailure("503 Service Unavailable")

        mocker.patch("paralens_core.analyzer.build_backend", return_value=Down())
        result = run(config_file, "analyze", "--text", ORIGINAL)
        assert result.exit_code == 1
        assert "503 Service Unavailable" in result.output
        assert "batch(es) failed" in result.output

    def test_locked_review_is_reported(self, config_file, tmp_path):
        run(config_file, "analyze", "--text", ORIGINAL, "--review", "r1")
        store = open_store(tmp_path)
        store.lock_review("r1")
        store.close()

        result = run(config_file, "analyze", "--text", EDITED, "--review", "r1")
        assert result.exit_code == 1
        assert "locked" in result.output


# ---------------------------------------------------------------------------
# show / dismiss / history / stats
# ---------------------------------------------------------------------------


class TestReviewCommands:
    def test_show_renders_stored_review(self, config_file):
        run(config_file, "analyze", "--text", ORIGINAL, "--review", "r1")
        result = run(config_file, "show", "--review", "r1")
        assert result.exit_code == 0, result.output
        assert "Actionability" in result.output
        assert "critical: 1" in result.output

    def test_show_unknown_review(self, config_file):
        result = run(config_file, "show", "--review", "nope")
        assert result.exit_code == 0
        assert "No paragraphs stored" in result.output

    def test_show_rejects_memory_store(self, mocker, config_file):
        mocker.patch("paralens_cli.cli._build_store", return_value=MemoryStore())
        result = run(config_file, "show", "--review", "r1")
        assert result.exit_code != 0
        assert "memory store" in result.output

    def test_dismiss_hides_comment(self, config_file, tmp_path):
        run(config_file, "analyze", "--text", ORIGINAL, "--review", "r1")
        result = run(config_file, "dismiss", "--review", "r1", "--paragraph", "0", "--dimension", "actionability")
        assert result.exit_code == 0, result.output
        assert "Dismissed Actionability" in result.output

        store = open_store(tmp_path)
        assert store.dismissed_dimensions("r1", 0) == {Dimension.ACTIONABILITY}
        assert store.paragraph_severity("r1", 0) is None
        store.close()

    def test_dismiss_unknown_paragraph(self, config_file):
        result = run(config_file, "dismiss", "--review", "r1", "--paragraph", "7", "--dimension", "Grounding")
        assert result.exit_code == 1
        assert "No paragraph 7" in result.output

    def test_history_shows_score_changes(self, config_file):
        run(config_file, "analyze", "--text", ORIGINAL, "--review", "r1")
        run(config_file, "analyze", "--text", EDITED, "--review", "r1")
        result = run(config_file, "history", "--review", "r1", "--paragraph", "0")
        assert result.exit_code == 0, result.output
        assert "Paragraph 0" in result.output
        assert "Since last scored version" in result.output

    def test_history_empty_review(self, config_file):
        result = run(config_file, "history", "--review", "nope")
        assert result.exit_code == 0
        assert "No paragraphs stored" in result.output

    def test_stats_breakdown(self, config_file):
        run(config_file, "analyze", "--text", ORIGINAL, "--review", "r1")
        result = run(config_file, "stats")
        assert result.exit_code == 0, result.output
        assert "Open comments:      1" in result.output
        assert "Severity Breakdown" in result.output

    def test_stats_empty_store(self, mocker, config_file):
        mock_store = MagicMock(spec=SQLiteStore)
        mock_store.list_reviews.return_value = []
        mocker.patch("paralens_cli.cli._build_store", return_value=mock_store)
        result = run(config_file, "stats")
        assert result.exit_code == 0
        assert "No reviewed paragraphs found" in result.output


# ---------------------------------------------------------------------------
# init command
# ---------------------------------------------------------------------------


class TestInitCommand:
    def test_writes_markers_config(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        result = CliRunner().invoke(main, ["init"], input="markers\nsqlite\n\n")
        assert result.exit_code == 0, result.output
        config = yaml.safe_load((tmp_path / ".paralens.yml").read_text())
        assert config == {"backend": "markers", "store": "sqlite"}

    def test_writes_service_url_and_custom_db(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        result = CliRunner().invoke(main, ["init"], input="service\nhttp://scorer:9000\nsqlite\nreviews.db\n")
        assert result.exit_code == 0, result.output
        config = yaml.safe_load((tmp_path / ".paralens.yml").read_text())
        assert config["api_base_url"] == "http://scorer:9000"
        assert config["store_path"] == "reviews.db"

    def test_preserves_existing_keys(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / ".paralens.yml").write_text("similarity_threshold: 0.6\n")
        CliRunner().invoke(main, ["init"], input="markers\nmemory\n")
        config = yaml.safe_load((tmp_path / ".paralens.yml").read_text())
        assert config["similarity_threshold"] == 0.6
        assert config["store"] == "memory"
