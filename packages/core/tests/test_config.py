"""Tests for configuration loading."""

import pytest

from paralens_core.config import DEFAULT_CONFIG, load_config, validate_config


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv("PARALENS_API_URL", raising=False)
    monkeypatch.delenv("PARALENS_API_KEY", raising=False)


def test_defaults_applied_when_no_config_file(tmp_path):
    config = load_config(config_path=str(tmp_path / "nonexistent.yml"))
    assert config["backend"] == "service"
    assert config["similarity_threshold"] == 0.5
    assert config["batch_size"] == 32
    assert config["poll_interval"] == 2.0
    assert config["max_retries"] == 3
    assert config["store"] == "sqlite"
    assert config["api_key"] is None


def test_config_file_overrides_defaults(tmp_path):
    cfg = tmp_path / ".paralens.yml"
    cfg.write_text("backend: markers\nbatch_size: 8\nsimilarity_threshold: 0.7\n")
    config = load_config(config_path=str(cfg))
    assert config["backend"] == "markers"
    assert config["batch_size"] == 8
    assert config["similarity_threshold"] == 0.7


def test_cli_overrides_config_file(tmp_path):
    cfg = tmp_path / ".paralens.yml"
    cfg.write_text("backend: markers\n")
    config = load_config(config_path=str(cfg), cli_overrides={"backend": "service"})
    assert config["backend"] == "service"


def test_none_cli_overrides_ignored(tmp_path):
    cfg = tmp_path / ".paralens.yml"
    cfg.write_text("backend: markers\n")
    config = load_config(config_path=str(cfg), cli_overrides={"backend": None})
    assert config["backend"] == "markers"


def test_empty_config_file_uses_defaults(tmp_path):
    cfg = tmp_path / ".paralens.yml"
    cfg.write_text("")
    assert load_config(config_path=str(cfg))["batch_size"] == 32


def test_env_vars_loaded(monkeypatch, tmp_path):
    cfg = tmp_path / ".paralens.yml"
    cfg.write_text("api_base_url: http://from-file:1\n")
    monkeypatch.setenv("PARALENS_API_URL", "http://from-env:2")
    monkeypatch.setenv("PARALENS_API_KEY", "secret")
    config = load_config(config_path=str(cfg))
    assert config["api_base_url"] == "http://from-env:2"
    assert config["api_key"] == "secret"


def test_defaults_not_mutated(tmp_path):
    config = load_config(config_path=str(tmp_path / "nonexistent.yml"))
    config["batch_size"] = 1
    assert DEFAULT_CONFIG["batch_size"] == 32


def test_numeric_strings_coerced():
    config = validate_config({**DEFAULT_CONFIG, "batch_size": "16", "retry_delay": "0.5"})
    assert config["batch_size"] == 16
    assert config["retry_delay"] == 0.5


@pytest.mark.parametrize(
    "key, value",
    [
        ("similarity_threshold", 1.5),
        ("similarity_threshold", -0.1),
        ("batch_size", 0),
        ("max_concurrency", 0),
        ("max_retries", -1),
        ("poll_interval", -1),
        ("backend", "carrier-pigeon"),
        ("store", "postgres"),
    ],
)
def test_invalid_values_rejected(key, value):
    with pytest.raises(ValueError):
        validate_config({**DEFAULT_CONFIG, key: value})


def test_invalid_file_value_rejected(tmp_path):
    cfg = tmp_path / ".paralens.yml"
    cfg.write_text("similarity_threshold: 2\n")
    with pytest.raises(ValueError, match="similarity_threshold"):
        load_config(config_path=str(cfg))
