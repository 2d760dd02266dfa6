import os
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_CONFIG: dict = {
    "backend": "service",  # "service" = remote scoring API, "markers" = deterministic test-marker scoring
    "api_base_url": "http://localhost:8888",
    "similarity_threshold": 0.5,  # the one threshold every resolution call uses
    "batch_size": 32,  # paragraphs per scoring job; the service accepts at most 128
    "max_concurrency": 4,
    "poll_interval": 2.0,
    "base_timeout": 30.0,
    "per_paragraph_timeout": 5.0,
    "max_retries": 3,
    "retry_delay": 2.0,
    "request_timeout": 15.0,
    "test_markers": False,  # apply LOW_/MID_/HIGH_ markers on top of live service scores
    "marker_default_score": None,  # None = deterministic hash-derived score for unmarked dimensions
    "store": "sqlite",
    "store_path": ".paralens.db",
    "log_level": "WARNING",
}

BACKENDS = ("service", "markers")
STORES = ("sqlite", "memory")


def load_config(config_path: str = ".paralens.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .paralens.yml in the current directory
      3. CLI argument overrides
    """
    config = dict(DEFAULT_CONFIG)

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        config.update(file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    # Environment wins over the file for the service location so CI can point
    # at a staging scorer without editing the checked-in config.
    api_url = os.environ.get("PARALENS_API_URL")
    if api_url:
        config["api_base_url"] = api_url
    config["api_key"] = os.environ.get("PARALENS_API_KEY")

    return validate_config(config)


def validate_config(config: dict) -> dict:
    """Reject values that would make resolution or orchestration misbehave."""
    threshold = float(config["similarity_threshold"])
    if not 0.0 <= threshold <= 1.0:
        raise ValueError(f"similarity_threshold must be between 0.0 and 1.0, got {threshold}")
    config["similarity_threshold"] = threshold

    for key in ("batch_size", "max_concurrency"):
        if int(config[key]) < 1:
            raise ValueError(f"{key} must be at least 1, got {config[key]}")
        config[key] = int(config[key])

    if int(config["max_retries"]) < 0:
        raise ValueError(f"max_retries must not be negative, got {config['max_retries']}")
    config["max_retries"] = int(config["max_retries"])

    for key in ("poll_interval", "base_timeout", "per_paragraph_timeout", "retry_delay", "request_timeout"):
        if float(config[key]) < 0:
            raise ValueError(f"{key} must not be negative, got {config[key]}")
        config[key] = float(config[key])

    if config["backend"] not in BACKENDS:
        raise ValueError(f"Unknown scoring backend: {config['backend']!r}. Choose 'service' or 'markers'.")
    if config["store"] not in STORES:
        raise ValueError(f"Unknown store: {config['store']!r}. Choose 'sqlite' or 'memory'.")

    return config
