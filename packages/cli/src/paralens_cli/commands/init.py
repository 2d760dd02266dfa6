"""init command — interactive setup wizard.

Writes .paralens.yml once so every later `paralens analyze` picks up the same
scoring service, store and similarity threshold without flags.
"""

from __future__ import annotations

from pathlib import Path

import click
import yaml
from rich.console import Console

console = Console()


@click.command("init")
@click.option("--path", "config_path", default=".paralens.yml", show_default=True, help="Where to write the config.")
def init_cmd(config_path: str):
    """Set up paralens for this directory.

    Asks for the scoring backend and the review store and writes the answers
    to .paralens.yml, keeping any keys already there.
    """
    from paralens_core.config import DEFAULT_CONFIG

    console.print("\n[bold cyan]paralens init[/bold cyan] — setup wizard\n")

    # --- Choose scoring backend ---
    console.print("Scoring backend:")
    console.print("  [bold]service[/bold]  — remote comment-scoring service (default)")
    console.print("  [bold]markers[/bold]  — deterministic LOW_/MID_/HIGH_ markers, no network (demos and tests)")
    backend = click.prompt(
        "Backend",
        type=click.Choice(["service", "markers"]),
        default=DEFAULT_CONFIG["backend"],
    )

    config: dict = {"backend": backend}
    if backend == "service":
        config["api_base_url"] = click.prompt("Scoring service URL", default=DEFAULT_CONFIG["api_base_url"])
        console.print("[dim]Set PARALENS_API_KEY in the environment if the service requires a token.[/dim]")

    # --- Choose store backend ---
    console.print("\nReview store:")
    console.print("  [bold]sqlite[/bold]  — local SQLite file, keeps history across runs (default)")
    console.print("  [bold]memory[/bold]  — nothing persisted")
    store_type = click.prompt(
        "Store backend",
        type=click.Choice(["sqlite", "memory"]),
        default=DEFAULT_CONFIG["store"],
    )
    config["store"] = store_type
    if store_type == "sqlite":
        db_path = click.prompt("SQLite database path", default=DEFAULT_CONFIG["store_path"])
        if db_path != DEFAULT_CONFIG["store_path"]:
            config["store_path"] = db_path
        console.print(f"[green]SQLite store configured at {db_path}[/green]")

    # --- Write .paralens.yml ---
    _write_config(config, Path(config_path))
    console.print(f"[green]Created {config_path}[/green]")

    console.print("\n[bold green]Setup complete![/bold green]")
    console.print("Analyze a document with: [bold]paralens analyze --file draft.txt --review my-review[/bold]")


def _write_config(config: dict, path: Path) -> None:
    """Write or update the config file, preserving any existing keys."""
    existing: dict = {}
    if path.exists():
        existing = yaml.safe_load(path.read_text()) or {}
    existing.update(config)
    path.write_text(yaml.dump(existing, default_flow_style=False, sort_keys=False))
