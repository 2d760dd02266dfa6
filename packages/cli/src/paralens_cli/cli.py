"""CLI entry point for paralens.

Commands:
  analyze  — split, version and score a document
  show     — render a stored review with its visible comments
  dismiss  — dismiss one dimension's comment on a paragraph
  history  — version history and score changes of a review's paragraphs
  stats    — severity and dimension breakdown across stored reviews
  init     — write a starter .paralens.yml
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console

from paralens_cli.commands.analyze import analyze_cmd
from paralens_cli.commands.dismiss import dismiss_cmd
from paralens_cli.commands.history import history_cmd
from paralens_cli.commands.init import init_cmd
from paralens_cli.commands.show import show_cmd
from paralens_cli.commands.stats import stats_cmd

console = Console()


def _build_store(config: dict):
    """Instantiate the configured store from .paralens.yml settings.

    Store selection:
      store: sqlite → SQLiteStore (store_path, default .paralens.db)
      store: memory → MemoryStore (nothing survives the process)

    This factory lives in cli.py so neither paralens_core nor paralens_store
    know about the CLI config format.
    """
    if config.get("store") == "memory":
        from paralens_store.memory import MemoryStore

        return MemoryStore()

    from paralens_store.sqlite import SQLiteStore

    return SQLiteStore(db_path=config.get("store_path", ".paralens.db"))


def _store_opener(ctx: click.Context, config: dict):
    """Return a callable that builds the store on first use and closes it with the context.

    Commands that never touch the configured store, such as a scratch analyze
    or init, leave no database file behind.
    """

    def open_store():
        if "store" not in ctx.obj:
            store = _build_store(config)
            ctx.obj["store"] = store
            ctx.call_on_close(store.close)
        return ctx.obj["store"]

    return open_store


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@click.group()
@click.version_option(
    version=importlib.metadata.version("paralens"),
    prog_name="paralens",
)
@click.option(
    "--config",
    "config_path",
    default=".paralens.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="PARALENS_CONFIG",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Logging verbosity. Overrides config file.",
)
@click.pass_context
def main(ctx: click.Context, config_path: str, log_level: str | None):
    """Paragraph-level feedback on review drafts that survives edits."""
    from paralens_core.config import load_config

    ctx.ensure_object(dict)

    try:
        config = load_config(config_path, cli_overrides={"log_level": log_level})
    except ValueError as e:
        raise click.UsageError(f"Invalid configuration in {config_path}: {e}")

    _configure_logging(config["log_level"])

    ctx.obj["config"] = config
    ctx.obj["open_store"] = _store_opener(ctx, config)


main.add_command(analyze_cmd)
main.add_command(show_cmd)
main.add_command(dismiss_cmd)
main.add_command(history_cmd)
main.add_command(stats_cmd)
main.add_command(init_cmd)
