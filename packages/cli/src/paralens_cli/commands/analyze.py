"""analyze command — split, version and score a document."""

from __future__ import annotations

import click
from rich.console import Console
from rich.progress import BarColumn, Progress, TextColumn

console = Console()

_SCRATCH_REVIEW = "scratch"


@click.command("analyze")
@click.option("--text", "text", default=None, help="Document text to analyze.")
@click.option(
    "--file",
    "file_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Read the document from a file.",
)
@click.option(
    "--review",
    "review_id",
    default=None,
    help="Persist into this review so paragraph identity and scores carry across edits.",
)
@click.option(
    "--backend",
    type=click.Choice(["service", "markers"]),
    default=None,
    help="Scoring backend. Overrides config file.",
)
@click.option("--batch-size", type=int, default=None, help="Paragraphs per scoring job. Overrides config file.")
@click.pass_context
def analyze_cmd(
    ctx,
    text: str | None,
    file_path: str | None,
    review_id: str | None,
    backend: str | None,
    batch_size: int | None,
):
    """Score a document's paragraphs for comment quality.

    Without --review the document is analyzed once and forgotten. With
    --review it is resolved against the stored review first: unchanged
    paragraphs keep their scores, edited and new ones are re-analyzed.

    \b
    Environment variables:
      PARALENS_API_URL   Scoring service base URL (overrides config file)
      PARALENS_API_KEY   Bearer token for the scoring service
    """
    from paralens_core.config import validate_config
    from paralens_store.errors import StoreError
    from paralens_store.memory import MemoryStore

    from paralens_cli.commands.show import print_review
    from paralens_cli.workspace import AnalysisInProgress, ReviewWorkspace

    if (text is None) == (file_path is None):
        raise click.UsageError("Provide exactly one of --text or --file.")
    if file_path is not None:
        with open(file_path, encoding="utf-8") as f:
            text = f.read()

    config = dict(ctx.obj["config"])
    if backend is not None:
        config["backend"] = backend
    if batch_size is not None:
        config["batch_size"] = batch_size
    try:
        config = validate_config(config)
    except ValueError as e:
        raise click.UsageError(str(e))

    store = ctx.obj["open_store"]() if review_id else MemoryStore()
    review_id = review_id or _SCRATCH_REVIEW
    workspace = ReviewWorkspace.from_config(store, config)

    try:
        saved = workspace.save(review_id, text)
        console.print(
            f"[dim]{len(saved.versions)} paragraph(s), {len(saved.changed)} changed, "
            f"{len(saved.resolution.retired)} removed[/dim]"
        )

        with Progress(
            TextColumn("[bold cyan]Analyzing"),
            BarColumn(),
            TextColumn("{task.completed}/{task.total} batches"),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task("analyze", total=None)

            def on_progress(p):
                progress.update(task, completed=p.completed_batches, total=p.total_batches)

            report = workspace.analyze(review_id, on_progress=on_progress)
    except (StoreError, AnalysisInProgress) as e:
        raise click.ClickException(str(e))
    finally:
        workspace.close()

    print_review(review_id, workspace.render(review_id))

    if report.conflicts:
        console.print(
            f"[yellow]{len(report.conflicts)} paragraph(s) changed during analysis and will be re-analyzed "
            "on the next run.[/yellow]"
        )
    if report.result.skipped:
        console.print(f"[dim]{len(report.result.skipped)} paragraph(s) skipped: every dimension dismissed.[/dim]")
    for failure in report.result.failures:
        console.print(
            f"[red]Batch {failure.index + 1} failed after {failure.attempts} attempt(s): {failure.error}[/red]"
        )
    if not report.ok:
        raise click.ClickException(
            f"{len(report.result.failures)} batch(es) failed; their paragraphs stay unscored. Re-run to retry."
        )
