"""show command — render a stored review with its visible comments."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

console = Console()

SEVERITY_STYLE = {"critical": "red", "moderate": "yellow"}


def print_review(review_id: str, paragraphs) -> None:
    """Print rendered paragraphs as a table plus a severity summary."""
    table = Table(title=f"Review — {review_id}", show_header=True, header_style="bold cyan")
    table.add_column("ID", style="bold", width=4, justify="right")
    table.add_column("Ver", width=4, justify="right")
    table.add_column("Status", width=9)
    table.add_column("Paragraph", max_width=50)
    table.add_column("Comments", max_width=60)

    counts = {"critical": 0, "moderate": 0}
    for p in paragraphs:
        lines = []
        for c in p.comments:
            style = SEVERITY_STYLE.get(c.severity.value, "white")
            lines.append(f"[{style}]{c.dimension.value} {c.score}/5[/{style}] {c.comment}")
        if p.severity is not None:
            counts[p.severity.value] += 1
        excerpt = p.text if len(p.text) <= 80 else p.text[:77] + "..."
        table.add_row(str(p.stable_id), str(p.version), p.status, excerpt, "\n".join(lines) or "[dim]—[/dim]")

    console.print(table)
    console.print(
        f"  Paragraphs: {len(paragraphs)}   "
        f"[red]critical: {counts['critical']}[/red]   "
        f"[yellow]moderate: {counts['moderate']}[/yellow]"
    )


@click.command("show")
@click.option("--review", "review_id", required=True, help="Review identifier.")
@click.pass_context
def show_cmd(ctx, review_id: str):
    """Show the live paragraphs of a stored review and their open comments.

    Dismissed dimensions and scores of 5 are hidden.
    """
    from paralens_store.memory import MemoryStore

    from paralens_cli.workspace import ReviewWorkspace

    store = ctx.obj["open_store"]()
    if isinstance(store, MemoryStore):
        raise click.UsageError("The memory store keeps nothing between runs. Add 'store: sqlite' to .paralens.yml.")

    paragraphs = ReviewWorkspace(store).render(review_id)
    if not paragraphs:
        console.print(f"[yellow]No paragraphs stored for review {review_id}.[/yellow]")
        return
    print_review(review_id, paragraphs)
    if store.is_locked(review_id):
        console.print("[dim]This review is locked.[/dim]")
