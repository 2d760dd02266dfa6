"""stats command — aggregate severity and dimension patterns across reviews."""

from __future__ import annotations

from collections import Counter

import click
from rich.console import Console
from rich.table import Table

console = Console()


@click.command("stats")
@click.option("--review", "review_id", default=None, help="Limit to one review. Default: every stored review.")
@click.pass_context
def stats_cmd(ctx, review_id: str | None):
    """Show severity and dimension breakdowns of open comments.

    Counts the current, non-dismissed comments of every live paragraph —
    useful for spotting which dimension reviewers struggle with most.
    """
    from paralens_core.dimensions import ALL_DIMENSIONS, Severity

    store = ctx.obj["open_store"]()
    review_ids = [review_id] if review_id else store.list_reviews()

    total_paragraphs = 0
    scored_paragraphs = 0
    dismissed = 0
    severity_counter: Counter[Severity] = Counter()
    dimension_counter: Counter = Counter()

    for rid in review_ids:
        for stable_id, _ in store.assemble_live_document(rid):
            total_paragraphs += 1
            if store.paragraph_status(rid, stable_id) == "scored":
                scored_paragraphs += 1
            dismissed += len(store.dismissed_dimensions(rid, stable_id))
            for record in store.visible_comments(rid, stable_id):
                severity_counter[record.severity] += 1
                dimension_counter[record.dimension] += 1

    if not total_paragraphs:
        console.print("[yellow]No reviewed paragraphs found.[/yellow]")
        return

    total_comments = sum(severity_counter.values())

    # --- Summary ---
    scope = f"review [cyan]{review_id}[/cyan]" if review_id else f"{len(review_ids)} review(s)"
    console.print(f"\n[bold]Comment stats for {scope}[/bold]")
    console.print(f"  Paragraphs:         {total_paragraphs}")
    console.print(f"  Scored paragraphs:  {scored_paragraphs}")
    console.print(f"  Open comments:      {total_comments}")
    console.print(f"  Dismissed:          {dismissed}")

    # --- Severity breakdown ---
    sev_table = Table(title="Severity Breakdown", show_header=True)
    sev_table.add_column("Severity", style="bold")
    sev_table.add_column("Count", justify="right")
    sev_table.add_column("% of total", justify="right")
    _sev_style = {Severity.CRITICAL: "red", Severity.MODERATE: "yellow"}
    for sev in (Severity.CRITICAL, Severity.MODERATE):
        count = severity_counter.get(sev, 0)
        pct = f"{count / total_comments * 100:.1f}%" if total_comments else "0%"
        style = _sev_style[sev]
        sev_table.add_row(f"[{style}]{sev.value}[/{style}]", str(count), pct)
    console.print(sev_table)

    # --- Dimension breakdown ---
    dim_table = Table(title="Open Comments by Dimension", show_header=True)
    dim_table.add_column("Dimension")
    dim_table.add_column("Comments", justify="right")
    for dimension in ALL_DIMENSIONS:
        dim_table.add_row(dimension.value, str(dimension_counter.get(dimension, 0)))
    console.print(dim_table)
