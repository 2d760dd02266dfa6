"""history command — version history of a review's paragraphs."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

console = Console()

_CHANGE_STYLE = {"improved": "green", "worse": "red", "unchanged": "dim"}


@click.command("history")
@click.option("--review", "review_id", required=True, help="Review identifier.")
@click.option("--paragraph", "stable_id", type=int, default=None, help="Only this stable paragraph ID.")
@click.pass_context
def history_cmd(ctx, review_id: str, stable_id: int | None):
    """Show every version of a review's paragraphs with the scores each received.

    Retired paragraphs are included when asked for by --paragraph.
    """
    from paralens_core.dimensions import ALL_DIMENSIONS
    from paralens_store.errors import ParagraphNotFound

    store = ctx.obj["open_store"]()
    if stable_id is not None:
        stable_ids = [stable_id]
    else:
        stable_ids = [sid for sid, _ in store.assemble_live_document(review_id)]
    if not stable_ids:
        console.print(f"[yellow]No paragraphs stored for review {review_id}.[/yellow]")
        return

    for sid in stable_ids:
        try:
            snapshots = store.history(review_id, sid)
        except ParagraphNotFound as e:
            raise click.ClickException(str(e))

        table = Table(title=f"Paragraph {sid} — {review_id}", show_header=True, header_style="bold cyan")
        table.add_column("Ver", style="bold", width=4, justify="right")
        table.add_column("Text", max_width=50)
        for dimension in ALL_DIMENSIONS:
            table.add_column(dimension.value[:5], justify="right", width=6)
        table.add_column("Saved At", width=20)

        for snap in snapshots:
            by_dimension = {r.dimension: r.score for r in snap.scores}
            text = snap.item.text if len(snap.item.text) <= 50 else snap.item.text[:47] + "..."
            if snap.item.is_deleted:
                text = f"[strike]{text}[/strike]"
            table.add_row(
                str(snap.version),
                text,
                *[str(by_dimension.get(d, "")) for d in ALL_DIMENSIONS],
                snap.item.created_at[:19].replace("T", " "),
            )
        console.print(table)

        changes = store.score_changes(review_id, sid)
        if changes:
            parts = []
            for change in changes.values():
                style = _CHANGE_STYLE[change.change]
                parts.append(
                    f"[{style}]{change.dimension.value} {change.previous}→{change.current}[/{style}]"
                )
            console.print("  Since last scored version: " + ", ".join(parts))
