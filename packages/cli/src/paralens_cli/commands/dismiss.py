"""dismiss command — hide one dimension's comment on a paragraph for good."""

from __future__ import annotations

import click
from rich.console import Console

console = Console()


@click.command("dismiss")
@click.option("--review", "review_id", required=True, help="Review identifier.")
@click.option("--paragraph", "stable_id", type=int, required=True, help="Stable paragraph ID (see `paralens show`).")
@click.option(
    "--dimension",
    type=click.Choice(["Actionability", "Helpfulness", "Grounding", "Verifiability"], case_sensitive=False),
    required=True,
    help="Dimension whose comment to dismiss.",
)
@click.pass_context
def dismiss_cmd(ctx, review_id: str, stable_id: int, dimension: str):
    """Dismiss a dimension's comment on one paragraph.

    The dismissal sticks: later edits of the paragraph are never scored on
    that dimension again.
    """
    from paralens_core.dimensions import Dimension
    from paralens_store.errors import StoreError

    store = ctx.obj["open_store"]()
    try:
        state = store.mark_dismissed(review_id, stable_id, Dimension.parse(dimension))
    except StoreError as e:
        raise click.ClickException(str(e))

    console.print(
        f"[green]Dismissed {state.dimension.value} on paragraph {stable_id} in review {review_id}.[/green]"
    )
