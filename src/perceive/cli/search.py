"""perceive search: semantic search over every indexed source."""

from __future__ import annotations

from typing import Annotated

import typer
from rich.table import Table

from perceive.app import LoadState
from perceive.cli.common import DbOption, console, session
from perceive.cli.errors import err_model_load
from perceive.search.engine import SearchFilters


def search_cmd(
    query: Annotated[str, typer.Argument(help="What to look for, in plain language.")],
    top_k: Annotated[
        int | None,
        typer.Option("--top-k", "-k", help="Number of results (default: search.top_k)."),
    ] = None,
    source: Annotated[
        list[int] | None,
        typer.Option("--source", "-s", help="Only this source id (repeatable)."),
    ] = None,
    tag: Annotated[
        list[str] | None,
        typer.Option("--tag", help="Only items with this tag (repeatable)."),
    ] = None,
    db: DbOption = None,
) -> None:
    """Find the items closest in meaning to QUERY."""
    with session(db) as app:
        status = app.load_status()
        if status.state is LoadState.ERROR:
            console.print(err_model_load(status.message or "unknown error"))
            raise typer.Exit(1)

        results = app.search(
            query,
            top_k=top_k,
            filters=SearchFilters(source_ids=list(source or []), tags=list(tag or [])),
        )

        if not results:
            console.print("[yellow]No results.[/]")
            raise typer.Exit(0)

        table = Table(show_header=True, header_style="bold", title=f"Results for '{query}'")
        table.add_column("#", justify="right", style="dim")
        table.add_column("Score", justify="right")
        table.add_column("Item", style="bold", overflow="fold")
        table.add_column("Excerpt", overflow="fold")
        for rank, r in enumerate(results, start=1):
            title = r.name or r.external_id
            label = f"{title}\n[dim]{r.external_id}[/]" if r.name else title
            table.add_row(str(rank), f"{r.score:.3f}", f"{label}\n[dim]id {r.item_id}[/]", r.excerpt)
        console.print(table)
