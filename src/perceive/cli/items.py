"""perceive hide / perceive tag: per-item curation."""

from __future__ import annotations

from typing import Annotated

import typer

from perceive.cli.common import DbOption, console, session


def hide_cmd(
    item_id: Annotated[int, typer.Argument(help="Item id (shown in search results).")],
    undo: Annotated[bool, typer.Option("--undo", help="Unhide the item.")] = False,
    db: DbOption = None,
) -> None:
    """Hide an item from search results (or bring it back with --undo)."""
    with session(db, load=False) as app:
        if undo:
            app.unhide_item(item_id)
            console.print(f"[green]✓[/] Item {item_id} is visible again")
        else:
            app.hide_item(item_id)
            console.print(f"[green]✓[/] Item {item_id} hidden")


def tag_cmd(
    item_id: Annotated[int, typer.Argument(help="Item id (shown in search results).")],
    name: Annotated[str, typer.Argument(help="Tag name; created on first use.")],
    color: Annotated[str, typer.Option("--color", help="Tag color for new tags.")] = "gray",
    remove: Annotated[bool, typer.Option("--remove", help="Remove the tag instead.")] = False,
    db: DbOption = None,
) -> None:
    """Tag an item so searches can filter on it with --tag."""
    with session(db, load=False) as app:
        if remove:
            app.untag_item(item_id, name)
            console.print(f"[green]✓[/] Removed tag '{name}' from item {item_id}")
        else:
            tag = app.tag_item(item_id, name, color=color)
            console.print(f"[green]✓[/] Tagged item {item_id} with [bold]{tag.name}[/]")
