"""Shared CLI plumbing: options, console, and opening a perceive session."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from perceive.app import Perceive
from perceive.cli.errors import render_error
from perceive.config import PerceiveConfig, load_config
from perceive.errors import PerceiveError
from perceive.logs import configure_logging

console = Console()

DbOption = Annotated[
    Path | None,
    typer.Option("--db", help="Path to the perceive database (default: from config)."),
]


def load_cli_config(db: Path | None) -> PerceiveConfig:
    """Load config layers and apply the --db flag on top."""
    cfg = load_config()
    if db is not None:
        cfg.database.path = str(db)
    return cfg


@contextmanager
def session(db: Path | None, *, load: bool = True) -> Iterator[Perceive]:
    """Open a Perceive instance for one command; PerceiveErrors exit with code 1."""
    try:
        cfg = load_cli_config(db)
        configure_logging(cfg.logging.level, console=Console(stderr=True))
        with Perceive(cfg) as app:
            if load:
                app.start()
            yield app
    except PerceiveError as exc:
        console.print(render_error(exc))
        raise typer.Exit(1) from None
