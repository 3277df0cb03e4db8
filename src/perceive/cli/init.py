"""perceive init: create the global config and an empty item store.

Creates:
  ~/.perceive/config.yaml   global config with defaults (mode 0o600)
  <database path>           item store with the current schema
  <database dir>/models/    default location for model weights
"""

from __future__ import annotations

from pathlib import Path

import typer

from perceive.cli.common import DbOption, console, load_cli_config
from perceive.config import ensure_global_config
from perceive.db.connection import Database
from perceive.db.schema import CURRENT_VERSION, initialize
from perceive.errors import ConfigError


def init_cmd(db: DbOption = None) -> None:
    """Create the perceive config and database if they do not exist."""
    config_path = ensure_global_config()
    try:
        cfg = load_cli_config(db)
    except ConfigError as exc:
        console.print(f"[red]Error:[/] {exc}")
        raise typer.Exit(1) from None

    db_path = Path(cfg.database.path)
    existed = db_path.exists()
    with initialize(Database(db_path)):
        pass
    (db_path.parent / "models").mkdir(parents=True, exist_ok=True)

    console.print(f"[green]✓[/] Config:    {config_path}")
    state = "up to date" if existed else "created"
    console.print(f"[green]✓[/] Database:  {db_path} ({state}, schema v{CURRENT_VERSION})")
    console.print(
        "\nNext steps:\n"
        "  perceive model add <name> --type sentence_transformers --weights <dir>\n"
        "  perceive source add <name> <directory>\n"
        "  perceive sync --all"
    )
