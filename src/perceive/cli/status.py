"""perceive status: database, model and source overview."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.panel import Panel
from rich.table import Table

from perceive.cli.common import DbOption, console, load_cli_config, session
from perceive.cli.errors import err_config, err_no_db
from perceive.errors import ConfigError


def status_cmd(db: DbOption = None) -> None:
    """Show the item store, the active model and every source's sync state."""
    try:
        db_path = Path(load_cli_config(db).database.path)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from None
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)

    with session(db, load=False) as app:
        summary = app.status()
        size_mb = db_path.stat().st_size / (1024 * 1024)
        lines = [
            f"Database:  {summary['database']} ({size_mb:.1f} MB)",
            f"Model:     {summary['active_model'] or '[yellow]none active[/]'}",
            f"Sources:   [bold]{summary['sources']}[/]  |  "
            f"Items: [bold]{summary['items']:,}[/]  |  "
            f"Embeddings: [bold]{summary['embeddings']:,}[/]",
        ]
        console.print(Panel("\n".join(lines), title="[bold]perceive[/]", expand=False))

        sources = app.list_sources()
        if not sources:
            return
        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 1))
        table.add_column("ID", justify="right")
        table.add_column("Name", style="bold")
        table.add_column("Status")
        table.add_column("Index version", justify="right")
        table.add_column("Last indexed", style="dim")
        for s in sources:
            status = s.status.value
            if s.status_message:
                status += f" [dim]({s.status_message})[/]"
            table.add_row(str(s.id), s.name, status, str(s.index_version), (s.last_indexed or "never")[:16])
        console.print(Panel(table, title="[bold]Sources[/]", expand=False))
