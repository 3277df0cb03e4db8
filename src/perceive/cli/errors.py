"""perceive rich error messages: what went wrong and what to do about it.

Usage:
    from perceive.cli.errors import err_no_active_model
    console.print(err_no_active_model())
    raise typer.Exit(1)
"""

from __future__ import annotations

from perceive.errors import (
    IndexConsistencyError,
    ModelLoadError,
    ModelNotReadyError,
    PerceiveError,
    StoreError,
)


def err_no_db(db_path: str) -> str:
    """No item store at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  perceive init"
    )


def err_no_active_model() -> str:
    """Search or embedding needs an active, ready model version."""
    return (
        "[red]Error:[/] No active model.\n"
        "  Register one:  perceive model add <name> --type sentence_transformers --weights <dir>\n"
        "  Then run:      perceive model activate <name>"
    )


def err_model_load(message: str) -> str:
    """A model version could not be loaded."""
    return (
        f"[red]Error:[/] Model failed to load: {message}\n"
        "  Check the weights path, then register a new version:\n"
        "    perceive model add <name> --weights <dir>"
    )


def err_source_not_found(source_id: int) -> str:
    """Source id not in the store."""
    return (
        f"[yellow]Source not found:[/] {source_id}\n"
        "  Run:  perceive source list  to see all sources."
    )


def err_model_not_found(name: str) -> str:
    return (
        f"[yellow]Model not found:[/] '{name}'\n"
        "  Run:  perceive model list  to see registered models."
    )


def err_source_failed(name: str, message: str) -> str:
    """A sync pass ended in error; the source is marked ``error``."""
    return (
        f"[red]Error:[/] Sync of '{name}' failed: {message}\n"
        "  Fix the source location or config, then run:  perceive sync <id>"
    )


def err_index_inconsistent(message: str) -> str:
    return (
        f"[red]Error:[/] {message}\n"
        "  The index is rebuilt from the database on the next start; retry the search."
    )


def err_store(message: str) -> str:
    return (
        f"[red]Error:[/] Database operation failed: {message}\n"
        "  Another perceive process may hold the database. Close it and retry."
    )


def err_config(message: str) -> str:
    return f"[red]Error:[/] {message}"


def render_error(exc: PerceiveError) -> str:
    """Pick the actionable message for *exc*."""
    if isinstance(exc, ModelNotReadyError):
        return err_no_active_model()
    if isinstance(exc, ModelLoadError):
        return err_model_load(str(exc))
    if isinstance(exc, IndexConsistencyError):
        return err_index_inconsistent(str(exc))
    if isinstance(exc, StoreError):
        return err_store(str(exc))
    return err_config(str(exc))
