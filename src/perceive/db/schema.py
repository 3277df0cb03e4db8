"""Database schema initialization."""

from __future__ import annotations

from perceive.db.connection import Database
from perceive.db.migrations import MIGRATIONS, run_migrations

CURRENT_VERSION = MIGRATIONS[-1][0]


def initialize(db: Database) -> Database:
    """Initialize the database schema via the migration runner (idempotent)."""
    run_migrations(db.conn)
    return db
