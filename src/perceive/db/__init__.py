"""Perceive item store layer."""

from perceive.db.connection import Database, with_store_retry
from perceive.db.migrations import MIGRATIONS, run_migrations
from perceive.db.repository import Repository
from perceive.db.schema import initialize
from perceive.db.vectors import deserialize_embedding, serialize_embedding

__all__ = [
    "Database",
    "Repository",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "with_store_retry",
    "serialize_embedding",
    "deserialize_embedding",
]
