"""Forward-only migration runner for the perceive item store."""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS models (
    id              INTEGER PRIMARY KEY,
    name            TEXT NOT NULL UNIQUE,
    model_type      TEXT NOT NULL,
    created_at      DATETIME NOT NULL DEFAULT (datetime('now')),
    deleted_at      DATETIME
);

CREATE TABLE IF NOT EXISTS model_versions (
    model_id          INTEGER NOT NULL REFERENCES models(id) ON DELETE CASCADE,
    version           INTEGER NOT NULL DEFAULT 0,
    status            TEXT NOT NULL DEFAULT 'pending',
    weights_filename  TEXT NOT NULL,
    dimensions        INTEGER,
    created_at        DATETIME NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (model_id, version)
);

CREATE TABLE IF NOT EXISTS sources (
    id                INTEGER PRIMARY KEY,
    name              TEXT NOT NULL,
    source_type       TEXT NOT NULL,
    config            TEXT NOT NULL DEFAULT '{}',
    location          TEXT NOT NULL,
    compare_strategy  TEXT NOT NULL DEFAULT 'mtime_and_content',
    status            TEXT NOT NULL DEFAULT 'idle',
    status_message    TEXT,
    last_indexed      DATETIME,
    index_version     INTEGER NOT NULL DEFAULT 0,
    index_interval    INTEGER,
    deleted_at        DATETIME
);

CREATE TABLE IF NOT EXISTS items (
    id               INTEGER PRIMARY KEY,
    source_id        INTEGER NOT NULL REFERENCES sources(id) ON DELETE CASCADE,
    -- The path inside the source for files, a URL for bookmarks, etc.
    external_id      TEXT NOT NULL,
    version          INTEGER NOT NULL DEFAULT 1,
    hash             TEXT NOT NULL,
    content          TEXT NOT NULL DEFAULT '',
    raw_content      BLOB,
    content_type     TEXT,
    process_version  INTEGER NOT NULL DEFAULT 0,
    name             TEXT,
    author           TEXT,
    description      TEXT,
    modified         INTEGER,
    last_accessed    INTEGER,
    skipped          TEXT,
    hidden_at        DATETIME,
    deleted_at       DATETIME
);

CREATE UNIQUE INDEX IF NOT EXISTS items_live_external_id
    ON items(source_id, external_id) WHERE deleted_at IS NULL;

CREATE TABLE IF NOT EXISTS item_embeddings (
    model_id            INTEGER NOT NULL,
    model_version       INTEGER NOT NULL,
    item_id             INTEGER NOT NULL REFERENCES items(id) ON DELETE CASCADE,
    item_index_version  INTEGER NOT NULL,
    embedding           BLOB NOT NULL,
    FOREIGN KEY (model_id, model_version)
        REFERENCES model_versions(model_id, version) ON DELETE CASCADE,
    PRIMARY KEY (model_id, model_version, item_id)
);

CREATE INDEX IF NOT EXISTS item_embeddings_item_id_idx ON item_embeddings(item_id);

CREATE TABLE IF NOT EXISTS config (
    key     TEXT PRIMARY KEY,
    value   TEXT NOT NULL
);
"""

_V2_SQL = """
CREATE TABLE IF NOT EXISTS tags (
    id           INTEGER PRIMARY KEY,
    name         TEXT NOT NULL UNIQUE,
    description  TEXT,
    color        TEXT NOT NULL DEFAULT 'gray'
);

CREATE TABLE IF NOT EXISTS item_tags (
    item_id  INTEGER NOT NULL REFERENCES items(id) ON DELETE CASCADE,
    tag_id   INTEGER NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
    PRIMARY KEY (item_id, tag_id)
);

CREATE INDEX IF NOT EXISTS item_tags_tag_id_idx ON item_tags(tag_id);
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
    (2, _V2_SQL),
]


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()
