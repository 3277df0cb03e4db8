"""Repository pattern for all perceive item store operations.

Single interface for: models and versions, sources, items, embeddings, tags,
and the process-wide config table. Write methods are single transactions and
retry on lock contention (see ``with_store_retry``).
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from perceive.db.connection import Database, with_store_retry
from perceive.db.models import (
    ActiveModel,
    CompareStrategy,
    Item,
    Model,
    ModelStatus,
    ModelVersion,
    SkipReason,
    Source,
    SourceStatus,
    Tag,
)

_ITEM_COLUMNS = """
    id, source_id, external_id, version, hash, content, raw_content, content_type,
    process_version, name, author, description, modified, last_accessed, skipped,
    hidden_at, deleted_at
"""

_SOURCE_COLUMNS = """
    id, name, source_type, config, location, compare_strategy, status, status_message,
    last_indexed, index_version, index_interval
"""

# SQLite's default limit on bound parameters is 999 on older builds.
_MAX_PARAMS = 900

_ACTIVE_MODEL_KEY = "active_model"


def _active_version_key(model_id: int) -> str:
    return f"active_version:{model_id}"


@dataclass
class ExistingItem:
    """A live item matched during sync, plus its embedding state for the active model."""

    item: Item
    has_valid_embedding: bool


@dataclass
class CandidateRow:
    """An index hit joined against the store (see ``Repository.join_candidates``)."""

    item: Item
    item_index_version: int | None  # None: no embedding row for this model version
    passes_filters: bool

    @property
    def is_live(self) -> bool:
        return self.item.deleted_at is None and self.item.hidden_at is None

    @property
    def is_fresh(self) -> bool:
        return self.item_index_version == self.item.version


class Repository:
    """Data access layer for all perceive store entities.

    Wraps a Database and uses the calling thread's connection, so one
    Repository may be shared by the orchestrator's worker threads.
    """

    def __init__(self, db: Database) -> None:
        """Initialise with an opened, migrated database.

        Args:
            db: Database whose schema is initialised (see perceive.db.schema.initialize).
        """
        self._db = db

    @property
    def _conn(self) -> sqlite3.Connection:
        return self._db.conn

    # ------------------------------------------------------------------
    # Config
    # ------------------------------------------------------------------

    def get_config(self, key: str) -> str | None:
        row = self._conn.execute("SELECT value FROM config WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    @with_store_retry
    def set_config(self, key: str, value: str) -> None:
        with self._db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO config (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (key, value),
            )

    # ------------------------------------------------------------------
    # Models and versions
    # ------------------------------------------------------------------

    @with_store_retry
    def add_model(self, name: str, model_type: str) -> Model:
        """Insert a new model record and return it with its id."""
        with self._db.transaction() as conn:
            cur = conn.execute(
                "INSERT INTO models (name, model_type) VALUES (?, ?)", (name, model_type)
            )
            model_id = cur.lastrowid
        return self.get_model(model_id)

    def get_model(self, model_id: int) -> Model | None:
        row = self._conn.execute(
            "SELECT id, name, model_type, created_at FROM models WHERE id = ? AND deleted_at IS NULL",
            (model_id,),
        ).fetchone()
        return _row_to_model(row) if row else None

    def get_model_by_name(self, name: str) -> Model | None:
        row = self._conn.execute(
            "SELECT id, name, model_type, created_at FROM models WHERE name = ? AND deleted_at IS NULL",
            (name,),
        ).fetchone()
        return _row_to_model(row) if row else None

    def list_models(self) -> list[Model]:
        rows = self._conn.execute(
            "SELECT id, name, model_type, created_at FROM models WHERE deleted_at IS NULL ORDER BY id"
        ).fetchall()
        return [_row_to_model(r) for r in rows]

    @with_store_retry
    def add_model_version(self, model_id: int, weights_filename: str) -> ModelVersion:
        """Register a new ``pending`` version numbered after the latest one."""
        with self._db.transaction() as conn:
            row = conn.execute(
                "SELECT MAX(version) FROM model_versions WHERE model_id = ?", (model_id,)
            ).fetchone()
            version = 0 if row[0] is None else row[0] + 1
            conn.execute(
                """
                INSERT INTO model_versions (model_id, version, status, weights_filename)
                VALUES (?, ?, ?, ?)
                """,
                (model_id, version, ModelStatus.PENDING.value, weights_filename),
            )
        return self.get_model_version(model_id, version)

    def get_model_version(self, model_id: int, version: int) -> ModelVersion | None:
        row = self._conn.execute(
            """
            SELECT model_id, version, status, weights_filename, dimensions, created_at
            FROM model_versions WHERE model_id = ? AND version = ?
            """,
            (model_id, version),
        ).fetchone()
        return _row_to_model_version(row) if row else None

    def list_model_versions(self, model_id: int) -> list[ModelVersion]:
        rows = self._conn.execute(
            """
            SELECT model_id, version, status, weights_filename, dimensions, created_at
            FROM model_versions WHERE model_id = ? ORDER BY version
            """,
            (model_id,),
        ).fetchall()
        return [_row_to_model_version(r) for r in rows]

    @with_store_retry
    def set_model_version_status(
        self,
        model_id: int,
        version: int,
        status: ModelStatus,
        dimensions: int | None = None,
    ) -> None:
        with self._db.transaction() as conn:
            conn.execute(
                """
                UPDATE model_versions SET status = ?, dimensions = COALESCE(?, dimensions)
                WHERE model_id = ? AND version = ?
                """,
                (status.value, dimensions, model_id, version),
            )

    @with_store_retry
    def delete_model_version(self, model_id: int, version: int) -> None:
        """Delete a version; its embeddings go with it (ON DELETE CASCADE)."""
        with self._db.transaction() as conn:
            conn.execute(
                "DELETE FROM model_versions WHERE model_id = ? AND version = ?",
                (model_id, version),
            )
            if self.get_config(_active_version_key(model_id)) == str(version):
                conn.execute("DELETE FROM config WHERE key = ?", (_active_version_key(model_id),))

    def get_active_model(self) -> ActiveModel | None:
        """Return the active (model, version) if it is set and ``ready``."""
        model_id = self.get_config(_ACTIVE_MODEL_KEY)
        if model_id is None:
            return None
        model = self.get_model(int(model_id))
        if model is None:
            return None
        version = self.get_config(_active_version_key(model.id))
        if version is None:
            return None
        model_version = self.get_model_version(model.id, int(version))
        if model_version is None or not model_version.ready:
            return None
        return ActiveModel(model=model, version=model_version)

    @with_store_retry
    def set_active_model(self, model_id: int, version: int) -> None:
        """Make (model_id, version) the active model selection in one transaction."""
        with self._db.transaction() as conn:
            for key, value in (
                (_ACTIVE_MODEL_KEY, str(model_id)),
                (_active_version_key(model_id), str(version)),
            ):
                conn.execute(
                    """
                    INSERT INTO config (key, value) VALUES (?, ?)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value
                    """,
                    (key, value),
                )

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    @with_store_retry
    def add_source(self, source: Source) -> Source:
        """Insert a new source record; returns it with ``id`` set."""
        with self._db.transaction() as conn:
            cur = conn.execute(
                """
                INSERT INTO sources (name, source_type, config, location, compare_strategy,
                                     status, index_interval)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    source.name,
                    source.source_type,
                    source.config,
                    source.location,
                    source.compare_strategy.value,
                    source.status.value,
                    source.index_interval,
                ),
            )
            source.id = cur.lastrowid
        return source

    def get_source(self, source_id: int) -> Source | None:
        row = self._conn.execute(
            f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE id = ? AND deleted_at IS NULL",
            (source_id,),
        ).fetchone()
        return _row_to_source(row) if row else None

    def list_sources(self) -> list[Source]:
        """Return all live sources ordered by id."""
        rows = self._conn.execute(
            f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE deleted_at IS NULL ORDER BY id"
        ).fetchall()
        return [_row_to_source(r) for r in rows]

    @with_store_retry
    def set_source_status(
        self, source_id: int, status: SourceStatus, message: str | None = None
    ) -> None:
        with self._db.transaction() as conn:
            conn.execute(
                "UPDATE sources SET status = ?, status_message = ? WHERE id = ?",
                (status.value, message, source_id),
            )

    @with_store_retry
    def complete_source_sync(self, source_id: int) -> int:
        """Advance ``index_version``, stamp ``last_indexed``; returns the new version."""
        with self._db.transaction() as conn:
            conn.execute(
                """
                UPDATE sources
                SET index_version = index_version + 1,
                    last_indexed = datetime('now')
                WHERE id = ?
                """,
                (source_id,),
            )
            row = conn.execute(
                "SELECT index_version FROM sources WHERE id = ?", (source_id,)
            ).fetchone()
        return row["index_version"]

    @with_store_retry
    def reset_interrupted_sources(self) -> int:
        """Return sources left ``syncing`` by a previous process to ``idle``."""
        with self._db.transaction() as conn:
            cur = conn.execute(
                "UPDATE sources SET status = ? WHERE status = ?",
                (SourceStatus.IDLE.value, SourceStatus.SYNCING.value),
            )
        return cur.rowcount

    def sources_due(self) -> list[Source]:
        """Live sources with an ``index_interval`` whose last sync is older than it."""
        rows = self._conn.execute(
            f"""
            SELECT {_SOURCE_COLUMNS} FROM sources
            WHERE deleted_at IS NULL AND index_interval IS NOT NULL AND status != ?
              AND (last_indexed IS NULL
                   OR strftime('%s', 'now') - strftime('%s', last_indexed) >= index_interval)
            ORDER BY id
            """,
            (SourceStatus.SYNCING.value,),
        ).fetchall()
        return [_row_to_source(r) for r in rows]

    @with_store_retry
    def delete_source(self, source_id: int) -> list[int]:
        """Soft-delete a source and all of its live items; returns the item ids."""
        with self._db.transaction() as conn:
            ids = [
                r["id"]
                for r in conn.execute(
                    "SELECT id FROM items WHERE source_id = ? AND deleted_at IS NULL",
                    (source_id,),
                ).fetchall()
            ]
            conn.execute(
                "UPDATE items SET deleted_at = datetime('now') WHERE source_id = ? AND deleted_at IS NULL",
                (source_id,),
            )
            conn.execute(
                "UPDATE sources SET deleted_at = datetime('now') WHERE id = ?", (source_id,)
            )
        return ids

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def lookup_item(
        self,
        source_id: int,
        external_id: str,
        active: tuple[int, int] | None = None,
    ) -> ExistingItem | None:
        """Find the live item for (source_id, external_id).

        Args:
            source_id: Owning source.
            external_id: Path, URL, etc. of the item within the source.
            active: (model_id, model_version) to check embedding freshness against.
        """
        model_id, model_version = active if active else (-1, -1)
        row = self._conn.execute(
            f"""
            SELECT {_ITEM_COLUMNS},
                   EXISTS (
                       SELECT 1 FROM item_embeddings ie
                       WHERE ie.item_id = items.id AND ie.model_id = ? AND ie.model_version = ?
                         AND ie.item_index_version = items.version
                   ) AS has_valid_embedding
            FROM items
            WHERE source_id = ? AND external_id = ? AND deleted_at IS NULL
            """,
            (model_id, model_version, source_id, external_id),
        ).fetchone()
        if row is None:
            return None
        return ExistingItem(item=_row_to_item(row), has_valid_embedding=bool(row["has_valid_embedding"]))

    def get_item(self, item_id: int) -> Item | None:
        row = self._conn.execute(
            f"SELECT {_ITEM_COLUMNS} FROM items WHERE id = ?", (item_id,)
        ).fetchone()
        return _row_to_item(row) if row else None

    def list_items(self, source_id: int, include_deleted: bool = False) -> list[Item]:
        sql = f"SELECT {_ITEM_COLUMNS} FROM items WHERE source_id = ?"
        if not include_deleted:
            sql += " AND deleted_at IS NULL"
        rows = self._conn.execute(sql + " ORDER BY id", (source_id,)).fetchall()
        return [_row_to_item(r) for r in rows]

    def count_items(self, source_id: int | None = None) -> int:
        if source_id is None:
            return self._conn.execute(
                "SELECT COUNT(*) FROM items WHERE deleted_at IS NULL"
            ).fetchone()[0]
        return self._conn.execute(
            "SELECT COUNT(*) FROM items WHERE source_id = ? AND deleted_at IS NULL", (source_id,)
        ).fetchone()[0]

    @with_store_retry
    def insert_item(self, item: Item) -> int:
        """Insert a new live item; sets and returns ``item.id``."""
        with self._db.transaction() as conn:
            cur = conn.execute(
                """
                INSERT INTO items (source_id, external_id, version, hash, content, raw_content,
                                   content_type, process_version, name, author, description,
                                   modified, last_accessed, skipped)
                VALUES (:source_id, :external_id, :version, :hash, :content, :raw_content,
                        :content_type, :process_version, :name, :author, :description,
                        :modified, :last_accessed, :skipped)
                """,
                _item_params(item),
            )
            item.id = cur.lastrowid
        return item.id

    @with_store_retry
    def update_item(self, item: Item) -> None:
        """Replace content, hash, metadata and version of an existing item."""
        with self._db.transaction() as conn:
            conn.execute(
                """
                UPDATE items
                SET version = :version, hash = :hash, content = :content,
                    raw_content = :raw_content, content_type = :content_type,
                    process_version = :process_version, name = :name, author = :author,
                    description = :description, modified = :modified,
                    last_accessed = :last_accessed, skipped = :skipped
                WHERE id = :id
                """,
                {**_item_params(item), "id": item.id},
            )

    @with_store_retry
    def touch_item(self, item_id: int, last_accessed: int | None) -> None:
        """Record a newer access time for an unchanged item."""
        if last_accessed is None:
            return
        with self._db.transaction() as conn:
            conn.execute(
                """
                UPDATE items SET last_accessed = ?
                WHERE id = ? AND (last_accessed IS NULL OR last_accessed < ?)
                """,
                (last_accessed, item_id, last_accessed),
            )

    @with_store_retry
    def mark_items_skipped(self, item_ids: Iterable[int], reason: SkipReason) -> None:
        ids = list(item_ids)
        if not ids:
            return
        with self._db.transaction() as conn:
            conn.executemany(
                "UPDATE items SET skipped = ? WHERE id = ?", [(reason.value, i) for i in ids]
            )

    @with_store_retry
    def soft_delete_missing(self, source_id: int, seen_ids: set[int]) -> list[int]:
        """Soft-delete live items of *source_id* not in *seen_ids*; returns their ids."""
        with self._db.transaction() as conn:
            live = [
                r["id"]
                for r in conn.execute(
                    "SELECT id FROM items WHERE source_id = ? AND deleted_at IS NULL",
                    (source_id,),
                ).fetchall()
            ]
            missing = [i for i in live if i not in seen_ids]
            conn.executemany(
                "UPDATE items SET deleted_at = datetime('now') WHERE id = ?",
                [(i,) for i in missing],
            )
        return missing

    @with_store_retry
    def set_item_hidden(self, item_id: int, hidden: bool) -> bool:
        """Hide or unhide an item; returns False if the item does not exist."""
        with self._db.transaction() as conn:
            cur = conn.execute(
                "UPDATE items SET hidden_at = CASE WHEN ? THEN datetime('now') ELSE NULL END WHERE id = ?",
                (1 if hidden else 0, item_id),
            )
        return cur.rowcount > 0

    def items_needing_embedding(
        self, model_id: int, model_version: int, source_id: int | None = None
    ) -> Iterator[Item]:
        """Live, visible, non-skipped items with no fresh embedding for the version."""
        sql = f"""
            SELECT {_ITEM_COLUMNS} FROM items
            WHERE deleted_at IS NULL AND hidden_at IS NULL AND skipped IS NULL
              AND NOT EXISTS (
                  SELECT 1 FROM item_embeddings ie
                  WHERE ie.item_id = items.id AND ie.model_id = ? AND ie.model_version = ?
                    AND ie.item_index_version = items.version
              )
        """
        params: list = [model_id, model_version]
        if source_id is not None:
            sql += " AND source_id = ?"
            params.append(source_id)
        conn = self._db.connect()
        try:
            for row in conn.execute(sql + " ORDER BY id", params):
                yield _row_to_item(row)
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------

    @with_store_retry
    def upsert_embeddings(
        self,
        model_id: int,
        model_version: int,
        rows: list[tuple[int, int, bytes]],
    ) -> list[int]:
        """Write (item_id, item_version, blob) rows in one transaction.

        A row is only written if the item is still live and visible at
        *item_version*;
        rows for items that changed or vanished meanwhile are dropped.

        Returns:
            Item ids whose embedding was written.
        """
        written: list[int] = []
        with self._db.transaction() as conn:
            for item_id, item_version, blob in rows:
                cur = conn.execute(
                    """
                    INSERT INTO item_embeddings
                        (model_id, model_version, item_id, item_index_version, embedding)
                    SELECT ?, ?, id, version, ? FROM items
                    WHERE id = ? AND version = ? AND deleted_at IS NULL AND hidden_at IS NULL
                    ON CONFLICT (model_id, model_version, item_id) DO UPDATE
                        SET item_index_version = excluded.item_index_version,
                            embedding = excluded.embedding
                    """,
                    (model_id, model_version, blob, item_id, item_version),
                )
                if cur.rowcount > 0:
                    written.append(item_id)
        return written

    def get_embedding(self, model_id: int, model_version: int, item_id: int) -> tuple[int, bytes] | None:
        """Return (item_index_version, blob) or None."""
        row = self._conn.execute(
            """
            SELECT item_index_version, embedding FROM item_embeddings
            WHERE model_id = ? AND model_version = ? AND item_id = ?
            """,
            (model_id, model_version, item_id),
        ).fetchone()
        return (row["item_index_version"], row["embedding"]) if row else None

    def iter_valid_embeddings(self, model_id: int, model_version: int) -> Iterator[tuple[int, bytes]]:
        """Yield (item_id, blob) for every valid embedding of the version.

        Uses a dedicated connection so the scan can run while the calling
        thread's connection is used for other statements.
        """
        conn = self._db.connect()
        try:
            cursor = conn.execute(
                """
                SELECT ie.item_id, ie.embedding
                FROM item_embeddings ie
                JOIN items i ON i.id = ie.item_id
                JOIN model_versions mv
                  ON mv.model_id = ie.model_id AND mv.version = ie.model_version
                WHERE ie.model_id = ? AND ie.model_version = ? AND mv.status = ?
                  AND ie.item_index_version = i.version
                  AND i.deleted_at IS NULL AND i.hidden_at IS NULL
                ORDER BY ie.item_id
                """,
                (model_id, model_version, ModelStatus.READY.value),
            )
            for row in cursor:
                yield row["item_id"], row["embedding"]
        finally:
            conn.close()

    def valid_embedding_ids(self, model_id: int, model_version: int) -> set[int]:
        return {item_id for item_id, _ in self.iter_valid_embeddings(model_id, model_version)}

    def count_embeddings(self, model_id: int, model_version: int) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM item_embeddings WHERE model_id = ? AND model_version = ?",
            (model_id, model_version),
        ).fetchone()[0]

    def join_candidates(
        self,
        item_ids: list[int],
        model_id: int,
        model_version: int,
        source_ids: list[int] | None = None,
        tags: list[str] | None = None,
    ) -> dict[int, CandidateRow]:
        """Join index hits with their items and embedding rows.

        Each returned row says whether the item passes the caller's source
        and tag filters; liveness and freshness are left to the caller.
        """
        result: dict[int, CandidateRow] = {}
        filter_sql = "1"
        filter_params: list = []
        if source_ids:
            filter_sql += f" AND items.source_id IN ({','.join('?' * len(source_ids))})"
            filter_params.extend(source_ids)
        if tags:
            filter_sql += f"""
                AND EXISTS (
                    SELECT 1 FROM item_tags it JOIN tags t ON t.id = it.tag_id
                    WHERE it.item_id = items.id AND t.name IN ({','.join('?' * len(tags))})
                )"""
            filter_params.extend(tags)

        for start in range(0, len(item_ids), _MAX_PARAMS):
            chunk = item_ids[start : start + _MAX_PARAMS]
            rows = self._conn.execute(
                f"""
                SELECT {_ITEM_COLUMNS}, ie.item_index_version AS item_index_version,
                       ({filter_sql}) AS passes_filters
                FROM items
                LEFT JOIN item_embeddings ie
                  ON ie.item_id = items.id AND ie.model_id = ? AND ie.model_version = ?
                WHERE items.id IN ({','.join('?' * len(chunk))})
                """,  # noqa: S608
                [*filter_params, model_id, model_version, *chunk],
            ).fetchall()
            for row in rows:
                result[row["id"]] = CandidateRow(
                    item=_row_to_item(row),
                    item_index_version=row["item_index_version"],
                    passes_filters=bool(row["passes_filters"]),
                )
        return result

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    @with_store_retry
    def add_tag(self, name: str, description: str | None = None, color: str = "gray") -> Tag:
        with self._db.transaction() as conn:
            cur = conn.execute(
                "INSERT INTO tags (name, description, color) VALUES (?, ?, ?)",
                (name, description, color),
            )
        return Tag(id=cur.lastrowid, name=name, description=description, color=color)

    def get_tag_by_name(self, name: str) -> Tag | None:
        row = self._conn.execute(
            "SELECT id, name, description, color FROM tags WHERE name = ?", (name,)
        ).fetchone()
        return _row_to_tag(row) if row else None

    def list_tags(self) -> list[Tag]:
        rows = self._conn.execute(
            "SELECT id, name, description, color FROM tags ORDER BY name"
        ).fetchall()
        return [_row_to_tag(r) for r in rows]

    @with_store_retry
    def tag_item(self, item_id: int, tag_id: int) -> None:
        with self._db.transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO item_tags (item_id, tag_id) VALUES (?, ?)", (item_id, tag_id)
            )

    @with_store_retry
    def untag_item(self, item_id: int, tag_id: int) -> None:
        with self._db.transaction() as conn:
            conn.execute(
                "DELETE FROM item_tags WHERE item_id = ? AND tag_id = ?", (item_id, tag_id)
            )

    @with_store_retry
    def delete_tag(self, tag_id: int) -> None:
        """Delete a tag; its item_tags rows cascade."""
        with self._db.transaction() as conn:
            conn.execute("DELETE FROM tags WHERE id = ?", (tag_id,))

    def tags_for_item(self, item_id: int) -> list[Tag]:
        rows = self._conn.execute(
            """
            SELECT t.id, t.name, t.description, t.color
            FROM tags t JOIN item_tags it ON it.tag_id = t.id
            WHERE it.item_id = ? ORDER BY t.name
            """,
            (item_id,),
        ).fetchall()
        return [_row_to_tag(r) for r in rows]


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _item_params(item: Item) -> dict:
    return {
        "source_id": item.source_id,
        "external_id": item.external_id,
        "version": item.version,
        "hash": item.hash,
        "content": item.content,
        "raw_content": item.raw_content,
        "content_type": item.content_type,
        "process_version": item.process_version,
        "name": item.name,
        "author": item.author,
        "description": item.description,
        "modified": item.modified,
        "last_accessed": item.last_accessed,
        "skipped": item.skipped.value if item.skipped else None,
    }


def _row_to_model(row: sqlite3.Row) -> Model:
    return Model(
        id=row["id"],
        name=row["name"],
        model_type=row["model_type"],
        created_at=row["created_at"],
    )


def _row_to_model_version(row: sqlite3.Row) -> ModelVersion:
    return ModelVersion(
        model_id=row["model_id"],
        version=row["version"],
        status=ModelStatus(row["status"]),
        weights_filename=row["weights_filename"],
        dimensions=row["dimensions"],
        created_at=row["created_at"],
    )


def _row_to_source(row: sqlite3.Row) -> Source:
    return Source(
        id=row["id"],
        name=row["name"],
        source_type=row["source_type"],
        config=row["config"],
        location=row["location"],
        compare_strategy=CompareStrategy(row["compare_strategy"]),
        status=SourceStatus(row["status"]),
        status_message=row["status_message"],
        last_indexed=row["last_indexed"],
        index_version=row["index_version"],
        index_interval=row["index_interval"],
    )


def _row_to_item(row: sqlite3.Row) -> Item:
    return Item(
        id=row["id"],
        source_id=row["source_id"],
        external_id=row["external_id"],
        version=row["version"],
        hash=row["hash"],
        content=row["content"],
        raw_content=row["raw_content"],
        content_type=row["content_type"],
        process_version=row["process_version"],
        name=row["name"],
        author=row["author"],
        description=row["description"],
        modified=row["modified"],
        last_accessed=row["last_accessed"],
        skipped=SkipReason(row["skipped"]) if row["skipped"] else None,
        hidden_at=row["hidden_at"],
        deleted_at=row["deleted_at"],
    )


def _row_to_tag(row: sqlite3.Row) -> Tag:
    return Tag(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        color=row["color"],
    )


def source_config_json(config: dict) -> str:
    """Serialise a source configuration dict the way it is stored."""
    return json.dumps(config, sort_keys=True)
