"""One HNSW index per (model, version), built lazily from the item store."""

from __future__ import annotations

import logging
import threading

from perceive.db.repository import Repository
from perceive.db.vectors import deserialize_embedding
from perceive.errors import IndexConsistencyError
from perceive.index.hnsw import HnswIndex, IndexParams, IndexRetired

logger = logging.getLogger(__name__)

IndexKey = tuple[int, int]


class IndexRegistry:
    """Holds the loaded vector indexes and keeps them in step with the store.

    The store is authoritative: any index can be thrown away and rebuilt
    from the valid embeddings of its model version.
    """

    def __init__(self, repo: Repository, params: IndexParams | None = None) -> None:
        self._repo = repo
        self._params = params or IndexParams()
        self._indexes: dict[IndexKey, HnswIndex] = {}
        self._lock = threading.Lock()
        self._build_locks: dict[IndexKey, threading.Lock] = {}
        # Item ids whose store state changed while an index was being built.
        self._pending: dict[IndexKey, set[int]] = {}

    def get(self, model_id: int, version: int) -> HnswIndex | None:
        with self._lock:
            return self._indexes.get((model_id, version))

    def loaded_keys(self) -> list[IndexKey]:
        with self._lock:
            return list(self._indexes)

    def get_or_build(self, model_id: int, version: int, dim: int) -> HnswIndex:
        """Return the loaded index for the version, building it on first use."""
        key = (model_id, version)
        with self._lock:
            index = self._indexes.get(key)
            if index is not None:
                return index
            build_lock = self._build_locks.setdefault(key, threading.Lock())
        with build_lock:
            with self._lock:
                index = self._indexes.get(key)
                if index is not None:
                    return index
            return self._build(key, dim)

    def rebuild(self, model_id: int, version: int, dim: int) -> HnswIndex:
        """Replace the index for the version with a fresh one built from the store."""
        key = (model_id, version)
        with self._lock:
            build_lock = self._build_locks.setdefault(key, threading.Lock())
        with build_lock:
            logger.warning("Rebuilding vector index for model %d version %d", model_id, version)
            return self._build(key, dim)

    def drop(self, model_id: int, version: int) -> None:
        with self._lock:
            self._indexes.pop((model_id, version), None)
            self._build_locks.pop((model_id, version), None)

    def verify(self, model_id: int, version: int) -> None:
        """Check the loaded index holds exactly the store's valid embeddings.

        Raises:
            IndexConsistencyError: If the id sets differ.
        """
        index = self.get(model_id, version)
        if index is None:
            return
        expected = self._repo.valid_embedding_ids(model_id, version)
        actual = index.ids()
        if expected != actual:
            missing = len(expected - actual)
            extra = len(actual - expected)
            raise IndexConsistencyError(
                f"Index for model {model_id} version {version} is out of step with the store "
                f"({missing} missing, {extra} unexpected)",
                model_id=model_id,
                model_version=version,
            )

    def record_embedded(self, model_id: int, version: int, item_ids: list[int]) -> None:
        """Note vectors committed to the store while the version's index is being built.

        The embedding pipeline calls this from its commit, under the write
        lock of the index it committed through.
        """
        with self._lock:
            pending = self._pending.get((model_id, version))
            if pending is not None:
                pending.update(item_ids)

    def remove_item(self, item_id: int) -> None:
        """Take *item_id* out of every loaded index."""
        for _, index in self._touch(item_id):
            try:
                index.remove(item_id)
            except IndexRetired:
                # The replacing index reconciled the item from the store.
                continue

    def restore_item(self, item_id: int) -> None:
        """Put an item back into every loaded index that has a valid embedding for it."""
        item = self._repo.get_item(item_id)
        if item is None or item.deleted_at is not None or item.hidden_at is not None:
            return
        for (model_id, version), index in self._touch(item_id):
            stored = self._repo.get_embedding(model_id, version, item_id)
            if stored is None or stored[0] != item.version:
                continue
            try:
                index.insert(item_id, deserialize_embedding(stored[1]))
            except IndexRetired:
                continue

    def _touch(self, item_id: int) -> list[tuple[IndexKey, HnswIndex]]:
        """Snapshot the loaded indexes and mark *item_id* for builds in progress."""
        with self._lock:
            for pending in self._pending.values():
                pending.add(item_id)
            return list(self._indexes.items())

    def _build(self, key: IndexKey, dim: int) -> HnswIndex:
        model_id, version = key
        with self._lock:
            self._pending[key] = set()
            old = self._indexes.get(key)
        try:
            index = HnswIndex(dim, self._params)
            for item_id, blob in self._repo.iter_valid_embeddings(model_id, version):
                index.insert(item_id, deserialize_embedding(blob))
            if old is None:
                self._publish(key, index)
            else:
                # Commits go through the old index under its write lock, so
                # holding it keeps the pending set complete until the swap.
                with old.lock.write():
                    self._publish(key, index)
                    old.retire()
        finally:
            with self._lock:
                self._pending.pop(key, None)
        logger.info(
            "Built vector index for model %d version %d with %d vectors", model_id, version, len(index)
        )
        return index

    def _publish(self, key: IndexKey, index: HnswIndex) -> None:
        """Reconcile items changed during the scan with the store, then swap *index* in."""
        model_id, version = key
        with self._lock:
            for item_id in sorted(self._pending.pop(key, set())):
                item = self._repo.get_item(item_id)
                stored = self._repo.get_embedding(model_id, version, item_id)
                if (
                    item is not None
                    and item.deleted_at is None
                    and item.hidden_at is None
                    and stored is not None
                    and stored[0] == item.version
                ):
                    index.insert(item_id, deserialize_embedding(stored[1]))
                else:
                    index.remove(item_id)
            self._indexes[key] = index
