"""In-memory HNSW (hierarchical navigable small world) vector index.

Graph layout follows Malkov & Yashunin: every node gets a random top level
``floor(-ln(U) * mL)`` with ``mL = 1 / ln(M)``; upper layers keep at most
``M`` links per node, layer 0 keeps ``2 * M``. Neighbours are chosen with the
diversity heuristic (a candidate is skipped when an already selected
neighbour is closer to it than the base node is).

Removal tombstones a node: it keeps routing searches but is never returned.
When tombstones pass ``compact_ratio`` of all nodes the graph is rebuilt
from the live vectors.

Distances:
  cosine  1 - dot(a, b) on L2-normalised vectors, clamped at 0
  l2      Euclidean distance
"""

from __future__ import annotations

import heapq
import logging
import math
import random
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

import numpy as np

from perceive.concurrency import RWLock

logger = logging.getLogger(__name__)

_METRICS = ("cosine", "l2")
_INITIAL_CAPACITY = 64


class IndexRetired(Exception):
    """Write attempted on an index that a rebuild has replaced."""


@dataclass
class IndexParams:
    """Tuning parameters for one HNSW graph.

    Attributes:
        m: Max links per node on layers >= 1 (layer 0 allows 2 * m).
        ef_construction: Candidate list size while inserting.
        ef_search: Minimum candidate list size while searching.
        metric: 'cosine' or 'l2'.
        compact_ratio: Tombstone fraction that triggers a rebuild.
        seed: Seed for level assignment; None for a random seed.
    """

    m: int = 16
    ef_construction: int = 100
    ef_search: int = 64
    metric: str = "cosine"
    compact_ratio: float = 0.25
    seed: int | None = None

    def __post_init__(self) -> None:
        if self.metric not in _METRICS:
            raise ValueError(f"Unsupported metric '{self.metric}' (expected one of {_METRICS})")
        if self.m < 2:
            raise ValueError("m must be >= 2")


class HnswIndex:
    """Approximate k-NN index mapping item ids to float32 vectors.

    Searches share the read side of an RWLock; inserts, removals and
    compaction take the write side.
    """

    def __init__(self, dim: int, params: IndexParams | None = None) -> None:
        if dim < 1:
            raise ValueError("dim must be >= 1")
        self.dim = dim
        self.params = params or IndexParams()
        self.lock = RWLock()
        self._rng = random.Random(self.params.seed)
        self._ml = 1.0 / math.log(self.params.m)
        self._retired = False
        self._reset()

    def _reset(self) -> None:
        self._vectors = np.empty((_INITIAL_CAPACITY, self.dim), dtype=np.float32)
        self._ids: list[int] = []  # node -> item id
        self._levels: list[int] = []
        self._links: list[list[list[int]]] = []  # node -> layer -> neighbour nodes
        self._node_of: dict[int, int] = {}  # live item id -> node
        self._deleted: set[int] = set()
        self._entry: int | None = None
        self._max_level = -1

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._node_of)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._node_of

    def ids(self) -> set[int]:
        """Ids of all live (non-tombstoned) items."""
        with self.lock.read():
            return set(self._node_of)

    @property
    def retired(self) -> bool:
        return self._retired

    @property
    def tombstones(self) -> int:
        return len(self._deleted)

    def get_vector(self, item_id: int) -> np.ndarray | None:
        with self.lock.read():
            node = self._node_of.get(item_id)
            return None if node is None else self._vectors[node].copy()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, item_id: int, vector: Any) -> None:
        """Insert *vector* for *item_id*, replacing any previous vector."""
        vec = self._prepare(vector)
        with self.lock.write():
            self._check_live()
            self._insert(item_id, vec)
            self._maybe_compact()

    def insert_batch(
        self,
        pairs: Iterable[tuple[int, Any]],
        commit: Callable[[], Iterable[int] | None] | None = None,
    ) -> list[int]:
        """Insert several vectors and run *commit* under the same write lock.

        *commit* persists the batch and returns the ids it actually accepted
        (None means all of them). Vectors for rejected ids are taken out
        again; if *commit* raises, the whole batch is rolled back and the
        exception propagates.

        Returns:
            Item ids that ended up in the index.

        Raises:
            IndexRetired: If a rebuild replaced this index; *commit* is not run.
        """
        prepared = [(item_id, self._prepare(v)) for item_id, v in pairs]
        with self.lock.write():
            self._check_live()
            undo: list[tuple[int, int | None]] = []
            for item_id, vec in prepared:
                undo.append((item_id, self._node_of.get(item_id)))
                self._insert(item_id, vec)
            try:
                accepted = commit() if commit is not None else None
            except BaseException:
                self._rollback(undo)
                raise
            if accepted is not None:
                keep = set(accepted)
                self._rollback([u for u in undo if u[0] not in keep])
                inserted = [item_id for item_id, _ in prepared if item_id in keep]
            else:
                inserted = [item_id for item_id, _ in prepared]
            self._maybe_compact()
        return inserted

    def remove(self, item_id: int) -> bool:
        """Tombstone *item_id*; returns False if it was not in the index."""
        with self.lock.write():
            self._check_live()
            node = self._node_of.pop(item_id, None)
            if node is None:
                return False
            self._deleted.add(node)
            self._maybe_compact()
            return True

    def retire(self) -> None:
        """Refuse further writes. The caller holds the write lock."""
        self._retired = True

    def compact(self) -> None:
        """Rebuild the graph from live vectors, dropping all tombstones."""
        with self.lock.write():
            self._compact()

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(self, query: Any, k: int, ef: int | None = None) -> list[tuple[int, float]]:
        """Return up to *k* (item_id, distance) pairs, closest first."""
        if k < 1:
            return []
        q = self._prepare(query)
        with self.lock.read():
            if not self._node_of or self._entry is None:
                return []
            ef = max(ef or self.params.ef_search, k)
            total = len(self._ids)
            while True:
                found = self._search_from_entry(q, ef)
                live = [(d, n) for d, n in found if n not in self._deleted]
                if len(live) >= k or len(live) >= len(self._node_of) or ef >= total:
                    break
                # Tombstones crowded out live nodes; widen the beam.
                ef = min(ef * 2, total)
            return [(self._ids[n], d) for d, n in live[:k]]

    # ------------------------------------------------------------------
    # Internals (callers hold the lock)
    # ------------------------------------------------------------------

    def _check_live(self) -> None:
        if self._retired:
            raise IndexRetired("index was replaced by a rebuild")

    def _prepare(self, vector: Any) -> np.ndarray:
        vec = np.asarray(vector, dtype=np.float32).reshape(-1)
        if vec.shape[0] != self.dim:
            raise ValueError(f"Vector has {vec.shape[0]} dimensions, index expects {self.dim}")
        if self.params.metric == "cosine":
            norm = float(np.linalg.norm(vec))
            if norm > 0:
                vec = vec / norm
        return vec

    def _distances(self, q: np.ndarray, nodes: list[int]) -> list[float]:
        block = self._vectors[nodes]
        if self.params.metric == "cosine":
            return np.maximum(1.0 - block @ q, 0.0).tolist()
        return np.linalg.norm(block - q, axis=1).tolist()

    def _max_links(self, layer: int) -> int:
        return self.params.m * 2 if layer == 0 else self.params.m

    def _random_level(self) -> int:
        return int(-math.log(1.0 - self._rng.random()) * self._ml)

    def _insert(self, item_id: int, vec: np.ndarray) -> None:
        old = self._node_of.pop(item_id, None)
        if old is not None:
            self._deleted.add(old)

        node = len(self._ids)
        if node == self._vectors.shape[0]:
            grown = np.empty((node * 2, self.dim), dtype=np.float32)
            grown[:node] = self._vectors
            self._vectors = grown
        self._vectors[node] = vec
        level = self._random_level()
        self._ids.append(item_id)
        self._levels.append(level)
        self._links.append([[] for _ in range(level + 1)])
        self._node_of[item_id] = node

        if self._entry is None:
            self._entry = node
            self._max_level = level
            return

        ep = [self._entry]
        for layer in range(self._max_level, level, -1):
            ep = [self._search_layer(vec, ep, 1, layer)[0][1]]

        for layer in range(min(level, self._max_level), -1, -1):
            found = self._search_layer(vec, ep, self.params.ef_construction, layer)
            neighbours = self._select_neighbours(found, self.params.m)
            self._links[node][layer] = neighbours
            for other in neighbours:
                links = self._links[other][layer]
                links.append(node)
                if len(links) > self._max_links(layer):
                    base = self._vectors[other]
                    scored = sorted(zip(self._distances(base, links), links))
                    self._links[other][layer] = self._select_neighbours(scored, self._max_links(layer))
            ep = [n for _, n in found]

        if level > self._max_level:
            self._entry = node
            self._max_level = level

    def _search_from_entry(self, q: np.ndarray, ef: int) -> list[tuple[float, int]]:
        ep = [self._entry]
        for layer in range(self._max_level, 0, -1):
            ep = [self._search_layer(q, ep, 1, layer)[0][1]]
        return self._search_layer(q, ep, ef, 0)

    def _search_layer(
        self, q: np.ndarray, entry_points: list[int], ef: int, layer: int
    ) -> list[tuple[float, int]]:
        """Beam search on one layer; returns up to *ef* (distance, node), closest first."""
        visited = set(entry_points)
        candidates = list(zip(self._distances(q, entry_points), entry_points))
        heapq.heapify(candidates)
        results = [(-d, n) for d, n in candidates]
        heapq.heapify(results)
        while len(results) > ef:
            heapq.heappop(results)

        while candidates:
            dist, node = heapq.heappop(candidates)
            if len(results) >= ef and dist > -results[0][0]:
                break
            fresh = [n for n in self._links[node][layer] if n not in visited]
            if not fresh:
                continue
            visited.update(fresh)
            for d, n in zip(self._distances(q, fresh), fresh):
                if len(results) < ef or d < -results[0][0]:
                    heapq.heappush(candidates, (d, n))
                    heapq.heappush(results, (-d, n))
                    if len(results) > ef:
                        heapq.heappop(results)
        return sorted((-d, n) for d, n in results)

    def _select_neighbours(self, scored: list[tuple[float, int]], m: int) -> list[int]:
        """Diversity heuristic over (distance, node) pairs sorted closest first."""
        if len(scored) <= m:
            return [n for _, n in scored]
        selected: list[int] = []
        pruned: list[int] = []
        for dist, cand in scored:
            if len(selected) >= m:
                break
            if selected and min(self._distances(self._vectors[cand], selected)) < dist:
                pruned.append(cand)
                continue
            selected.append(cand)
        for cand in pruned:
            if len(selected) >= m:
                break
            selected.append(cand)
        return selected

    def _rollback(self, undo: list[tuple[int, int | None]]) -> None:
        for item_id, previous in reversed(undo):
            node = self._node_of.pop(item_id, None)
            if node is not None:
                self._deleted.add(node)
            if previous is not None:
                self._deleted.discard(previous)
                self._node_of[item_id] = previous

    def _maybe_compact(self) -> None:
        if self._ids and len(self._deleted) > self.params.compact_ratio * len(self._ids):
            self._compact()

    def _compact(self) -> None:
        live = [(item_id, self._vectors[node].copy()) for item_id, node in self._node_of.items()]
        logger.debug(
            "Compacting HNSW index: %d live nodes, %d tombstones", len(live), len(self._deleted)
        )
        self._reset()
        for item_id, vec in live:
            self._insert(item_id, vec)
