"""Query engine: embed a query, search the active index, join back to the store.

The index is over-fetched (``top_k * overfetch``) because some hits are
filtered after the join: deleted, hidden, or stale items, and items outside
the caller's source/tag filters. If too few survive and the index returned
a full page, the search is retried with twice the ``k``.

A hit with no embedding row at all means the index has drifted from the
store; the index is rebuilt once and the query rerun.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

import numpy as np

from perceive.db.repository import CandidateRow, Repository
from perceive.errors import IndexConsistencyError
from perceive.index.hnsw import HnswIndex
from perceive.index.registry import IndexRegistry
from perceive.model.lifecycle import ModelManager

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


@dataclass
class SearchConfig:
    """Configuration for the query engine.

    Attributes:
        top_k: Results returned when the caller does not say.
        overfetch: Multiplier on top_k for the first index search.
        max_retries: Times k is doubled when filtering leaves too few hits.
        excerpt_chars: Length of the content excerpt on each result.
    """

    top_k: int = 10
    overfetch: int = 3
    max_retries: int = 3
    excerpt_chars: int = 240


@dataclass
class SearchFilters:
    """Restrict results to some sources and/or items carrying any of some tags."""

    source_ids: list[int] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)


@dataclass
class SearchResult:
    """One ranked hit.

    Attributes:
        distance: Index distance (cosine: 1 - cos similarity).
        score: Similarity, higher is better.
    """

    item_id: int
    source_id: int
    external_id: str
    name: str | None
    author: str | None
    description: str | None
    modified: int | None
    excerpt: str
    distance: float
    score: float


class _OrphanHit(Exception):
    def __init__(self, item_id: int) -> None:
        super().__init__(item_id)
        self.item_id = item_id


class QueryEngine:
    """Answers natural-language queries with the active model version."""

    def __init__(
        self,
        repo: Repository,
        registry: IndexRegistry,
        models: ModelManager,
        config: SearchConfig | None = None,
    ) -> None:
        self._repo = repo
        self._registry = registry
        self._models = models
        self.config = config or SearchConfig()

    def search(
        self,
        query: str,
        top_k: int | None = None,
        filters: SearchFilters | None = None,
    ) -> list[SearchResult]:
        """Return up to *top_k* results, best first.

        Raises:
            ModelNotReadyError: If no ready model version is active.
            IndexConsistencyError: If the index still disagrees with the store
                after a rebuild.
        """
        top_k = top_k or self.config.top_k
        filters = filters or SearchFilters()
        if not query.strip():
            return []

        active = self._models.require_active()
        handle = self._models.handle_for(active)
        model_id, version = active.key
        vector = handle.embed([query])[0]

        index = self._registry.get_or_build(model_id, version, handle.dim)
        try:
            return self._search_index(index, vector, top_k, filters, model_id, version)
        except _OrphanHit as orphan:
            logger.warning(
                "Item %d is in the index for model %d version %d but has no embedding; rebuilding",
                orphan.item_id,
                model_id,
                version,
            )
        index = self._registry.rebuild(model_id, version, handle.dim)
        try:
            return self._search_index(index, vector, top_k, filters, model_id, version)
        except _OrphanHit as orphan:
            raise IndexConsistencyError(
                f"Item {orphan.item_id} has no embedding after rebuilding the index",
                model_id=model_id,
                model_version=version,
            ) from None

    def _search_index(
        self,
        index: HnswIndex,
        vector: np.ndarray,
        top_k: int,
        filters: SearchFilters,
        model_id: int,
        version: int,
    ) -> list[SearchResult]:
        k = top_k * self.config.overfetch
        results: list[SearchResult] = []
        for attempt in range(self.config.max_retries + 1):
            hits = index.search(vector, k)
            rows = self._repo.join_candidates(
                [item_id for item_id, _ in hits],
                model_id,
                version,
                source_ids=filters.source_ids or None,
                tags=filters.tags or None,
            )
            results = []
            for item_id, distance in hits:
                row = rows.get(item_id)
                if row is None or row.item_index_version is None:
                    raise _OrphanHit(item_id)
                if row.is_live and row.is_fresh and row.passes_filters:
                    results.append(self._to_result(row, distance, index.params.metric))
            if len(results) >= top_k or len(hits) < k:
                break
            logger.debug("Only %d of %d hits survived filtering (attempt %d); widening", len(results), len(hits), attempt + 1)
            k *= 2
        return results[:top_k]

    def _to_result(self, row: CandidateRow, distance: float, metric: str) -> SearchResult:
        item = row.item
        score = 1.0 - distance if metric == "cosine" else 1.0 / (1.0 + distance)
        return SearchResult(
            item_id=item.id,
            source_id=item.source_id,
            external_id=item.external_id,
            name=item.name,
            author=item.author,
            description=item.description,
            modified=item.modified,
            excerpt=excerpt(item.content, self.config.excerpt_chars),
            distance=distance,
            score=score,
        )


def excerpt(content: str, limit: int) -> str:
    """Collapse whitespace and cut *content* to *limit* characters at a word boundary."""
    text = _WHITESPACE.sub(" ", content or "").strip()
    if len(text) <= limit:
        return text
    cut = text[:limit].rsplit(" ", 1)[0] or text[:limit]
    return cut + "…"
