"""Embedding pipeline: batch item texts through a model handle into store and index.

Batches are bounded by request count and by an approximate token budget
(4 characters per token). Each batch is embedded with one inference call,
then inserted into the version's index and committed to the store under the
index write lock, so readers never see a vector the store does not hold.
A batch that meets an index replaced by a rebuild is committed again through
its replacement.

Failure policy: a batch that raises InferenceError is retried once item by
item; items that fail again are marked ``skipped = inference_failed``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

import numpy as np

from perceive.db.models import SkipReason
from perceive.db.repository import Repository
from perceive.db.vectors import serialize_embedding
from perceive.errors import InferenceError
from perceive.index.hnsw import IndexRetired
from perceive.index.registry import IndexRegistry
from perceive.model.runtime import ModelHandle

logger = logging.getLogger(__name__)


@dataclass
class EmbedRequest:
    """Embed ``text`` for ``item_id`` at item ``version``."""

    item_id: int
    version: int
    text: str
    source_id: int | None = None

    @property
    def tokens(self) -> int:
        """Approximate token count: 4 characters ≈ 1 token."""
        return max(1, len(self.text) // 4)


@dataclass
class BatchResult:
    """Item ids by outcome, for one or more batches.

    Attributes:
        embedded_ids: Vectors committed to store and index.
        skipped_ids: Items marked inference_failed.
        dropped_ids: Requests whose item changed or vanished before commit.
    """

    embedded_ids: list[int] = field(default_factory=list)
    skipped_ids: list[int] = field(default_factory=list)
    dropped_ids: list[int] = field(default_factory=list)

    @property
    def embedded(self) -> int:
        return len(self.embedded_ids)

    @property
    def skipped(self) -> int:
        return len(self.skipped_ids)

    @property
    def dropped(self) -> int:
        return len(self.dropped_ids)

    def __iadd__(self, other: BatchResult) -> BatchResult:
        self.embedded_ids.extend(other.embedded_ids)
        self.skipped_ids.extend(other.skipped_ids)
        self.dropped_ids.extend(other.dropped_ids)
        return self


class EmbeddingPipeline:
    """Embeds requests with one model handle and persists the vectors.

    Args:
        repo: Item store.
        registry: Index registry; the handle's index is built on first use.
        handle: Exclusive inference handle of the model version to embed with.
        batch_size: Max requests per inference call.
        token_budget: Max approximate tokens per inference call.
    """

    def __init__(
        self,
        repo: Repository,
        registry: IndexRegistry,
        handle: ModelHandle,
        batch_size: int = 32,
        token_budget: int = 8_192,
    ) -> None:
        if batch_size < 1 or token_budget < 1:
            raise ValueError("batch_size and token_budget must be >= 1")
        self._repo = repo
        self._registry = registry
        self._handle = handle
        self.batch_size = batch_size
        self.token_budget = token_budget

    @property
    def handle(self) -> ModelHandle:
        return self._handle

    def run(self, requests: Iterable[EmbedRequest]) -> BatchResult:
        """Batch and process all *requests*; returns summed counts."""
        total = BatchResult()
        for batch in self.batches(requests):
            total += self.process(batch)
        return total

    def batches(self, requests: Iterable[EmbedRequest]) -> Iterator[list[EmbedRequest]]:
        """Group *requests* by count and token budget, preserving order.

        A single request over the token budget still forms its own batch;
        the model truncates it.
        """
        batch: list[EmbedRequest] = []
        tokens = 0
        for request in requests:
            if batch and (len(batch) >= self.batch_size or tokens + request.tokens > self.token_budget):
                yield batch
                batch, tokens = [], 0
            batch.append(request)
            tokens += request.tokens
        if batch:
            yield batch

    def process(self, batch: list[EmbedRequest]) -> BatchResult:
        """Embed one batch and commit it.

        Raises:
            StoreError: If the store commit fails (the index is rolled back first).
        """
        batch = _latest_per_item(batch)
        if not batch:
            return BatchResult()
        try:
            vectors = self._handle.embed([r.text for r in batch])
            pairs = list(zip(batch, vectors))
            failed: list[EmbedRequest] = []
        except InferenceError as exc:
            logger.warning("Batch of %d failed (%s); retrying one at a time", len(batch), exc)
            pairs, failed = self._embed_singly(batch)

        result = BatchResult(skipped_ids=[r.item_id for r in failed])
        if failed:
            self._repo.mark_items_skipped(result.skipped_ids, SkipReason.INFERENCE_FAILED)
        if pairs:
            written = set(self._commit(pairs))
            for request, _ in pairs:
                target = result.embedded_ids if request.item_id in written else result.dropped_ids
                target.append(request.item_id)
        return result

    def _embed_singly(
        self, batch: list[EmbedRequest]
    ) -> tuple[list[tuple[EmbedRequest, np.ndarray]], list[EmbedRequest]]:
        pairs: list[tuple[EmbedRequest, np.ndarray]] = []
        failed: list[EmbedRequest] = []
        for request in batch:
            try:
                pairs.append((request, self._handle.embed([request.text])[0]))
            except InferenceError as exc:
                logger.warning("Item %d could not be embedded: %s", request.item_id, exc)
                failed.append(request)
        return pairs, failed

    def _commit(self, pairs: list[tuple[EmbedRequest, np.ndarray]]) -> list[int]:
        model_id, version = self._handle.key
        rows = [(r.item_id, r.version, serialize_embedding(v)) for r, v in pairs]

        def commit() -> list[int]:
            written = self._repo.upsert_embeddings(model_id, version, rows)
            self._registry.record_embedded(model_id, version, written)
            return written

        while True:
            index = self._registry.get_or_build(model_id, version, self._handle.dim)
            try:
                return index.insert_batch([(r.item_id, v) for r, v in pairs], commit=commit)
            except IndexRetired:
                logger.debug("Index for model %d version %d was rebuilt; committing again", model_id, version)


def _latest_per_item(batch: list[EmbedRequest]) -> list[EmbedRequest]:
    """Keep one request per item, the one with the highest version."""
    latest: dict[int, EmbedRequest] = {}
    for request in batch:
        current = latest.get(request.item_id)
        if current is None or request.version > current.version:
            latest[request.item_id] = request
    return list(latest.values())
