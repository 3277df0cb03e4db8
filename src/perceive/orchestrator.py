"""Orchestrator: run sync passes on a thread pool and feed the embedding workers.

Threads:
  perceive-sync-N   one sync pass per source at a time (enumeration is sequential)
  perceive-embed    one per loaded model handle; consumes a bounded Channel

Sync passes put EmbedRequests on the channel of the active model's worker
and block when it is full. When a pass has enumerated everything it puts a
drain marker behind its last request and waits for the worker to reach it,
so a source only returns to ``idle`` once its vectors are committed.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as futures_wait
from dataclasses import dataclass, field

from perceive.concurrency import CancelToken, Channel, ChannelClosed
from perceive.config import PipelineCfg
from perceive.db.models import ActiveModel, SourceStatus
from perceive.db.repository import Repository
from perceive.errors import ConfigError, StoreError
from perceive.index.registry import IndexRegistry
from perceive.model.lifecycle import ModelManager
from perceive.pipeline.embedding import EmbeddingPipeline, EmbedRequest
from perceive.sources.base import get_provider
from perceive.sync.engine import SyncEngine, SyncStats

logger = logging.getLogger(__name__)

# Seconds an idle embedding worker waits before flushing a partial batch.
_FLUSH_INTERVAL = 0.2


@dataclass
class _Drain:
    """Marker that follows a producer's last request through the channel."""

    source_id: int | None
    done: threading.Event = field(default_factory=threading.Event)
    embedded: int = 0
    skipped: int = 0
    error: str | None = None


class EmbeddingWorker(threading.Thread):
    """Consumes EmbedRequests for one model handle and commits them in batches."""

    def __init__(
        self,
        pipeline: EmbeddingPipeline,
        queue_size: int,
        cancelled: Callable[[int | None], bool],
    ) -> None:
        super().__init__(name=f"perceive-embed-{pipeline.handle.key[0]}.{pipeline.handle.key[1]}", daemon=True)
        self.pipeline = pipeline
        self.channel: Channel[EmbedRequest | _Drain] = Channel(queue_size)
        self._cancelled = cancelled
        self._pending: list[EmbedRequest] = []
        self._pending_tokens = 0
        self._embedded: dict[int | None, int] = {}
        self._skipped: dict[int | None, int] = {}
        self._failures: dict[int | None, str] = {}

    def submit(self, request: EmbedRequest) -> None:
        """Queue *request*; blocks while the channel is full."""
        self.channel.put(request)

    def drain(self, source_id: int | None) -> _Drain:
        """Wait until every request submitted before this call is processed."""
        marker = _Drain(source_id=source_id)
        self.channel.put(marker)
        marker.done.wait()
        return marker

    def stop(self) -> None:
        self.channel.close()

    def run(self) -> None:
        while True:
            try:
                message = self.channel.get(timeout=_FLUSH_INTERVAL)
            except queue.Empty:
                self._flush()
                continue
            except ChannelClosed:
                self._flush()
                return

            if isinstance(message, _Drain):
                self._flush()
                self._settle(message)
                continue
            if self._cancelled(message.source_id):
                continue
            if self._pending and (
                len(self._pending) >= self.pipeline.batch_size
                or self._pending_tokens + message.tokens > self.pipeline.token_budget
            ):
                self._flush()
            self._pending.append(message)
            self._pending_tokens += message.tokens

    def _flush(self) -> None:
        batch = [r for r in self._pending if not self._cancelled(r.source_id)]
        self._pending, self._pending_tokens = [], 0
        if not batch:
            return
        try:
            result = self.pipeline.process(batch)
        except Exception as exc:
            logger.exception("Embedding batch of %d failed", len(batch))
            for request in batch:
                self._failures.setdefault(request.source_id, str(exc))
            return
        source_of = {r.item_id: r.source_id for r in batch}
        for item_id in result.embedded_ids:
            key = source_of[item_id]
            self._embedded[key] = self._embedded.get(key, 0) + 1
        for item_id in result.skipped_ids:
            key = source_of[item_id]
            self._skipped[key] = self._skipped.get(key, 0) + 1

    def _settle(self, marker: _Drain) -> None:
        if marker.source_id is None:
            marker.embedded = sum(self._embedded.values())
            marker.skipped = sum(self._skipped.values())
            marker.error = next(iter(self._failures.values()), None)
            self._embedded.clear()
            self._skipped.clear()
            self._failures.clear()
        else:
            marker.embedded = self._embedded.pop(marker.source_id, 0)
            marker.skipped = self._skipped.pop(marker.source_id, 0)
            marker.error = self._failures.pop(marker.source_id, None)
        marker.done.set()


class Orchestrator:
    """Schedules sync passes and owns the embedding workers."""

    def __init__(
        self,
        repo: Repository,
        registry: IndexRegistry,
        models: ModelManager,
        engine: SyncEngine,
        config: PipelineCfg | None = None,
    ) -> None:
        self._repo = repo
        self._registry = registry
        self._models = models
        self._engine = engine
        self._config = config or PipelineCfg()
        self._executor = ThreadPoolExecutor(
            max_workers=self._config.source_workers, thread_name_prefix="perceive-sync"
        )
        self._lock = threading.Lock()
        self._workers: dict[tuple[int, int], EmbeddingWorker] = {}
        self._passes: dict[int, Future] = {}
        self._tokens: dict[int, CancelToken] = {}

    # ------------------------------------------------------------------
    # Sync passes
    # ------------------------------------------------------------------

    def sync_source(self, source_id: int) -> Future:
        """Start a pass for the source, or return the one already running.

        The future resolves to the pass's SyncStats or raises its error.
        """
        with self._lock:
            running = self._passes.get(source_id)
            if running is not None and not running.done():
                return running
            token = CancelToken()
            self._tokens[source_id] = token
            future = self._executor.submit(self._run_pass, source_id, token)
            self._passes[source_id] = future
        return future

    def sync_all(self) -> list[Future]:
        return [self.sync_source(s.id) for s in self._repo.list_sources()]

    def sync_due(self) -> list[Future]:
        """Start passes for sources whose ``index_interval`` has elapsed."""
        return [self.sync_source(s.id) for s in self._repo.sources_due()]

    def cancel_source(self, source_id: int) -> bool:
        """Cancel the running pass of a source; returns False if none is running."""
        with self._lock:
            future = self._passes.get(source_id)
            token = self._tokens.get(source_id)
        if future is None or future.done() or token is None:
            return False
        token.cancel()
        logger.info("Cancelling sync of source %d", source_id)
        return True

    def wait(self, source_id: int, timeout: float | None = None) -> None:
        """Block until the source's current pass (if any) has finished."""
        with self._lock:
            future = self._passes.get(source_id)
        if future is not None:
            futures_wait([future], timeout=timeout)

    def is_syncing(self, source_id: int) -> bool:
        with self._lock:
            future = self._passes.get(source_id)
        return future is not None and not future.done()

    def _is_cancelled(self, source_id: int | None) -> bool:
        if source_id is None:
            return False
        token = self._tokens.get(source_id)
        return token is not None and token.cancelled

    def _run_pass(self, source_id: int, token: CancelToken) -> SyncStats:
        source = self._repo.get_source(source_id)
        if source is None:
            raise ConfigError(f"Source {source_id} does not exist")

        self._repo.set_source_status(source_id, SourceStatus.SYNCING)
        stats = SyncStats()
        try:
            provider = get_provider(source.source_type)
            active = self._models.get_active()
            worker = self._worker_for(active) if active is not None else None
            if worker is None:
                logger.warning("No active model; syncing source %s without embedding", source.name)

            for decision in self._engine.diff(source, provider.enumerate(source), active, token, stats):
                if decision.needs_embedding and worker is not None:
                    item = decision.item
                    worker.submit(EmbedRequest(item.id, item.version, item.embedding_text(), source_id))

            if worker is not None:
                marker = worker.drain(source_id)
                stats.embedded += marker.embedded
                stats.skipped += marker.skipped
                if marker.error is not None:
                    raise StoreError(f"Embedding for source {source.name} failed: {marker.error}")
        except Exception as exc:
            logger.error("Sync of source %s failed: %s", source.name, exc)
            self._repo.set_source_status(source_id, SourceStatus.ERROR, str(exc))
            raise
        finally:
            with self._lock:
                if self._tokens.get(source_id) is token:
                    del self._tokens[source_id]

        self._repo.set_source_status(source_id, SourceStatus.IDLE)
        return stats

    # ------------------------------------------------------------------
    # Re-embedding
    # ------------------------------------------------------------------

    def reembed(self, source_id: int | None = None) -> Future:
        """Embed every visible item lacking a valid vector for the active version.

        The future resolves to the number of vectors committed.
        """
        return self._executor.submit(self._run_reembed, source_id)

    def _run_reembed(self, source_id: int | None) -> int:
        active = self._models.require_active()
        worker = self._worker_for(active)
        model_id, version = active.key
        for item in self._repo.items_needing_embedding(model_id, version, source_id):
            worker.submit(EmbedRequest(item.id, item.version, item.embedding_text(), item.source_id))
        marker = worker.drain(None)
        if marker.error is not None:
            raise StoreError(f"Re-embedding failed: {marker.error}")
        logger.info("Re-embedded %d items with model %s v%d", marker.embedded, active.model.name, version)
        return marker.embedded

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    def _worker_for(self, active: ActiveModel) -> EmbeddingWorker:
        handle = self._models.handle_for(active)
        with self._lock:
            worker = self._workers.get(handle.key)
            if worker is None or not worker.is_alive():
                pipeline = EmbeddingPipeline(
                    self._repo,
                    self._registry,
                    handle,
                    batch_size=self._config.batch_size,
                    token_budget=self._config.token_budget,
                )
                worker = EmbeddingWorker(pipeline, self._config.queue_size, self._is_cancelled)
                worker.start()
                self._workers[handle.key] = worker
        return worker

    def shutdown(self, wait: bool = True) -> None:
        """Cancel running passes, stop the workers and the thread pool."""
        with self._lock:
            tokens = list(self._tokens.values())
            workers = list(self._workers.values())
            self._workers.clear()
        for token in tokens:
            token.cancel()
        self._executor.shutdown(wait=wait)
        for worker in workers:
            worker.stop()
            if wait:
                worker.join()
