"""Application facade: the interface a UI or the CLI drives perceive through.

``Perceive`` wires the item store, model runtime, index registry, sync
engine, orchestrator and query engine together from a PerceiveConfig.
Loading (opening the active model and building its index) can run in the
background; ``load_status`` and ``on_loaded`` report when it is done.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from perceive.config import PerceiveConfig
from perceive.db.connection import Database
from perceive.db.models import (
    ActiveModel,
    CompareStrategy,
    Model,
    ModelStatus,
    ModelVersion,
    Source,
    Tag,
)
from perceive.db.repository import Repository, source_config_json
from perceive.db.schema import initialize
from perceive.errors import ConfigError, IndexConsistencyError, ModelLoadError
from perceive.index.hnsw import IndexParams
from perceive.index.registry import IndexRegistry
from perceive.model.lifecycle import ModelManager
from perceive.model.runtime import ModelRuntime
from perceive.orchestrator import Orchestrator
from perceive.search.engine import QueryEngine, SearchConfig, SearchFilters, SearchResult
from perceive.sources import DefaultExtractor, get_provider
from perceive.sync.engine import SyncEngine

logger = logging.getLogger(__name__)


class LoadState(str, Enum):
    LOADING = "loading"
    LOADED = "loaded"
    ERROR = "error"


@dataclass(frozen=True)
class LoadStatus:
    state: LoadState
    message: str | None = None


class Perceive:
    """One perceive instance over one item store.

    Args:
        config: Merged configuration (see perceive.config.load_config).
        db: Already opened Database; opened from ``config.database.path`` if omitted.
    """

    def __init__(self, config: PerceiveConfig | None = None, *, db: Database | None = None) -> None:
        self.config = config or PerceiveConfig()
        self.db = initialize(db or Database(self.config.database.path))
        self.repo = Repository(self.db)

        idx = self.config.index
        self.registry = IndexRegistry(
            self.repo,
            IndexParams(
                m=idx.m,
                ef_construction=idx.ef_construction,
                ef_search=idx.ef_search,
                metric=idx.metric,
                compact_ratio=idx.compact_ratio,
            ),
        )
        self.runtime = ModelRuntime(models_dir=self.db.db_path.parent / "models", metric=idx.metric)
        self.models = ModelManager(self.repo, self.runtime, self.registry)
        self.engine = SyncEngine(self.repo, self.registry, DefaultExtractor())
        self.orchestrator = Orchestrator(
            self.repo, self.registry, self.models, self.engine, self.config.pipeline
        )
        s = self.config.search
        self.queries = QueryEngine(
            self.repo,
            self.registry,
            self.models,
            SearchConfig(top_k=s.top_k, overfetch=s.overfetch, max_retries=s.max_retries),
        )

        self._status = LoadStatus(LoadState.LOADING)
        self._callbacks: list[Callable[[LoadStatus], None]] = []
        self._status_lock = threading.Lock()
        self._loader: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def start(self, background: bool = False) -> None:
        """Recover interrupted sources, load the active model and build its index."""
        if background:
            self._loader = threading.Thread(target=self._load, name="perceive-load", daemon=True)
            self._loader.start()
        else:
            self._load()

    def _load(self) -> None:
        reset = self.repo.reset_interrupted_sources()
        if reset:
            logger.info("Reset %d source(s) left syncing by a previous run", reset)
        active = self.models.get_active()
        if active is None:
            self._set_status(LoadStatus(LoadState.LOADED, "No active model"))
            return
        try:
            handle = self.models.handle_for(active)
        except ModelLoadError as exc:
            logger.error("Active model %s failed to load: %s", active.model.name, exc)
            self.repo.set_model_version_status(*active.key, ModelStatus.FAILED)
            self._set_status(LoadStatus(LoadState.ERROR, str(exc)))
            return
        self.registry.get_or_build(*active.key, handle.dim)
        try:
            self.registry.verify(*active.key)
        except IndexConsistencyError as exc:
            logger.warning("%s; rebuilding", exc)
            self.registry.rebuild(*active.key, handle.dim)
        self._set_status(LoadStatus(LoadState.LOADED))

    def load_status(self) -> LoadStatus:
        with self._status_lock:
            return self._status

    def on_loaded(self, callback: Callable[[LoadStatus], None]) -> None:
        """Call *callback* once loading finishes (immediately if it already has)."""
        with self._status_lock:
            if self._status.state is LoadState.LOADING:
                self._callbacks.append(callback)
                return
            status = self._status
        callback(status)

    def _set_status(self, status: LoadStatus) -> None:
        with self._status_lock:
            self._status = status
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(status)

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def list_sources(self) -> list[Source]:
        return self.repo.list_sources()

    def get_source(self, source_id: int) -> Source:
        source = self.repo.get_source(source_id)
        if source is None:
            raise ConfigError(f"Source {source_id} does not exist")
        return source

    def add_source(
        self,
        name: str,
        source_type: str,
        location: str,
        config: dict[str, Any] | None = None,
        compare_strategy: CompareStrategy | str = CompareStrategy.MTIME_AND_CONTENT,
        index_interval: int | None = None,
    ) -> Source:
        """Validate and store a new source. It is not synced until asked.

        Raises:
            ConfigError: Unknown source type, invalid config or strategy.
        """
        config = config or {}
        get_provider(source_type).validate_config(config)
        try:
            strategy = CompareStrategy(compare_strategy)
        except ValueError:
            raise ConfigError(
                f"Unknown compare strategy '{compare_strategy}' "
                f"(expected one of {', '.join(s.value for s in CompareStrategy)})"
            ) from None
        if index_interval is not None and index_interval < 1:
            raise ConfigError("index_interval must be a positive number of seconds")
        location = str(Path(location).expanduser()) if source_type == "fs" else location
        source = Source(
            id=None,
            name=name,
            source_type=source_type,
            location=location,
            config=source_config_json(config),
            compare_strategy=strategy,
            index_interval=index_interval,
        )
        return self.repo.add_source(source)

    def remove_source(self, source_id: int) -> int:
        """Soft-delete a source and its items; returns how many items went."""
        self.get_source(source_id)
        if self.orchestrator.cancel_source(source_id):
            self.orchestrator.wait(source_id)
        item_ids = self.repo.delete_source(source_id)
        for item_id in item_ids:
            self.registry.remove_item(item_id)
        logger.info("Removed source %d with %d items", source_id, len(item_ids))
        return len(item_ids)

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def sync_source(self, source_id: int) -> Future:
        self.get_source(source_id)
        return self.orchestrator.sync_source(source_id)

    def sync_all(self) -> list[Future]:
        return self.orchestrator.sync_all()

    def sync_due(self) -> list[Future]:
        return self.orchestrator.sync_due()

    def cancel_sync(self, source_id: int) -> bool:
        return self.orchestrator.cancel_source(source_id)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(
        self,
        query: str,
        top_k: int | None = None,
        filters: SearchFilters | None = None,
    ) -> list[SearchResult]:
        return self.queries.search(query, top_k=top_k, filters=filters)

    # ------------------------------------------------------------------
    # Items and tags
    # ------------------------------------------------------------------

    def hide_item(self, item_id: int) -> None:
        """Hide an item from search results until it is unhidden."""
        if not self.repo.set_item_hidden(item_id, True):
            raise ConfigError(f"Item {item_id} does not exist")
        self.registry.remove_item(item_id)

    def unhide_item(self, item_id: int) -> None:
        if not self.repo.set_item_hidden(item_id, False):
            raise ConfigError(f"Item {item_id} does not exist")
        self.registry.restore_item(item_id)
        item = self.repo.get_item(item_id)
        active = self.models.get_active()
        if active is not None and item is not None and item.deleted_at is None:
            stored = self.repo.get_embedding(*active.key, item_id)
            if stored is None or stored[0] != item.version:
                self.orchestrator.reembed(item.source_id)

    def tag_item(self, item_id: int, tag_name: str, color: str = "gray") -> Tag:
        """Attach a tag (created on first use) to an item."""
        if self.repo.get_item(item_id) is None:
            raise ConfigError(f"Item {item_id} does not exist")
        tag = self.repo.get_tag_by_name(tag_name) or self.repo.add_tag(tag_name, color=color)
        self.repo.tag_item(item_id, tag.id)
        return tag

    def untag_item(self, item_id: int, tag_name: str) -> None:
        tag = self.repo.get_tag_by_name(tag_name)
        if tag is not None:
            self.repo.untag_item(item_id, tag.id)

    # ------------------------------------------------------------------
    # Models
    # ------------------------------------------------------------------

    def list_models(self) -> list[tuple[Model, list[ModelVersion]]]:
        return [(m, self.repo.list_model_versions(m.id)) for m in self.repo.list_models()]

    def add_model(self, name: str, model_type: str) -> Model:
        return self.models.register_model(name, model_type)

    def add_model_version(self, model_id: int, weights_filename: str, validate: bool = True) -> ModelVersion:
        """Register a version and, by default, load it once to mark it ready or failed."""
        version = self.models.add_version(model_id, weights_filename)
        if validate:
            return self.models.validate(model_id, version.version)
        return version

    def activate_model(self, model_id: int, version: int) -> Future:
        """Activate a ready version and re-embed every item for it in the background.

        Returns:
            Future resolving to the number of vectors written by the re-embed.
        """
        active: ActiveModel = self.models.activate(model_id, version)
        handle = self.models.handle_for(active)
        self.registry.get_or_build(model_id, version, handle.dim)
        self._set_status(LoadStatus(LoadState.LOADED))
        return self.orchestrator.reembed()

    def active_model(self) -> ActiveModel | None:
        return self.models.get_active()

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        """Counts for the status screen."""
        active = self.models.get_active()
        summary: dict[str, Any] = {
            "database": str(self.db.db_path),
            "sources": len(self.repo.list_sources()),
            "items": self.repo.count_items(),
            "active_model": None,
            "embeddings": 0,
            "load": self.load_status().state.value,
        }
        if active is not None:
            summary["active_model"] = f"{active.model.name} v{active.version.version}"
            summary["embeddings"] = self.repo.count_embeddings(*active.key)
        return summary

    def close(self) -> None:
        self.orchestrator.shutdown()
        self.db.close()

    def __enter__(self) -> Perceive:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


def parse_source_config(raw: str | None) -> dict[str, Any]:
    """Parse a JSON object given on the command line."""
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Source config is not valid JSON: {exc}") from exc
    if not isinstance(value, dict):
        raise ConfigError("Source config must be a JSON object")
    return value
