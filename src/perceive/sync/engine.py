"""Sync engine: diff a source's enumerated entries against the item store.

Produces a lazy stream of SyncDecision (new, changed, unchanged, deleted).
Each decision's store writes are committed before it is yielded; vectors
of changed or deleted items leave every loaded index right after the
commit. The deletion sweep and the ``index_version`` bump only happen when
enumeration runs to the end without being cancelled.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import Enum

from perceive.concurrency import CancelToken
from perceive.db.models import ActiveModel, CompareStrategy, Item, SkipReason, Source
from perceive.db.repository import ExistingItem, Repository
from perceive.errors import ExtractionError
from perceive.index.registry import IndexRegistry
from perceive.sources.base import SourceEntry, TextExtractor

logger = logging.getLogger(__name__)


class DecisionKind(str, Enum):
    NEW = "new"
    CHANGED = "changed"
    UNCHANGED = "unchanged"
    DELETED = "deleted"


@dataclass
class SyncDecision:
    """Outcome for one item of a pass.

    Attributes:
        kind: What the pass did with the item.
        item: The item as committed (deleted items as they were before deletion).
        needs_embedding: True when the active model has no valid vector for it.
    """

    kind: DecisionKind
    item: Item
    needs_embedding: bool = False


@dataclass
class SyncStats:
    """Per-pass counters."""

    scanned: int = 0
    added: int = 0
    changed: int = 0
    unchanged: int = 0
    deleted: int = 0
    skipped: int = 0
    embedded: int = 0
    cancelled: bool = False
    completed: bool = False

    def record(self, decision: SyncDecision) -> None:
        if decision.kind is DecisionKind.NEW:
            self.added += 1
        elif decision.kind is DecisionKind.CHANGED:
            self.changed += 1
        elif decision.kind is DecisionKind.UNCHANGED:
            self.unchanged += 1
        else:
            self.deleted += 1
        if decision.kind is not DecisionKind.DELETED and decision.item.skipped:
            self.skipped += 1


@dataclass
class _Content:
    """Raw content, hash and extracted text for one entry."""

    raw: bytes
    hash: str
    text: str = ""
    skipped: SkipReason | None = None


def content_hash(raw: bytes) -> str:
    """SHA-256 hex digest used as the item fingerprint."""
    return hashlib.sha256(raw).hexdigest()


class SyncEngine:
    """Diffs provider entries against stored items for one source at a time."""

    def __init__(self, repo: Repository, registry: IndexRegistry, extractor: TextExtractor) -> None:
        self._repo = repo
        self._registry = registry
        self._extractor = extractor

    def diff(
        self,
        source: Source,
        entries: Iterable[SourceEntry],
        active: ActiveModel | None = None,
        cancel: CancelToken | None = None,
        stats: SyncStats | None = None,
    ) -> Iterator[SyncDecision]:
        """Yield a decision per entry, then one per item that disappeared.

        Args:
            source: Source being synced (must have an id).
            entries: The provider's lazy entry stream.
            active: Active model snapshot taken at the start of the pass.
            cancel: Checked before each entry; a cancelled pass stops early.
            stats: Counters to update, if the caller wants them.

        Raises:
            SourceError: Propagated from the provider's enumeration.
        """
        stats = stats if stats is not None else SyncStats()
        active_key = active.key if active is not None else None
        seen: set[int] = set()

        for entry in entries:
            if cancel is not None and cancel.cancelled:
                stats.cancelled = True
                logger.info("Sync of source %s cancelled after %d entries", source.name, stats.scanned)
                return
            stats.scanned += 1
            existing = self._repo.lookup_item(source.id, entry.external_id, active_key)
            if existing is None:
                decision = self._add(source, entry, active_key)
            else:
                decision = self._compare(source, entry, existing, active_key)
            seen.add(decision.item.id)
            stats.record(decision)
            yield decision

        if cancel is not None and cancel.cancelled:
            stats.cancelled = True
            return

        for decision in self._sweep(source, seen):
            stats.record(decision)
            yield decision
        source.index_version = self._repo.complete_source_sync(source.id)
        stats.completed = True
        logger.info(
            "Synced source %s: %d scanned, %d new, %d changed, %d unchanged, %d deleted, %d skipped",
            source.name,
            stats.scanned,
            stats.added,
            stats.changed,
            stats.unchanged,
            stats.deleted,
            stats.skipped,
        )

    # ------------------------------------------------------------------
    # Per-entry decisions
    # ------------------------------------------------------------------

    def _add(self, source: Source, entry: SourceEntry, active_key: tuple[int, int] | None) -> SyncDecision:
        content = self._read(entry)
        item = Item(source_id=source.id, external_id=entry.external_id, hash=content.hash, version=1)
        _apply(item, entry, content, self._extractor.process_version)
        self._repo.insert_item(item)
        return SyncDecision(
            kind=DecisionKind.NEW,
            item=item,
            needs_embedding=active_key is not None and item.skipped is None,
        )

    def _compare(
        self,
        source: Source,
        entry: SourceEntry,
        existing: ExistingItem,
        active_key: tuple[int, int] | None,
    ) -> SyncDecision:
        item = existing.item
        content = self._changed_content(source.compare_strategy, item, entry)
        if content is None:
            self._repo.touch_item(item.id, entry.metadata.last_accessed)
            if entry.metadata.last_accessed is not None:
                item.last_accessed = max(item.last_accessed or 0, entry.metadata.last_accessed)
            needs = (
                active_key is not None
                and not existing.has_valid_embedding
                and item.skipped is None
                and item.hidden_at is None
            )
            return SyncDecision(kind=DecisionKind.UNCHANGED, item=item, needs_embedding=needs)

        item.version += 1
        item.hash = content.hash
        _apply(item, entry, content, self._extractor.process_version)
        self._repo.update_item(item)
        self._registry.remove_item(item.id)
        return SyncDecision(
            kind=DecisionKind.CHANGED,
            item=item,
            needs_embedding=active_key is not None and item.skipped is None and item.hidden_at is None,
        )

    def _changed_content(self, strategy: CompareStrategy, item: Item, entry: SourceEntry) -> _Content | None:
        """Return the entry's content if the item changed, else None."""
        if strategy is CompareStrategy.FORCE or item.process_version < self._extractor.process_version:
            return self._read(entry)

        mtime_known = entry.metadata.modified is not None and item.modified is not None
        if strategy.compares_mtime and mtime_known:
            if entry.metadata.modified != item.modified:
                return self._read(entry)
            if strategy is CompareStrategy.MTIME:
                return None

        content = self._read(entry)
        return content if content.hash != item.hash else None

    def _read(self, entry: SourceEntry) -> _Content:
        """Load and extract an entry; failures become a skip reason, not an error."""
        try:
            raw = entry.load()
        except ExtractionError as exc:
            logger.warning("Could not read %s: %s", entry.external_id, exc)
            return _Content(raw=b"", hash="", skipped=SkipReason.EXTRACTION_FAILED)

        content = _Content(raw=raw, hash=content_hash(raw))
        try:
            content.text = self._extractor.extract(raw, entry.content_type)
        except ExtractionError as exc:
            logger.warning("Could not extract text from %s: %s", entry.external_id, exc)
            content.skipped = SkipReason.EXTRACTION_FAILED
            return content
        except Exception:
            logger.exception("Extractor crashed on %s", entry.external_id)
            content.skipped = SkipReason.EXTRACTION_FAILED
            return content
        if not content.text.strip():
            content.skipped = SkipReason.EMPTY_CONTENT
        return content

    # ------------------------------------------------------------------
    # Deletion sweep
    # ------------------------------------------------------------------

    def _sweep(self, source: Source, seen: set[int]) -> Iterator[SyncDecision]:
        for item_id in self._repo.soft_delete_missing(source.id, seen):
            self._registry.remove_item(item_id)
            yield SyncDecision(kind=DecisionKind.DELETED, item=self._repo.get_item(item_id))


def _apply(item: Item, entry: SourceEntry, content: _Content, process_version: int) -> None:
    """Copy entry metadata and extracted content onto *item*."""
    meta = entry.metadata
    item.content = content.text
    item.raw_content = content.raw or None
    item.content_type = entry.content_type
    item.process_version = process_version
    item.name = meta.name
    item.author = meta.author
    item.description = meta.description
    item.modified = meta.modified
    item.last_accessed = meta.last_accessed
    item.skipped = content.skipped
