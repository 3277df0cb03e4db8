"""Incremental source synchronisation."""

from perceive.sync.engine import DecisionKind, SyncDecision, SyncEngine, SyncStats, content_hash

__all__ = ["DecisionKind", "SyncDecision", "SyncEngine", "SyncStats", "content_hash"]
