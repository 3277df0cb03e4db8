"""Domain models for the perceive item store."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ModelStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


class SourceStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


class CompareStrategy(str, Enum):
    """How the sync engine decides whether an existing item changed."""

    MTIME_AND_CONTENT = "mtime_and_content"
    MTIME = "mtime"
    CONTENT = "content"
    FORCE = "force"

    @property
    def compares_mtime(self) -> bool:
        return self in (CompareStrategy.MTIME_AND_CONTENT, CompareStrategy.MTIME)


class SkipReason(str, Enum):
    EXTRACTION_FAILED = "extraction_failed"
    EMPTY_CONTENT = "empty_content"
    INFERENCE_FAILED = "inference_failed"


@dataclass
class Model:
    id: int
    name: str
    model_type: str
    created_at: str | None = None


@dataclass
class ModelVersion:
    model_id: int
    version: int
    status: ModelStatus
    weights_filename: str
    dimensions: int | None = None
    created_at: str | None = None

    @property
    def ready(self) -> bool:
        return self.status is ModelStatus.READY


@dataclass
class Source:
    id: int | None
    name: str
    source_type: str
    location: str
    config: str = field(default_factory=lambda: "{}")
    compare_strategy: CompareStrategy = CompareStrategy.MTIME_AND_CONTENT
    status: SourceStatus = SourceStatus.IDLE
    status_message: str | None = None
    last_indexed: str | None = None
    index_version: int = 0
    index_interval: int | None = None  # seconds between automatic syncs

    @property
    def config_dict(self) -> dict[str, Any]:
        return json.loads(self.config)


@dataclass
class Item:
    source_id: int
    external_id: str
    hash: str
    content: str = ""
    version: int = 1
    raw_content: bytes | None = None
    content_type: str | None = None
    process_version: int = 0
    name: str | None = None
    author: str | None = None
    description: str | None = None
    modified: int | None = None  # unix seconds
    last_accessed: int | None = None  # unix seconds
    skipped: SkipReason | None = None
    hidden_at: str | None = None
    deleted_at: str | None = None
    id: int | None = None  # set after insert; None for unsaved items

    def embedding_text(self) -> str:
        """Text fed to the model: name, description and content, blank parts dropped."""
        parts = [self.name, self.description, self.content]
        return "\n".join(p.strip() for p in parts if p and p.strip())


@dataclass
class ItemEmbedding:
    model_id: int
    model_version: int
    item_id: int
    item_index_version: int
    embedding: bytes


@dataclass
class Tag:
    id: int | None
    name: str
    description: str | None = None
    color: str = "gray"


@dataclass(frozen=True)
class ActiveModel:
    """Snapshot of the active model selection, read once per pass or query."""

    model: Model
    version: ModelVersion

    @property
    def key(self) -> tuple[int, int]:
        return (self.model.id, self.version.version)
