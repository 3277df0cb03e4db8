"""Embedding model runtime and lifecycle."""

from perceive.model.lifecycle import ModelManager
from perceive.model.runtime import (
    EmbeddingBackend,
    ModelHandle,
    ModelRuntime,
    register_backend,
)

__all__ = ["EmbeddingBackend", "ModelHandle", "ModelManager", "ModelRuntime", "register_backend"]
