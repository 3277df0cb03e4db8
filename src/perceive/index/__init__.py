"""Approximate nearest-neighbour vector indexes."""

from perceive.index.hnsw import HnswIndex, IndexParams
from perceive.index.registry import IndexRegistry

__all__ = ["HnswIndex", "IndexParams", "IndexRegistry"]
