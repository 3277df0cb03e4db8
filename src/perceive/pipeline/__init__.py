"""Embedding pipeline."""

from perceive.pipeline.embedding import BatchResult, EmbeddingPipeline, EmbedRequest

__all__ = ["BatchResult", "EmbedRequest", "EmbeddingPipeline"]
