"""Embedding blob codec for stored vectors.

Blobs use the sqlite-vec float32 layout (little-endian, 4 bytes per dim), so
stored embeddings can be handed straight to sqlite-vec SQL functions.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np
import sqlite_vec


def serialize_embedding(vector: Sequence[float] | np.ndarray) -> bytes:
    """Pack *vector* into the float32 blob stored in item_embeddings."""
    return sqlite_vec.serialize_float32(np.asarray(vector, dtype=np.float32).tolist())


def deserialize_embedding(blob: bytes) -> np.ndarray:
    """Unpack a stored float32 blob into a 1-D numpy array."""
    if len(blob) % 4:
        raise ValueError(f"Embedding blob length {len(blob)} is not a multiple of 4")
    return np.frombuffer(blob, dtype="<f4").astype(np.float32)

