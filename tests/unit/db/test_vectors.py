"""Tests for the embedding blob codec."""

from __future__ import annotations

import numpy as np
import pytest

from perceive.db.vectors import deserialize_embedding, serialize_embedding


def test_serialize_is_float32_little_endian():
    blob = serialize_embedding([1.0, -2.5])
    assert len(blob) == 8
    assert blob == np.array([1.0, -2.5], dtype="<f4").tobytes()


def test_deserialize_restores_values():
    vec = np.array([0.25, 0.5, -1.0], dtype=np.float32)
    out = deserialize_embedding(serialize_embedding(vec))
    assert out.dtype == np.float32
    np.testing.assert_array_equal(out, vec)


def test_deserialize_rejects_truncated_blob():
    with pytest.raises(ValueError, match="multiple of 4"):
        deserialize_embedding(b"\x00\x00\x00")
