"""Tests for the per-version index registry."""

from __future__ import annotations

from unittest.mock import patch

import numpy as np
import pytest

from perceive.db.models import Item, ModelStatus, Source
from perceive.db.vectors import serialize_embedding
from perceive.errors import IndexConsistencyError
from perceive.index.hnsw import IndexParams
from perceive.index.registry import IndexRegistry

_DIM = 8


@pytest.fixture
def registry(repo):
    return IndexRegistry(repo, IndexParams(m=8, seed=3))


@pytest.fixture
def seeded(repo):
    """A ready model version with 30 embedded items; returns (key, item ids, vectors)."""
    model = repo.add_model("m", "hashing")
    version = repo.add_model_version(model.id, "w").version
    repo.set_model_version_status(model.id, version, ModelStatus.READY, dimensions=_DIM)
    src = repo.add_source(Source(id=None, name="s", source_type="fs", location="/s"))
    vectors = np.random.default_rng(0).standard_normal((30, _DIM)).astype(np.float32)
    ids = []
    for n, vec in enumerate(vectors):
        item = Item(source_id=src.id, external_id=f"i{n}", hash=str(n))
        repo.insert_item(item)
        repo.upsert_embeddings(model.id, version, [(item.id, 1, serialize_embedding(vec))])
        ids.append(item.id)
    return (model.id, version), ids, vectors


def test_get_or_build_loads_valid_embeddings(registry, seeded):
    key, ids, _ = seeded
    index = registry.get_or_build(*key, _DIM)
    assert index.ids() == set(ids)
    assert registry.get(*key) is index
    assert registry.loaded_keys() == [key]


def test_get_or_build_is_cached(registry, seeded):
    key, _, _ = seeded
    assert registry.get_or_build(*key, _DIM) is registry.get_or_build(*key, _DIM)


def test_built_index_matches_exact_scan(registry, seeded):
    key, ids, vectors = seeded
    index = registry.get_or_build(*key, _DIM)
    normed = vectors / np.linalg.norm(vectors, axis=1, keepdims=True)
    for q in normed[:5]:
        truth = [ids[n] for n in np.argsort(1.0 - normed @ q)[:5]]
        assert [i for i, _ in index.search(q, k=5)] == truth


def test_rebuild_replaces_index(registry, seeded):
    key, _, _ = seeded
    first = registry.get_or_build(*key, _DIM)
    second = registry.rebuild(*key, _DIM)
    assert second is not first
    assert registry.get(*key) is second


def test_drop(registry, seeded):
    key, _, _ = seeded
    registry.get_or_build(*key, _DIM)
    registry.drop(*key)
    assert registry.get(*key) is None


def test_remove_item_from_all_indexes(registry, seeded):
    key, ids, _ = seeded
    index = registry.get_or_build(*key, _DIM)
    registry.remove_item(ids[0])
    assert ids[0] not in index


def test_verify_detects_drift(registry, seeded):
    key, ids, _ = seeded
    index = registry.get_or_build(*key, _DIM)
    registry.verify(*key)
    index.remove(ids[3])
    with pytest.raises(IndexConsistencyError) as exc_info:
        registry.verify(*key)
    assert exc_info.value.model_id == key[0]
    assert exc_info.value.model_version == key[1]


def test_restore_item_only_with_fresh_embedding(registry, seeded, repo):
    key, ids, vectors = seeded
    index = registry.get_or_build(*key, _DIM)

    repo.set_item_hidden(ids[1], True)
    registry.remove_item(ids[1])
    registry.restore_item(ids[1])
    assert ids[1] not in index

    repo.set_item_hidden(ids[1], False)
    registry.restore_item(ids[1])
    assert ids[1] in index

    item = repo.get_item(ids[2])
    item.version = 2
    repo.update_item(item)
    registry.remove_item(ids[2])
    registry.restore_item(ids[2])
    assert ids[2] not in index


# ---------------------------------------------------------------------------
# Rebuild while writes continue
# ---------------------------------------------------------------------------


def _scan_interleaved(repo, during):
    """Patch the store scan so *during* runs after the first row is read."""
    original = repo.iter_valid_embeddings

    def scan(model_id, version):
        rows = original(model_id, version)
        first = next(rows)
        during()
        yield first
        yield from rows

    return patch.object(repo, "iter_valid_embeddings", side_effect=scan)


def _commit_through(registry, repo, key, item_id, vector):
    """Commit one vector the way the embedding pipeline does."""
    index = registry.get(*key)

    def commit():
        written = repo.upsert_embeddings(*key, [(item_id, 1, serialize_embedding(vector))])
        registry.record_embedded(*key, written)
        return written

    index.insert_batch([(item_id, vector)], commit=commit)


def test_rebuild_keeps_vector_committed_during_scan(registry, seeded, repo):
    key, ids, _ = seeded
    old = registry.get_or_build(*key, _DIM)
    late = Item(source_id=repo.get_item(ids[0]).source_id, external_id="late", hash="late")
    repo.insert_item(late)
    vector = np.ones(_DIM, dtype=np.float32)

    with _scan_interleaved(repo, lambda: _commit_through(registry, repo, key, late.id, vector)):
        rebuilt = registry.rebuild(*key, _DIM)

    assert late.id in rebuilt
    assert rebuilt.ids() == set(ids) | {late.id}
    assert old.retired
    registry.verify(*key)


def test_rebuild_applies_hide_during_scan(registry, seeded, repo):
    key, ids, _ = seeded
    registry.get_or_build(*key, _DIM)

    def hide():
        repo.set_item_hidden(ids[0], True)
        registry.remove_item(ids[0])

    with _scan_interleaved(repo, hide):
        rebuilt = registry.rebuild(*key, _DIM)

    assert ids[0] not in rebuilt
    registry.verify(*key)


def test_first_build_applies_hide_during_scan(registry, seeded, repo):
    key, ids, _ = seeded

    def hide():
        repo.set_item_hidden(ids[5], True)
        registry.remove_item(ids[5])

    with _scan_interleaved(repo, hide):
        index = registry.get_or_build(*key, _DIM)

    assert ids[5] not in index
    assert len(index) == len(ids) - 1


def test_changes_after_rebuild_reach_new_index(registry, seeded, repo):
    key, ids, _ = seeded
    old = registry.get_or_build(*key, _DIM)
    rebuilt = registry.rebuild(*key, _DIM)

    registry.remove_item(ids[1])
    assert ids[1] not in rebuilt
    assert ids[1] in old.ids()
