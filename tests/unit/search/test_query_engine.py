"""Tests for the query engine."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from perceive.db.models import Item, Source
from perceive.errors import IndexConsistencyError, ModelNotReadyError
from perceive.index.hnsw import IndexParams
from perceive.index.registry import IndexRegistry
from perceive.model.lifecycle import ModelManager
from perceive.model.runtime import ModelRuntime
from perceive.pipeline.embedding import EmbeddingPipeline, EmbedRequest
from perceive.search.engine import QueryEngine, SearchConfig, SearchFilters, excerpt

_TEXTS = {
    "cooking": "pasta recipe with tomato sauce and basil",
    "space": "rocket launch orbit satellite telescope",
    "garden": "garden roses tulips soil compost",
    "baking": "bread recipe with flour yeast and salt",
}


@pytest.fixture
def registry(repo):
    return IndexRegistry(repo, IndexParams(seed=1))


@pytest.fixture
def models(repo, registry):
    return ModelManager(repo, ModelRuntime(), registry)


@pytest.fixture
def world(repo, registry, models):
    """Two sources, four embedded items, hashing model active. Returns name -> Item."""
    model = models.register_model("hash", "hashing")
    version = models.add_version(model.id, "w")
    models.validate(model.id, version.version)
    active = models.activate(model.id, version.version)
    handle = models.handle_for(active)

    food = repo.add_source(Source(id=None, name="food", source_type="fs", location="/food"))
    misc = repo.add_source(Source(id=None, name="misc", source_type="fs", location="/misc"))
    items = {}
    for name, text in _TEXTS.items():
        src = food if name in ("cooking", "baking") else misc
        item = Item(source_id=src.id, external_id=f"/{name}.txt", hash=name, content=text, name=f"{name}.txt")
        repo.insert_item(item)
        items[name] = item
    EmbeddingPipeline(repo, registry, handle).run(
        EmbedRequest(i.id, i.version, i.embedding_text(), i.source_id) for i in items.values()
    )
    return items


@pytest.fixture
def engine(repo, registry, models):
    return QueryEngine(repo, registry, models, SearchConfig(top_k=10, overfetch=1, max_retries=3))


# ------------------------------------------------------------------
# Basics
# ------------------------------------------------------------------


def test_empty_query_returns_nothing(engine):
    assert engine.search("   ") == []


def test_no_active_model(engine):
    with pytest.raises(ModelNotReadyError):
        engine.search("anything")


def test_best_match_first(engine, world):
    results = engine.search("tomato pasta basil")
    assert results[0].item_id == world["cooking"].id
    assert results[0].name == "cooking.txt"
    assert results[0].external_id == "/cooking.txt"
    assert results[0].excerpt == _TEXTS["cooking"]
    scores = [r.score for r in results]
    assert scores == sorted(scores, reverse=True)
    for r in results:
        assert r.score == pytest.approx(1.0 - r.distance)


def test_top_k(engine, world):
    assert len(engine.search("recipe", top_k=2)) == 2
    assert len(engine.search("recipe")) == len(world)


# ------------------------------------------------------------------
# Filters
# ------------------------------------------------------------------


def test_source_filter(engine, world):
    food_source = world["cooking"].source_id
    results = engine.search("rocket orbit", filters=SearchFilters(source_ids=[food_source]))
    assert {r.item_id for r in results} == {world["cooking"].id, world["baking"].id}


def test_tag_filter(engine, world, repo):
    tag = repo.add_tag("space-stuff")
    repo.tag_item(world["space"].id, tag.id)
    results = engine.search("pasta", filters=SearchFilters(tags=["space-stuff"]))
    assert [r.item_id for r in results] == [world["space"].id]


def test_filtered_search_widens_until_enough_hits(engine, world, repo):
    tag = repo.add_tag("later")
    repo.tag_item(world["garden"].id, tag.id)
    # top_k=1 with overfetch=1 fetches a single hit first; it is not tagged.
    results = engine.search("tomato pasta basil", top_k=1, filters=SearchFilters(tags=["later"]))
    assert [r.item_id for r in results] == [world["garden"].id]


# ------------------------------------------------------------------
# Store is authoritative
# ------------------------------------------------------------------


def test_hidden_item_excluded_even_if_still_indexed(engine, world, repo):
    repo.set_item_hidden(world["cooking"].id, True)
    results = engine.search("tomato pasta basil")
    assert world["cooking"].id not in {r.item_id for r in results}


def test_stale_embedding_excluded(engine, world, repo):
    item = world["space"]
    item.version += 1
    repo.update_item(item)
    results = engine.search("rocket launch orbit")
    assert item.id not in {r.item_id for r in results}


def test_orphan_hit_triggers_rebuild(engine, world, repo, registry, models):
    active = models.require_active()
    before = registry.get(*active.key)
    orphan = Item(source_id=world["space"].source_id, external_id="/orphan", hash="o", content="tomato")
    repo.insert_item(orphan)
    before.insert(orphan.id, models.handle_for(active).embed(["tomato pasta basil"])[0])

    results = engine.search("tomato pasta basil")

    after = registry.get(*active.key)
    assert after is not before
    assert orphan.id not in after
    assert orphan.id not in {r.item_id for r in results}
    assert results[0].item_id == world["cooking"].id


def test_orphan_after_rebuild_raises(engine, world, repo, registry, models):
    active = models.require_active()
    index = registry.get(*active.key)
    orphan = Item(source_id=world["space"].source_id, external_id="/orphan", hash="o")
    repo.insert_item(orphan)
    index.insert(orphan.id, models.handle_for(active).embed(["tomato pasta basil"])[0])

    with patch.object(registry, "rebuild", return_value=index):
        with pytest.raises(IndexConsistencyError) as exc_info:
            engine.search("tomato pasta basil")
    assert exc_info.value.model_id == active.model.id


# ------------------------------------------------------------------
# excerpt
# ------------------------------------------------------------------


def test_excerpt_collapses_whitespace():
    assert excerpt("a\n\n  b\tc", 100) == "a b c"


def test_excerpt_cuts_at_word_boundary():
    assert excerpt("alpha beta gamma", 12) == "alpha beta…"


def test_excerpt_empty():
    assert excerpt("", 10) == ""
