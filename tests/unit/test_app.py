"""Tests for the Perceive application facade."""

from __future__ import annotations

import threading
import time
from unittest.mock import patch

import pytest

from perceive.app import LoadState, LoadStatus, Perceive, parse_source_config
from perceive.db.models import CompareStrategy, ModelStatus
from perceive.errors import ConfigError, IndexConsistencyError
from perceive.search.engine import SearchFilters

_TIMEOUT = 30


def _wait_for(predicate, timeout: float = _TIMEOUT) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return False


@pytest.fixture
def synced(active_app, docs_dir):
    """active_app with docs_dir synced; returns (app, source)."""
    source = active_app.add_source("docs", "fs", str(docs_dir))
    active_app.sync_source(source.id).result(timeout=_TIMEOUT)
    return active_app, source


def _item_id(app, source, name: str) -> int:
    return next(i.id for i in app.repo.list_items(source.id) if i.name == name)


# ------------------------------------------------------------------
# Loading
# ------------------------------------------------------------------


def test_load_without_model(perceive_app):
    status = perceive_app.load_status()
    assert status.state is LoadState.LOADED


def test_load_builds_active_index(perceive_config, synced):
    app, _ = synced
    key = app.active_model().key
    app.close()

    with Perceive(perceive_config) as reopened:
        reopened.start()
        assert reopened.load_status() == LoadStatus(LoadState.LOADED)
        assert len(reopened.registry.get(*key)) == 3


def test_load_rebuilds_index_out_of_step_with_store(perceive_config, synced):
    app, _ = synced
    key = app.active_model().key
    app.close()
    drift = IndexConsistencyError("out of step", model_id=key[0], model_version=key[1])

    with Perceive(perceive_config) as reopened:
        with (
            patch.object(reopened.registry, "verify", side_effect=[drift]) as verify,
            patch.object(reopened.registry, "rebuild", wraps=reopened.registry.rebuild) as rebuild,
        ):
            reopened.start()
        verify.assert_called_once_with(*key)
        rebuild.assert_called_once()
        assert reopened.load_status() == LoadStatus(LoadState.LOADED)
        assert len(reopened.registry.get(*key)) == 3


def test_background_load_notifies(perceive_config, synced):
    synced[0].close()
    done = threading.Event()
    seen: list[LoadStatus] = []

    with Perceive(perceive_config) as app:
        app.on_loaded(lambda status: (seen.append(status), done.set()))
        app.start(background=True)
        assert done.wait(_TIMEOUT)
        assert seen[0].state is LoadState.LOADED

        late: list[LoadStatus] = []
        app.on_loaded(late.append)
        assert late == [seen[0]]


def test_failed_model_load_sets_error(perceive_config, tmp_path):
    with Perceive(perceive_config) as app:
        model = app.add_model("st", "sentence_transformers")
        version = app.add_model_version(model.id, str(tmp_path / "weights"), validate=False)
        app.repo.set_model_version_status(model.id, version.version, ModelStatus.READY, dimensions=384)
        app.repo.set_active_model(model.id, version.version)

    with Perceive(perceive_config) as app:
        app.start()
        status = app.load_status()
        assert status.state is LoadState.ERROR
        assert "not found" in status.message
        assert app.repo.get_model_version(model.id, version.version).status is ModelStatus.FAILED
        assert app.active_model() is None


def test_start_resets_interrupted_sources(perceive_config, docs_dir):
    from perceive.db.models import SourceStatus

    with Perceive(perceive_config) as app:
        source = app.add_source("docs", "fs", str(docs_dir))
        app.repo.set_source_status(source.id, SourceStatus.SYNCING)

    with Perceive(perceive_config) as app:
        app.start()
        assert app.get_source(source.id).status is SourceStatus.IDLE


# ------------------------------------------------------------------
# Sources
# ------------------------------------------------------------------


def test_add_source_stores_config(perceive_app, docs_dir):
    source = perceive_app.add_source(
        "docs", "fs", str(docs_dir), config={"globs": ["*.txt"]}, compare_strategy="mtime", index_interval=60
    )
    stored = perceive_app.get_source(source.id)
    assert stored.config_dict == {"globs": ["*.txt"]}
    assert stored.compare_strategy is CompareStrategy.MTIME
    assert stored.index_interval == 60


@pytest.mark.parametrize(
    "kwargs",
    [
        {"source_type": "ftp"},
        {"compare_strategy": "vibes"},
        {"index_interval": 0},
        {"config": {"globs": "*.txt"}},
    ],
)
def test_add_source_validation(perceive_app, docs_dir, kwargs):
    args = {"name": "docs", "source_type": "fs", "location": str(docs_dir), **kwargs}
    with pytest.raises(ConfigError):
        perceive_app.add_source(**args)


def test_get_missing_source(perceive_app):
    with pytest.raises(ConfigError):
        perceive_app.get_source(99)


def test_remove_source_drops_items_from_search(synced):
    app, source = synced
    assert app.remove_source(source.id) == 3
    assert app.search("rocket orbit") == []
    assert app.list_sources() == []


# ------------------------------------------------------------------
# Hide, unhide, tags
# ------------------------------------------------------------------


def test_hide_and_unhide(synced):
    app, source = synced
    space = _item_id(app, source, "space.md")

    app.hide_item(space)
    assert space not in {r.item_id for r in app.search("rocket orbit")}

    app.unhide_item(space)
    assert app.search("rocket orbit")[0].item_id == space


def test_unhide_embeds_item_hidden_before_embedding(perceive_app, docs_dir):
    source = perceive_app.add_source("docs", "fs", str(docs_dir))
    perceive_app.sync_source(source.id).result(timeout=_TIMEOUT)
    space = _item_id(perceive_app, source, "space.md")
    perceive_app.hide_item(space)

    model = perceive_app.add_model("hash", "hashing")
    version = perceive_app.add_model_version(model.id, "w")
    assert perceive_app.activate_model(model.id, version.version).result(timeout=_TIMEOUT) == 2

    perceive_app.unhide_item(space)
    key = perceive_app.active_model().key
    assert _wait_for(lambda: perceive_app.repo.get_embedding(*key, space) is not None)
    assert _wait_for(lambda: space in perceive_app.registry.get(*key))


def test_hide_missing_item(perceive_app):
    with pytest.raises(ConfigError):
        perceive_app.hide_item(12345)


def test_tag_filter_search(synced):
    app, source = synced
    garden = _item_id(app, source, "garden.txt")
    tag = app.tag_item(garden, "outdoors", color="green")
    assert tag.color == "green"

    results = app.search("rocket", filters=SearchFilters(tags=["outdoors"]))
    assert [r.item_id for r in results] == [garden]

    app.untag_item(garden, "outdoors")
    assert app.search("rocket", filters=SearchFilters(tags=["outdoors"])) == []


def test_tag_reuses_existing_tag(synced):
    app, source = synced
    a = _item_id(app, source, "garden.txt")
    b = _item_id(app, source, "space.md")
    assert app.tag_item(a, "x").id == app.tag_item(b, "x").id


# ------------------------------------------------------------------
# Models and status
# ------------------------------------------------------------------


def test_list_models(active_app):
    models = active_app.list_models()
    assert [(m.name, [v.version for v in versions]) for m, versions in models] == [("hash", [0])]


def test_status_summary(synced):
    app, _ = synced
    summary = app.status()
    assert summary["sources"] == 1
    assert summary["items"] == 3
    assert summary["embeddings"] == 3
    assert summary["active_model"] == "hash v0"
    assert summary["load"] == "loaded"


# ------------------------------------------------------------------
# parse_source_config
# ------------------------------------------------------------------


def test_parse_source_config():
    assert parse_source_config(None) == {}
    assert parse_source_config('{"skip": ["a.com"]}') == {"skip": ["a.com"]}


@pytest.mark.parametrize("raw", ["{not json", "[1, 2]"])
def test_parse_source_config_rejects(raw):
    with pytest.raises(ConfigError):
        parse_source_config(raw)


# ------------------------------------------------------------------
# End to end
# ------------------------------------------------------------------


def test_local_docs_scenario(active_app, tmp_path):
    root = tmp_path / "local-docs"
    root.mkdir()
    (root / "a.txt").write_text("pasta recipe with tomato sauce")
    (root / "b.txt").write_text("rocket launch orbit satellite")
    (root / "c.txt").write_text("garden roses tulips compost")
    source = active_app.add_source("local-docs", "fs", str(root))

    stats = active_app.sync_source(source.id).result(timeout=_TIMEOUT)
    assert (stats.added, stats.embedded) == (3, 3)

    results = active_app.search("rocket launch orbit", top_k=2)
    assert len(results) == 2
    assert results[0].name == "b.txt"
    assert results[1].name in {"a.txt", "c.txt"}
    assert 0 <= results[0].distance <= results[1].distance

    (root / "c.txt").write_text("garden roses tulips and fresh mulch")
    (root / "d.txt").write_text("telescope images of distant galaxies")
    (root / "a.txt").unlink()

    stats = active_app.sync_source(source.id).result(timeout=_TIMEOUT)
    assert (stats.deleted, stats.unchanged, stats.changed, stats.added) == (1, 1, 1, 1)
    assert stats.embedded == 2

    names = {r.name for r in active_app.search("pasta recipe with tomato sauce", top_k=10)}
    assert "a.txt" not in names
    assert names == {"b.txt", "c.txt", "d.txt"}
