"""Tests for the perceive config loader."""

from __future__ import annotations

import stat
import warnings
from pathlib import Path

import pytest
import yaml

from perceive.config import ensure_global_config, load_config
from perceive.errors import ConfigError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_yaml(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.dump(data), encoding="utf-8")


def _missing(tmp_path: Path) -> Path:
    return tmp_path / "nonexistent" / "config.yaml"


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


def test_load_config_defaults_no_files(tmp_path: Path) -> None:
    cfg = load_config(project_dir=tmp_path, global_config_path=_missing(tmp_path))

    assert cfg.index.m == 16
    assert cfg.index.ef_construction == 100
    assert cfg.index.ef_search == 64
    assert cfg.index.metric == "cosine"
    assert cfg.pipeline.batch_size == 32
    assert cfg.pipeline.queue_size == 256
    assert cfg.search.top_k == 10
    assert cfg.search.overfetch == 3
    assert cfg.logging.level == "INFO"
    assert cfg.database.path.endswith("perceive.db")


# ---------------------------------------------------------------------------
# Layering
# ---------------------------------------------------------------------------


def test_global_config_applied(tmp_path: Path) -> None:
    global_path = tmp_path / "g" / "config.yaml"
    _write_yaml(global_path, {"index": {"m": 8, "metric": "l2"}})
    cfg = load_config(project_dir=tmp_path / "empty", global_config_path=global_path)
    assert cfg.index.m == 8
    assert cfg.index.metric == "l2"
    assert cfg.index.ef_search == 64


def test_project_config_overrides_global(tmp_path: Path) -> None:
    global_path = tmp_path / "g" / "config.yaml"
    _write_yaml(global_path, {"search": {"top_k": 5, "overfetch": 4}})
    project = tmp_path / "project"
    _write_yaml(project / "perceive.yaml", {"search": {"top_k": 20}})

    cfg = load_config(project_dir=project, global_config_path=global_path)

    assert cfg.search.top_k == 20
    assert cfg.search.overfetch == 4


def test_env_overrides_files(tmp_path: Path, monkeypatch) -> None:
    _write_yaml(tmp_path / "perceive.yaml", {"database": {"path": "/from/yaml.db"}})
    monkeypatch.setenv("PERCEIVE_DB", str(tmp_path / "env.db"))
    monkeypatch.setenv("PERCEIVE_LOG_LEVEL", "debug")

    cfg = load_config(project_dir=tmp_path, global_config_path=_missing(tmp_path))

    assert cfg.database.path == str(tmp_path / "env.db")
    assert cfg.logging.level == "DEBUG"


def test_unknown_section_warns(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "perceive.yaml", {"surprise": {"a": 1}})
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        load_config(project_dir=tmp_path, global_config_path=_missing(tmp_path))
    assert any("surprise" in str(w.message) for w in caught)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "data",
    [
        {"index": {"metric": "dot"}},
        {"index": {"m": 1}},
        {"index": {"compact_ratio": 0}},
        {"pipeline": {"batch_size": 0}},
        {"search": {"top_k": 0}},
        {"search": {"max_retries": -1}},
        {"logging": {"level": "LOUD"}},
        {"index": {"m": "many"}},
        {"index": ["not", "a", "mapping"]},
    ],
)
def test_invalid_values_raise_config_error(tmp_path: Path, data: dict) -> None:
    _write_yaml(tmp_path / "perceive.yaml", data)
    with pytest.raises(ConfigError):
        load_config(project_dir=tmp_path, global_config_path=_missing(tmp_path))


def test_malformed_yaml_raises(tmp_path: Path) -> None:
    (tmp_path / "perceive.yaml").write_text("index: [unclosed", encoding="utf-8")
    with pytest.raises(ConfigError, match="Could not parse"):
        load_config(project_dir=tmp_path, global_config_path=_missing(tmp_path))


def test_top_level_must_be_mapping(tmp_path: Path) -> None:
    (tmp_path / "perceive.yaml").write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="mapping"):
        load_config(project_dir=tmp_path, global_config_path=_missing(tmp_path))


def test_config_error_is_value_error() -> None:
    assert issubclass(ConfigError, ValueError)


# ---------------------------------------------------------------------------
# ensure_global_config
# ---------------------------------------------------------------------------


def test_ensure_global_config_creates_file(tmp_path: Path) -> None:
    target = tmp_path / "dot-perceive" / "config.yaml"
    path = ensure_global_config(global_config_path=target)
    assert path == target
    assert target.exists()
    assert stat.S_IMODE(target.stat().st_mode) == 0o600
    data = yaml.safe_load(target.read_text(encoding="utf-8"))
    assert data["index"]["metric"] == "cosine"


def test_ensure_global_config_keeps_existing(tmp_path: Path) -> None:
    target = tmp_path / "config.yaml"
    target.write_text("index:\n  m: 4\n", encoding="utf-8")
    ensure_global_config(global_config_path=target)
    assert target.read_text(encoding="utf-8") == "index:\n  m: 4\n"


def test_generated_global_config_loads(tmp_path: Path) -> None:
    target = ensure_global_config(global_config_path=tmp_path / "cfg" / "config.yaml")
    cfg = load_config(project_dir=tmp_path / "nowhere", global_config_path=target)
    assert cfg.database.path == str(target.parent / "perceive.db")
