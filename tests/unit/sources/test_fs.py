"""Tests for the filesystem content provider."""

from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from perceive.db.models import Source
from perceive.errors import ConfigError, ExtractionError, SourceError
from perceive.sources import FilesystemProvider, get_provider


def _source(root: Path, **config) -> Source:
    return Source(id=1, name="docs", source_type="fs", location=str(root), config=json.dumps(config))


def _names(entries) -> list[str]:
    return [Path(e.external_id).name for e in entries]


@pytest.fixture
def provider() -> FilesystemProvider:
    return FilesystemProvider()


def test_registered_under_fs():
    assert isinstance(get_provider("fs"), FilesystemProvider)


def test_enumerates_all_files_sorted(provider, docs_dir):
    entries = list(provider.enumerate(_source(docs_dir)))
    assert _names(entries) == ["cooking.txt", "space.md", "garden.txt"]


def test_entry_metadata(provider, docs_dir):
    os.utime(docs_dir / "cooking.txt", (1_600_000_100, 1_600_000_000))
    entry = next(e for e in provider.enumerate(_source(docs_dir)) if e.external_id.endswith("cooking.txt"))
    assert entry.external_id == str(docs_dir / "cooking.txt")
    assert entry.metadata.name == "cooking.txt"
    assert entry.metadata.modified == 1_600_000_000
    assert entry.metadata.last_accessed == 1_600_000_100
    assert entry.content_type == "text/plain"
    assert entry.load() == b"pasta recipe with tomato sauce and basil"


def test_globs_filter(provider, docs_dir):
    entries = provider.enumerate(_source(docs_dir, globs=["*.txt"]))
    assert _names(entries) == ["cooking.txt", "garden.txt"]


def test_exclude_prunes_directories(provider, docs_dir):
    entries = provider.enumerate(_source(docs_dir, exclude=["notes"]))
    assert _names(entries) == ["cooking.txt", "space.md"]


def test_hidden_files_skipped_by_default(provider, docs_dir):
    (docs_dir / ".secret").write_text("hidden")
    (docs_dir / ".git").mkdir()
    (docs_dir / ".git" / "HEAD").write_text("ref")
    assert ".secret" not in _names(provider.enumerate(_source(docs_dir)))
    names = _names(provider.enumerate(_source(docs_dir, include_hidden=True)))
    assert ".secret" in names
    assert "HEAD" in names


def test_missing_location_raises_source_error(provider, tmp_path):
    with pytest.raises(SourceError, match="not a readable directory"):
        list(provider.enumerate(_source(tmp_path / "gone")))


def test_loader_failure_is_extraction_error(provider, docs_dir):
    entry = next(iter(provider.enumerate(_source(docs_dir))))
    Path(entry.external_id).unlink()
    with pytest.raises(ExtractionError):
        entry.load()


@pytest.mark.parametrize(
    "config",
    [{"globs": "*.txt"}, {"exclude": [1]}, {"include_hidden": "yes"}],
)
def test_validate_config_rejects_bad_values(provider, config):
    with pytest.raises(ConfigError):
        provider.validate_config(config)


def test_validate_config_accepts_good_values(provider):
    provider.validate_config({"globs": ["*.md"], "exclude": ["build"], "include_hidden": True})
