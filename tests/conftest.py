"""Shared pytest fixtures."""

from __future__ import annotations

import hashlib
import re

import numpy as np
import pytest

import perceive.config as config_module
from perceive.app import Perceive
from perceive.config import DatabaseCfg, PerceiveConfig, PipelineCfg
from perceive.db.connection import Database
from perceive.db.repository import Repository
from perceive.db.schema import initialize
from perceive.model.runtime import EmbeddingBackend, register_backend

HASH_DIM = 32
_WORD = re.compile(r"\w+")


def hash_vector(text: str, dim: int = HASH_DIM) -> np.ndarray:
    """Bag-of-words vector: texts sharing words point the same way."""
    vec = np.zeros(dim, dtype=np.float32)
    for word in _WORD.findall(text.lower()):
        h = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16)
        vec[h % dim] += 1.0 if (h >> 16) & 1 else -1.0
    return vec


class HashingBackend(EmbeddingBackend):
    """Deterministic test backend. Any text containing '<fail>' makes encode raise."""

    max_tokens = 512
    calls: list[int] = []

    def encode(self, texts: list[str]) -> np.ndarray:
        HashingBackend.calls.append(len(texts))
        if any("<fail>" in t for t in texts):
            raise RuntimeError("poisoned input")
        return np.stack([hash_vector(t) for t in texts])


register_backend("hashing", lambda model, version, weights: HashingBackend())


@pytest.fixture
def backend_calls() -> list[int]:
    """Batch sizes seen by the hashing backend since the test started."""
    HashingBackend.calls.clear()
    return HashingBackend.calls


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path, monkeypatch):
    """Keep tests away from ~/.perceive and any perceive.yaml in the CWD."""
    monkeypatch.setattr(config_module, "_GLOBAL_CONFIG_PATH", tmp_path / "home" / "config.yaml")
    monkeypatch.delenv("PERCEIVE_DB", raising=False)
    monkeypatch.delenv("PERCEIVE_LOG_LEVEL", raising=False)
    monkeypatch.chdir(tmp_path)
    HashingBackend.calls.clear()


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = initialize(Database(tmp_path / "perceive.db"))
    yield db
    db.close()


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


@pytest.fixture
def perceive_config(tmp_path) -> PerceiveConfig:
    return PerceiveConfig(
        database=DatabaseCfg(path=str(tmp_path / "perceive.db")),
        pipeline=PipelineCfg(batch_size=4, token_budget=512, queue_size=8, source_workers=2),
    )


@pytest.fixture
def perceive_app(perceive_config):
    """Perceive instance with no model registered."""
    app = Perceive(perceive_config)
    app.start()
    yield app
    app.close()


@pytest.fixture
def active_app(perceive_app):
    """Perceive instance with the hashing model registered and active."""
    model = perceive_app.add_model("hash", "hashing")
    version = perceive_app.add_model_version(model.id, "unused")
    perceive_app.activate_model(model.id, version.version).result(timeout=30)
    return perceive_app


@pytest.fixture
def docs_dir(tmp_path):
    """A small directory tree of text documents."""
    root = tmp_path / "docs"
    (root / "notes").mkdir(parents=True)
    (root / "cooking.txt").write_text("pasta recipe with tomato sauce and basil")
    (root / "space.md").write_text("rocket launch orbit satellite telescope")
    (root / "notes" / "garden.txt").write_text("garden roses tulips soil compost")
    return root
