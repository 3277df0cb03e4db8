"""Tests for perceive rich error messages."""

from __future__ import annotations

import pytest

from perceive.cli.errors import (
    err_config,
    err_index_inconsistent,
    err_model_load,
    err_model_not_found,
    err_no_active_model,
    err_no_db,
    err_source_failed,
    err_source_not_found,
    err_store,
    render_error,
)
from perceive.errors import (
    ConfigError,
    IndexConsistencyError,
    ModelLoadError,
    ModelNotReadyError,
    SourceError,
    StoreError,
)


def _has_action(msg: str) -> bool:
    """Every error except plain config errors tells the user what to run next."""
    lower = msg.lower()
    return any(kw in lower for kw in ["run:", "perceive ", "retry", "register"])


# ---------------------------------------------------------------------------
# Individual messages
# ---------------------------------------------------------------------------


def test_err_no_db_names_path() -> None:
    msg = err_no_db("/data/perceive.db")
    assert "/data/perceive.db" in msg
    assert "perceive init" in msg


def test_err_no_active_model_explains_activation() -> None:
    msg = err_no_active_model()
    assert "model add" in msg
    assert "model activate" in msg


def test_err_model_load_includes_cause() -> None:
    assert "weights missing" in err_model_load("weights missing")


def test_err_source_not_found() -> None:
    msg = err_source_not_found(12)
    assert "12" in msg
    assert "source list" in msg


def test_err_model_not_found() -> None:
    msg = err_model_not_found("mini")
    assert "'mini'" in msg
    assert "model list" in msg


def test_err_source_failed() -> None:
    msg = err_source_failed("notes", "gone")
    assert "notes" in msg
    assert "gone" in msg
    assert "perceive sync" in msg


@pytest.mark.parametrize(
    "msg",
    [
        err_no_db("x"),
        err_no_active_model(),
        err_model_load("x"),
        err_source_not_found(1),
        err_model_not_found("x"),
        err_source_failed("x", "y"),
        err_index_inconsistent("x"),
        err_store("x"),
    ],
)
def test_messages_are_actionable(msg: str) -> None:
    assert _has_action(msg)


# ---------------------------------------------------------------------------
# render_error
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (ModelNotReadyError("no model"), err_no_active_model()),
        (ModelLoadError("bad weights"), err_model_load("bad weights")),
        (IndexConsistencyError("orphan", 1, 0), err_index_inconsistent("orphan")),
        (StoreError("locked"), err_store("locked")),
        (ConfigError("bad value"), err_config("bad value")),
        (SourceError("unreadable"), err_config("unreadable")),
    ],
)
def test_render_error(exc: Exception, expected: str) -> None:
    assert render_error(exc) == expected
