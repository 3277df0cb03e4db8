"""SQLite connection layer with sqlite-vec extension."""

from __future__ import annotations

import functools
import logging
import sqlite3
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TypeVar

import sqlite_vec
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from perceive.errors import StoreError

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

# Seconds SQLite itself waits on a locked database before raising "database is locked".
_BUSY_TIMEOUT = 10.0


class Database:
    """Item store database with sqlite-vec loaded on every connection.

    Each thread gets its own connection (SQLite connections must not be used
    concurrently). Connections run in autocommit mode; multi-statement writes
    go through ``transaction()``.
    """

    def __init__(self, db_path: Path | str) -> None:
        """Store the database path. Connections are opened lazily per thread.

        Args:
            db_path: Path to the SQLite database file (created if missing).
        """
        self.db_path = Path(db_path)
        self._local = threading.local()
        self._all: list[sqlite3.Connection] = []
        self._all_lock = threading.Lock()

    def connect(self) -> sqlite3.Connection:
        """Open a new connection, load sqlite-vec, and return the connection."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            self.db_path,
            timeout=_BUSY_TIMEOUT,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.enable_load_extension(True)
        sqlite_vec.load(conn)
        conn.enable_load_extension(False)
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        return conn

    @property
    def conn(self) -> sqlite3.Connection:
        """The calling thread's connection, opened on first use."""
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = self.connect()
            self._local.conn = conn
            with self._all_lock:
                self._all.append(conn)
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed statements in one IMMEDIATE transaction.

        Commits on normal exit and rolls back if the block raises.
        """
        conn = self.conn
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        else:
            conn.execute("COMMIT")

    def close(self) -> None:
        """Close every connection this Database opened."""
        with self._all_lock:
            conns, self._all = self._all, []
        for conn in conns:
            conn.close()
        self._local = threading.local()

    def __enter__(self) -> Database:
        """Return self (context manager support); connections close on exit."""
        return self

    def __exit__(self, *args: object) -> None:
        """Close all connections when leaving the context manager."""
        self.close()


# ------------------------------------------------------------------
# Transient failure handling
# ------------------------------------------------------------------


def _is_transient(exc: BaseException) -> bool:
    """SQLite lock contention is worth retrying; everything else is not."""
    if not isinstance(exc, sqlite3.OperationalError):
        return False
    message = str(exc).lower()
    return "locked" in message or "busy" in message


def with_store_retry(func: Callable[..., _T]) -> Callable[..., _T]:
    """Retry *func* on lock contention, then surface failures as StoreError."""
    retrying = retry(
        retry=retry_if_exception(_is_transient),
        stop=stop_after_attempt(5),
        wait=wait_exponential_jitter(initial=0.05, max=2.0, jitter=0.05),
        reraise=True,
    )(func)

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return retrying(*args, **kwargs)
        except sqlite3.Error as exc:
            logger.error("Store operation %s failed: %s", func.__name__, exc)
            raise StoreError(f"{func.__name__} failed: {exc}") from exc

    return wrapper
