"""SQLite connection adapter.

Wraps a raw :class:`sqlite3.Connection` to satisfy the
:class:`~relay.core.protocols.Connection` protocol.

A bare ``sqlite3.Connection`` exposes ``execute()`` (returns a cursor)
but not ``fetchone()`` / ``fetchall()`` at the connection level, and it is
not safe to interleave statements from several threads on one cursor.
This adapter keeps one cursor behind a re-entrant lock and adds
``query`` / ``query_one`` / ``transaction`` for callers that may run on a
worker thread.

Usage::

    from relay.core.sqlite_conn import SqliteConnection

    conn = SqliteConnection(":memory:")
    with conn.transaction():
        conn.execute("CREATE TABLE t (id INTEGER)")
        conn.execute("INSERT INTO t VALUES (?)", (1,))
    row = conn.query_one("SELECT * FROM t")
    conn.close()
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any


class SqliteConnection:
    """Adapter: ``sqlite3.Connection`` → ``Connection`` protocol.

    The connection runs in autocommit mode; ``transaction()`` opens an
    explicit ``BEGIN IMMEDIATE`` and holds the lock until it commits or
    rolls back. Nested ``transaction()`` calls join the outer one.
    """

    def __init__(self, path: str = ":memory:", *, row_factory: Any = sqlite3.Row) -> None:
        self._conn = sqlite3.connect(path, check_same_thread=False, isolation_level=None)
        self._conn.row_factory = row_factory
        self._cursor = self._conn.cursor()
        self._lock = threading.RLock()
        self._depth = 0
        self.path = path
        if path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")

    # -- Connection protocol -----------------------------------------------

    def execute(self, sql: str, params: tuple = ()) -> Any:
        with self._lock:
            self._cursor.execute(sql, params)
            return self._cursor

    def executemany(self, sql: str, params: list[tuple]) -> Any:
        with self._lock:
            self._cursor.executemany(sql, params)
            return self._cursor

    def executescript(self, script: str) -> None:
        with self._lock:
            self._cursor.executescript(script)

    def fetchone(self) -> Any:
        with self._lock:
            return self._cursor.fetchone()

    def fetchall(self) -> list:
        with self._lock:
            return self._cursor.fetchall()

    def query(self, sql: str, params: tuple = ()) -> list:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def query_one(self, sql: str, params: tuple = ()) -> Any:
        with self._lock:
            return self._conn.execute(sql, params).fetchone()

    @contextmanager
    def transaction(self) -> Iterator[SqliteConnection]:
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self
                finally:
                    self._depth -= 1
                return
            self._conn.execute("BEGIN IMMEDIATE")
            self._depth = 1
            try:
                yield self
            except BaseException:
                self._conn.rollback()
                raise
            else:
                self._conn.commit()
            finally:
                self._depth = 0

    def commit(self) -> None:
        with self._lock:
            if not self._depth and self._conn.in_transaction:
                self._conn.commit()

    def rollback(self) -> None:
        with self._lock:
            if not self._depth and self._conn.in_transaction:
                self._conn.rollback()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # -- convenience -------------------------------------------------------

    @property
    def raw(self) -> sqlite3.Connection:
        """Access the underlying ``sqlite3.Connection`` (e.g. for pragmas)."""
        return self._conn

    def __repr__(self) -> str:
        return f"SqliteConnection({self.path!r})"
