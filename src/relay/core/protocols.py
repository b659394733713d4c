"""
Storage protocol for relay repositories.

Repositories depend on this protocol, never on ``sqlite3`` directly, so a
test can hand them an in-memory database and a deployment can hand them a
file-backed one (or another adapter with the same surface).

Architecture:
    ::

        Connection Protocol:
        ┌────────────────────────────────────────────────────────────┐
        │ execute(sql, params)   → Execute single statement          │
        │ executemany(sql, list) → Execute for multiple params       │
        │ fetchone() / fetchall()→ Rows from the last execute        │
        │ query(sql, params)     → execute + fetchall, atomically    │
        │ query_one(sql, params) → execute + fetchone, atomically    │
        │ transaction()          → context manager: commit/rollback  │
        │ commit() / rollback()                                      │
        └────────────────────────────────────────────────────────────┘

    The queue workers, recorder retry thread and scheduler timer all share
    one Connection; ``query``/``query_one``/``transaction`` are the calls
    that are safe to make from more than one thread.

Tags:
    protocol, database, connection, relay-core
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Connection(Protocol):
    """Minimal synchronous connection interface used by repositories."""

    def execute(self, sql: str, params: tuple = ()) -> Any: ...

    def executemany(self, sql: str, params: list[tuple]) -> Any: ...

    def fetchone(self) -> Any: ...

    def fetchall(self) -> list[Any]: ...

    def query(self, sql: str, params: tuple = ()) -> list[Any]: ...

    def query_one(self, sql: str, params: tuple = ()) -> Any: ...

    def transaction(self) -> AbstractContextManager[Any]: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


__all__ = ["Connection"]
