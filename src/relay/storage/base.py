"""Base repository over the :class:`~relay.core.protocols.Connection` protocol.

Architecture::

    ┌──────────────────────────────────────────────────────────┐
    │                     BaseRepository                       │
    │                                                          │
    │   conn: Connection        ← protocol from relay.core     │
    │                                                          │
    │   execute(sql, params)     → cursor                      │
    │   query(sql, params)       → list[dict]                  │
    │   query_one(sql, params)   → dict | None                 │
    └──────────────────────────────────────────────────────────┘

Every mutating repository method wraps its statements in
``conn.transaction()`` so callers never see half-applied writes.

Tags:
    repository, database, sqlite, relay-core
"""

from __future__ import annotations

import json
from typing import Any

from relay.core.protocols import Connection


def dumps(value: Any) -> str | None:
    """JSON-encode a column value (``None`` stays NULL)."""
    if value is None:
        return None
    return json.dumps(value, default=str)


class BaseRepository:
    """Thin helper base for data-access repositories."""

    TABLE = ""

    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    def execute(self, sql: str, params: tuple = ()) -> Any:
        return self.conn.execute(sql, params)

    def query(self, sql: str, params: tuple = ()) -> list[dict[str, Any]]:
        """Execute a SELECT and return rows as dicts."""
        return [dict(row) for row in self.conn.query(sql, params)]

    def query_one(self, sql: str, params: tuple = ()) -> dict[str, Any] | None:
        row = self.conn.query_one(sql, params)
        return dict(row) if row is not None else None


__all__ = ["BaseRepository", "dumps"]
