"""SQLite schema for relay.

Five tables back the execution core:

- ``workflows``      definitions plus run rollups (last_run_*, run_count)
- ``workflow_runs``  one row per execution attempt
- ``run_queue``      durable queue of pending/claimed run requests
- ``tenants``        organization status checked before every run
- ``credentials``    per-user decrypted-on-read integration secrets

JSON-valued columns (trigger, config, payloads, outputs) are stored as TEXT.
Timestamps are ISO-8601 UTC strings.
"""

from __future__ import annotations

from relay.core.protocols import Connection

SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS tenants (
        id          TEXT PRIMARY KEY,
        name        TEXT,
        status      TEXT NOT NULL DEFAULT 'active'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS workflows (
        id              TEXT PRIMARY KEY,
        owner_id        TEXT NOT NULL,
        tenant_id       TEXT,
        name            TEXT NOT NULL,
        description     TEXT NOT NULL DEFAULT '',
        status          TEXT NOT NULL DEFAULT 'draft',
        trigger         TEXT NOT NULL,
        config          TEXT NOT NULL DEFAULT '{"steps": []}',
        created_at      TEXT NOT NULL,
        updated_at      TEXT NOT NULL,
        last_run_at     TEXT,
        last_run_status TEXT,
        last_run_error  TEXT,
        run_count       INTEGER NOT NULL DEFAULT 0
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_workflows_status ON workflows (status)",
    """
    CREATE TABLE IF NOT EXISTS workflow_runs (
        id              TEXT PRIMARY KEY,
        workflow_id     TEXT NOT NULL,
        user_id         TEXT NOT NULL,
        tenant_id       TEXT,
        trigger_type    TEXT NOT NULL,
        trigger_payload TEXT,
        status          TEXT NOT NULL DEFAULT 'running',
        started_at      TEXT NOT NULL,
        completed_at    TEXT,
        duration_ms     INTEGER,
        output          TEXT,
        error           TEXT,
        error_step      TEXT,
        reaped          INTEGER NOT NULL DEFAULT 0
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_runs_workflow ON workflow_runs (workflow_id, started_at)",
    "CREATE INDEX IF NOT EXISTS idx_runs_status ON workflow_runs (status)",
    """
    CREATE TABLE IF NOT EXISTS run_queue (
        id              TEXT PRIMARY KEY,
        workflow_id     TEXT NOT NULL,
        user_id         TEXT NOT NULL,
        tenant_id       TEXT,
        trigger_type    TEXT NOT NULL,
        trigger_payload TEXT,
        status          TEXT NOT NULL DEFAULT 'pending',
        enqueued_at     TEXT NOT NULL,
        claimed_at      TEXT,
        claimed_by      TEXT,
        finished_at     TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_queue_status ON run_queue (status, enqueued_at)",
    """
    CREATE TABLE IF NOT EXISTS credentials (
        id           INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id      TEXT NOT NULL,
        platform     TEXT NOT NULL,
        value        TEXT NOT NULL,
        created_at   TEXT NOT NULL,
        last_used_at TEXT,
        UNIQUE (user_id, platform)
    )
    """,
)


def create_schema(conn: Connection) -> None:
    """Create all tables and indexes (idempotent)."""
    with conn.transaction():
        for statement in SCHEMA_STATEMENTS:
            conn.execute(statement)


__all__ = ["SCHEMA_STATEMENTS", "create_schema"]
