"""
Run repository - persistence of workflow runs and workflow rollups.

A run row is written twice: once when it starts (``running``) and once
when it ends. Both writes are idempotent, so the recorder may replay them
after a transient storage failure without double counting:

    start(run)   INSERT ... ON CONFLICT (id) DO NOTHING
    finish(...)  UPDATE ... only while the run is 'running' (or was reaped)
                 └─ only when that update changed a row:
                    UPDATE workflows SET run_count = run_count + 1,
                                         last_run_at/status/error = ...

The finish update and the workflow rollup commit in one transaction.

Crash mitigation:
    ``reap_stale(max_age)`` closes runs that have been ``running`` longer
    than ``max_age`` seconds as ``error`` ("Run abandoned ..."). The
    scheduler calls it on every sync. A run that was only slow, not dead,
    still records its real result when it finishes: the reaper marks its
    rows (``reaped = 1``) and ``finish`` replaces them once.

Tags:
    repository, runs, history, rollup, relay-core
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from relay.core.errors import PersistenceError
from relay.core.logging import get_logger
from relay.core.timestamps import from_iso8601, to_iso8601, utc_now
from relay.storage.base import BaseRepository, dumps
from relay.workflows.models import Run, RunStatus

logger = get_logger(__name__)

ABANDONED_MESSAGE = "Run abandoned: no completion was recorded within {age}s"


class RunRepository(BaseRepository):
    """CRUD for ``workflow_runs`` plus the rollup on ``workflows``."""

    TABLE = "workflow_runs"

    def start(self, run: Run) -> bool:
        """Insert a run as ``running``. Returns False if it already existed."""
        with self.conn.transaction():
            cursor = self.execute(
                f"""
                INSERT INTO {self.TABLE}
                    (id, workflow_id, user_id, tenant_id, trigger_type,
                     trigger_payload, status, started_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (id) DO NOTHING
                """,
                (
                    run.id,
                    run.workflow_id,
                    run.user_id,
                    run.tenant_id,
                    run.trigger_type.value,
                    dumps(run.trigger_payload),
                    RunStatus.RUNNING.value,
                    to_iso8601(run.started_at),
                ),
            )
            return cursor.rowcount > 0

    def finish(
        self,
        run_id: str,
        status: RunStatus,
        *,
        completed_at: datetime | None = None,
        duration_ms: int | None = None,
        output: Any = None,
        error: str | None = None,
        error_step: str | None = None,
    ) -> bool:
        """Close a running run and roll the result up onto its workflow.

        A run the reaper closed as abandoned is still open to its real
        completion: that result replaces the reaper's error without being
        counted a second time.

        Returns True when this call made the transition, False when the run
        had already been closed (a replay).

        Raises:
            PersistenceError: if no such run exists
        """
        return self._close(
            run_id,
            status,
            completed_at=completed_at,
            duration_ms=duration_ms,
            output=output,
            error=error,
            error_step=error_step,
        )

    def _close(
        self,
        run_id: str,
        status: RunStatus,
        *,
        completed_at: datetime | None = None,
        duration_ms: int | None = None,
        output: Any = None,
        error: str | None = None,
        error_step: str | None = None,
        reaping: bool = False,
    ) -> bool:
        if not status.is_terminal:
            raise ValueError(f"finish() needs a terminal status, got {status.value}")
        completed_at = completed_at or utc_now()
        completed_iso = to_iso8601(completed_at)

        with self.conn.transaction():
            row = self.query_one(
                f"SELECT workflow_id, started_at, status, reaped FROM {self.TABLE} WHERE id = ?", (run_id,)
            )
            if row is None:
                raise PersistenceError(f"Run not found: {run_id}")
            was_running = row["status"] == RunStatus.RUNNING.value
            if not (was_running or (row["reaped"] and not reaping)):
                return False
            if duration_ms is None:
                started = from_iso8601(row["started_at"])
                duration_ms = int((completed_at - started).total_seconds() * 1000) if started else None

            self.execute(
                f"""
                UPDATE {self.TABLE}
                SET status = ?, completed_at = ?, duration_ms = ?,
                    output = ?, error = ?, error_step = ?, reaped = ?
                WHERE id = ?
                """,
                (
                    status.value,
                    completed_iso,
                    duration_ms,
                    dumps(output) if status is RunStatus.SUCCESS else None,
                    error,
                    error_step,
                    1 if reaping else 0,
                    run_id,
                ),
            )
            self.execute(
                """
                UPDATE workflows
                SET run_count = run_count + ?,
                    last_run_at = ?,
                    last_run_status = ?,
                    last_run_error = ?
                WHERE id = ?
                """,
                (1 if was_running else 0, completed_iso, status.value, error, row["workflow_id"]),
            )
        if not was_running:
            logger.warning("run.completed_after_reap", run_id=run_id, status=status.value)
        return True

    def get(self, run_id: str) -> Run | None:
        row = self.query_one(f"SELECT * FROM {self.TABLE} WHERE id = ?", (run_id,))
        return Run.from_record(row) if row else None

    def list_for_workflow(self, workflow_id: str, *, limit: int = 50) -> list[Run]:
        rows = self.query(
            f"SELECT * FROM {self.TABLE} WHERE workflow_id = ? ORDER BY started_at DESC, id DESC LIMIT ?",
            (workflow_id, limit),
        )
        return [Run.from_record(row) for row in rows]

    def list_recent(self, *, status: RunStatus | None = None, limit: int = 50) -> list[Run]:
        if status is None:
            rows = self.query(
                f"SELECT * FROM {self.TABLE} ORDER BY started_at DESC, id DESC LIMIT ?", (limit,)
            )
        else:
            rows = self.query(
                f"SELECT * FROM {self.TABLE} WHERE status = ? ORDER BY started_at DESC, id DESC LIMIT ?",
                (status.value, limit),
            )
        return [Run.from_record(row) for row in rows]

    def reap_stale(self, max_age_seconds: float, *, now: datetime | None = None) -> list[str]:
        """Close runs stuck in ``running`` for longer than ``max_age_seconds``."""
        now = now or utc_now()
        cutoff = to_iso8601(now - timedelta(seconds=max_age_seconds))
        rows = self.query(
            f"SELECT id FROM {self.TABLE} WHERE status = ? AND started_at < ?",
            (RunStatus.RUNNING.value, cutoff),
        )
        message = ABANDONED_MESSAGE.format(age=int(max_age_seconds))
        reaped: list[str] = []
        for row in rows:
            if self._close(row["id"], RunStatus.ERROR, completed_at=now, error=message, reaping=True):
                reaped.append(row["id"])
        if reaped:
            logger.warning("run.reaped", count=len(reaped), run_ids=reaped, max_age_seconds=max_age_seconds)
        return reaped


__all__ = ["RunRepository", "ABANDONED_MESSAGE"]
