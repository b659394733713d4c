"""Workflow and tenant repository.

Workflows are written whole (single-row upsert keyed by id) and are never
hard-deleted here; retiring a workflow means moving it to ``paused`` or
``error``. The run rollup columns (``last_run_*``, ``run_count``) are owned
by :class:`~relay.storage.runs.RunRepository` and are left untouched by
``save``.

Tags:
    repository, workflow, tenant, relay-core
"""

from __future__ import annotations

from typing import Any

from relay.core.errors import WorkflowError, WorkflowNotFoundError
from relay.core.logging import get_logger
from relay.core.timestamps import to_iso8601, utc_now_iso
from relay.storage.base import BaseRepository, dumps
from relay.workflows.models import TriggerKind, Workflow, WorkflowStatus

logger = get_logger(__name__)


class WorkflowRepository(BaseRepository):
    """CRUD for the ``workflows`` and ``tenants`` tables."""

    TABLE = "workflows"

    def save(self, workflow: Workflow) -> Workflow:
        """Insert or replace a workflow definition."""
        now = utc_now_iso()
        with self.conn.transaction():
            self.execute(
                f"""
                INSERT INTO {self.TABLE}
                    (id, owner_id, tenant_id, name, description, status,
                     trigger, config, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET
                    owner_id = excluded.owner_id,
                    tenant_id = excluded.tenant_id,
                    name = excluded.name,
                    description = excluded.description,
                    status = excluded.status,
                    trigger = excluded.trigger,
                    config = excluded.config,
                    updated_at = excluded.updated_at
                """,
                (
                    workflow.id,
                    workflow.owner_id,
                    workflow.tenant_id,
                    workflow.name,
                    workflow.description,
                    workflow.status.value,
                    dumps(workflow.trigger.to_dict()),
                    dumps(workflow.config),
                    to_iso8601(workflow.created_at),
                    now,
                ),
            )
        logger.debug("workflow.saved", workflow_id=workflow.id, status=workflow.status.value)
        return workflow

    def get(self, workflow_id: str) -> Workflow | None:
        row = self.query_one(f"SELECT * FROM {self.TABLE} WHERE id = ?", (workflow_id,))
        return Workflow.from_record(row) if row else None

    def require(self, workflow_id: str) -> Workflow:
        workflow = self.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        return workflow

    def list(
        self,
        *,
        status: WorkflowStatus | None = None,
        owner_id: str | None = None,
        limit: int = 100,
    ) -> list[Workflow]:
        clauses: list[str] = []
        params: list[Any] = []
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if owner_id is not None:
            clauses.append("owner_id = ?")
            params.append(owner_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.query(
            f"SELECT * FROM {self.TABLE} {where} ORDER BY created_at, id LIMIT ?",
            (*params, limit),
        )
        return [Workflow.from_record(row) for row in rows]

    def list_scheduled_active(self) -> list[Workflow]:
        """Active workflows whose trigger is time-based."""
        rows = self.query(
            f"SELECT * FROM {self.TABLE} WHERE status = ? ORDER BY id",
            (WorkflowStatus.ACTIVE.value,),
        )
        scheduled: list[Workflow] = []
        for row in rows:
            try:
                workflow = Workflow.from_record(row)
            except WorkflowError as exc:
                logger.error("workflow.unloadable", workflow_id=row["id"], error=exc.message)
                continue
            if workflow.trigger.type is TriggerKind.CRON:
                scheduled.append(workflow)
        return scheduled

    def update_status(self, workflow_id: str, status: WorkflowStatus) -> None:
        with self.conn.transaction():
            cursor = self.execute(
                f"UPDATE {self.TABLE} SET status = ?, updated_at = ? WHERE id = ?",
                (status.value, utc_now_iso(), workflow_id),
            )
            if cursor.rowcount == 0:
                raise WorkflowNotFoundError(workflow_id)
        logger.info("workflow.status_changed", workflow_id=workflow_id, status=status.value)

    # -- tenants ------------------------------------------------------------

    def set_tenant(self, tenant_id: str, *, status: str = "active", name: str | None = None) -> None:
        with self.conn.transaction():
            self.execute(
                """
                INSERT INTO tenants (id, name, status) VALUES (?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET
                    status = excluded.status,
                    name = COALESCE(excluded.name, tenants.name)
                """,
                (tenant_id, name, status),
            )

    def tenant_status(self, tenant_id: str) -> str | None:
        row = self.query_one("SELECT status FROM tenants WHERE id = ?", (tenant_id,))
        return row["status"] if row else None

    def is_tenant_active(self, tenant_id: str | None) -> bool:
        """Unknown tenants count as active; only an explicit non-active status blocks."""
        if tenant_id is None:
            return True
        status = self.tenant_status(tenant_id)
        return status is None or status == "active"


__all__ = ["WorkflowRepository"]
