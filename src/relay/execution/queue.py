"""
Run Queue - durable, bounded-concurrency execution of run requests.

Requests are rows in the ``run_queue`` table, so nothing is lost when the
process goes down between ``submit`` and execution. A poll thread claims
pending rows (oldest first) and hands them to a thread pool, never holding
more than ``max_concurrent`` runs in flight overall, nor more than
``max_per_tenant`` for any one tenant.

ARCHITECTURE
────────────
::

    submit(RunRequest) ──INSERT pending──▶ run_queue
                                             │
                 poll loop (every poll_interval, or woken by submit)
                                             │  UPDATE ... SET status='claimed'
                                             │  WHERE id=? AND status='pending'
                                             ▼
                                   ThreadPoolExecutor(max_concurrent)
                                             │  executor.execute(..., run_id=id)
                                             ▼
                                 status = 'done' | 'failed'

Queue item lifecycle::

    pending ──claim──▶ claimed ──▶ done | failed
                          │
                          └── process died ──▶ initialize():
                                 no run row yet  → pending   (re-queued)
                                 run row exists  → abandoned (run closed as error)

Runs that had already started are never re-executed: their capabilities
may have had side effects.

Tags:
    queue, worker, concurrency, durability, relay-core
"""

from __future__ import annotations

import json
import threading
import time
import uuid
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

from relay.core.errors import QueueUnavailableError
from relay.core.logging import LogContext, get_logger
from relay.core.protocols import Connection
from relay.core.timestamps import generate_ulid, utc_now_iso
from relay.engine.executor import WorkflowExecutor
from relay.storage.runs import RunRepository
from relay.workflows.models import InvocationType, RunStatus

logger = get_logger(__name__)

ORPHANED_MESSAGE = "Run abandoned: the worker stopped before it completed"


class QueueItemStatus:
    PENDING = "pending"
    CLAIMED = "claimed"
    DONE = "done"
    FAILED = "failed"
    ABANDONED = "abandoned"


@dataclass
class RunRequest:
    """A request to run a workflow once."""

    workflow_id: str
    user_id: str
    trigger_type: InvocationType | str = InvocationType.MANUAL
    payload: dict[str, Any] | None = None
    tenant_id: str | None = None
    run_id: str = field(default_factory=generate_ulid)


class RunQueue:
    """Durable queue feeding a bounded pool of run executions."""

    def __init__(
        self,
        conn: Connection,
        executor: WorkflowExecutor,
        *,
        max_concurrent: int = 5,
        max_per_tenant: int | None = None,
        poll_interval: float = 0.5,
        batch_size: int = 10,
        worker_id: str | None = None,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.conn = conn
        self.executor = executor
        self.max_concurrent = max_concurrent
        self.max_per_tenant = max_per_tenant
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self.worker_id = worker_id or f"worker-{uuid.uuid4().hex[:8]}"

        self._runs = RunRepository(conn)
        self._pool: ThreadPoolExecutor | None = None
        self._thread: threading.Thread | None = None
        self._stopping = threading.Event()
        self._wakeup = threading.Event()
        self._state = threading.Condition()
        self._active: dict[str, str | None] = {}
        self._processed = 0
        self._failed = 0
        self._available = False

    # -- lifecycle ------------------------------------------------------------

    def initialize(self) -> None:
        """Recover orphaned items and start the poll loop."""
        if self._available:
            return
        self.recover_orphans()
        self._stopping.clear()
        self._pool = ThreadPoolExecutor(max_workers=self.max_concurrent, thread_name_prefix=self.worker_id)
        self._thread = threading.Thread(target=self._poll_loop, name=f"{self.worker_id}-poll", daemon=True)
        self._available = True
        self._thread.start()
        logger.info(
            "queue.started",
            worker_id=self.worker_id,
            max_concurrent=self.max_concurrent,
            max_per_tenant=self.max_per_tenant,
            poll_interval=self.poll_interval,
        )

    def shutdown(self, *, wait: bool = True, timeout: float | None = 30.0) -> None:
        """Stop claiming new work; optionally wait for in-flight runs."""
        if not self._available:
            return
        self._available = False
        self._stopping.set()
        self._wakeup.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        if self._pool is not None:
            self._pool.shutdown(wait=wait)
            self._pool = None
        logger.info("queue.stopped", worker_id=self.worker_id, processed=self._processed, failed=self._failed)

    @property
    def is_available(self) -> bool:
        return self._available

    # -- producer side --------------------------------------------------------

    def submit(self, request: RunRequest) -> str:
        """Persist a run request; returns the run id it will execute under."""
        if not self._available:
            raise QueueUnavailableError("Run queue is not running")
        trigger_type = InvocationType.parse(request.trigger_type)
        with self.conn.transaction():
            self.conn.execute(
                """
                INSERT INTO run_queue
                    (id, workflow_id, user_id, tenant_id, trigger_type, trigger_payload, status, enqueued_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    request.run_id,
                    request.workflow_id,
                    request.user_id,
                    request.tenant_id,
                    trigger_type.value,
                    json.dumps(request.payload, default=str) if request.payload is not None else None,
                    QueueItemStatus.PENDING,
                    utc_now_iso(),
                ),
            )
        logger.info(
            "queue.submitted",
            run_id=request.run_id,
            workflow_id=request.workflow_id,
            trigger_type=trigger_type.value,
        )
        self._wakeup.set()
        return request.run_id

    # -- recovery -------------------------------------------------------------

    def recover_orphans(self) -> tuple[int, int]:
        """Settle items a previous process claimed but never finished.

        Returns ``(requeued, abandoned)``.
        """
        rows = self.conn.query(
            "SELECT id FROM run_queue WHERE status = ?", (QueueItemStatus.CLAIMED,)
        )
        requeued = abandoned = 0
        for row in rows:
            item_id = row["id"]
            run = self._runs.get(item_id)
            if run is None:
                with self.conn.transaction():
                    self.conn.execute(
                        "UPDATE run_queue SET status = ?, claimed_at = NULL, claimed_by = NULL "
                        "WHERE id = ? AND status = ?",
                        (QueueItemStatus.PENDING, item_id, QueueItemStatus.CLAIMED),
                    )
                requeued += 1
                continue
            if run.status.is_terminal:
                settled = QueueItemStatus.DONE if run.status is RunStatus.SUCCESS else QueueItemStatus.FAILED
                with self.conn.transaction():
                    self.conn.execute(
                        "UPDATE run_queue SET status = ?, finished_at = ? WHERE id = ?",
                        (settled, utc_now_iso(), item_id),
                    )
                continue
            with self.conn.transaction():
                self.conn.execute(
                    "UPDATE run_queue SET status = ?, finished_at = ? WHERE id = ?",
                    (QueueItemStatus.ABANDONED, utc_now_iso(), item_id),
                )
                self._runs.finish(item_id, RunStatus.ERROR, error=ORPHANED_MESSAGE)
            abandoned += 1
        if requeued or abandoned:
            logger.warning("queue.orphans_recovered", requeued=requeued, abandoned=abandoned)
        return requeued, abandoned

    # -- consumer side --------------------------------------------------------

    def _poll_loop(self) -> None:
        while not self._stopping.is_set():
            try:
                claimed = self._poll()
                if claimed:
                    logger.debug("queue.claimed", count=claimed)
            except Exception as exc:
                logger.exception("queue.poll_error", error=str(exc))
            self._wakeup.wait(self.poll_interval)
            self._wakeup.clear()

    def _poll(self) -> int:
        pool = self._pool
        if pool is None:
            return 0
        with self._state:
            free = self.max_concurrent - len(self._active)
            tenant_load = Counter(t for t in self._active.values() if t is not None)
        if free <= 0:
            return 0

        rows = self.conn.query(
            "SELECT * FROM run_queue WHERE status = ? ORDER BY enqueued_at, id LIMIT ?",
            (QueueItemStatus.PENDING, max(self.batch_size, free)),
        )
        claimed = 0
        for row in rows:
            if claimed >= free or self._stopping.is_set():
                break
            tenant_id = row["tenant_id"]
            if (
                self.max_per_tenant is not None
                and tenant_id is not None
                and tenant_load[tenant_id] >= self.max_per_tenant
            ):
                continue
            with self._state:
                self._active[row["id"]] = tenant_id
            if not self._claim(row["id"]):
                with self._state:
                    self._active.pop(row["id"], None)
                continue
            claimed += 1
            if tenant_id is not None:
                tenant_load[tenant_id] += 1
            pool.submit(self._execute, dict(row))
        return claimed

    def _claim(self, item_id: str) -> bool:
        with self.conn.transaction():
            cursor = self.conn.execute(
                "UPDATE run_queue SET status = ?, claimed_at = ?, claimed_by = ? WHERE id = ? AND status = ?",
                (QueueItemStatus.CLAIMED, utc_now_iso(), self.worker_id, item_id, QueueItemStatus.PENDING),
            )
            return cursor.rowcount > 0

    def _execute(self, item: dict[str, Any]) -> None:
        item_id = item["id"]
        status = QueueItemStatus.FAILED
        try:
            with LogContext(queue_item=item_id, worker_id=self.worker_id):
                payload = json.loads(item["trigger_payload"]) if item["trigger_payload"] else None
                outcome = self.executor.execute(
                    item["workflow_id"],
                    item["user_id"],
                    item["trigger_type"],
                    payload,
                    run_id=item_id,
                )
                status = QueueItemStatus.DONE if outcome.success else QueueItemStatus.FAILED
        except Exception as exc:
            logger.exception("queue.run_crashed", run_id=item_id, error=str(exc))
        finally:
            self._finish(item_id, status)

    def _finish(self, item_id: str, status: str) -> None:
        try:
            with self.conn.transaction():
                self.conn.execute(
                    "UPDATE run_queue SET status = ?, finished_at = ? WHERE id = ?",
                    (status, utc_now_iso(), item_id),
                )
        except Exception as exc:
            logger.error("queue.finish_failed", run_id=item_id, error=str(exc))
        with self._state:
            self._active.pop(item_id, None)
            self._processed += 1
            if status != QueueItemStatus.DONE:
                self._failed += 1
            self._state.notify_all()
        self._wakeup.set()

    # -- introspection --------------------------------------------------------

    def stats(self) -> dict[str, Any]:
        rows = self.conn.query("SELECT status, COUNT(*) AS n FROM run_queue GROUP BY status")
        counts = {row["status"]: row["n"] for row in rows}
        with self._state:
            active = len(self._active)
            per_tenant = dict(Counter(t for t in self._active.values() if t is not None))
        return {
            "worker_id": self.worker_id,
            "available": self._available,
            "active": active,
            "active_per_tenant": per_tenant,
            "max_concurrent": self.max_concurrent,
            "max_per_tenant": self.max_per_tenant,
            "processed": self._processed,
            "failed": self._failed,
            "pending": counts.get(QueueItemStatus.PENDING, 0),
            "by_status": counts,
        }

    def pending_count(self) -> int:
        row = self.conn.query_one(
            "SELECT COUNT(*) AS n FROM run_queue WHERE status = ?", (QueueItemStatus.PENDING,)
        )
        return row["n"] if row else 0

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until nothing is pending or in flight. Returns False on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._state:
                idle = not self._active
            if idle and self.pending_count() == 0:
                return True
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                return False
            with self._state:
                self._state.wait(timeout=min(0.05, remaining) if remaining is not None else 0.05)


__all__ = ["RunQueue", "RunRequest", "QueueItemStatus", "ORPHANED_MESSAGE"]
