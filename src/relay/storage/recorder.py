"""
Run Recorder - durable run bookkeeping that never fails a run.

The executor reports two facts per run: it started, and it ended. The
recorder writes each fact through :class:`RunRepository` immediately. If
the write fails (locked database, disk full, ...), the failure is logged
and the write is parked in a bounded in-memory backlog that a background
thread retries with exponential backoff. Both repository writes are
idempotent, so a retry that races a late success is harmless.

Architecture:
    ::

        executor ──record_started(run)────┐
                 ──record_finished(...)───┤
                                          ▼
                                 ┌─────────────────┐   ok
                                 │  inline write   │──────▶ done
                                 └────────┬────────┘
                                          │ error (logged)
                                          ▼
                                 ┌─────────────────┐
                                 │ backlog (deque) │ ≤ backlog entries
                                 └────────┬────────┘
                                          │ retry thread, backoff
                                          ▼
                               success │ max_attempts → dropped (logged)

    When the backlog is full the oldest parked write is evicted to make
    room. Evicting a start also evicts that run's parked finish.

    Writes are retried in the order they were first attempted, so a
    parked start is always replayed before the finish of the same run.

Tags:
    recorder, persistence, retry, backoff, relay-core
"""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from relay.core.logging import get_logger
from relay.execution.retry import ExponentialBackoff, RetryStrategy
from relay.storage.runs import RunRepository
from relay.workflows.models import Run, RunStatus

logger = get_logger(__name__)


@dataclass
class _PendingWrite:
    kind: str
    run_id: str
    apply: Callable[[], Any]
    attempts: int = 1
    next_at: float = 0.0
    last_error: str = field(default="", repr=False)


class RunRecorder:
    """Writes run start/finish records, retrying failures in the background."""

    def __init__(
        self,
        runs: RunRepository,
        *,
        retry_strategy: RetryStrategy | None = None,
        max_attempts: int = 5,
        backlog: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.runs = runs
        self.retry_strategy = retry_strategy or ExponentialBackoff(
            max_retries=max_attempts - 1, base_delay=0.5, max_delay=30.0
        )
        self.max_attempts = max_attempts
        self.backlog = backlog
        self._clock = clock
        self._pending: deque[_PendingWrite] = deque()
        self._lock = threading.Lock()
        self._wakeup = threading.Event()
        self._stopping = threading.Event()
        self._thread: threading.Thread | None = None
        self.dropped = 0

    # -- lifecycle ------------------------------------------------------------

    def start(self) -> None:
        """Start the background retry thread (idempotent)."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stopping.clear()
        self._thread = threading.Thread(target=self._retry_loop, name="relay-recorder", daemon=True)
        self._thread.start()
        logger.debug("recorder.started")

    def shutdown(self, timeout: float = 5.0) -> None:
        """Stop the retry thread after one last flush attempt."""
        self._stopping.set()
        self._wakeup.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        remaining = self.flush()
        if remaining:
            logger.error("recorder.shutdown_with_pending", pending=remaining)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    # -- recording ------------------------------------------------------------

    def record_started(self, run: Run) -> None:
        self._write("start", run.id, lambda: self.runs.start(run))

    def record_finished(
        self,
        run_id: str,
        status: RunStatus,
        *,
        completed_at: datetime | None = None,
        duration_ms: int | None = None,
        output: Any = None,
        error: str | None = None,
        error_step: str | None = None,
    ) -> None:
        self._write(
            "finish",
            run_id,
            lambda: self.runs.finish(
                run_id,
                status,
                completed_at=completed_at,
                duration_ms=duration_ms,
                output=output,
                error=error,
                error_step=error_step,
            ),
        )

    def _write(self, kind: str, run_id: str, apply: Callable[[], Any]) -> None:
        with self._lock:
            # Keep per-run ordering: never jump ahead of a parked write.
            if self._pending:
                self._park(_PendingWrite(kind, run_id, apply, attempts=0), "backlog not empty")
                return
        try:
            apply()
        except Exception as exc:
            logger.error("recorder.write_failed", kind=kind, run_id=run_id, error=str(exc))
            with self._lock:
                self._park(_PendingWrite(kind, run_id, apply), str(exc))

    def _park(self, write: _PendingWrite, reason: str) -> None:
        # Caller holds self._lock.
        orphaned: set[str] = set()
        while self._pending and len(self._pending) >= self.backlog:
            orphaned.update(self._evict_oldest())
        if write.run_id in orphaned:
            self.dropped += 1
            logger.error("recorder.backlog_evicted", kind=write.kind, run_id=write.run_id, backlog=self.backlog)
            return
        write.last_error = reason
        write.next_at = self._clock() + self._delay(write.attempts)
        self._pending.append(write)
        self._wakeup.set()

    def _evict_oldest(self) -> set[str]:
        """Drop the oldest parked write; returns run ids whose start was dropped."""
        # Caller holds self._lock. A finish cannot land without its start,
        # so evicting a start takes the same run's parked finish with it.
        oldest = self._pending.popleft()
        evicted = [oldest]
        if oldest.kind == "start":
            evicted += [w for w in self._pending if w.run_id == oldest.run_id]
            self._pending = deque(w for w in self._pending if w.run_id != oldest.run_id)
        self.dropped += len(evicted)
        for write in evicted:
            logger.error(
                "recorder.backlog_evicted",
                kind=write.kind,
                run_id=write.run_id,
                backlog=self.backlog,
                error=write.last_error,
            )
        return {oldest.run_id} if oldest.kind == "start" else set()

    def _delay(self, attempts: int) -> float:
        if attempts <= 0:
            return 0.0
        return self.retry_strategy.next_delay(attempts - 1)

    # -- retrying -------------------------------------------------------------

    def flush(self) -> int:
        """Attempt every parked write once, ignoring backoff. Returns what is left."""
        return self._drain(force=True)

    def _drain(self, *, force: bool = False) -> int:
        while True:
            with self._lock:
                if not self._pending:
                    return 0
                head = self._pending[0]
                if not force and head.next_at > self._clock():
                    return len(self._pending)
            try:
                head.apply()
            except Exception as exc:
                head.attempts += 1
                head.last_error = str(exc)
                with self._lock:
                    if head.attempts >= self.max_attempts:
                        self._pending.popleft()
                        self.dropped += 1
                        logger.error(
                            "recorder.write_dropped",
                            kind=head.kind,
                            run_id=head.run_id,
                            attempts=head.attempts,
                            error=head.last_error,
                        )
                        continue
                    head.next_at = self._clock() + self._delay(head.attempts)
                    if force:
                        return len(self._pending)
                logger.warning(
                    "recorder.retry_failed",
                    kind=head.kind,
                    run_id=head.run_id,
                    attempts=head.attempts,
                    error=head.last_error,
                )
                return self.pending_count
            with self._lock:
                if self._pending and self._pending[0] is head:
                    self._pending.popleft()
            logger.info("recorder.write_recovered", kind=head.kind, run_id=head.run_id, attempts=head.attempts)

    def _retry_loop(self) -> None:
        while not self._stopping.is_set():
            with self._lock:
                wait = None
                if self._pending:
                    wait = max(0.0, self._pending[0].next_at - self._clock())
            self._wakeup.wait(timeout=wait if wait is not None else 1.0)
            self._wakeup.clear()
            if self._stopping.is_set():
                break
            self._drain()


__all__ = ["RunRecorder"]
