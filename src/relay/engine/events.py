"""
Progress events for a run.

The interpreter reports every lifecycle transition to a ``ProgressEmitter``;
the emitter fans each event out to whatever sinks are attached (a live
observer's ``ProgressStream``, a logging sink, a test recorder). The
interpreter never knows which transport, if any, is listening.

Event stream for one run (ordered)::

    run_started     {workflowId, runId, totalSteps}
    step_started    {stepId, index, module, parentId?}
    step_completed  {stepId, index, durationMs, output?}
    step_failed     {stepId, index, error}
    ...
    run_completed   {runId, durationMs, output}
  | run_failed      {runId, error, errorStep?}

Observers may go away mid-run. A sink that raises is detached and the run
carries on; ``ProgressStream.close()`` does the same from the observer's
side. Neither cancels the run.

Tags:
    events, progress, sse, streaming, observer, relay-core

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import json
import queue
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any, ClassVar

from relay.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProgressEvent:
    """Base class; ``type`` is the wire name of the event."""

    type: ClassVar[str] = "event"
    terminal: ClassVar[bool] = False

    def payload(self) -> dict[str, Any]:
        raise NotImplementedError

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, **self.payload()}

    def to_sse(self) -> str:
        """Server-sent-event frame for this event."""
        return f"event: {self.type}\ndata: {json.dumps(self.to_dict(), default=str)}\n\n"


@dataclass(frozen=True)
class RunStarted(ProgressEvent):
    type: ClassVar[str] = "run_started"

    workflow_id: str
    run_id: str
    total_steps: int

    def payload(self) -> dict[str, Any]:
        return {"workflowId": self.workflow_id, "runId": self.run_id, "totalSteps": self.total_steps}


@dataclass(frozen=True)
class StepStarted(ProgressEvent):
    type: ClassVar[str] = "step_started"

    step_id: str
    index: int
    module: str
    parent_id: str | None = None

    def payload(self) -> dict[str, Any]:
        data: dict[str, Any] = {"stepId": self.step_id, "index": self.index, "module": self.module}
        if self.parent_id:
            data["parentId"] = self.parent_id
        return data


@dataclass(frozen=True)
class StepCompleted(ProgressEvent):
    type: ClassVar[str] = "step_completed"

    step_id: str
    index: int
    duration_ms: int
    output: Any = None

    def payload(self) -> dict[str, Any]:
        data: dict[str, Any] = {"stepId": self.step_id, "index": self.index, "durationMs": self.duration_ms}
        if self.output is not None:
            data["output"] = self.output
        return data


@dataclass(frozen=True)
class StepFailed(ProgressEvent):
    type: ClassVar[str] = "step_failed"

    step_id: str
    index: int
    error: str

    def payload(self) -> dict[str, Any]:
        return {"stepId": self.step_id, "index": self.index, "error": self.error}


@dataclass(frozen=True)
class RunCompleted(ProgressEvent):
    type: ClassVar[str] = "run_completed"
    terminal: ClassVar[bool] = True

    run_id: str
    duration_ms: int
    output: Any = None

    def payload(self) -> dict[str, Any]:
        return {"runId": self.run_id, "durationMs": self.duration_ms, "output": self.output}


@dataclass(frozen=True)
class RunFailed(ProgressEvent):
    type: ClassVar[str] = "run_failed"
    terminal: ClassVar[bool] = True

    run_id: str
    error: str
    error_step: str | None = None

    def payload(self) -> dict[str, Any]:
        data: dict[str, Any] = {"runId": self.run_id, "error": self.error}
        if self.error_step:
            data["errorStep"] = self.error_step
        return data


ProgressSink = Callable[[ProgressEvent], None]


class ProgressEmitter:
    """Fan-out of progress events to attached sinks."""

    def __init__(self, *sinks: ProgressSink | None):
        self._sinks: list[ProgressSink] = [s for s in sinks if s is not None]
        self._lock = threading.Lock()

    def attach(self, sink: ProgressSink) -> None:
        with self._lock:
            self._sinks.append(sink)

    def detach(self, sink: ProgressSink) -> None:
        with self._lock:
            if sink in self._sinks:
                self._sinks.remove(sink)

    @property
    def has_sinks(self) -> bool:
        return bool(self._sinks)

    def emit(self, event: ProgressEvent) -> None:
        with self._lock:
            sinks = list(self._sinks)
        for sink in sinks:
            try:
                sink(event)
            except Exception as exc:
                logger.warning(
                    "progress.sink_detached",
                    event_type=event.type,
                    sink=getattr(sink, "__qualname__", repr(sink)),
                    error=str(exc),
                )
                self.detach(sink)


class ObserverGone(Exception):
    """Raised by a closed ProgressStream so the emitter detaches it."""


class ProgressStream:
    """Buffered sink a live observer iterates until the run ends.

    ``maxsize`` bounds the events buffered for a slow observer. The run
    never waits on its observer: when the buffer is full the stream is
    closed, the emitter detaches it, and the observer sees the events
    buffered so far followed by the end of the stream (``overflowed`` is
    then True).

    Example:
        stream = ProgressStream()
        trigger.invoke(wf_id, user_id, "manual", on_progress=stream)  # in another thread
        for frame in stream.iter_sse():
            response.write(frame)
    """

    _END = object()

    def __init__(self, maxsize: int = 0):
        self.maxsize = maxsize
        self.overflowed = False
        # Unbounded so the end marker always fits; maxsize is enforced on events.
        self._queue: queue.Queue[Any] = queue.Queue()
        self._closed = threading.Event()
        self._finished = threading.Event()

    def __call__(self, event: ProgressEvent) -> None:
        if self._closed.is_set():
            raise ObserverGone("observer closed the stream")
        if self.maxsize and self._queue.qsize() >= self.maxsize:
            self.overflowed = True
            logger.warning("progress.stream_overflow", event_type=event.type, maxsize=self.maxsize)
            self.close()
            raise ObserverGone(f"observer fell {self.maxsize} events behind")
        self._queue.put_nowait(event)
        if event.terminal:
            self._finished.set()
            self._queue.put_nowait(self._END)

    def close(self) -> None:
        """Stop observing; the run continues without this sink."""
        if not self._closed.is_set():
            self._closed.set()
            self._queue.put_nowait(self._END)

    @property
    def finished(self) -> bool:
        return self._finished.is_set()

    def get(self, timeout: float | None = None) -> ProgressEvent | None:
        """Next event, or ``None`` when the stream has ended or ``timeout`` expires."""
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is self._END:
            self._queue.put(self._END)
            return None
        return item

    def __iter__(self) -> Iterator[ProgressEvent]:
        while True:
            item = self._queue.get()
            if item is self._END:
                self._queue.put(self._END)
                return
            yield item

    def iter_sse(self) -> Iterator[str]:
        for event in self:
            yield event.to_sse()


class LoggingSink:
    """Sink that writes every event to the structured log at debug level."""

    def __call__(self, event: ProgressEvent) -> None:
        logger.debug(f"progress.{event.type}", **event.payload())


class RecordingSink:
    """Sink that keeps every event in memory."""

    def __init__(self) -> None:
        self.events: list[ProgressEvent] = []
        self._lock = threading.Lock()

    def __call__(self, event: ProgressEvent) -> None:
        with self._lock:
            self.events.append(event)

    @property
    def types(self) -> list[str]:
        return [event.type for event in self.events]

    def of_type(self, event_type: str) -> list[ProgressEvent]:
        return [event for event in self.events if event.type == event_type]


__all__ = [
    "ProgressEvent",
    "RunStarted",
    "StepStarted",
    "StepCompleted",
    "StepFailed",
    "RunCompleted",
    "RunFailed",
    "ProgressSink",
    "ProgressEmitter",
    "ProgressStream",
    "ObserverGone",
    "LoggingSink",
    "RecordingSink",
]
