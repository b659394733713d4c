"""Time-based triggers: cron timers for active workflows.

Components:
    - SchedulerBackend / ThreadSchedulerBackend: tick timing
    - WorkflowScheduler: sync, arm and fire cron workflows
"""

from relay.scheduling.protocol import BackendHealth, SchedulerBackend
from relay.scheduling.service import WorkflowScheduler, next_fire_time, validate_schedule
from relay.scheduling.thread_backend import ThreadSchedulerBackend

__all__ = [
    "BackendHealth",
    "SchedulerBackend",
    "ThreadSchedulerBackend",
    "WorkflowScheduler",
    "next_fire_time",
    "validate_schedule",
]
