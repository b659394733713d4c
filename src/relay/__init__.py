"""
relay - workflow execution core.

Runs stored workflows (ordered action, condition and loop steps) by
resolving ``{{variables}}`` against a run-scoped binding environment and
dispatching each action to a capability addressed by a dotted path. Runs
are recorded, streamed to live observers, scheduled by cron and executed
through a bounded queue.

Entry points:
    - :class:`relay.container.RelayContainer` wires everything from settings
    - :class:`relay.execution.trigger.WorkflowTrigger` starts a run
    - ``relay`` CLI (``relay.cli.app``)
"""

__version__ = "0.1.0"
