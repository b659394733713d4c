"""
Root Typer application for the relay CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from relay.cli.utils import console, err_console, fail, make_container, output_dict, output_json, parse_json_option
from relay.engine.events import ProgressEvent

app = Typer(
    name="relay",
    help="relay - run stored workflows, schedules and the run queue.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from relay import __version__

        typer.echo(f"relay {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """relay CLI - manage workflows, runs, schedules and capabilities."""


# ── relay run ────────────────────────────────────────────────────────────


def _print_event(event: ProgressEvent) -> None:
    data = event.to_dict()
    kind = data.pop("type")
    colour = {"step_failed": "red", "run_failed": "red", "run_completed": "green"}.get(kind, "cyan")
    detail = " ".join(f"{k}={v}" for k, v in data.items() if k != "output")
    err_console.print(f"[{colour}]{kind}[/{colour}] {detail}")


@app.command("run")
def run_workflow(
    workflow_id: str = typer.Argument(..., help="Workflow ID"),
    user: str | None = typer.Option(None, "--user", "-u", help="Invoking user (defaults to the owner)"),
    payload: str | None = typer.Option(None, "--payload", "-p", help="Trigger payload as JSON"),
    trigger_type: str = typer.Option("manual", "--trigger", "-t", help="Invocation type"),
    watch: bool = typer.Option(False, "--watch", "-w", help="Print progress events as they happen"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Execute a workflow now and print its outcome."""
    parsed = parse_json_option(payload, "--payload")
    if parsed is not None and not isinstance(parsed, dict):
        fail("--payload must be a JSON object")

    with make_container(database) as container:
        workflow = container.workflows.get(workflow_id)
        user_id = user or (workflow.owner_id if workflow is not None else "cli")
        result = container.trigger.invoke(
            workflow_id,
            user_id,
            trigger_type,
            parsed,
            on_progress=_print_event if watch else None,
        )

    outcome = result.to_dict()
    if json_out:
        output_json(outcome)
    else:
        output_dict(outcome, title=f"Run: {result.run_id}")
    if result.outcome is not None and not result.outcome.success:
        raise typer.Exit(code=1)


# ── Sub-command registration ─────────────────────────────────────────────

from relay.cli.capabilities import app as capabilities_app  # noqa: E402
from relay.cli.runs import app as runs_app  # noqa: E402
from relay.cli.schedule import app as schedule_app  # noqa: E402
from relay.cli.worker import app as worker_app  # noqa: E402
from relay.cli.workflow import app as workflow_app  # noqa: E402

app.add_typer(workflow_app, name="workflow", help="Workflow import, export and status.")
app.add_typer(runs_app, name="runs", help="Run history.")
app.add_typer(worker_app, name="worker", help="Queue worker and scheduler.")
app.add_typer(schedule_app, name="schedule", help="Cron schedules.")
app.add_typer(capabilities_app, name="capabilities", help="Registered capabilities.")

__all__ = ["app", "console"]
