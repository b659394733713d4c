"""
CLI: ``relay runs`` - run history commands.
"""

from __future__ import annotations

import typer

from relay.cli.utils import fail, make_container, output_dict, output_json, output_table
from relay.workflows.models import RunStatus

app = typer.Typer(no_args_is_help=True)

_COLUMNS = ["id", "workflowId", "status", "triggerType", "startedAt", "durationMs", "errorStep"]


@app.command("list")
def list_runs(
    workflow: str | None = typer.Option(None, "--workflow", "-w"),
    status: str | None = typer.Option(None, "--status", "-s"),
    limit: int = typer.Option(50, "--limit", "-n"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List recent runs, newest first."""
    try:
        status_filter = RunStatus(status) if status else None
    except ValueError:
        fail(f"Unknown status: {status}")
    with make_container(database) as container:
        if workflow:
            runs = container.runs.list_for_workflow(workflow, limit=limit)
            if status_filter is not None:
                runs = [run for run in runs if run.status is status_filter]
        else:
            runs = container.runs.list_recent(status=status_filter, limit=limit)
    rows = [run.to_dict() for run in runs]
    if json_out:
        output_json(rows)
        return
    output_table(rows, _COLUMNS, title="Runs")


@app.command("show")
def show_run(
    run_id: str = typer.Argument(..., help="Run ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show one run, including its output or error."""
    with make_container(database) as container:
        run = container.runs.get(run_id)
    if run is None:
        fail(f"Run not found: {run_id}")
    if json_out:
        output_json(run.to_dict())
        return
    output_dict(run.to_dict(), title=f"Run: {run_id}")
