"""
CLI: ``relay schedule`` - inspect cron schedules.
"""

from __future__ import annotations

import typer

from relay.cli.utils import console, make_container, output_json, output_table
from relay.scheduling.service import WorkflowScheduler

app = typer.Typer(no_args_is_help=True)


@app.command("status")
def status(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show which workflows would be armed and when they fire next.

    The schedules are computed from storage; nothing is fired or reaped.
    """
    with make_container(database) as container:
        preview = WorkflowScheduler(container.workflows, container.trigger)
        preview.refresh()
        data = preview.status()
    if json_out:
        output_json({key: data[key] for key in ("scheduledWorkflows", "workflows", "rejected")})
        return
    output_table(data["workflows"], ["workflowId", "cronPattern", "timezone", "nextFireAt"], title="Schedules")
    if data["rejected"]:
        console.print()
        output_table(data["rejected"], ["workflowId", "cronPattern", "timezone", "error"], title="Rejected")
