"""
CLI: ``relay workflow`` - import, export and status commands.
"""

from __future__ import annotations

from pathlib import Path

import typer

from relay.cli.utils import console, fail, make_container, output_dict, output_json, output_table
from relay.core.errors import RelayError
from relay.workflows.loader import dump_document, export_workflow, import_workflow, load_document
from relay.workflows.models import WorkflowStatus

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_workflows(
    status: str | None = typer.Option(None, "--status", "-s"),
    owner: str | None = typer.Option(None, "--owner", "-o"),
    limit: int = typer.Option(50, "--limit", "-n"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List stored workflows."""
    try:
        status_filter = WorkflowStatus(status) if status else None
    except ValueError:
        fail(f"Unknown status: {status}")
    with make_container(database) as container:
        workflows = container.workflows.list(status=status_filter, owner_id=owner, limit=limit)
    rows = [wf.to_dict() for wf in workflows]
    if json_out:
        output_json(rows)
        return
    output_table(rows, ["id", "name", "status", "runCount", "lastRunStatus", "lastRunAt"], title="Workflows")


@app.command("show")
def show_workflow(
    workflow_id: str = typer.Argument(..., help="Workflow ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show workflow details and step tree."""
    with make_container(database) as container:
        workflow = container.workflows.get(workflow_id)
    if workflow is None:
        fail(f"Workflow not found: {workflow_id}")
    data = workflow.to_dict()
    if json_out:
        output_json(data)
        return
    steps = data.pop("config")["steps"]
    output_dict(data, title=f"Workflow: {workflow_id}")
    console.print("  [cyan]steps[/cyan]:")
    for line in _step_lines(steps, depth=2):
        console.print(line)


def _step_lines(steps: list[dict], depth: int) -> list[str]:
    pad = "  " * depth
    lines = []
    for step in steps:
        kind = step.get("type", "action")
        if kind == "condition":
            lines.append(f"{pad}- {step['id']} [condition] {step.get('condition')}")
            lines.append(f"{pad}  then:")
            lines.extend(_step_lines(step.get("then", []), depth + 2))
            if step.get("else"):
                lines.append(f"{pad}  else:")
                lines.extend(_step_lines(step["else"], depth + 2))
        elif kind == "loop":
            lines.append(f"{pad}- {step['id']} [loop] over {step.get('source')} as {step.get('itemAs')}")
            lines.extend(_step_lines(step.get("steps", []), depth + 1))
        else:
            target = f" -> {step['outputAs']}" if step.get("outputAs") else ""
            lines.append(f"{pad}- {step['id']} {step.get('module')}{target}")
    return lines


@app.command("import")
def import_command(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON or YAML workflow document"),
    owner: str = typer.Option(..., "--owner", "-o", help="Owner of the imported workflow"),
    tenant: str | None = typer.Option(None, "--tenant"),
    workflow_id: str | None = typer.Option(None, "--id", help="Use this ID instead of a generated one"),
    activate: bool = typer.Option(False, "--activate", help="Import as active instead of draft"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Import a workflow document (created as draft unless --activate)."""
    try:
        workflow = import_workflow(
            load_document(path),
            owner_id=owner,
            tenant_id=tenant,
            workflow_id=workflow_id,
            status=WorkflowStatus.ACTIVE if activate else WorkflowStatus.DRAFT,
        )
    except RelayError as exc:
        fail(exc.message)
    with make_container(database) as container:
        container.workflows.save(workflow)
    if json_out:
        output_json({"id": workflow.id, "name": workflow.name, "status": workflow.status.value})
        return
    console.print(f"[green]Imported[/green] {workflow.name} as [bold]{workflow.id}[/bold] ({workflow.status.value})")


@app.command("export")
def export_command(
    workflow_id: str = typer.Argument(..., help="Workflow ID"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write to a .json/.yaml file"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Export a workflow as a portable document."""
    with make_container(database) as container:
        workflow = container.workflows.get(workflow_id)
    if workflow is None:
        fail(f"Workflow not found: {workflow_id}")
    document = export_workflow(workflow)
    if output is None:
        output_json(document)
        return
    dump_document(document, output)
    console.print(f"[green]Exported[/green] {workflow_id} to {output}")


def _set_status(workflow_id: str, status: WorkflowStatus, database: str | None) -> None:
    with make_container(database) as container:
        try:
            container.workflows.update_status(workflow_id, status)
        except RelayError as exc:
            fail(exc.message)
    console.print(f"{workflow_id}: [bold]{status.value}[/bold]")


@app.command("activate")
def activate(
    workflow_id: str = typer.Argument(..., help="Workflow ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Mark a workflow active (cron triggers arm on the next sync)."""
    _set_status(workflow_id, WorkflowStatus.ACTIVE, database)


@app.command("pause")
def pause(
    workflow_id: str = typer.Argument(..., help="Workflow ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Pause a workflow (its schedule disarms on the next sync)."""
    _set_status(workflow_id, WorkflowStatus.PAUSED, database)
