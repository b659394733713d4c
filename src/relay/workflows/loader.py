"""
Workflow import/export documents.

A workflow leaves the system as a portable document, in JSON or YAML:

    version: "1.0"
    name: Daily digest
    description: ...
    trigger: {type: cron, config: {schedule: "0 9 * * *"}}
    config:
      steps:
        - {id: fetch, module: utilities.http.get, inputs: {...}, outputAs: page}
    metadata:
      exportedAt: 2026-01-01T09:00:00+00:00
      originalId: wf_123
      requiresCredentials: [openai]

The envelope is validated with pydantic; the step tree inside ``config`` is
validated by ``parse_steps`` so that import fails with the same
``WorkflowValidationError`` as any other malformed definition.

Tags:
    workflow, import, export, yaml, json, pydantic, relay-core
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from relay.core.errors import WorkflowValidationError
from relay.core.timestamps import generate_ulid, utc_now_iso
from relay.workflows.models import Trigger, Workflow, WorkflowStatus, parse_steps

EXPORT_VERSION = "1.0"


class ExportMetadata(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    author: str | None = None
    tags: list[str] = Field(default_factory=list)
    category: str | None = None
    requires_credentials: list[str] = Field(default_factory=list, alias="requiresCredentials")
    exported_at: str | None = Field(default=None, alias="exportedAt")
    original_id: str | None = Field(default=None, alias="originalId")


class ExportConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    steps: list[dict[str, Any]] = Field(default_factory=list)


class WorkflowDocument(BaseModel):
    """Portable workflow document."""

    model_config = ConfigDict(extra="ignore")

    version: str = EXPORT_VERSION
    name: str = Field(..., min_length=1)
    description: str = ""
    trigger: dict[str, Any] = Field(default_factory=lambda: {"type": "manual", "config": {}})
    config: ExportConfig = Field(default_factory=ExportConfig)
    metadata: ExportMetadata = Field(default_factory=ExportMetadata)


def _required_platforms(workflow: Workflow) -> list[str]:
    """Credential platforms referenced as ``{{user.<platform>}}`` in step inputs."""
    text = json.dumps(workflow.config)
    found: list[str] = []
    marker = "{{user."
    start = text.find(marker)
    while start != -1:
        end = start + len(marker)
        name = ""
        while end < len(text) and (text[end].isalnum() or text[end] in "_-"):
            name += text[end]
            end += 1
        if name and name != "id" and name not in found:
            found.append(name)
        start = text.find(marker, end)
    return found


def export_workflow(workflow: Workflow, **metadata: Any) -> dict[str, Any]:
    """Portable document for ``workflow`` (plain dict, ready for json/yaml)."""
    meta = {
        "exportedAt": utc_now_iso(),
        "originalId": workflow.id,
        "requiresCredentials": _required_platforms(workflow),
        "tags": [],
    }
    meta.update(metadata)
    document = WorkflowDocument(
        name=workflow.name,
        description=workflow.description,
        trigger=workflow.trigger.to_dict(),
        config=ExportConfig(steps=workflow.config["steps"]),
        metadata=ExportMetadata.model_validate(meta),
    )
    return document.model_dump(by_alias=True, exclude_none=True)


def import_workflow(
    document: dict[str, Any],
    *,
    owner_id: str,
    tenant_id: str | None = None,
    workflow_id: str | None = None,
    status: WorkflowStatus = WorkflowStatus.DRAFT,
) -> Workflow:
    """Build a new Workflow from a portable document.

    The imported workflow gets a fresh id (unless one is given) and starts
    in ``draft`` so it never fires before someone activates it.
    """
    try:
        parsed = WorkflowDocument.model_validate(document)
    except ValidationError as exc:
        raise WorkflowValidationError(f"Invalid workflow document: {exc}", cause=exc) from exc

    return Workflow(
        id=workflow_id or f"wf_{generate_ulid().lower()}",
        owner_id=owner_id,
        tenant_id=tenant_id,
        name=parsed.name,
        description=parsed.description,
        status=status,
        trigger=Trigger.from_dict(parsed.trigger),
        steps=parse_steps(parsed.config.steps),
    )


def load_document(path: str | Path) -> dict[str, Any]:
    """Read a workflow document from a ``.json`` / ``.yaml`` / ``.yml`` file."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() in (".yaml", ".yml"):
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise WorkflowValidationError(f"Invalid workflow file {path}: {exc}", cause=exc) from exc
    if not isinstance(data, dict):
        raise WorkflowValidationError(f"Expected an object in {path}, got {type(data).__name__}")
    return data


def dump_document(document: dict[str, Any], path: str | Path) -> Path:
    """Write a document; the format follows the file extension."""
    path = Path(path)
    if path.suffix.lower() in (".yaml", ".yml"):
        text = yaml.safe_dump(document, sort_keys=False, allow_unicode=True)
    else:
        text = json.dumps(document, indent=2, ensure_ascii=False) + "\n"
    path.write_text(text, encoding="utf-8")
    return path


__all__ = [
    "EXPORT_VERSION",
    "WorkflowDocument",
    "export_workflow",
    "import_workflow",
    "load_document",
    "dump_document",
]
