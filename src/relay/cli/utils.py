"""
CLI utility helpers - container construction and output formatting.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.table import Table

from relay.container import RelayContainer
from relay.core.logging import configure_logging
from relay.core.settings import get_settings

console = Console()
err_console = Console(stderr=True)


# ── Container helper ─────────────────────────────────────────────────────


def make_container(database: str | None = None, **overrides: Any) -> RelayContainer:
    """Build a container for one CLI command; ``--database`` and ``overrides`` replace settings."""
    settings = get_settings()
    if database:
        overrides["database_path"] = database
    if overrides:
        settings = settings.model_copy(update=overrides)
    configure_logging(level=settings.log_level, json_format=settings.log_json)
    return RelayContainer(settings)


def fail(message: str, code: int = 1) -> NoReturn:
    """Print an error and exit with ``code``."""
    err_console.print(f"[bold red]Error[/bold red]: {message}")
    raise typer.Exit(code=code)


def parse_json_option(value: str | None, option: str) -> Any:
    if not value:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError as exc:
        fail(f"Invalid JSON for {option}: {exc}")


# ── Output helpers ───────────────────────────────────────────────────────


def output_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def output_table(rows: Iterable[Mapping[str, Any]], columns: list[str], *, title: str = "") -> None:
    """Render mappings as a Rich table showing ``columns``."""
    rows = list(rows)
    if not rows:
        console.print("[dim]No items.[/dim]")
        return
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in columns:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*(_cell(row.get(col)) for col in columns))
    console.print(table)


def output_dict(data: Mapping[str, Any], *, title: str = "") -> None:
    """Render a single mapping as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for key, value in data.items():
        if isinstance(value, (dict, list)):
            value = json.dumps(value, default=str)
        console.print(f"  [cyan]{key}[/cyan]: {value}")


def _cell(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)
