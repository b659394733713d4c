"""
CLI: ``relay capabilities`` - list what steps can call.
"""

from __future__ import annotations

import typer

from relay.cli.utils import make_container, output_json, output_table

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_capabilities(
    prefix: str | None = typer.Option(None, "--prefix", help="Only paths starting with this"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List capabilities from every bound package."""
    container = make_container(":memory:")
    try:
        descriptors = container.registry.list_capabilities(load_packages=True)
    finally:
        container.close()
    rows = [
        {
            "path": d.name,
            "params": ", ".join(
                f"{name}?" if name in d.optional_parameters else name for name in d.parameter_names
            ),
            "convention": "wrapped" if d.wrapped else "positional",
            "description": d.description,
        }
        for d in descriptors
        if prefix is None or d.name.startswith(prefix)
    ]
    if json_out:
        output_json(rows)
        return
    output_table(rows, ["path", "params", "convention", "description"], title="Capabilities")
