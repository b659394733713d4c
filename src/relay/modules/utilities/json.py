"""JSON encode/decode and lookup."""

from __future__ import annotations

import json
from typing import Any

from relay.engine.resolver import lookup_path


def parse(text: str) -> Any:
    return json.loads(text)


def stringify(value: Any, indent: int | None = None) -> str:
    return json.dumps(value, indent=indent, default=str)


def get(data: dict[str, Any], path: str) -> Any:
    return lookup_path({"data": data}, f"data.{path}")
