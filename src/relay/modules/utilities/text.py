"""String helpers."""

from __future__ import annotations

from typing import Any


def uppercase(text: str) -> str:
    return str(text).upper()


def lowercase(text: str) -> str:
    return str(text).lower()


def concat(first: Any, second: Any, separator: str = "") -> str:
    return f"{first}{separator}{second}"


def split(text: str, separator: str = ",") -> list[str]:
    return [part.strip() for part in str(text).split(separator)]


def replace(text: str, search: str, replacement: str = "") -> str:
    return str(text).replace(search, replacement)


def truncate(text: str, length: int = 100, suffix: str = "...") -> str:
    text = str(text)
    length = int(length)
    if len(text) <= length:
        return text
    return text[: max(0, length - len(suffix))] + suffix


def word_count(text: str) -> int:
    return len(str(text).split())
