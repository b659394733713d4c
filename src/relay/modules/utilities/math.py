"""Arithmetic on numbers (or numeric strings coming from placeholders)."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any


def _number(value: Any) -> int | float:
    if isinstance(value, bool):
        raise TypeError("expected a number, got a boolean")
    if isinstance(value, (int, float)):
        return value
    text = str(value).strip()
    try:
        return int(text)
    except ValueError:
        return float(text)


def add(a: Any, b: Any) -> int | float:
    return _number(a) + _number(b)


def subtract(a: Any, b: Any) -> int | float:
    return _number(a) - _number(b)


def multiply(a: Any, b: Any) -> int | float:
    return _number(a) * _number(b)


def divide(a: Any, b: Any) -> float:
    divisor = _number(b)
    if divisor == 0:
        raise ZeroDivisionError("Cannot divide by zero")
    return _number(a) / divisor


def round_number(value: Any, decimals: int = 0) -> int | float:
    result = round(_number(value), int(decimals))
    return int(result) if int(decimals) == 0 else result


def sum_numbers(numbers: Iterable[Any]) -> int | float:
    return sum(_number(n) for n in numbers)


def average(numbers: Iterable[Any]) -> float:
    values = [_number(n) for n in numbers]
    if not values:
        raise ValueError("Cannot average an empty list")
    return sum(values) / len(values)
