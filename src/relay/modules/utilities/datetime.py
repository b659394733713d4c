"""Date arithmetic on ISO-8601 strings."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from relay.capabilities.registry import capability_metadata


def _parse(value: str | datetime | None) -> datetime:
    if value is None or value == "" or value == "now":
        return datetime.now(UTC)
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def now() -> str:
    return datetime.now(UTC).isoformat()


@capability_metadata(params=["date", "days"], optional=["days"])
def add_days(date: str, days: int = 1) -> str:
    return (_parse(date) + timedelta(days=int(days))).isoformat()


@capability_metadata(params=["date", "hours"], optional=["hours"])
def add_hours(date: str, hours: int = 1) -> str:
    return (_parse(date) + timedelta(hours=int(hours))).isoformat()


def format_date(date: str, pattern: str = "%Y-%m-%d") -> str:
    return _parse(date).strftime(pattern)


def days_between(start: str, end: str) -> int:
    return (_parse(end) - _parse(start)).days
