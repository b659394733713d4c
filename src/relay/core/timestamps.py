"""
Run ids and UTC timestamps (stdlib-only).

Run ids are ULID-like: 26 characters, Crockford base32, sortable by
creation time, so ``ORDER BY id`` on the queue and run tables follows
enqueue order. Timestamps are timezone-aware UTC and stored as ISO-8601.

Tags:
    timestamps, ulid, utc, datetime, relay-core
"""

import secrets
import time
from datetime import UTC, datetime


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def generate_ulid() -> str:
    """Generate a time-sortable 26-character identifier."""
    timestamp_ms = int(time.time() * 1000)
    timestamp_chars = _encode_base32(timestamp_ms, 10)
    random_part = "".join(secrets.choice(_ENCODING) for _ in range(16))
    return timestamp_chars + random_part


def to_iso8601(dt: datetime | None) -> str | None:
    """Convert datetime to ISO 8601 string."""
    if dt is None:
        return None
    return dt.isoformat()


def from_iso8601(s: str | None) -> datetime | None:
    """Parse ISO 8601 string to datetime (naive values are taken as UTC)."""
    if s is None:
        return None
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


# Crockford base32 alphabet
_ENCODING = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_ENCODING_LEN = len(_ENCODING)


def _encode_base32(value: int, length: int) -> str:
    """Encode integer to base32 string of fixed length."""
    result = []
    for _ in range(length):
        result.append(_ENCODING[value % _ENCODING_LEN])
        value //= _ENCODING_LEN
    return "".join(reversed(result))
