"""
ULID generation and timestamp utilities (stdlib-only).

Manifesto:
    The lease protocol compares stored timestamps as strings inside SQL
    (``next_run_at <= ?``). That only works if every instant is written
    in one canonical form: UTC, ISO 8601, microsecond precision. All
    writers go through ``to_iso8601``.

    - **generate_ulid():** Time-sortable unique IDs (26-char, base32)
    - **utc_now():** Timezone-aware UTC datetime
    - **to_iso8601() / from_iso8601():** Canonical serialization round-trip

Tags:
    timestamps, ulid, utc, datetime, serialization

Doc-Types:
    - API Reference

STDLIB ONLY - NO PYDANTIC.
"""

import random
import time
from datetime import UTC, datetime


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Return ``dt`` as an aware UTC datetime (naive input is taken as UTC)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def generate_ulid() -> str:
    """
    Generate a ULID-like identifier.

    Format: 26 characters, base32 encoded, time-sortable.
    """
    # Time component: milliseconds since epoch (48 bits -> 10 chars)
    timestamp_ms = int(time.time() * 1000)
    timestamp_chars = _encode_base32(timestamp_ms, 10)

    # Random component (80 bits -> 16 chars)
    random_part = "".join(random.choices(_ENCODING, k=16))

    return timestamp_chars + random_part


def to_iso8601(dt: datetime | None) -> str | None:
    """Convert datetime to canonical UTC ISO 8601 string (microsecond precision)."""
    if dt is None:
        return None
    return ensure_utc(dt).isoformat(timespec="microseconds")


def from_iso8601(s: str | None) -> datetime | None:
    """Parse ISO 8601 string to an aware UTC datetime."""
    if s is None:
        return None
    return ensure_utc(datetime.fromisoformat(s))


# ULID base32 alphabet (Crockford's)
_ENCODING = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_ENCODING_LEN = len(_ENCODING)


def _encode_base32(value: int, length: int) -> str:
    """Encode integer to base32 string of fixed length."""
    result = []
    for _ in range(length):
        result.append(_ENCODING[value % _ENCODING_LEN])
        value //= _ENCODING_LEN
    return "".join(reversed(result))
