"""Time and duration utilities.

Timestamps are ISO 8601 strings in UTC with millisecond precision
(``2024-05-01T12:00:00.000Z``). Internally instants are epoch milliseconds.
"""

from __future__ import annotations

import re
import time
from collections.abc import Callable
from datetime import UTC, datetime

from ..core.errors import InvalidInputError

Clock = Callable[[], float]  # returns epoch seconds, like time.time

DURATION_RE = re.compile(r"^(\d+)([smhdw])$", re.IGNORECASE)

MULTIPLIERS = {
    "s": 1000,
    "m": 60 * 1000,
    "h": 60 * 60 * 1000,
    "d": 24 * 60 * 60 * 1000,
    "w": 7 * 24 * 60 * 60 * 1000,
}


def now_ms(clock: Clock | None = None) -> int:
    return int((clock or time.time)() * 1000)


def format_iso(ms: int) -> str:
    """Format epoch milliseconds as an ISO 8601 UTC timestamp."""
    dt = datetime.fromtimestamp(ms / 1000, tz=UTC)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ms % 1000:03d}Z"


def now_iso(clock: Clock | None = None) -> str:
    return format_iso(now_ms(clock))


def parse_timestamp(value: object) -> int | None:
    """Parse an ISO 8601 timestamp to epoch milliseconds.

    Returns None for missing, non-string or unparseable values. Naive
    timestamps are read as UTC.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        dt = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return int(round(dt.timestamp() * 1000))


def parse_duration_ms(text: str) -> int:
    """Parse a duration like ``10s``, ``5m``, ``2h``, ``7d`` or ``1w`` to milliseconds."""
    match = DURATION_RE.match(str(text).strip())
    if not match:
        raise InvalidInputError(
            f"Invalid duration '{text}'. Use formats like 10s, 5m, 2h, 7d, 1w.",
            context={"input": text},
        )
    value = int(match.group(1))
    return value * MULTIPLIERS[match.group(2).lower()]
