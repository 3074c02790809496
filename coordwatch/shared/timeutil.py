"""Event-time helpers. Event time is float epoch seconds throughout."""

from __future__ import annotations

import math
from datetime import UTC, datetime

DAY_SEC = 86400.0


def parse_ts(value: object) -> float:
    """Parse an ISO-8601 string or numeric epoch seconds to epoch seconds.

    Naive ISO strings are treated as UTC. Raises ValueError / TypeError
    on anything else.
    """
    if isinstance(value, bool):
        raise TypeError("boolean is not a timestamp")
    if isinstance(value, (int, float)):
        ts = float(value)
        if not math.isfinite(ts):
            raise ValueError(f"non-finite timestamp {value!r}")
        return ts
    if isinstance(value, str):
        dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=UTC)
        return dt.timestamp()
    raise TypeError(f"unsupported timestamp type {type(value).__name__}")


def to_iso(ts: float) -> str:
    """Epoch seconds -> ``YYYY-MM-DDTHH:MM:SSZ``."""
    return datetime.fromtimestamp(ts, tz=UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def decay(value: float, elapsed: float, half_life: float) -> float:
    """Exponential decay of *value* over *elapsed* seconds.

    ``value * exp(-ln2 / half_life * elapsed)``; negative elapsed is
    treated as zero.
    """
    if elapsed <= 0 or value == 0.0:
        return value
    return value * math.exp(-math.log(2) / half_life * elapsed)
