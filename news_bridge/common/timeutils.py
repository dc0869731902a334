"""
Timestamp normalization helpers.

Rules:
- Naive `datetime` (no tzinfo) is assumed to be **UTC**.
- ISO8601 strings ending with 'Z' are treated as UTC.
- ISO8601 strings with an offset preserve that offset and convert correctly.
- Numeric epoch: values >= 1e12 are treated as milliseconds, otherwise seconds.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

UTC = timezone.utc


def utc_now() -> datetime:
    """Return tz-aware current time in UTC."""

    return datetime.now(tz=UTC)


def ensure_aware_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_timestamp(value: Any) -> datetime:
    """
    Parse feed timestamp shapes into a tz-aware UTC datetime.

    Supported inputs: ISO8601 strings, `datetime`, epoch seconds or
    milliseconds (int/float, or a numeric string).
    """

    if value is None:
        raise TypeError("timestamp value is None")

    if isinstance(value, datetime):
        return ensure_aware_utc(value)

    if isinstance(value, bool):
        raise TypeError("unsupported timestamp type: bool")

    if isinstance(value, (int, float)):
        v = float(value)
        seconds = (v / 1000.0) if abs(v) >= 1e12 else v
        return datetime.fromtimestamp(seconds, tz=UTC)

    if isinstance(value, str):
        s = value.strip()
        if not s:
            raise ValueError("timestamp string is empty")
        try:
            return parse_timestamp(float(s))
        except ValueError:
            pass
        if s.endswith("Z") or s.endswith("z"):
            s = s[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(s)
        except ValueError as e:
            raise ValueError(f"unparseable timestamp string: {value!r}") from e
        return ensure_aware_utc(dt)

    raise TypeError(f"unsupported timestamp type: {type(value).__name__}")


def epoch_ms(value: datetime) -> int:
    return int(ensure_aware_utc(value).timestamp() * 1000)


def iso_utc(value: datetime | None = None) -> str:
    return ensure_aware_utc(value or utc_now()).isoformat()
