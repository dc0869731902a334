"""
Environment parsing helpers.

All helpers treat unset and whitespace-only values as missing, and fall back to
the provided default when a numeric value does not parse.
"""

from __future__ import annotations

import os
from typing import Iterable


def env_str(name: str, default: str | None = None) -> str | None:
    v = os.getenv(name)
    if v is None:
        return default
    s = str(v).strip()
    return s if s else default


def env_float(name: str, default: float, *, minimum: float | None = None) -> float:
    raw = (os.getenv(name) or "").strip()
    try:
        v = float(raw) if raw else float(default)
    except ValueError:
        v = float(default)
    if minimum is not None:
        v = max(float(minimum), v)
    return v


def env_int(name: str, default: int, *, minimum: int | None = None) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        v = int(raw) if raw else int(default)
    except ValueError:
        v = int(default)
    if minimum is not None:
        v = max(int(minimum), v)
    return v


def parse_symbols(raw: str | Iterable[str] | None) -> list[str]:
    """
    Normalize a comma-separated (or iterable) symbol list.

    Uppercases, drops blanks, and de-duplicates while preserving order.
    """
    if raw is None:
        return []
    parts = raw.split(",") if isinstance(raw, str) else list(raw)
    seen: set[str] = set()
    out: list[str] = []
    for p in parts:
        s = str(p).strip().upper()
        if not s or s in seen:
            continue
        seen.add(s)
        out.append(s)
    return out
