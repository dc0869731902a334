from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from news_bridge.common.config import parse_symbols
from news_bridge.common.timeutils import epoch_ms, iso_utc, parse_timestamp, utc_now
from news_bridge.contracts.news import (
    CanonicalEvent,
    MalformedFrame,
    NewsFrame,
    OtherFrame,
    PingFrame,
    RawEvent,
)

DEFAULT_SOURCE = "newsfilter"
DEFAULT_CATEGORY = "general"

_RAW_PREVIEW_LEN = 500


def _preview(raw: str | bytes) -> str:
    if isinstance(raw, (bytes, bytearray)):
        raw = bytes(raw).decode("utf-8", errors="replace")
    return raw if len(raw) <= _RAW_PREVIEW_LEN else raw[: _RAW_PREVIEW_LEN - 1] + "…"


def parse_frame(raw: str | bytes) -> RawEvent:
    """
    Decode one inbound websocket frame into a tagged RawEvent.

    Never raises: anything that is not a JSON object with a string `type`, or a
    news frame without `symbol`/`headline`, comes back as MalformedFrame.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        return MalformedFrame(raw=_preview(raw), error=f"invalid_json: {e}")

    if not isinstance(data, dict):
        return MalformedFrame(raw=_preview(raw), error="not_an_object")

    kind = data.get("type")
    if not isinstance(kind, str) or not kind.strip():
        return MalformedFrame(raw=_preview(raw), error="missing_type")
    kind = kind.strip().lower()

    if kind == "ping":
        return PingFrame()

    if kind == "news":
        fields = {k: v for k, v in data.items() if k not in ("type", "kind")}
        try:
            frame = NewsFrame.model_validate(fields)
        except ValidationError as e:
            return MalformedFrame(raw=_preview(raw), error=f"invalid_news: {e.error_count()} error(s)")
        if not frame.symbol.strip() or not frame.headline.strip():
            return MalformedFrame(raw=_preview(raw), error="invalid_news: empty symbol or headline")
        return frame

    return OtherFrame(type=kind, payload=data)


def _event_time(value: Any, *, fallback: datetime) -> datetime:
    if value is None:
        return fallback
    try:
        return parse_timestamp(value)
    except (TypeError, ValueError, OverflowError, OSError):
        return fallback


def to_canonical(frame: NewsFrame, *, now: datetime | None = None) -> CanonicalEvent:
    """
    Map a validated news frame onto the canonical outbound event.

    Defaults: summary "", source "newsfilter", category "general",
    id "<TOPIC>-<epoch ms>", related [TOPIC]. `now` is injectable for tests.
    """
    now = now or utc_now()
    topic = frame.symbol.strip().upper()

    related = parse_symbols(frame.related) if frame.related else []
    event_id = str(frame.id).strip() if frame.id is not None else ""

    return CanonicalEvent(
        topic=topic,
        headline=frame.headline,
        summary=frame.summary or "",
        source=frame.source or DEFAULT_SOURCE,
        url=frame.url or None,
        image=frame.image or None,
        timestamp=iso_utc(_event_time(frame.datetime, fallback=now)),
        category=frame.category or DEFAULT_CATEGORY,
        id=event_id or f"{topic}-{epoch_ms(now)}",
        related=related or [topic],
    )
