from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from news_bridge.common.ops_metrics import (
    errors_total,
    messages_forwarded_total,
    messages_received_total,
    upstream_connected,
)
from news_bridge.common.timeutils import utc_now


@dataclass
class StatsCollector:
    """
    Process-wide bridge counters.

    Bumps only; derived values (uptime) are computed by `snapshot()` at read
    time. Every bump is mirrored into the Prometheus registry.
    """

    connected: bool = False
    last_message_at: datetime | None = None
    received_count: int = 0
    sent_count: int = 0
    error_count: int = 0
    connected_since: datetime | None = None

    def mark_connected(self, at: datetime | None = None) -> None:
        self.connected = True
        self.connected_since = at or utc_now()
        upstream_connected.set(1.0)

    def mark_disconnected(self) -> None:
        self.connected = False
        upstream_connected.set(0.0)

    def record_received(self, kind: str) -> None:
        self.received_count += 1
        messages_received_total.inc(labels={"kind": kind})

    def record_message_at(self, at: datetime | None = None) -> None:
        self.last_message_at = at or utc_now()

    def record_sent(self) -> None:
        self.sent_count += 1
        messages_forwarded_total.inc()

    def record_error(self, fault: str) -> None:
        self.error_count += 1
        errors_total.inc(labels={"fault": fault})

    def snapshot(self, now: datetime | None = None) -> dict[str, Any]:
        now = now or utc_now()
        uptime_s: float | None = None
        if self.connected and self.connected_since is not None:
            uptime_s = max(0.0, (now - self.connected_since).total_seconds())
        return {
            "connected": self.connected,
            "last_message_at": self.last_message_at.isoformat() if self.last_message_at else None,
            "received_count": self.received_count,
            "sent_count": self.sent_count,
            "error_count": self.error_count,
            "connected_since": self.connected_since.isoformat() if self.connected_since else None,
            "uptime_seconds": uptime_s,
        }
