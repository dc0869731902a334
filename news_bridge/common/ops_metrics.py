"""
In-process counters and gauges rendered in Prometheus text format (v0.0.4).

No prometheus_client dependency: the bridge exposes a handful of series, and
the registry only needs to be safe across the event loop and uvicorn threads.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Tuple

LabelKey = Tuple[Tuple[str, str], ...]


def _render_labels(key: LabelKey) -> str:
    if not key:
        return ""
    parts = []
    for name, value in key:
        escaped = value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')
        parts.append(f'{name}="{escaped}"')
    return "{" + ",".join(parts) + "}"


@dataclass
class _Family:
    name: str
    kind: str  # "counter" | "gauge"
    help: str
    label_names: Tuple[str, ...]
    samples: Dict[LabelKey, float] = field(default_factory=dict)

    def key_for(self, labels: Mapping[str, Any] | None) -> LabelKey:
        labels = labels or {}
        missing = [n for n in self.label_names if n not in labels]
        if missing:
            raise ValueError(f"{self.name}: missing labels {missing}")
        return tuple((n, str(labels[n])) for n in self.label_names)


class MetricRegistry:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._families: Dict[str, _Family] = {}

    def counter(self, name: str, *, help: str = "", label_names: Iterable[str] = ()) -> "Counter":
        return Counter(self._register(name, "counter", help, tuple(label_names)), self._lock)

    def gauge(self, name: str, *, help: str = "", label_names: Iterable[str] = ()) -> "Gauge":
        return Gauge(self._register(name, "gauge", help, tuple(label_names)), self._lock)

    def _register(self, name: str, kind: str, help: str, label_names: Tuple[str, ...]) -> _Family:
        with self._lock:
            fam = self._families.get(name)
            if fam is None:
                fam = _Family(name=name, kind=kind, help=help, label_names=label_names)
                self._families[name] = fam
            elif (fam.kind, fam.label_names) != (kind, label_names):
                raise ValueError(f"metric {name} already registered as {fam.kind}{list(fam.label_names)}")
            return fam

    def value(self, name: str, labels: Mapping[str, Any] | None = None) -> float:
        with self._lock:
            fam = self._families[name]
            return fam.samples.get(fam.key_for(labels), 0.0)

    def render_prometheus_text(self) -> str:
        lines: list[str] = []
        with self._lock:
            for name in sorted(self._families):
                fam = self._families[name]
                if fam.help:
                    lines.append(f"# HELP {name} {fam.help}")
                lines.append(f"# TYPE {name} {fam.kind}")
                for key in sorted(fam.samples):
                    lines.append(f"{name}{_render_labels(key)} {fam.samples[key]}")
        return "\n".join(lines) + "\n"


class _Metric:
    def __init__(self, family: _Family, lock: threading.RLock) -> None:
        self._family = family
        self._lock = lock


class Counter(_Metric):
    def inc(self, by: float = 1.0, *, labels: Mapping[str, Any] | None = None) -> None:
        if by < 0:
            raise ValueError("counters only go up")
        with self._lock:
            key = self._family.key_for(labels)
            self._family.samples[key] = self._family.samples.get(key, 0.0) + float(by)


class Gauge(_Metric):
    def set(self, value: float, *, labels: Mapping[str, Any] | None = None) -> None:  # noqa: A003
        with self._lock:
            self._family.samples[self._family.key_for(labels)] = float(value)


REGISTRY = MetricRegistry()

messages_received_total = REGISTRY.counter(
    "news_bridge_messages_received_total",
    help="Frames received from the upstream feed, by frame kind.",
    label_names=("kind",),
)
messages_forwarded_total = REGISTRY.counter(
    "news_bridge_messages_forwarded_total",
    help="Events the webhook accepted with a 2xx response.",
)
errors_total = REGISTRY.counter(
    "news_bridge_errors_total",
    help="Faults observed, by fault kind.",
    label_names=("fault",),
)
reconnect_attempts_total = REGISTRY.counter(
    "news_bridge_reconnect_attempts_total",
    help="Reconnects scheduled after an upstream disconnect.",
)
upstream_connected = REGISTRY.gauge(
    "news_bridge_upstream_connected",
    help="1 while the upstream websocket is open.",
)

# Zero-valued series are exported before the first event.
messages_forwarded_total.inc(0.0)
reconnect_attempts_total.inc(0.0)
upstream_connected.set(0.0)
for _kind in ("news", "ping", "other"):
    messages_received_total.inc(0.0, labels={"kind": _kind})
for _fault in ("config", "transport", "parse", "unrecognized", "delivery"):
    errors_total.inc(0.0, labels={"fault": _fault})
del _kind, _fault
