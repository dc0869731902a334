"""
In-memory stand-ins for the upstream websocket used by the bridge tests.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Callable

import httpx

from news_bridge.bridge.config import BridgeConfig
from news_bridge.bridge.connection import ConnectionManager
from news_bridge.bridge.registry import SubscriptionRegistry
from news_bridge.bridge.sink import ForwardingSink
from news_bridge.bridge.stats import StatsCollector

_CLOSED = object()


class FakeWebSocket:
    def __init__(self, *, ping_error: BaseException | None = None) -> None:
        self.sent: list[dict[str, Any]] = []
        self.pings = 0
        self.closed = False
        self.close_code: int | None = None
        self._ping_error = ping_error
        self._inbox: asyncio.Queue = asyncio.Queue()

    def feed(self, frame: dict[str, Any] | str) -> None:
        self._inbox.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def drop(self, error: BaseException) -> None:
        self._inbox.put_nowait(error)

    async def send(self, data: str) -> None:
        if self.closed:
            raise ConnectionError("socket closed")
        self.sent.append(json.loads(data))

    async def ping(self) -> "asyncio.Future[float]":
        self.pings += 1
        if self._ping_error is not None:
            raise self._ping_error
        fut: asyncio.Future[float] = asyncio.get_running_loop().create_future()
        fut.set_result(0.0)
        return fut

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.closed:
            return
        self.closed = True
        self.close_code = code
        self._inbox.put_nowait(_CLOSED)

    def __aiter__(self) -> "FakeWebSocket":
        return self

    async def __anext__(self) -> str:
        item = await self._inbox.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item


class FakeConnector:
    """
    Async callable standing in for `websockets.connect`.

    Each call pops the next scripted outcome (a FakeWebSocket or an exception);
    once the script is empty it returns fresh sockets, or raises `fail_always`.
    """

    def __init__(self, outcomes: list[Any] | None = None, *, fail_always: BaseException | None = None) -> None:
        self.urls: list[str] = []
        self.sockets: list[FakeWebSocket] = []
        self._outcomes = list(outcomes or [])
        self._fail_always = fail_always

    async def __call__(self, url: str) -> FakeWebSocket:
        self.urls.append(url)
        if self._outcomes:
            outcome = self._outcomes.pop(0)
        elif self._fail_always is not None:
            outcome = self._fail_always
        else:
            outcome = FakeWebSocket()
        if isinstance(outcome, BaseException):
            raise outcome
        self.sockets.append(outcome)
        return outcome

    @property
    def last(self) -> FakeWebSocket:
        return self.sockets[-1]


async def wait_for(predicate: Callable[[], bool], *, timeout_s: float = 2.0) -> None:
    deadline = time.monotonic() + timeout_s
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


def make_config(**overrides: Any) -> BridgeConfig:
    values: dict[str, Any] = {
        "news_stream_url": "wss://feed.example/ws",
        "news_stream_api_key": "test-key",
        "webhook_url": "http://sink.example/hook",
        "bridge_secret": "s3cret",
        "subscribe_replay_delay_s": 0.0,
        "keepalive_interval_s": 60.0,
        "reconnect_base_s": 0.001,
        "reconnect_max_s": 0.004,
    }
    values.update(overrides)
    return BridgeConfig(**values)


def make_manager(
    connector: FakeConnector,
    *,
    handler: Callable[[httpx.Request], httpx.Response] | None = None,
    symbols: tuple[str, ...] = (),
    **cfg_overrides: Any,
) -> ConnectionManager:
    cfg = make_config(symbols=symbols, **cfg_overrides)
    stats = StatsCollector()
    transport = httpx.MockTransport(handler or (lambda request: httpx.Response(200, json={"ok": True})))
    sink = ForwardingSink(
        webhook_url=cfg.webhook_url,
        stats=stats,
        bridge_id=cfg.bridge_id,
        secret=cfg.bridge_secret,
        client=httpx.AsyncClient(transport=transport),
    )
    registry = SubscriptionRegistry(max_topics=cfg.max_symbols, initial=cfg.symbols)
    return ConnectionManager(cfg=cfg, registry=registry, stats=stats, sink=sink, connect=connector)
