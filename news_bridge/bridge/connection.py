from __future__ import annotations

import asyncio
import json
import logging
from enum import Enum
from typing import Any, Awaitable, Callable
from urllib.parse import urlsplit

import websockets

from news_bridge.bridge.config import BridgeConfig
from news_bridge.bridge.registry import AddResult, RemoveResult, SubscriptionRegistry, normalize_topic
from news_bridge.bridge.sink import ForwardingSink
from news_bridge.bridge.stats import StatsCollector
from news_bridge.bridge.transform import parse_frame, to_canonical
from news_bridge.common.logging import log_event
from news_bridge.common.ops_metrics import reconnect_attempts_total
from news_bridge.common.ws_reconnect_policy import backoff_delay, classify_ws_failure
from news_bridge.contracts.news import CanonicalEvent, MalformedFrame, OtherFrame, PingFrame

logger = logging.getLogger(__name__)

ConnectFn = Callable[[str], Awaitable[Any]]

KEEPALIVE_PONG_TIMEOUT_S = 10.0
CLOSE_TIMEOUT_S = 5.0
DELIVERY_DRAIN_TIMEOUT_S = 15.0


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"


async def websockets_connect(url: str) -> Any:
    # Keep-alive pings are driven by the manager, not the library.
    return await websockets.connect(url, ping_interval=None, open_timeout=10, close_timeout=CLOSE_TIMEOUT_S)


async def _close_quietly(ws: Any, *, code: int = 1000, reason: str = "") -> None:
    try:
        await asyncio.wait_for(ws.close(code=code, reason=reason), timeout=CLOSE_TIMEOUT_S)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.debug("ws.close_failed: %s: %s", type(e).__name__, e)


class ConnectionManager:
    """
    Owns the upstream websocket and drives its lifecycle:

        DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED (-> backoff -> CONNECTING)
        any -> CLOSING (shutdown; terminal)

    Every connection attempt bumps `generation`. Delayed work (subscription
    replay, keep-alive, reconnect) captures the generation it was scheduled
    under and does nothing once a newer attempt exists.

    Frames are handled one at a time in arrival order. Webhook deliveries run
    as background tasks (bounded by `max_inflight_deliveries`), so forwarding
    order across events is not guaranteed.
    """

    def __init__(
        self,
        *,
        cfg: BridgeConfig,
        registry: SubscriptionRegistry,
        stats: StatsCollector,
        sink: ForwardingSink,
        connect: ConnectFn = websockets_connect,
    ) -> None:
        self.cfg = cfg
        self.registry = registry
        self.stats = stats
        self.sink = sink
        self._connect = connect

        self.state = ConnectionState.DISCONNECTED
        self.reconnect_attempts = 0
        self.generation = 0

        self._ws: Any = None
        self._reader_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._replay_task: asyncio.Task | None = None
        # Generation whose subscription replay has not fired yet.
        self._replay_pending_gen: int | None = None
        self._keepalive_task: asyncio.Task | None = None
        self._deliveries: set[asyncio.Task] = set()
        self._delivery_slots = asyncio.Semaphore(max(1, int(cfg.max_inflight_deliveries)))

    # ---- public commands ----

    async def start(self) -> None:
        log_event(
            logger,
            "ws.manager_start",
            severity="INFO",
            upstream_host=urlsplit(self.cfg.news_stream_url).netloc,
            symbols=self.registry.list(),
        )
        self._begin_connect()

    async def restart(self) -> dict[str, Any]:
        """
        Manual restart: reset the attempt counter and reconnect immediately.

        Re-arms auto-retry after the attempt ceiling was reached.
        """
        if self.state is ConnectionState.CLOSING:
            return self.status()
        log_event(
            logger,
            "ws.manual_restart",
            severity="WARNING",
            previous_state=self.state.value,
            reconnect_attempts=self.reconnect_attempts,
        )
        self.reconnect_attempts = 0
        await self._drop_connection()
        self._begin_connect()
        return self.status()

    async def shutdown(self) -> None:
        if self.state is ConnectionState.CLOSING:
            return
        log_event(logger, "ws.shutdown", severity="INFO", previous_state=self.state.value)
        self.state = ConnectionState.CLOSING
        await self._drop_connection(reason="shutdown")

        pending = [t for t in self._deliveries if not t.done()]
        if pending:
            _done, still_pending = await asyncio.wait(pending, timeout=DELIVERY_DRAIN_TIMEOUT_S)
            for t in still_pending:
                t.cancel()
            if still_pending:
                log_event(logger, "ws.shutdown_deliveries_abandoned", severity="WARNING", count=len(still_pending))
                await asyncio.gather(*still_pending, return_exceptions=True)
        await self.sink.aclose()

    async def add_topic(self, topic: str) -> AddResult:
        result = self.registry.add(topic)
        t = normalize_topic(topic)
        sent = False
        if result is AddResult.OK and not self._replay_pending():
            sent = await self._send({"type": "subscribe", "symbol": t})
        log_event(logger, "ws.topic_add", severity="INFO", topic=t, result=result.value, sent=sent)
        return result

    async def remove_topic(self, topic: str) -> RemoveResult:
        result = self.registry.remove(topic)
        t = normalize_topic(topic)
        sent = False
        if result is RemoveResult.OK and not self._replay_pending():
            sent = await self._send({"type": "unsubscribe", "symbol": t})
        log_event(logger, "ws.topic_remove", severity="INFO", topic=t, result=result.value, sent=sent)
        return result

    def status(self) -> dict[str, Any]:
        max_attempts = int(self.cfg.reconnect_max_attempts)
        reconnect_pending = self._reconnect_task is not None and not self._reconnect_task.done()
        return {
            "state": self.state.value,
            "reconnect_attempts": self.reconnect_attempts,
            "max_reconnect_attempts": max_attempts,
            "reconnect_pending": reconnect_pending,
            "retry_exhausted": (
                self.state is ConnectionState.DISCONNECTED
                and not reconnect_pending
                and self.reconnect_attempts >= max_attempts
            ),
            "inflight_deliveries": sum(1 for t in self._deliveries if not t.done()),
        }

    # ---- transitions ----

    def _begin_connect(self) -> bool:
        if self.state is ConnectionState.CLOSING:
            return False
        if not self.cfg.news_stream_api_key:
            self.stats.record_error("config")
            log_event(
                logger,
                "config.missing_credential",
                severity="CRITICAL",
                message="NEWS_STREAM_API_KEY is not set; upstream connection disabled until configured and restarted.",
            )
            self.state = ConnectionState.DISCONNECTED
            return False

        self._cancel(self._reconnect_task)
        self._reconnect_task = None
        self.generation += 1
        self.state = ConnectionState.CONNECTING
        log_event(
            logger,
            "ws.connect_attempt",
            severity="INFO",
            generation=self.generation,
            reconnect_attempts=self.reconnect_attempts,
        )
        self._reader_task = asyncio.create_task(self._run_connection(self.generation))
        return True

    def _on_connected(self, gen: int, ws: Any) -> None:
        self._ws = ws
        self.state = ConnectionState.CONNECTED
        self.reconnect_attempts = 0
        self.stats.mark_connected()
        log_event(logger, "ws.connected", severity="INFO", generation=gen)
        self._replay_pending_gen = gen
        self._replay_task = asyncio.create_task(self._replay_after(gen, float(self.cfg.subscribe_replay_delay_s)))
        self._keepalive_task = asyncio.create_task(self._keepalive_loop(gen, ws))

    def _on_disconnected(self, gen: int, *, error: BaseException | None) -> None:
        if gen != self.generation or self.state is ConnectionState.CLOSING:
            return
        self._ws = None
        self._cancel_connection_timers()
        self.state = ConnectionState.DISCONNECTED
        self.stats.mark_disconnected()

        # restart()/shutdown() bump the generation first, so any close that
        # reaches this point was not ours to expect: it is a transport fault.
        self.stats.record_error("transport")
        if error is not None:
            info = classify_ws_failure(error)
            log_event(
                logger,
                "ws.disconnected",
                severity="ERROR" if info.is_auth_failure() else "WARNING",
                generation=gen,
                error=f"{type(error).__name__}: {error}",
                failure_category=info.category,
                http_status=info.http_status,
                rate_limited=info.is_rate_limited(),
            )
        else:
            log_event(logger, "ws.closed", severity="WARNING", generation=gen)

        max_attempts = int(self.cfg.reconnect_max_attempts)
        if self.reconnect_attempts >= max_attempts:
            log_event(
                logger,
                "ws.reconnect_giveup",
                severity="ERROR",
                reconnect_attempts=self.reconnect_attempts,
                max_reconnect_attempts=max_attempts,
                message="Reconnect attempts exhausted; POST /restart to re-arm.",
            )
            return

        delay_s = backoff_delay(
            self.reconnect_attempts,
            base_s=self.cfg.reconnect_base_s,
            cap_s=self.cfg.reconnect_max_s,
        )
        self.reconnect_attempts += 1
        reconnect_attempts_total.inc()
        log_event(
            logger,
            "ws.reconnect_scheduled",
            severity="INFO",
            delay_s=delay_s,
            reconnect_attempts=self.reconnect_attempts,
            max_reconnect_attempts=max_attempts,
        )
        self._reconnect_task = asyncio.create_task(self._reconnect_after(gen, delay_s))

    async def _drop_connection(self, *, reason: str = "restart") -> None:
        """
        Abandon the current connection without scheduling a reconnect.
        """
        self.generation += 1
        self._cancel(self._reconnect_task)
        self._reconnect_task = None
        self._cancel_connection_timers()

        ws, self._ws = self._ws, None
        if ws is not None:
            await _close_quietly(ws, code=1000, reason=reason)

        reader, self._reader_task = self._reader_task, None
        if reader is not None and not reader.done() and reader is not asyncio.current_task():
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)

        if self.stats.connected:
            self.stats.mark_disconnected()
        if self.state is not ConnectionState.CLOSING:
            self.state = ConnectionState.DISCONNECTED

    # ---- tasks ----

    async def _run_connection(self, gen: int) -> None:
        ws: Any = None
        error: BaseException | None = None
        try:
            ws = await self._connect(self.cfg.stream_url_with_credential())
            if gen != self.generation or self.state is not ConnectionState.CONNECTING:
                return
            self._on_connected(gen, ws)
            async for raw in ws:
                await self._handle_frame(raw)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = e
        finally:
            if ws is not None:
                await _close_quietly(ws)
        self._on_disconnected(gen, error=error)

    async def _reconnect_after(self, gen: int, delay_s: float) -> None:
        await asyncio.sleep(delay_s)
        if gen != self.generation or self.state is not ConnectionState.DISCONNECTED:
            return
        self._reconnect_task = None
        self._begin_connect()

    async def _replay_after(self, gen: int, delay_s: float) -> None:
        # The upstream may drop subscribe requests sent right after the handshake.
        await asyncio.sleep(delay_s)
        # Topics added or removed from here on go on the wire directly.
        if self._replay_pending_gen == gen:
            self._replay_pending_gen = None
        sent = 0
        topics = self.registry.list()
        for topic in topics:
            if gen != self.generation or self.state is not ConnectionState.CONNECTED:
                break
            if topic not in self.registry:
                continue
            if await self._send({"type": "subscribe", "symbol": topic}):
                sent += 1
        log_event(
            logger,
            "ws.subscriptions_replayed",
            severity="INFO",
            generation=gen,
            topics=topics,
            sent=sent,
        )

    async def _keepalive_loop(self, gen: int, ws: Any) -> None:
        interval_s = float(self.cfg.keepalive_interval_s)
        while True:
            await asyncio.sleep(interval_s)
            if gen != self.generation or self.state is not ConnectionState.CONNECTED:
                return
            try:
                pong_waiter = await ws.ping()
                await asyncio.wait_for(pong_waiter, timeout=KEEPALIVE_PONG_TIMEOUT_S)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log_event(
                    logger,
                    "ws.keepalive_failed",
                    severity="WARNING",
                    generation=gen,
                    error=f"{type(e).__name__}: {e}",
                )
                # Closing ends the reader loop, which runs the disconnect transition.
                await _close_quietly(ws, code=1011, reason="keepalive timeout")
                return

    # ---- frames ----

    async def _handle_frame(self, raw: str | bytes) -> None:
        frame = parse_frame(raw)

        if isinstance(frame, MalformedFrame):
            self.stats.record_error("parse")
            log_event(logger, "frame.malformed", severity="WARNING", error=frame.error, raw=frame.raw)
            return

        if isinstance(frame, PingFrame):
            self.stats.record_received("ping")
            await self._send({"type": "pong"})
            return

        if isinstance(frame, OtherFrame):
            self.stats.record_received("other")
            self.stats.record_error("unrecognized")
            log_event(logger, "frame.unrecognized", severity="WARNING", frame_type=frame.type)
            return

        self.stats.record_received("news")
        self.stats.record_message_at()
        event = to_canonical(frame)
        log_event(logger, "frame.news", severity="INFO", topic=event.topic, event_id=event.id, headline=event.headline)
        await self._dispatch_delivery(event)

    async def _dispatch_delivery(self, event: CanonicalEvent) -> None:
        # Waits only when the in-flight bound is reached.
        await self._delivery_slots.acquire()
        task = asyncio.create_task(self._deliver(event))
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)

    async def _deliver(self, event: CanonicalEvent) -> None:
        try:
            await self.sink.deliver(event)
        except asyncio.CancelledError:
            raise
        except Exception:
            self.stats.record_error("delivery")
            logger.exception("sink.delivery_crashed event_id=%s", event.id)
        finally:
            self._delivery_slots.release()

    async def _send(self, frame: dict[str, Any]) -> bool:
        ws = self._ws
        if self.state is not ConnectionState.CONNECTED or ws is None:
            return False
        try:
            await ws.send(json.dumps(frame, separators=(",", ":")))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # The reader observes the broken socket and runs the disconnect transition.
            log_event(
                logger,
                "ws.send_failed",
                severity="WARNING",
                frame_type=frame.get("type"),
                error=f"{type(e).__name__}: {e}",
            )
            return False
        return True

    # ---- helpers ----

    def _replay_pending(self) -> bool:
        """True while the current connection's replay has not fired; it will carry registry changes."""
        return self._replay_pending_gen == self.generation and self.state is ConnectionState.CONNECTED

    def _cancel_connection_timers(self) -> None:
        for t in (self._replay_task, self._keepalive_task):
            self._cancel(t)
        self._replay_task = None
        self._keepalive_task = None
        self._replay_pending_gen = None

    @staticmethod
    def _cancel(task: asyncio.Task | None) -> None:
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
