"""
Ops HTTP surface for the news bridge.

Read endpoints expose stats and the topic list; mutation endpoints add/remove
topics (subject to the registry cap) and force a manual reconnect. The
connection manager is started/stopped with the app lifespan.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException
from fastapi.responses import PlainTextResponse

from news_bridge import __version__
from news_bridge.bridge.config import BridgeConfig
from news_bridge.bridge.connection import ConnectFn, ConnectionManager, websockets_connect
from news_bridge.bridge.registry import AddResult, RemoveResult, SubscriptionRegistry, normalize_topic
from news_bridge.bridge.sink import ForwardingSink
from news_bridge.bridge.stats import StatsCollector
from news_bridge.common.logging import install_fastapi_request_id_middleware
from news_bridge.common.ops_metrics import REGISTRY
from news_bridge.common.timeutils import iso_utc
from news_bridge.contracts.news import SymbolRequest

SERVICE_NAME = "news-bridge"


def build_manager(
    cfg: BridgeConfig,
    *,
    connect: ConnectFn = websockets_connect,
    http_client: httpx.AsyncClient | None = None,
) -> ConnectionManager:
    stats = StatsCollector()
    registry = SubscriptionRegistry(max_topics=cfg.max_symbols, initial=cfg.symbols)
    sink = ForwardingSink(
        webhook_url=cfg.webhook_url,
        stats=stats,
        bridge_id=cfg.bridge_id,
        secret=cfg.bridge_secret,
        timeout_s=cfg.webhook_timeout_s,
        client=http_client,
    )
    return ConnectionManager(cfg=cfg, registry=registry, stats=stats, sink=sink, connect=connect)


def create_app(manager: ConnectionManager) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await manager.start()
        try:
            yield
        finally:
            await manager.shutdown()

    app = FastAPI(title="News Bridge", version=__version__, lifespan=lifespan)
    app.state.manager = manager
    install_fastapi_request_id_middleware(app, service=SERVICE_NAME)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "running",
            "connected": manager.stats.connected,
            "timestamp": iso_utc(),
        }

    @app.get("/healthz")
    async def healthz() -> dict[str, Any]:
        # Process is alive (do not gate on the upstream connection).
        return {"status": "ok", "service": SERVICE_NAME}

    @app.get("/stats")
    async def stats() -> dict[str, Any]:
        return {
            **manager.stats.snapshot(),
            "connection": manager.status(),
            "symbols": manager.registry.list(),
            "timestamp": iso_utc(),
        }

    @app.get("/symbols")
    async def list_symbols() -> dict[str, Any]:
        symbols = manager.registry.list()
        return {"symbols": symbols, "count": len(symbols), "max": manager.registry.max_topics}

    @app.post("/symbols")
    async def add_symbol(body: SymbolRequest) -> dict[str, Any]:
        result = await manager.add_topic(body.symbol)
        symbol = normalize_topic(body.symbol)
        if result is AddResult.DUPLICATE:
            raise HTTPException(status_code=409, detail=f"symbol_already_subscribed: {symbol}")
        if result is AddResult.LIMIT_EXCEEDED:
            raise HTTPException(status_code=422, detail=f"symbol_limit_reached: max={manager.registry.max_topics}")
        if result is AddResult.INVALID:
            raise HTTPException(status_code=422, detail="symbol_invalid")
        return {"result": result.value, "symbol": symbol, "symbols": manager.registry.list()}

    @app.delete("/symbols/{symbol}")
    async def remove_symbol(symbol: str) -> dict[str, Any]:
        result = await manager.remove_topic(symbol)
        if result is RemoveResult.NOT_FOUND:
            raise HTTPException(status_code=404, detail=f"symbol_not_found: {normalize_topic(symbol)}")
        return {"result": result.value, "symbol": normalize_topic(symbol), "symbols": manager.registry.list()}

    @app.post("/restart")
    async def restart() -> dict[str, Any]:
        return {"result": "restarting", "connection": await manager.restart()}

    @app.get("/metrics")
    async def metrics() -> PlainTextResponse:
        return PlainTextResponse(
            content=REGISTRY.render_prometheus_text(),
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    return app
