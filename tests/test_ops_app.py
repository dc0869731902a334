from __future__ import annotations

import httpx
from fastapi.testclient import TestClient

from news_bridge.bridge.app import build_manager, create_app
from tests.ws_fakes import FakeConnector, make_config


def _client(*, connector: FakeConnector | None = None, **cfg_overrides) -> tuple[TestClient, FakeConnector]:
    connector = connector or FakeConnector()
    cfg = make_config(**cfg_overrides)
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
    manager = build_manager(cfg, connect=connector, http_client=http_client)
    return TestClient(create_app(manager)), connector


def test_health_and_healthz():
    client, _ = _client(news_stream_api_key=None)
    with client:
        r = client.get("/health")
        assert r.status_code == 200
        body = r.json()
        assert body["status"] == "running"
        assert body["connected"] is False
        assert body["timestamp"]
        assert r.headers["X-Request-ID"]

        r = client.get("/healthz", headers={"X-Request-ID": "abc123"})
        assert r.status_code == 200
        assert r.json() == {"status": "ok", "service": "news-bridge"}
        assert r.headers["X-Request-ID"] == "abc123"


def test_symbols_crud_status_codes():
    client, _ = _client(news_stream_api_key=None, symbols=("AAPL",), max_symbols=2)
    with client:
        r = client.get("/symbols")
        assert r.json() == {"symbols": ["AAPL"], "count": 1, "max": 2}

        r = client.post("/symbols", json={"symbol": " msft "})
        assert r.status_code == 200
        assert r.json()["symbol"] == "MSFT"
        assert r.json()["symbols"] == ["AAPL", "MSFT"]

        assert client.post("/symbols", json={"symbol": "aapl"}).status_code == 409
        assert client.post("/symbols", json={"symbol": "TSLA"}).status_code == 422
        assert client.post("/symbols", json={"symbol": "   "}).status_code == 422
        assert client.post("/symbols", json={}).status_code == 422

        r = client.delete("/symbols/aapl")
        assert r.status_code == 200
        assert r.json()["symbols"] == ["MSFT"]
        assert client.delete("/symbols/aapl").status_code == 404


def test_stats_reports_counters_and_connection_status():
    client, _ = _client(news_stream_api_key=None, symbols=("AAPL",))
    with client:
        body = client.get("/stats").json()
        assert body["connected"] is False
        assert body["received_count"] == 0
        assert body["sent_count"] == 0
        # Missing credential is counted once at startup.
        assert body["error_count"] == 1
        assert body["uptime_seconds"] is None
        assert body["symbols"] == ["AAPL"]
        assert body["connection"]["state"] == "disconnected"
        assert body["connection"]["max_reconnect_attempts"] == 10


def test_restart_reconnects_with_fake_upstream():
    client, connector = _client()
    with client:
        r = client.post("/restart")
        assert r.status_code == 200
        body = r.json()
        assert body["result"] == "restarting"
        assert body["connection"]["state"] == "connecting"
        assert body["connection"]["reconnect_attempts"] == 0
        assert client.get("/healthz").status_code == 200
    # Startup attempt plus the manual restart.
    assert len(connector.urls) == 2
    assert connector.urls[0] == "wss://feed.example/ws?apikey=test-key"


def test_metrics_exposes_bridge_series():
    client, _ = _client(news_stream_api_key=None)
    with client:
        r = client.get("/metrics")
        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/plain")
        text = r.text
        assert "# TYPE news_bridge_messages_received_total counter" in text
        assert 'news_bridge_errors_total{fault="config"}' in text
        assert "news_bridge_upstream_connected" in text
