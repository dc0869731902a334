from __future__ import annotations

import pytest

from news_bridge.bridge.config import BridgeConfig, load_config
from news_bridge.common.config import env_float, env_int, parse_symbols

_ENV_KEYS = (
    "NEWS_STREAM_URL",
    "NEWS_STREAM_API_KEY",
    "N8N_WEBHOOK_URL",
    "BRIDGE_SECRET",
    "BRIDGE_ID",
    "SYMBOLS",
    "MAX_SYMBOLS",
    "HOST",
    "PORT",
    "RECONNECT_BACKOFF_BASE_S",
    "RECONNECT_BACKOFF_MAX_S",
    "RECONNECT_MAX_ATTEMPTS",
    "SUBSCRIBE_REPLAY_DELAY_S",
    "KEEPALIVE_INTERVAL_S",
    "WEBHOOK_TIMEOUT_S",
    "MAX_INFLIGHT_DELIVERIES",
)


@pytest.fixture
def clean_env(monkeypatch):
    for k in _ENV_KEYS:
        monkeypatch.delenv(k, raising=False)
    return monkeypatch


def test_load_config_defaults(clean_env):
    cfg = load_config()
    assert cfg.news_stream_url == "wss://api.newsfilter.io/ws"
    assert cfg.news_stream_api_key is None
    assert cfg.webhook_url is None
    assert cfg.bridge_id == "newsfilter-bridge"
    assert cfg.symbols == ()
    assert cfg.max_symbols == 50
    assert cfg.port == 3000
    assert cfg.reconnect_base_s == 2.0
    assert cfg.reconnect_max_s == 30.0
    assert cfg.reconnect_max_attempts == 10
    assert cfg.subscribe_replay_delay_s == 1.0
    assert cfg.keepalive_interval_s == 30.0
    assert cfg.webhook_timeout_s == 10.0
    assert cfg.max_inflight_deliveries == 100


def test_load_config_reads_env(clean_env):
    clean_env.setenv("NEWS_STREAM_API_KEY", " k-123 ")
    clean_env.setenv("N8N_WEBHOOK_URL", "https://n8n.example/webhook/news")
    clean_env.setenv("SYMBOLS", "aapl, msft,,AAPL ,tsla")
    clean_env.setenv("MAX_SYMBOLS", "5")
    clean_env.setenv("PORT", "8080")
    clean_env.setenv("RECONNECT_MAX_ATTEMPTS", "3")
    cfg = load_config()
    assert cfg.news_stream_api_key == "k-123"
    assert cfg.webhook_url == "https://n8n.example/webhook/news"
    assert cfg.symbols == ("AAPL", "MSFT", "TSLA")
    assert cfg.max_symbols == 5
    assert cfg.port == 8080
    assert cfg.reconnect_max_attempts == 3


def test_invalid_numbers_fall_back_to_defaults(clean_env):
    clean_env.setenv("PORT", "not-a-port")
    clean_env.setenv("KEEPALIVE_INTERVAL_S", "soon")
    clean_env.setenv("MAX_SYMBOLS", "0")
    cfg = load_config()
    assert cfg.port == 3000
    assert cfg.keepalive_interval_s == 30.0
    # Clamped to the minimum.
    assert cfg.max_symbols == 1


def test_stream_url_with_credential():
    cfg = BridgeConfig(news_stream_url="wss://feed.example/ws", news_stream_api_key="a b&c")
    assert cfg.stream_url_with_credential() == "wss://feed.example/ws?apikey=a+b%26c"

    with_query = BridgeConfig(news_stream_url="wss://feed.example/ws?v=2", news_stream_api_key="k")
    assert with_query.stream_url_with_credential() == "wss://feed.example/ws?v=2&apikey=k"


def test_stream_url_requires_credential():
    with pytest.raises(ValueError):
        BridgeConfig().stream_url_with_credential()


def test_env_helpers(monkeypatch):
    monkeypatch.setenv("X_FLOAT", "-3")
    monkeypatch.setenv("X_INT", " 7 ")
    assert env_float("X_FLOAT", 1.0, minimum=0.0) == 0.0
    assert env_int("X_INT", 1) == 7


def test_parse_symbols():
    assert parse_symbols(None) == []
    assert parse_symbols("") == []
    assert parse_symbols(" spy ,qqq,SPY") == ["SPY", "QQQ"]
    assert parse_symbols(["a", "B", "a "]) == ["A", "B"]
