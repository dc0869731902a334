from __future__ import annotations

from dataclasses import dataclass, field
from urllib.parse import urlencode, urlsplit

from news_bridge.common.config import env_float, env_int, env_str, parse_symbols
from news_bridge.bridge.registry import DEFAULT_MAX_TOPICS


@dataclass(frozen=True)
class BridgeConfig:
    """
    Configuration for the news bridge, resolved once at startup.

    Only the upstream credential is required to connect; everything else has
    a working default.
    """

    news_stream_url: str = "wss://api.newsfilter.io/ws"
    news_stream_api_key: str | None = None
    webhook_url: str | None = None
    bridge_secret: str | None = None
    bridge_id: str = "newsfilter-bridge"

    symbols: tuple[str, ...] = field(default_factory=tuple)
    max_symbols: int = DEFAULT_MAX_TOPICS

    host: str = "0.0.0.0"
    port: int = 3000

    reconnect_base_s: float = 2.0
    reconnect_max_s: float = 30.0
    reconnect_max_attempts: int = 10
    subscribe_replay_delay_s: float = 1.0
    keepalive_interval_s: float = 30.0

    webhook_timeout_s: float = 10.0
    max_inflight_deliveries: int = 100

    def stream_url_with_credential(self) -> str:
        """
        Upstream URL with the credential appended as `apikey` query param.
        """
        if not self.news_stream_api_key:
            raise ValueError("news_stream_api_key is not configured")
        sep = "&" if urlsplit(self.news_stream_url).query else "?"
        return f"{self.news_stream_url}{sep}{urlencode({'apikey': self.news_stream_api_key})}"


def load_config() -> BridgeConfig:
    return BridgeConfig(
        news_stream_url=env_str("NEWS_STREAM_URL", "wss://api.newsfilter.io/ws") or "wss://api.newsfilter.io/ws",
        news_stream_api_key=env_str("NEWS_STREAM_API_KEY"),
        webhook_url=env_str("N8N_WEBHOOK_URL"),
        bridge_secret=env_str("BRIDGE_SECRET"),
        bridge_id=env_str("BRIDGE_ID", "newsfilter-bridge") or "newsfilter-bridge",
        symbols=tuple(parse_symbols(env_str("SYMBOLS", ""))),
        max_symbols=env_int("MAX_SYMBOLS", DEFAULT_MAX_TOPICS, minimum=1),
        host=env_str("HOST", "0.0.0.0") or "0.0.0.0",
        port=env_int("PORT", 3000, minimum=1),
        reconnect_base_s=env_float("RECONNECT_BACKOFF_BASE_S", 2.0, minimum=0.0),
        reconnect_max_s=env_float("RECONNECT_BACKOFF_MAX_S", 30.0, minimum=0.0),
        reconnect_max_attempts=env_int("RECONNECT_MAX_ATTEMPTS", 10, minimum=0),
        subscribe_replay_delay_s=env_float("SUBSCRIBE_REPLAY_DELAY_S", 1.0, minimum=0.0),
        keepalive_interval_s=env_float("KEEPALIVE_INTERVAL_S", 30.0, minimum=1.0),
        webhook_timeout_s=env_float("WEBHOOK_TIMEOUT_S", 10.0, minimum=1.0),
        max_inflight_deliveries=env_int("MAX_INFLIGHT_DELIVERIES", 100, minimum=1),
    )
