"""
news_bridge package

Bridges a push-based market-news websocket feed into a downstream HTTP webhook
(e.g. an n8n workflow). The service entrypoint lives in `news_bridge.bridge.main`.
"""

__version__ = "1.0.0"
