from __future__ import annotations

import logging
import os
import platform

import uvicorn

from news_bridge.bridge.app import SERVICE_NAME, build_manager, create_app
from news_bridge.bridge.config import load_config
from news_bridge.common.logging import init_structured_logging, log_event

logger = logging.getLogger(__name__)


def main() -> None:
    init_structured_logging(service=SERVICE_NAME)
    cfg = load_config()
    log_event(
        logger,
        "startup_banner",
        severity="INFO",
        intent="Bridge the upstream news websocket into the downstream webhook.",
        pid=os.getpid(),
        python_version=platform.python_version(),
        port=cfg.port,
        symbols=list(cfg.symbols),
        webhook_configured=bool(cfg.webhook_url),
        credential_present=bool(cfg.news_stream_api_key),
    )

    app = create_app(build_manager(cfg))
    # uvicorn owns SIGTERM/SIGINT; the app lifespan closes the upstream socket.
    uvicorn.run(app, host=cfg.host, port=cfg.port, log_config=None)


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        raise SystemExit(130)
    except SystemExit:
        raise
    except Exception as e:
        logger.exception("news_bridge.crashed: %s", e)
        raise SystemExit(1)
