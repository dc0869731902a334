"""
JSON-lines logging for the bridge process.

Every record becomes one JSON object on stdout carrying the service identity
(service/env/version/sha), the bound request id, a stable `event_type`, and
any `extra=` fields. Uvicorn's loggers are routed through the same handler.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
import traceback
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

_REQUEST_ID: ContextVar[Optional[str]] = ContextVar("bridge_request_id", default=None)

# Attributes every LogRecord carries; anything else on a record came from `extra=`.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}
_CORE_FIELDS = frozenset(
    {"timestamp", "severity", "service", "env", "version", "sha", "request_id", "correlation_id", "event_type"}
)

_SEVERITIES = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_SEVERITY_ALIASES = {"WARN": "WARNING", "FATAL": "CRITICAL"}


def clean_text(v: Any, *, max_len: int = 2000) -> str:
    """Single-line, length-capped string form of `v` (never raises)."""
    try:
        text = "" if v is None else str(v)
    except Exception:
        return ""
    text = " ".join(text.splitlines()).replace("\r", " ").strip()
    if len(text) > max_len:
        text = text[: max_len - 1] + "…"
    return text


def _first_env(*names: str, default: str) -> str:
    for name in names:
        value = clean_text(os.getenv(name), max_len=128)
        if value:
            return value
    return default


def _severity(level: str | int | None) -> str:
    if isinstance(level, int):
        level = logging.getLevelName(level)
    name = clean_text(level or "INFO", max_len=16).upper()
    name = _SEVERITY_ALIASES.get(name, name)
    return name if name in _SEVERITIES else "INFO"


@dataclass(frozen=True)
class ServiceIdentity:
    service: str
    env: str
    version: str
    sha: str

    @classmethod
    def resolve(
        cls,
        *,
        service: str | None = None,
        env: str | None = None,
        version: str | None = None,
        sha: str | None = None,
    ) -> "ServiceIdentity":
        # Explicit arguments win over the deployment environment.
        from news_bridge import __version__

        return cls(
            service=clean_text(service, max_len=128) or _first_env("SERVICE_NAME", "SERVICE", default="news-bridge"),
            env=clean_text(env, max_len=64) or _first_env("ENVIRONMENT", "ENV", "APP_ENV", default="unknown"),
            version=clean_text(version, max_len=128) or _first_env("APP_VERSION", "IMAGE_TAG", default=__version__),
            sha=clean_text(sha, max_len=64) or _first_env("GIT_SHA", "COMMIT_SHA", default="unknown"),
        )


def get_request_id() -> Optional[str]:
    return _REQUEST_ID.get()


@contextmanager
def bind_request_id(*, request_id: str | None = None) -> Iterator[str]:
    """Bind a request id (generated when absent) for the duration of the block."""
    rid = clean_text(request_id, max_len=128) or uuid.uuid4().hex
    token = _REQUEST_ID.set(rid)
    try:
        yield rid
    finally:
        _REQUEST_ID.reset(token)


class JsonLogFormatter(logging.Formatter):
    def __init__(
        self,
        *,
        service: str | None = None,
        env: str | None = None,
        version: str | None = None,
        sha: str | None = None,
    ) -> None:
        super().__init__()
        self.identity = ServiceIdentity.resolve(service=service, env=env, version=version, sha=sha)

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        rid = getattr(record, "request_id", None) or get_request_id()
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "severity": _severity(getattr(record, "severity", None) or record.levelno),
            "service": getattr(record, "service", None) or self.identity.service,
            "env": self.identity.env,
            "version": self.identity.version,
            "sha": self.identity.sha,
            "request_id": rid,
            "correlation_id": rid,
            "event_type": clean_text(getattr(record, "event_type", None), max_len=128) or "log",
            "message": clean_text(record.getMessage(), max_len=4000),
            "logger": record.name,
        }
        if record.exc_info:
            payload["exception"] = "".join(traceback.format_exception(*record.exc_info))[-8000:]
        elif record.stack_info:
            payload["stack"] = clean_text(record.stack_info, max_len=8000)

        for key, value in vars(record).items():
            if key in _RECORD_ATTRS or key in _CORE_FIELDS or key.startswith("_"):
                continue
            payload[key] = value

        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


def init_structured_logging(
    *,
    service: str | None = None,
    env: str | None = None,
    version: str | None = None,
    sha: str | None = None,
    level: str | int | None = None,
) -> None:
    """
    Replace the root handlers with a single JSON stdout handler.

    Idempotent; `LOG_LEVEL` is used when `level` is not given.
    """
    lvl = level or _first_env("LOG_LEVEL", default="INFO").upper()
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonLogFormatter(service=service, env=env, version=version, sha=sha))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(lvl)
    logging.captureWarnings(True)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uv = logging.getLogger(name)
        uv.handlers = []
        uv.propagate = True


def log_event(
    logger: logging.Logger,
    event_type: str,
    *,
    severity: str = "INFO",
    message: str | None = None,
    **fields: Any,
) -> None:
    """Log a semantic event; `fields` become top-level JSON keys."""
    logger.log(
        logging.getLevelName(_severity(severity)),
        message or event_type,
        extra={"event_type": event_type, **fields},
    )


def install_fastapi_request_id_middleware(app: Any, *, service: str | None = None) -> None:
    """
    Bind X-Request-ID (or X-Correlation-Id) per request, echo it back on the
    response, and emit one `http.request` line with status and duration.
    """
    from fastapi import Request

    http_logger = logging.getLogger("news_bridge.http")
    svc = clean_text(service, max_len=128) or None

    @app.middleware("http")
    async def _request_id_mw(request: Request, call_next):  # type: ignore[no-untyped-def]
        incoming = request.headers.get("x-request-id") or request.headers.get("x-correlation-id")
        started = time.perf_counter()
        status_code = 500
        with bind_request_id(request_id=incoming) as rid:
            try:
                response = await call_next(request)
                status_code = response.status_code
            finally:
                log_event(
                    http_logger,
                    "http.request",
                    service=svc,
                    method=request.method,
                    path=request.url.path,
                    status_code=status_code,
                    duration_ms=int((time.perf_counter() - started) * 1000),
                )
        response.headers["X-Request-ID"] = rid
        return response
