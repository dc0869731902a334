from __future__ import annotations

import re
from dataclasses import dataclass


@dataclass(frozen=True)
class WsFailureInfo:
    """
    Normalized classification for WebSocket connection failures.

    Categories:
    - auth_failure: bad/expired credentials / forbidden (HTTP 401/403)
    - rate_limited: server-side throttling (HTTP 429)
    - transient: network/server hiccup; safe to retry with backoff
    """

    category: str
    http_status: int | None
    reason: str

    def is_auth_failure(self) -> bool:
        return self.category == "auth_failure"

    def is_rate_limited(self) -> bool:
        return self.category == "rate_limited"


_STATUS_RE = re.compile(r"(?<!\d)(401|403|429)(?!\d)")


def _extract_http_status(exc: BaseException) -> int | None:
    """
    Best-effort extract of an HTTP status code from a handshake failure.
    """
    # websockets >= 14 exposes the rejected handshake response on InvalidStatus.
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    if isinstance(status, int):
        return status

    for attr in ("status_code", "code", "status"):
        v = getattr(exc, attr, None)
        if isinstance(v, int):
            return v
        vv = getattr(v, "value", None)
        if isinstance(vv, int):
            return vv

    m = _STATUS_RE.search(str(exc))
    if m:
        return int(m.group(1))
    return None


def classify_ws_failure(exc: BaseException) -> WsFailureInfo:
    """
    Classify a WebSocket failure into {auth_failure, rate_limited, transient}.

    Explicit HTTP statuses win; keyword matching on the exception string is the
    fallback for libraries that don't expose the status cleanly.
    """
    status = _extract_http_status(exc)
    msg = str(exc).lower()

    if status in (401, 403):
        return WsFailureInfo(category="auth_failure", http_status=status, reason="http_status")
    if status == 429:
        return WsFailureInfo(category="rate_limited", http_status=status, reason="http_status")

    if any(k in msg for k in ("auth failed", "authentication failed", "unauthorized", "forbidden", "invalid api key")):
        return WsFailureInfo(category="auth_failure", http_status=status, reason="message_match")
    if any(k in msg for k in ("too many requests", "rate limit", "ratelimit")):
        return WsFailureInfo(category="rate_limited", http_status=status, reason="message_match")

    return WsFailureInfo(category="transient", http_status=status, reason="default")


def backoff_delay(attempt: int, *, base_s: float, cap_s: float) -> float:
    """
    Deterministic exponential backoff: `min(base * 2**attempt, cap)`.

    `attempt` is 0-based (first reconnect after a fresh connect uses attempt=0).
    """
    if attempt < 0:
        raise ValueError("attempt must be >= 0")
    return float(min(float(base_s) * (2.0 ** int(attempt)), float(cap_s)))
