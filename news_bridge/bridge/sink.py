from __future__ import annotations

import logging
from typing import Any

import httpx

from news_bridge.bridge.stats import StatsCollector
from news_bridge.common.logging import clean_text, log_event
from news_bridge.common.timeutils import iso_utc
from news_bridge.contracts.news import CanonicalEvent, DeliveryResult

logger = logging.getLogger(__name__)

USER_AGENT = "News-Bridge/1.0"


class ForwardingSink:
    """
    Delivers one canonical event per call to the downstream webhook.

    Contract:
    - one POST per event, no retries (a failed event is dropped)
    - 2xx bumps `sent_count`; anything else bumps `error_count`
    - never raises for HTTP/transport failures; returns a DeliveryResult
    """

    def __init__(
        self,
        *,
        webhook_url: str | None,
        stats: StatsCollector,
        bridge_id: str = "newsfilter-bridge",
        secret: str | None = None,
        timeout_s: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._webhook_url = webhook_url
        self._stats = stats
        self._bridge_id = bridge_id
        self._secret = secret
        self._timeout_s = float(timeout_s)
        self._client = client
        self._owns_client = client is None

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
        secret = str(self._secret or "").strip()
        if secret:
            headers["Authorization"] = f"Bearer {secret}"
        return headers

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    def build_payload(self, event: CanonicalEvent) -> dict[str, Any]:
        return {
            **event.model_dump(mode="json"),
            "bridge_id": self._bridge_id,
            "bridge_timestamp": iso_utc(),
        }

    async def deliver(self, event: CanonicalEvent) -> DeliveryResult:
        if not self._webhook_url:
            self._stats.record_error("delivery")
            log_event(
                logger,
                "sink.not_configured",
                severity="ERROR",
                event_id=event.id,
                topic=event.topic,
            )
            return DeliveryResult.failed("webhook_url_not_configured")

        try:
            response = await self._get_client().post(
                self._webhook_url,
                json=self.build_payload(event),
                headers=self._headers(),
                timeout=self._timeout_s,
            )
        except httpx.HTTPError as e:
            self._stats.record_error("delivery")
            log_event(
                logger,
                "sink.delivery_failed",
                severity="ERROR",
                event_id=event.id,
                topic=event.topic,
                error=f"{type(e).__name__}: {e}",
            )
            return DeliveryResult.failed(f"transport_error: {type(e).__name__}")

        if not response.is_success:
            self._stats.record_error("delivery")
            log_event(
                logger,
                "sink.delivery_rejected",
                severity="ERROR",
                event_id=event.id,
                topic=event.topic,
                status_code=response.status_code,
                body=clean_text(response.text, max_len=1000),
            )
            return DeliveryResult.failed(f"http_{response.status_code}", status_code=response.status_code)

        self._stats.record_sent()
        log_event(
            logger,
            "sink.delivered",
            severity="INFO",
            event_id=event.id,
            topic=event.topic,
            status_code=response.status_code,
        )
        return DeliveryResult.ok(response.status_code)

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
