"""Notification webhook client with exponential backoff retry logic"""

import asyncio
import logging
from typing import Any, Dict, Iterable

import httpx

from billing_engine.config import settings
from billing_engine.infrastructure.observability.metrics import (
    notification_dropped_counter,
    notification_failure_counter,
    notification_latency_histogram,
)

logger = logging.getLogger(__name__)


class NotificationClient:
    """Client for posting billing events to the notification service"""

    def __init__(
        self,
        webhook_url: str | None = None,
        max_retries: int | None = None,
        backoff_base: float | None = None,
    ):
        self.webhook_url = webhook_url or settings.notification_webhook_url
        self.max_retries = max_retries if max_retries is not None else settings.webhook_max_retries
        self.backoff_base = backoff_base if backoff_base is not None else settings.webhook_backoff_base
        self.timeout = settings.http_timeout_seconds

    async def send_event(self, payload: Dict[str, Any]) -> bool:
        """
        Send one billing event with retry logic.

        Retry strategy:
        - Exponential backoff: 1s, 2s, 4s, 8s (base * 2^attempt)
        - Retries on 5xx/4xx responses and network failures
        - Tracks latency histogram and failure counter

        Runs after the billing transaction has committed, so a delivery that
        still fails after the last retry is logged and counted, not raised.

        Returns:
            True when the webhook accepted the event
        """
        attempt = 0
        async with httpx.AsyncClient() as client:
            while attempt < self.max_retries:
                try:
                    with notification_latency_histogram.time():
                        response = await client.post(
                            self.webhook_url,
                            json=payload,
                            timeout=self.timeout,
                        )
                        response.raise_for_status()
                        return True

                except (httpx.HTTPStatusError, httpx.RequestError) as e:
                    attempt += 1
                    notification_failure_counter.inc()

                    if attempt >= self.max_retries:
                        notification_dropped_counter.inc()
                        logger.error(
                            f"Notification delivery failed after {attempt} attempts: {e}",
                            extra={"event": payload.get("event"), "attempts": attempt},
                        )
                        return False

                    backoff = self.backoff_base * (2 ** (attempt - 1))
                    await asyncio.sleep(backoff)

        return False

    async def send_events(self, payloads: Iterable[Dict[str, Any]]) -> None:
        """Deliver events in order; one failed event does not stop the rest"""
        for payload in payloads:
            await self.send_event(payload)
