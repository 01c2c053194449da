"""
Outbound webhook delivery for detected signals.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable

import httpx

from signal_monitor.services.matching import DetectedSignal
from signal_monitor.settings import get_settings

logger = logging.getLogger(__name__)


class WebhookNotifier:
    """POST signal events to an account's webhook. Fire once, never retry."""

    def __init__(self, timeout_s: float | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = get_settings()
        self.timeout_s = timeout_s or self.settings.webhook_timeout_sec
        self._transport = transport

    @staticmethod
    def build_payload(events: Iterable[DetectedSignal]) -> dict:
        return {
            "type": "signal_detected",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "events": [event.to_payload() for event in events],
        }

    async def send_signal_events(self, url: str, events: list[DetectedSignal]) -> bool:
        """Deliver events; returns False on any failure instead of raising."""
        if not url or not events:
            return False

        payload = self.build_payload(events)
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
                response = await client.post(url, json=payload)
        except Exception as e:
            logger.error("Webhook delivery to %s failed: %s", url, e)
            return False

        if response.is_success:
            logger.info("Webhook delivered: %d events to %s", len(events), url)
            return True
        logger.error("Webhook %s returned %s: %s", url, response.status_code, response.text[:200])
        return False
