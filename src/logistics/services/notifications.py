"""Outbound notification dispatch via an automation webhook.

Customer confirmations and driver/dispatch updates are delivered by an
external automation (email/SMS/push). This module only POSTs the event to it.
Delivery is best-effort: callers run it as a post-commit task.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Protocol

import httpx
import structlog

logger = structlog.get_logger(__name__)


class Notifier(Protocol):
    async def notify(self, event_type: str, data: dict[str, Any]) -> bool: ...


class WebhookNotifier:
    """POST `{event_type, timestamp, **data}` as JSON to the configured URL.

    Args:
        url: Automation webhook URL. Empty disables dispatch.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport (tests inject MockTransport).
    """

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self._url)

    async def notify(self, event_type: str, data: dict[str, Any]) -> bool:
        """Dispatch one notification.

        Returns:
            False when dispatch is disabled, True once the endpoint accepted it.

        Raises:
            httpx.HTTPError: On transport failure or a non-2xx response.
        """
        if not self._url:
            logger.debug("notifications.skipped", event_type=event_type)
            return False

        body = {
            "event_type": event_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **data,
        }
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(self._url, json=body)
            response.raise_for_status()

        logger.info("notifications.sent", event_type=event_type, status_code=response.status_code)
        return True
