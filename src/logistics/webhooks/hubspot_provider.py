"""HubSpot webhook provider: v3 / legacy signature verification and parsing.

v3: X-HubSpot-Signature-v3 is base64(HMAC-SHA256(secret, method + uri + body +
timestamp)) and X-HubSpot-Request-Timestamp (epoch ms) must be within five
minutes. Legacy: X-HubSpot-Signature is hex(HMAC-SHA256(secret, body)).

HubSpot batches deliveries, so the body may be one event object or an array.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any

from src.logistics.webhooks.pipeline import (
    InvalidSignatureError,
    MalformedPayloadError,
    WebhookConfigurationError,
    WebhookProvider,
)
from src.logistics.webhooks.schemas import WebhookEvent

SIGNATURE_V3_HEADER = "x-hubspot-signature-v3"
TIMESTAMP_HEADER = "x-hubspot-request-timestamp"
LEGACY_SIGNATURE_HEADER = "x-hubspot-signature"
MAX_TIMESTAMP_AGE_MS = 5 * 60 * 1000


def compute_v3_signature(secret: str, method: str, uri: str, body: bytes, timestamp: str) -> str:
    message = method.upper().encode() + uri.encode() + body + timestamp.encode()
    digest = hmac.new(secret.encode(), message, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def compute_legacy_signature(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def _property_changes(item: dict[str, Any]) -> dict[str, Any]:
    if item.get("propertyName"):
        return {item["propertyName"]: item.get("propertyValue")}
    properties = item.get("properties")
    if isinstance(properties, dict):
        changes: dict[str, Any] = {}
        for name, data in properties.items():
            changes[name] = data.get("value") if isinstance(data, dict) else data
        return changes
    return {}


class HubSpotWebhookProvider(WebhookProvider):
    """HubSpot app webhooks (v3 signatures, legacy v1 accepted).

    Args:
        secret: App client secret used for signing.
        clock: Wall-clock seconds source; injectable for tests.
    """

    name = "hubspot"

    def __init__(self, secret: str, clock: Callable[[], float] = time.time) -> None:
        self._secret = secret
        self._clock = clock

    def verify(
        self, body: bytes, headers: Mapping[str, str], method: str, url: str
    ) -> None:
        if not self._secret:
            raise WebhookConfigurationError("HUBSPOT_WEBHOOK_SECRET is not configured")

        signature_v3 = headers.get(SIGNATURE_V3_HEADER)
        if signature_v3:
            timestamp = headers.get(TIMESTAMP_HEADER)
            if not timestamp:
                raise InvalidSignatureError("Missing X-HubSpot-Request-Timestamp header")
            try:
                sent_ms = int(timestamp)
            except ValueError as exc:
                raise InvalidSignatureError("Invalid request timestamp") from exc
            if abs(self._clock() * 1000 - sent_ms) > MAX_TIMESTAMP_AGE_MS:
                raise InvalidSignatureError("Request timestamp outside the accepted window")

            expected = compute_v3_signature(self._secret, method, url, body, timestamp)
            if not hmac.compare_digest(expected, signature_v3):
                raise InvalidSignatureError("Signature mismatch")
            return

        legacy = headers.get(LEGACY_SIGNATURE_HEADER)
        if not legacy:
            raise InvalidSignatureError("Missing X-HubSpot-Signature header")
        expected = compute_legacy_signature(self._secret, body)
        if not hmac.compare_digest(expected, legacy.lower()):
            raise InvalidSignatureError("Signature mismatch")

    def parse(self, body: bytes) -> list[WebhookEvent]:
        try:
            payload = json.loads(body)
        except ValueError as exc:
            raise MalformedPayloadError(f"Invalid JSON: {exc}") from exc

        items = payload if isinstance(payload, list) else [payload]
        if not items:
            raise MalformedPayloadError("Empty event batch")

        events: list[WebhookEvent] = []
        for item in items:
            if not isinstance(item, dict):
                raise MalformedPayloadError("HubSpot event must be a JSON object")
            event_id = item.get("eventId") or item.get("id")
            subscription_type = item.get("subscriptionType")
            object_id = item.get("objectId")
            if not event_id or not subscription_type or object_id is None:
                raise MalformedPayloadError(
                    "HubSpot event missing eventId, subscriptionType or objectId"
                )

            occurred = item.get("occurredAt")
            occurred_at = (
                datetime.fromtimestamp(occurred / 1000, tz=timezone.utc)
                if isinstance(occurred, (int, float))
                else None
            )
            events.append(
                WebhookEvent(
                    event_id=str(event_id),
                    event_type=str(subscription_type),
                    object_type=str(subscription_type).split(".", 1)[0],
                    object_id=str(object_id),
                    occurred_at=occurred_at,
                    property_changes=_property_changes(item),
                    raw_payload=item,
                )
            )
        return events
