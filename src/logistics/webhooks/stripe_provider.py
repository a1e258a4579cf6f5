"""Stripe webhook provider: Stripe-Signature verification and event parsing."""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import datetime, timezone

import stripe

from src.logistics.webhooks.pipeline import (
    InvalidSignatureError,
    MalformedPayloadError,
    WebhookConfigurationError,
    WebhookProvider,
)
from src.logistics.webhooks.schemas import WebhookEvent

SIGNATURE_HEADER = "stripe-signature"


class StripeWebhookProvider(WebhookProvider):
    """Verifies `t=...,v1=...` signatures with the stripe library.

    Args:
        secret: Endpoint signing secret (whsec_...).
        tolerance: Maximum accepted timestamp age in seconds.
    """

    name = "stripe"

    def __init__(self, secret: str, tolerance: int = 300) -> None:
        self._secret = secret
        self._tolerance = tolerance

    def verify(
        self, body: bytes, headers: Mapping[str, str], method: str, url: str
    ) -> None:
        if not self._secret:
            raise WebhookConfigurationError("STRIPE_WEBHOOK_SECRET is not configured")
        signature = headers.get(SIGNATURE_HEADER)
        if not signature:
            raise InvalidSignatureError("Missing Stripe-Signature header")
        try:
            stripe.WebhookSignature.verify_header(
                body.decode("utf-8"), signature, self._secret, self._tolerance
            )
        except stripe.SignatureVerificationError as exc:
            raise InvalidSignatureError(str(exc)) from exc
        except UnicodeDecodeError as exc:
            raise InvalidSignatureError("Body is not valid UTF-8") from exc

    def parse(self, body: bytes) -> list[WebhookEvent]:
        try:
            payload = json.loads(body)
        except ValueError as exc:
            raise MalformedPayloadError(f"Invalid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise MalformedPayloadError("Stripe event must be a JSON object")

        event_id = payload.get("id")
        event_type = payload.get("type")
        data_object = (payload.get("data") or {}).get("object")
        if not event_id or not event_type or not isinstance(data_object, dict):
            raise MalformedPayloadError("Stripe event missing id, type or data.object")

        created = payload.get("created")
        occurred_at = (
            datetime.fromtimestamp(created, tz=timezone.utc)
            if isinstance(created, (int, float))
            else None
        )
        return [
            WebhookEvent(
                event_id=str(event_id),
                event_type=str(event_type),
                object_type=str(data_object.get("object") or ""),
                object_id=data_object.get("id"),
                occurred_at=occurred_at,
                raw_payload=payload,
            )
        ]
