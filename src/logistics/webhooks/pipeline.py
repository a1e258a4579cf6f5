"""Provider-agnostic webhook pipeline.

Every delivery goes through the same steps:
1. Verify the signature over the raw body (fail closed)
2. Parse into normalized WebhookEvents
3. Record (provider, event_id) in the event ledger; a duplicate stops here
4. Dispatch to the handler registered for (object_type, event_type)

The ledger row commits before the handler runs. A handler failure therefore
propagates to the route as a 500 while any redelivery of the same event is
acknowledged as a duplicate, so handlers must be find-or-create/upsert safe.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Protocol

import structlog

from src.logistics.core.monitoring import webhook_events_total
from src.logistics.ledger.repository import EventLedger
from src.logistics.ledger.schemas import DuplicateEvent
from src.logistics.webhooks.schemas import WebhookEvent, WebhookOutcome

logger = structlog.get_logger(__name__)


# ── Errors ───────────────────────────────────────────────────────────────────


class WebhookError(Exception):
    """Base class for webhook ingestion failures."""


class InvalidSignatureError(WebhookError):
    """Signature header missing, stale, or not matching the body (401)."""


class WebhookConfigurationError(WebhookError):
    """The provider's signing secret is not configured (500)."""


class MalformedPayloadError(WebhookError):
    """Body is not valid JSON or lacks the envelope fields (400)."""


class WebhookPayloadError(WebhookError):
    """A handler found a required business field missing (400)."""


# ── Provider / Handler Interfaces ────────────────────────────────────────────


class WebhookProvider(ABC):
    """Signature scheme plus envelope parser for one webhook source."""

    name: str

    @abstractmethod
    def verify(
        self, body: bytes, headers: Mapping[str, str], method: str, url: str
    ) -> None:
        """Raise InvalidSignatureError / WebhookConfigurationError on failure.

        headers keys are lower-cased.
        """

    @abstractmethod
    def parse(self, body: bytes) -> list[WebhookEvent]:
        """Normalize the body into events. Raises MalformedPayloadError."""


class WebhookHandler(Protocol):
    async def handle(self, event: WebhookEvent) -> str | None:
        """Apply the event. Returns an optional human-readable detail."""
        ...


HandlerKey = tuple[str, str]


# ── Pipeline ─────────────────────────────────────────────────────────────────


class WebhookPipeline:
    """Verify, deduplicate and dispatch deliveries for one provider.

    Args:
        provider: Signature scheme and parser.
        ledger: Event ledger used as the idempotency store.
        handlers: (object_type, event_type) -> handler.
    """

    def __init__(
        self,
        provider: WebhookProvider,
        ledger: EventLedger,
        handlers: Mapping[HandlerKey, WebhookHandler] | None = None,
    ) -> None:
        self._provider = provider
        self._ledger = ledger
        self._handlers: dict[HandlerKey, WebhookHandler] = dict(handlers or {})

    @property
    def source(self) -> str:
        return self._provider.name

    def register(self, object_type: str, event_type: str, handler: WebhookHandler) -> None:
        self._handlers[(object_type, event_type)] = handler

    @property
    def subscriptions(self) -> list[str]:
        return sorted(event_type for _, event_type in self._handlers)

    async def process(
        self,
        body: bytes,
        headers: Mapping[str, str],
        method: str = "POST",
        url: str = "",
    ) -> list[WebhookOutcome]:
        """Run one delivery through the pipeline.

        Raises:
            InvalidSignatureError, WebhookConfigurationError,
            MalformedPayloadError, WebhookPayloadError: Mapped to HTTP by the route.
        """
        source = self.source
        normalized = {k.lower(): v for k, v in headers.items()}

        try:
            self._provider.verify(body, normalized, method, url)
        except InvalidSignatureError as exc:
            webhook_events_total.labels(source=source, outcome="invalid_signature").inc()
            logger.warning("webhook.invalid_signature", source=source, error=str(exc))
            raise
        except WebhookConfigurationError as exc:
            webhook_events_total.labels(source=source, outcome="error").inc()
            logger.error("webhook.not_configured", source=source, error=str(exc))
            raise

        try:
            events = self._provider.parse(body)
        except MalformedPayloadError as exc:
            webhook_events_total.labels(source=source, outcome="malformed").inc()
            logger.warning("webhook.malformed_payload", source=source, error=str(exc))
            raise

        outcomes: list[WebhookOutcome] = []
        for event in events:
            outcomes.append(await self._process_event(event))
        return outcomes

    async def _process_event(self, event: WebhookEvent) -> WebhookOutcome:
        source = self.source
        log = logger.bind(source=source, event_id=event.event_id, event_type=event.event_type)

        recorded = await self._ledger.record(
            source,
            event.event_id,
            actor=source,
            event_type=event.event_type,
            payload=event.raw_payload,
        )
        if isinstance(recorded, DuplicateEvent):
            webhook_events_total.labels(source=source, outcome="duplicate").inc()
            log.info("webhook.duplicate_event")
            return WebhookOutcome(
                event_id=event.event_id, event_type=event.event_type, duplicate=True
            )

        handler = self._handlers.get((event.object_type, event.event_type))
        if handler is None:
            webhook_events_total.labels(source=source, outcome="processed").inc()
            log.info("webhook.unhandled_event_type", object_type=event.object_type)
            return WebhookOutcome(
                event_id=event.event_id,
                event_type=event.event_type,
                detail="Event type not handled",
            )

        try:
            detail = await handler.handle(event)
        except WebhookPayloadError:
            webhook_events_total.labels(source=source, outcome="malformed").inc()
            raise
        except Exception:
            webhook_events_total.labels(source=source, outcome="error").inc()
            raise

        webhook_events_total.labels(source=source, outcome="processed").inc()
        log.info("webhook.event_processed", detail=detail)
        return WebhookOutcome(
            event_id=event.event_id,
            event_type=event.event_type,
            handled=True,
            detail=detail,
        )
