"""Inbound webhook endpoints for Stripe and HubSpot.

Both routes hand the raw body to their WebhookPipeline and translate its
typed errors into HTTP statuses. Duplicate deliveries are acknowledged
with 200 so providers stop retrying.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, HTTPException, Request, status

from src.logistics.api.deps import get_hubspot_pipeline, get_stripe_pipeline
from src.logistics.config import get_settings
from src.logistics.webhooks.pipeline import (
    InvalidSignatureError,
    MalformedPayloadError,
    WebhookConfigurationError,
    WebhookPayloadError,
    WebhookPipeline,
)
from src.logistics.webhooks.schemas import WebhookOutcome

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def _run_pipeline(pipeline: WebhookPipeline, request: Request) -> list[WebhookOutcome]:
    body = await request.body()
    try:
        return await pipeline.process(body, request.headers, request.method, str(request.url))
    except InvalidSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")
    except WebhookConfigurationError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook not configured",
        )
    except (MalformedPayloadError, WebhookPayloadError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except Exception:
        logger.exception("webhook.processing_failed", source=pipeline.source)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        )


@router.post("/stripe")
async def stripe_webhook(request: Request) -> dict:
    """Receive Stripe events (checkout.session.completed creates orders)."""
    await _run_pipeline(get_stripe_pipeline(request), request)
    return {"received": True}


@router.post("/hubspot")
async def hubspot_webhook(request: Request) -> dict:
    """Receive HubSpot deal/contact property-change events."""
    outcomes = await _run_pipeline(get_hubspot_pipeline(request), request)

    if len(outcomes) == 1:
        outcome = outcomes[0]
        if outcome.duplicate:
            return {"message": "Event already processed", "eventId": outcome.event_id}
        return {"message": "Webhook processed successfully", "eventId": outcome.event_id}

    return {
        "message": "Webhook processed successfully",
        "eventIds": [o.event_id for o in outcomes],
        "duplicates": [o.event_id for o in outcomes if o.duplicate],
    }


@router.get("/hubspot")
async def hubspot_webhook_config(request: Request) -> dict:
    """Configuration echo for setting up the HubSpot app subscription."""
    settings = get_settings()
    pipeline = getattr(request.app.state, "hubspot_pipeline", None)
    return {
        "message": "HubSpot webhook endpoint",
        "configured": bool(settings.HUBSPOT_WEBHOOK_SECRET),
        "subscriptions": pipeline.subscriptions if pipeline is not None else [],
    }
