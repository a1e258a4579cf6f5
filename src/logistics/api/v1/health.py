"""Health check endpoints.

Provides liveness (/health), readiness (/health/ready) and an integration
configuration report (/health/integrations). Readiness only depends on the
database; Stripe, HubSpot and notifications are optional integrations.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.logistics.config import get_settings
from src.logistics.core.database import get_engine

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check. No external dependencies are checked."""
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_database() -> dict:
    checks: dict = {"database": "ok"}
    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        checks["database"] = "error"
        checks["database_error"] = str(e)
    return checks


@router.get("/health/ready")
async def readiness_check():
    """Readiness check: 200 when the database answers, 503 otherwise."""
    checks = await _check_database()
    healthy = checks["database"] == "ok"
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "ready" if healthy else "degraded", "checks": checks},
    )


@router.get("/health/integrations")
async def integrations_check(request: Request):
    """Which integrations are configured. Never calls the providers."""
    settings = get_settings()
    orchestrator = getattr(request.app.state, "sync_orchestrator", None)
    schema_cache = orchestrator.schema_cache.status() if orchestrator is not None else []
    return {
        "stripe": {
            "api_key_configured": bool(settings.STRIPE_SECRET_KEY),
            "webhook_secret_configured": bool(settings.STRIPE_WEBHOOK_SECRET),
        },
        "hubspot": {
            "token_configured": settings.hubspot_configured,
            "webhook_secret_configured": bool(settings.HUBSPOT_WEBHOOK_SECRET),
            "sync_enabled": orchestrator is not None,
            "schema_cache": [s.model_dump(mode="json") for s in schema_cache],
        },
        "notifications": {"configured": bool(settings.NOTIFICATION_WEBHOOK_URL)},
    }
