"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
and a lifespan that initializes the database and wires every service onto
app.state for the v1 API router.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.logistics.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.logistics.api.v1.router import router as v1_router
from src.logistics.config import Settings, get_settings
from src.logistics.core.database import close_db, get_session, init_db
from src.logistics.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.logistics.crm.client import HubSpotClient
from src.logistics.crm.schema_cache import PropertySchemaCache
from src.logistics.crm.sync import HubSpotSyncOrchestrator
from src.logistics.ledger.repository import EventLedger
from src.logistics.orders.repository import (
    CustomerRepository,
    DriverRepository,
    OrderRepository,
    QuoteRepository,
)
from src.logistics.orders.service import OrderService
from src.logistics.services.notifications import WebhookNotifier
from src.logistics.webhooks.handlers import (
    CHECKOUT_SESSION,
    CHECKOUT_SESSION_COMPLETED,
    CONTACT_PROPERTY_CHANGE,
    DEAL_PROPERTY_CHANGE,
    CheckoutCompletedHandler,
    CrmPropertyChangeHandler,
)
from src.logistics.webhooks.hubspot_provider import HubSpotWebhookProvider
from src.logistics.webhooks.pipeline import WebhookPipeline
from src.logistics.webhooks.stripe_provider import StripeWebhookProvider


def wire_services(app: FastAPI, settings: Settings, session_factory=get_session) -> None:
    """Build repositories, integrations and pipelines onto app.state."""
    log = structlog.get_logger(__name__)

    ledger = EventLedger(session_factory)
    orders = OrderRepository(session_factory)
    customers = CustomerRepository(session_factory)
    quotes = QuoteRepository(session_factory)
    drivers = DriverRepository(session_factory)

    app.state.event_ledger = ledger
    app.state.order_repository = orders
    app.state.customer_repository = customers
    app.state.quote_repository = quotes
    app.state.driver_repository = drivers

    # HubSpot sync is optional; without a token CRM post-commit tasks are skipped
    app.state.hubspot_client = None
    app.state.sync_orchestrator = None
    if settings.hubspot_configured:
        client = HubSpotClient(
            token=settings.HUBSPOT_PRIVATE_APP_TOKEN,
            base_url=settings.HUBSPOT_API_BASE_URL,
            timeout=settings.HUBSPOT_TIMEOUT_SECONDS,
        )
        schema_cache = PropertySchemaCache(
            fetcher=client.get_properties,
            ttl_seconds=settings.HUBSPOT_SCHEMA_CACHE_TTL,
            enabled=settings.HUBSPOT_SCHEMA_CACHE_ENABLED,
        )
        app.state.hubspot_client = client
        app.state.sync_orchestrator = HubSpotSyncOrchestrator(
            client=client,
            schema_cache=schema_cache,
            settings=settings,
            orders=orders,
            customers=customers,
        )
        log.info("startup.hubspot_sync_enabled")
    else:
        log.warning("startup.hubspot_sync_disabled", reason="HUBSPOT_PRIVATE_APP_TOKEN not set")

    notifier = WebhookNotifier(
        url=settings.NOTIFICATION_WEBHOOK_URL,
        timeout=settings.NOTIFICATION_TIMEOUT_SECONDS,
    )
    service = OrderService(
        orders=orders,
        drivers=drivers,
        customers=customers,
        sync_orchestrator=app.state.sync_orchestrator,
        notifier=notifier if notifier.enabled else None,
    )
    app.state.notifier = notifier
    app.state.order_service = service

    stripe_pipeline = WebhookPipeline(
        StripeWebhookProvider(
            secret=settings.STRIPE_WEBHOOK_SECRET,
            tolerance=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
        ),
        ledger,
    )
    stripe_pipeline.register(
        CHECKOUT_SESSION,
        CHECKOUT_SESSION_COMPLETED,
        CheckoutCompletedHandler(quotes, customers, service),
    )
    app.state.stripe_pipeline = stripe_pipeline

    hubspot_pipeline = WebhookPipeline(
        HubSpotWebhookProvider(secret=settings.HUBSPOT_WEBHOOK_SECRET), ledger
    )
    crm_handler = CrmPropertyChangeHandler(orders, customers, settings)
    hubspot_pipeline.register("deal", DEAL_PROPERTY_CHANGE, crm_handler)
    hubspot_pipeline.register("contact", CONTACT_PROPERTY_CHANGE, crm_handler)
    app.state.hubspot_pipeline = hubspot_pipeline


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, Sentry and services on startup, close on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    await init_db()

    # Initialize Sentry if DSN is configured
    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    wire_services(app, settings)
    log.info("startup.complete", environment=settings.ENVIRONMENT.value)

    yield

    client = getattr(app.state, "hubspot_client", None)
    if client is not None:
        try:
            await client.close()
        except Exception:
            log.warning("shutdown.hubspot_client_close_failed", exc_info=True)

    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Logistics Dispatch API",
        version="0.1.0",
        description="Delivery orders, dispatch event ledger, Stripe and HubSpot integration",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
