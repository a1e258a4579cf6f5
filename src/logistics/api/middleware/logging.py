"""Structured request logging.

configure_structlog() sets up processors once at startup: JSON lines in
production, the console renderer elsewhere.

LoggingMiddleware emits one `http.request` line per request with method,
path, status, duration and the caller's role. Every request gets a request
id (an inbound X-Request-ID is honoured so provider retries can be traced)
that is bound into structlog contextvars and echoed on the response.
Webhook deliveries carry no bearer token; they are tagged with the
provider taken from the path instead.
"""

from __future__ import annotations

import logging
import time
import uuid

import structlog
from fastapi import Request, Response
from jose import JWTError, jwt
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.logistics.config import Environment, get_settings

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
_WEBHOOK_PREFIX = "/api/v1/webhooks/"


def configure_structlog() -> None:
    settings = get_settings()
    logging.basicConfig(format="%(message)s", level=settings.LOG_LEVEL.upper())

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.ENVIRONMENT == Environment.production
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _caller(request: Request) -> dict[str, str | None]:
    """Subject/role from the bearer token, or the webhook provider.

    Unverifiable tokens are logged as anonymous; the auth dependency
    rejects them.
    """
    path = request.url.path
    if path.startswith(_WEBHOOK_PREFIX):
        return {"webhook_source": path[len(_WEBHOOK_PREFIX):].split("/", 1)[0]}

    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return {}
    settings = get_settings()
    try:
        claims = jwt.decode(
            auth_header[7:], settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM]
        )
    except JWTError:
        return {}
    return {"subject": claims.get("sub"), "role": claims.get("role")}


class LoggingMiddleware(BaseHTTPMiddleware):
    """Per-request access log with request-id correlation."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        log = logger.bind(method=request.method, path=request.url.path, **_caller(request))
        started = time.monotonic()

        try:
            response = await call_next(request)
        except Exception:
            log.error(
                "http.request_failed",
                status_code=500,
                duration_ms=round((time.monotonic() - started) * 1000, 2),
            )
            raise

        response.headers[REQUEST_ID_HEADER] = request_id
        duration_ms = round((time.monotonic() - started) * 1000, 2)
        if response.status_code >= 500:
            log.error("http.request", status_code=response.status_code, duration_ms=duration_ms)
        elif response.status_code >= 400:
            log.warning("http.request", status_code=response.status_code, duration_ms=duration_ms)
        else:
            log.info("http.request", status_code=response.status_code, duration_ms=duration_ms)
        return response
