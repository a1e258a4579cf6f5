"""FastAPI dependency injection for authentication and app.state services.

Services are built once in the lifespan and stored on app.state; each getter
raises 503 when its service did not initialize.
"""

from __future__ import annotations

from collections.abc import Callable, Coroutine
from typing import Any

from fastapi import Depends, HTTPException, Request, status

from src.logistics.core.security import Principal, Role, principal_from_token


async def get_current_principal(request: Request) -> Principal:
    """Extract and validate the caller from the Authorization bearer token.

    Raises:
        HTTPException(401): If no valid token is provided.
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal_from_token(auth_header[7:])


def require_roles(*roles: Role) -> Callable[..., Coroutine[Any, Any, Principal]]:
    """Dependency factory: the caller must hold one of `roles` (403 otherwise)."""
    allowed = frozenset(roles)

    async def _check(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{principal.role.value}' may not perform this action",
            )
        return principal

    return _check


# ── app.state Getters ────────────────────────────────────────────────────────


def _from_state(request: Request, name: str, label: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} not initialized",
        )
    return service


def get_order_service(request: Request) -> Any:
    return _from_state(request, "order_service", "Order service")


def get_order_repository(request: Request) -> Any:
    return _from_state(request, "order_repository", "Order repository")


def get_customer_repository(request: Request) -> Any:
    return _from_state(request, "customer_repository", "Customer repository")


def get_driver_repository(request: Request) -> Any:
    return _from_state(request, "driver_repository", "Driver repository")


def get_event_ledger(request: Request) -> Any:
    return _from_state(request, "event_ledger", "Event ledger")


def get_sync_orchestrator(request: Request) -> Any:
    return _from_state(request, "sync_orchestrator", "HubSpot sync (HUBSPOT_PRIVATE_APP_TOKEN not set)")


def get_hubspot_client(request: Request) -> Any:
    return _from_state(request, "hubspot_client", "HubSpot integration (HUBSPOT_PRIVATE_APP_TOKEN not set)")


def get_stripe_pipeline(request: Request) -> Any:
    return _from_state(request, "stripe_pipeline", "Stripe webhook pipeline")


def get_hubspot_pipeline(request: Request) -> Any:
    return _from_state(request, "hubspot_pipeline", "HubSpot webhook pipeline")
