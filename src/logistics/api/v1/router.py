"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.logistics.api.v1 import crm, customers, drivers, health, orders, webhooks

router = APIRouter(prefix="/api/v1")

router.include_router(health.router)
router.include_router(webhooks.router)
router.include_router(orders.router)
router.include_router(drivers.router)
router.include_router(customers.router)
router.include_router(crm.router)
