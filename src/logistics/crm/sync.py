"""HubSpot sync orchestrator -- forward sync of orders to contacts and deals.

Flow for one order:
1. Map + validate contact properties, create the contact; a 409 conflict
   yields the existing contact id and counts as success
2. Map + validate deal properties (CRM-owned fields are never sent)
3. Update the known deal, or create one and associate it with the contact
4. Write the contact/deal ids back onto the customer/order rows (best-effort)

sync_order never raises: HubSpot failures, validation problems and unexpected
exceptions all end up in the returned SyncResult.
"""

from __future__ import annotations

from typing import Any

import structlog

from src.logistics.config import Settings
from src.logistics.core.monitoring import crm_sync_total
from src.logistics.crm.client import HubSpotAPIError, HubSpotClient, HubSpotConflictError
from src.logistics.crm.field_mapping import (
    DEFAULT_FIELD_OWNERSHIP,
    filter_outbound_properties,
    order_to_contact_properties,
    order_to_deal_properties,
)
from src.logistics.crm.schema_cache import PropertySchemaCache
from src.logistics.crm.schemas import (
    FieldOwnershipConfig,
    ObjectKind,
    OrderSyncData,
    SyncResult,
)
from src.logistics.crm.validator import validate_properties
from src.logistics.orders.repository import CustomerRepository, OrderRepository

logger = structlog.get_logger(__name__)


class HubSpotSyncOrchestrator:
    """Pushes orders to HubSpot and records the resulting ids.

    Args:
        client: HubSpot REST client.
        schema_cache: Injected property schema cache (owned by this orchestrator).
        settings: Property names, stage table, pipeline.
        orders: Order repository for loading sync data and deal id write-back.
        customers: Customer repository for contact id write-back.
        field_ownership: CRM-owned fields kept out of outbound writes.
    """

    def __init__(
        self,
        client: HubSpotClient,
        schema_cache: PropertySchemaCache,
        settings: Settings,
        orders: OrderRepository | None = None,
        customers: CustomerRepository | None = None,
        field_ownership: FieldOwnershipConfig = DEFAULT_FIELD_OWNERSHIP,
    ) -> None:
        self._client = client
        self._schema_cache = schema_cache
        self._settings = settings
        self._orders = orders
        self._customers = customers
        self._ownership = field_ownership

    @property
    def schema_cache(self) -> PropertySchemaCache:
        return self._schema_cache

    async def sync_order_by_id(self, order_id: str) -> SyncResult:
        """Load an order's sync view and push it, reusing its stored deal id."""
        if self._orders is None:
            return SyncResult(errors=["No order repository configured"])
        data = await self._orders.load_sync_data(order_id)
        if data is None:
            logger.warning("crm_sync.order_not_found", order_id=order_id)
            return SyncResult(errors=[f"Order {order_id} not found"])
        return await self.sync_order(data, existing_deal_id=data.hubspot_deal_id)

    async def sync_order(
        self, data: OrderSyncData, existing_deal_id: str | None = None
    ) -> SyncResult:
        """Create or update the contact and deal for an order.

        Args:
            data: Joined order/customer/quote/driver view.
            existing_deal_id: HubSpot deal to update instead of creating one.

        Returns:
            SyncResult; success is True once the deal write went through.
        """
        result = SyncResult()

        try:
            contact_properties = await self._validated(
                ObjectKind.CONTACTS,
                order_to_contact_properties(data, self._settings),
                "contact",
                result,
            )
            contact_id = await self._upsert_contact(contact_properties, result)
            if contact_id is not None:
                result.contact_id = contact_id

                deal_properties = await self._validated(
                    ObjectKind.DEALS,
                    filter_outbound_properties(
                        order_to_deal_properties(data, self._settings),
                        self._settings,
                        self._ownership,
                    ),
                    "deal",
                    result,
                )

                if existing_deal_id:
                    result.deal_id = await self._client.update_deal(
                        existing_deal_id, deal_properties
                    )
                else:
                    result.deal_id = await self._client.create_deal(deal_properties)
                    await self._associate(result.deal_id, contact_id, result)

                result.success = True

        except HubSpotAPIError as exc:
            logger.warning(
                "crm_sync.api_error",
                order_id=data.order_id,
                status_code=exc.status_code,
                error=exc.message,
            )
            result.errors.append(f"HubSpot API error ({exc.status_code}): {exc.message}")
        except Exception as exc:
            logger.exception("crm_sync.unexpected_error", order_id=data.order_id)
            result.errors.append(f"Unexpected sync error: {exc}")

        if result.success:
            await self._write_back(data, result)

        crm_sync_total.labels(outcome="success" if result.success else "failure").inc()
        logger.info(
            "crm_sync.completed",
            order_id=data.order_id,
            success=result.success,
            contact_id=result.contact_id,
            deal_id=result.deal_id,
            errors=len(result.errors),
            warnings=len(result.warnings),
        )
        return result

    async def _validated(
        self,
        kind: ObjectKind,
        properties: dict[str, Any],
        label: str,
        result: SyncResult,
    ) -> dict[str, Any]:
        """Validate against the cached schema, collecting messages into result."""
        try:
            definitions = await self._schema_cache.get(kind)
        except Exception as exc:
            logger.warning("crm_sync.schema_unavailable", object_kind=kind.value, error=str(exc))
            result.warnings.append(
                f"HubSpot {label} schema unavailable ({exc}); sending unvalidated properties"
            )
            return {k: v for k, v in properties.items() if v is not None}

        validation = validate_properties(properties, definitions, label)
        result.errors.extend(validation.errors)
        result.warnings.extend(validation.warnings)
        return validation.properties

    async def _upsert_contact(
        self, properties: dict[str, Any], result: SyncResult
    ) -> str | None:
        """Create-or-conflict upsert; HubSpot has no upsert-by-email for contacts."""
        if not properties.get("email"):
            result.errors.append("Contact has no valid email; cannot sync")
            return None
        try:
            return await self._client.create_contact(properties)
        except HubSpotConflictError as exc:
            if exc.existing_id:
                logger.info("crm_sync.contact_conflict", existing_id=exc.existing_id)
                return exc.existing_id
            result.errors.append(
                f"Contact already exists in HubSpot but no id was returned: {exc.message}"
            )
            return None

    async def _associate(self, deal_id: str, contact_id: str, result: SyncResult) -> None:
        try:
            await self._client.associate_deal_with_contact(deal_id, contact_id)
        except HubSpotAPIError as exc:
            logger.warning(
                "crm_sync.association_failed",
                deal_id=deal_id,
                contact_id=contact_id,
                error=exc.message,
            )
            result.warnings.append(
                f"Deal {deal_id} created but not associated with contact {contact_id}: {exc.message}"
            )

    async def _write_back(self, data: OrderSyncData, result: SyncResult) -> None:
        """Persist HubSpot ids locally. Failures are warnings; HubSpot is already correct."""
        if (
            self._customers is not None
            and result.contact_id
            and result.contact_id != data.hubspot_contact_id
        ):
            try:
                await self._customers.set_hubspot_contact_id(data.customer_id, result.contact_id)
            except Exception as exc:
                logger.warning(
                    "crm_sync.contact_write_back_failed",
                    customer_id=data.customer_id,
                    error=str(exc),
                )
                result.warnings.append(f"Failed to store HubSpot contact id: {exc}")

        if (
            self._orders is not None
            and result.deal_id
            and result.deal_id != data.hubspot_deal_id
        ):
            try:
                await self._orders.set_hubspot_deal_id(data.order_id, result.deal_id)
            except Exception as exc:
                logger.warning(
                    "crm_sync.deal_write_back_failed",
                    order_id=data.order_id,
                    error=str(exc),
                )
                result.warnings.append(f"Failed to store HubSpot deal id: {exc}")
