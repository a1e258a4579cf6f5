"""Tests for HubSpotSyncOrchestrator against a mocked HubSpot API."""

from __future__ import annotations

import json
from decimal import Decimal

import httpx
import pytest

from src.logistics.crm.client import HubSpotClient
from src.logistics.crm.schema_cache import PropertySchemaCache
from src.logistics.crm.schemas import ObjectKind, OrderSyncData, PropertyDefinition
from src.logistics.crm.sync import HubSpotSyncOrchestrator
from src.logistics.orders.models import CustomerModel, OrderModel
from src.logistics.orders.repository import CustomerRepository, OrderRepository
from src.logistics.orders.state_machine import OrderStatus

CONTACT_SCHEMA = [
    PropertyDefinition(name=n) for n in ("email", "firstname", "lastname", "phone")
]
DEAL_SCHEMA = [
    PropertyDefinition(name=n)
    for n in (
        "dealname",
        "pipeline",
        "dealstage",
        "order_id",
        "pickup_address",
        "dropoff_address",
        "deal_pipeline",
        "assigned_driver",
        "driver_name",
        "driver_phone",
        "vehicle_type",
        "special_delivery_instructions",
    )
] + [
    PropertyDefinition(name="amount", type="number"),
    PropertyDefinition(name="closedate", type="datetime"),
    PropertyDefinition(name="distance_miles", type="number"),
    PropertyDefinition(name="hs_object_id", type="number", read_only=True),
    PropertyDefinition(name="delivery_status", type="enumeration", field_type="select"),
]


class FakeHubSpot:
    """Routes requests by method + path and records every call."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, dict | None]] = []
        self.contact_response = httpx.Response(201, json={"id": "501"})
        self.association_status = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.calls.append((request.method, request.url.path, body))
        path = request.url.path
        if request.method == "POST" and path == "/crm/v3/objects/contacts":
            return self.contact_response
        if request.method == "POST" and path == "/crm/v3/objects/deals":
            return httpx.Response(201, json={"id": "777"})
        if request.method == "PATCH" and path.startswith("/crm/v3/objects/deals/"):
            return httpx.Response(200, json={"id": path.rsplit("/", 1)[1]})
        if request.method == "PUT" and "/associations/" in path:
            if self.association_status >= 400:
                return httpx.Response(self.association_status, json={"message": "association failed"})
            return httpx.Response(200, json={})
        return httpx.Response(404, json={"message": "not found"})

    def bodies(self, method: str, path: str) -> list[dict]:
        return [b for m, p, b in self.calls if m == method and p == path]


async def _schema(kind: ObjectKind) -> list[PropertyDefinition]:
    return CONTACT_SCHEMA if kind == ObjectKind.CONTACTS else DEAL_SCHEMA


def _data(**overrides) -> OrderSyncData:
    values = dict(
        order_id="o1",
        customer_id="c1",
        customer_email="ann@example.com",
        customer_name="Ann Smith",
        status=OrderStatus.ASSIGNED,
        price_total=Decimal("125.00"),
        pickup_address="1 Main St",
        dropoff_address="9 Elm St",
        distance_mi=4.2,
        driver_name="Dana Diaz",
        extra_properties={"special_delivery_instructions": "overwrite?", "hs_object_id": 1},
    )
    values.update(overrides)
    return OrderSyncData(**values)


@pytest.fixture
def hubspot():
    return FakeHubSpot()


@pytest.fixture
def orchestrator(hubspot, settings):
    client = HubSpotClient(
        "test-token", base_url="https://hubspot.test", transport=httpx.MockTransport(hubspot)
    )
    return HubSpotSyncOrchestrator(client, PropertySchemaCache(_schema), settings)


class TestSyncOrder:
    @pytest.mark.asyncio
    async def test_creates_contact_deal_and_association(self, orchestrator, hubspot):
        result = await orchestrator.sync_order(_data())

        assert result.success is True
        assert result.contact_id == "501"
        assert result.deal_id == "777"
        assert (
            "PUT",
            "/crm/v4/objects/deals/777/associations/default/contacts/501",
            None,
        ) in hubspot.calls

    @pytest.mark.asyncio
    async def test_crm_owned_and_read_only_fields_are_not_sent(self, orchestrator, hubspot):
        result = await orchestrator.sync_order(_data())

        (deal_body,) = hubspot.bodies("POST", "/crm/v3/objects/deals")
        properties = deal_body["properties"]
        assert "special_delivery_instructions" not in properties
        assert "hs_object_id" not in properties
        assert properties["amount"] == "125.00"
        assert properties["dealstage"] == "qualifiedtobuy"
        assert any("hs_object_id" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_existing_deal_is_updated(self, orchestrator, hubspot):
        result = await orchestrator.sync_order(_data(), existing_deal_id="901")

        assert result.success is True
        assert result.deal_id == "901"
        assert hubspot.bodies("POST", "/crm/v3/objects/deals") == []
        assert len(hubspot.bodies("PATCH", "/crm/v3/objects/deals/901")) == 1
        assert not any("/associations/" in p for _, p, _ in hubspot.calls)

    @pytest.mark.asyncio
    async def test_contact_conflict_uses_existing_id(self, orchestrator, hubspot):
        hubspot.contact_response = httpx.Response(
            409, json={"message": "Contact already exists. Existing ID: 4242"}
        )

        result = await orchestrator.sync_order(_data())

        assert result.success is True
        assert result.contact_id == "4242"

    @pytest.mark.asyncio
    async def test_conflict_without_id_fails(self, orchestrator, hubspot):
        hubspot.contact_response = httpx.Response(409, json={"message": "Conflict"})

        result = await orchestrator.sync_order(_data())

        assert result.success is False
        assert result.deal_id is None
        assert hubspot.bodies("POST", "/crm/v3/objects/deals") == []

    @pytest.mark.asyncio
    async def test_association_failure_is_a_warning(self, orchestrator, hubspot):
        hubspot.association_status = 400

        result = await orchestrator.sync_order(_data())

        assert result.success is True
        assert any("not associated" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_api_error_is_returned_not_raised(self, orchestrator, hubspot):
        hubspot.contact_response = httpx.Response(401, json={"message": "Authentication credentials not found"})

        result = await orchestrator.sync_order(_data())

        assert result.success is False
        assert result.errors == [
            "HubSpot API error (401): Authentication credentials not found"
        ]

    @pytest.mark.asyncio
    async def test_schema_unavailable_sends_unvalidated(self, hubspot, settings):
        async def broken(kind):
            raise RuntimeError("schema endpoint down")

        client = HubSpotClient(
            "test-token", base_url="https://hubspot.test", transport=httpx.MockTransport(hubspot)
        )
        orchestrator = HubSpotSyncOrchestrator(client, PropertySchemaCache(broken), settings)

        result = await orchestrator.sync_order(_data())

        assert result.success is True
        assert len(result.warnings) == 2
        (deal_body,) = hubspot.bodies("POST", "/crm/v3/objects/deals")
        assert "special_delivery_instructions" not in deal_body["properties"]


class TestSyncOrderById:
    @pytest.mark.asyncio
    async def test_writes_ids_back(self, hubspot, settings, session_factory, seeded, insert_rows):
        await insert_rows(
            CustomerModel(id="c2", email="bo@example.com", name="Bo Jones"),
            OrderModel(
                id="o2",
                status=OrderStatus.READY_FOR_DISPATCH.value,
                price_total=Decimal("40.00"),
                currency="usd",
                customer_id="c2",
                quote_id="q1",
                stripe_checkout_session_id="cs_test_o2",
            ),
        )
        orders = OrderRepository(session_factory)
        customers = CustomerRepository(session_factory)
        client = HubSpotClient(
            "test-token", base_url="https://hubspot.test", transport=httpx.MockTransport(hubspot)
        )
        orchestrator = HubSpotSyncOrchestrator(
            client, PropertySchemaCache(_schema), settings, orders=orders, customers=customers
        )

        result = await orchestrator.sync_order_by_id("o2")

        assert result.success is True
        assert (await orders.get("o2")).hubspot_deal_id == "777"
        assert (await customers.get("c2")).hubspot_contact_id == "501"

    @pytest.mark.asyncio
    async def test_known_deal_is_patched(self, hubspot, settings, session_factory, seeded):
        orchestrator = HubSpotSyncOrchestrator(
            HubSpotClient(
                "test-token",
                base_url="https://hubspot.test",
                transport=httpx.MockTransport(hubspot),
            ),
            PropertySchemaCache(_schema),
            settings,
            orders=OrderRepository(session_factory),
            customers=CustomerRepository(session_factory),
        )

        result = await orchestrator.sync_order_by_id("o1")

        assert result.deal_id == "901"
        assert len(hubspot.bodies("PATCH", "/crm/v3/objects/deals/901")) == 1

    @pytest.mark.asyncio
    async def test_missing_order(self, orchestrator):
        result = await orchestrator.sync_order_by_id("nope")
        assert result.success is False
