"""HTTP-level tests for the v1 API.

The app is built with create_app() and its services wired onto app.state
against the SQLite test database; the lifespan is not run.
"""

from __future__ import annotations

import json
import time
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio

from src.logistics.config import Settings
from src.logistics.crm.client import HubSpotClient
from src.logistics.main import create_app, wire_services
from src.logistics.orders.models import OrderModel
from src.logistics.orders.state_machine import OrderStatus
from src.logistics.webhooks.hubspot_provider import compute_v3_signature

BASE_URL = "http://test"
HUBSPOT_WEBHOOK_URL = f"{BASE_URL}/api/v1/webhooks/hubspot"


@pytest.fixture
def api_settings() -> Settings:
    # No HubSpot token: forward sync stays off so nothing leaves the process
    return Settings(
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        STRIPE_WEBHOOK_SECRET="whsec_test",
        HUBSPOT_WEBHOOK_SECRET="hubspot-secret",
    )


@pytest_asyncio.fixture
async def app(session_factory, seeded, api_settings):
    application = create_app()
    wire_services(application, api_settings, session_factory)
    return application


@pytest_asyncio.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url=BASE_URL) as ac:
        yield ac


def _hubspot_headers(body: bytes) -> dict[str, str]:
    timestamp = str(int(time.time() * 1000))
    return {
        "Content-Type": "application/json",
        "X-HubSpot-Signature-v3": compute_v3_signature(
            "hubspot-secret", "POST", HUBSPOT_WEBHOOK_URL, body, timestamp
        ),
        "X-HubSpot-Request-Timestamp": timestamp,
    }


class TestAuth:
    @pytest.mark.asyncio
    async def test_missing_token_is_401(self, client):
        response = await client.get("/api/v1/orders")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_unknown_role_is_401(self, client, auth_headers):
        response = await client.get("/api/v1/orders", headers=auth_headers("superuser"))
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_driver_cannot_assign(self, client, auth_headers):
        response = await client.post(
            "/api/v1/orders/o1/assign",
            json={"driver_id": "d1"},
            headers=auth_headers("driver", driver_id="d1"),
        )
        assert response.status_code == 403


class TestOrderReads:
    @pytest.mark.asyncio
    async def test_dispatcher_sees_commercial_fields(self, client, auth_headers):
        response = await client.get("/api/v1/orders/o1", headers=auth_headers("dispatcher"))

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ReadyForDispatch"
        assert body["customer_id"] == "c1"
        assert body["hubspot_deal_id"] is None
        assert set(body["hubspot_metadata"]) == {
            "special_delivery_instructions",
            "recurring_frequency",
            "rush_requested",
        }

    @pytest.mark.asyncio
    async def test_recipient_sees_own_order_only(self, client, auth_headers):
        own = await client.get(
            "/api/v1/orders/o1", headers=auth_headers("recipient", customer_id="c1")
        )
        other = await client.get(
            "/api/v1/orders/o1", headers=auth_headers("recipient", customer_id="c9")
        )

        assert own.status_code == 200
        assert own.json()["hubspot_metadata"] == {
            "special_delivery_instructions": "Leave at back door"
        }
        assert other.status_code == 404

    @pytest.mark.asyncio
    async def test_driver_list_is_scoped_to_assignments(self, client, auth_headers):
        before = await client.get("/api/v1/orders", headers=auth_headers("driver", driver_id="d1"))
        await client.post(
            "/api/v1/orders/o1/assign",
            json={"driver_id": "d1"},
            headers=auth_headers("dispatcher"),
        )
        after = await client.get("/api/v1/orders", headers=auth_headers("driver", driver_id="d1"))

        assert before.json() == []
        (order,) = after.json()
        assert order["id"] == "o1"
        assert order["price_total"] is None

    @pytest.mark.asyncio
    async def test_unknown_order_is_404(self, client, auth_headers):
        response = await client.get("/api/v1/orders/nope", headers=auth_headers("admin"))
        assert response.status_code == 404


class TestOrderActions:
    @pytest.mark.asyncio
    async def test_assign_then_driver_progression(self, client, auth_headers):
        assigned = await client.post(
            "/api/v1/orders/o1/assign",
            json={"driver_id": "d1"},
            headers=auth_headers("dispatcher"),
        )
        accepted = await client.patch(
            "/api/v1/orders/o1/status",
            json={"status": "Accepted"},
            headers=auth_headers("driver", driver_id="d1"),
        )

        assert assigned.status_code == 200
        assert assigned.json()["order"]["status"] == "Assigned"
        assert assigned.json()["event_id"] == "o1:driver_assigned:d1"
        assert accepted.status_code == 200
        assert accepted.json()["previous_status"] == "Assigned"

        events = await client.get("/api/v1/orders/o1/events", headers=auth_headers("admin"))
        assert [e["source"] for e in events.json()] == ["dispatcher", "driver"]

    @pytest.mark.asyncio
    async def test_other_driver_cannot_update(self, client, auth_headers):
        await client.post(
            "/api/v1/orders/o1/assign",
            json={"driver_id": "d1"},
            headers=auth_headers("dispatcher"),
        )

        response = await client.patch(
            "/api/v1/orders/o1/status",
            json={"status": "Accepted"},
            headers=auth_headers("driver", driver_id="d2"),
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_transition_is_409(self, client, auth_headers):
        response = await client.patch(
            "/api/v1/orders/o1/status",
            json={"status": "Delivered"},
            headers=auth_headers("dispatcher"),
        )
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_unknown_driver_is_404(self, client, auth_headers):
        response = await client.post(
            "/api/v1/orders/o1/assign",
            json={"driver_id": "ghost"},
            headers=auth_headers("dispatcher"),
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_cancel(self, client, auth_headers):
        response = await client.post(
            "/api/v1/orders/o1/cancel",
            json={"reason": "duplicate booking"},
            headers=auth_headers("admin"),
        )
        assert response.status_code == 200
        assert response.json()["order"]["status"] == "Canceled"

    @pytest.mark.asyncio
    async def test_sync_without_hubspot_is_503(self, client, auth_headers):
        response = await client.post("/api/v1/orders/o1/sync-hubspot", headers=auth_headers("admin"))
        assert response.status_code == 503


class TestHubSpotRecord:
    @pytest.mark.asyncio
    async def test_admin_only(self, client, auth_headers):
        response = await client.get("/api/v1/orders/o1/hubspot", headers=auth_headers("dispatcher"))
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_unsynced_order_has_no_hubspot_data(self, client, auth_headers, insert_rows):
        await insert_rows(
            OrderModel(
                id="o2",
                status=OrderStatus.READY_FOR_DISPATCH.value,
                price_total=Decimal("40.00"),
                currency="usd",
                customer_id="c1",
                quote_id="q1",
                stripe_checkout_session_id="cs_test_o2",
            )
        )

        response = await client.get("/api/v1/orders/o2/hubspot", headers=auth_headers("admin"))

        assert response.status_code == 200
        body = response.json()
        assert body["hubspot_deal_id"] is None
        assert body["hubspot_data"] is None
        assert body["message"] == "Order not synced to HubSpot"

    @pytest.mark.asyncio
    async def test_without_hubspot_is_503(self, client, auth_headers):
        response = await client.get("/api/v1/orders/o1/hubspot", headers=auth_headers("admin"))
        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_fetches_live_deal_and_contact(self, app, client, auth_headers):
        paths: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            if request.url.path == "/crm/v3/objects/deals/901":
                return httpx.Response(
                    200, json={"id": "901", "properties": {"dealstage": "closedwon"}}
                )
            return httpx.Response(200, json={"id": "501", "properties": {"email": "ann@example.com"}})

        app.state.hubspot_client = HubSpotClient(
            "test-token", base_url="https://hubspot.test", transport=httpx.MockTransport(handler)
        )

        response = await client.get("/api/v1/orders/o1/hubspot", headers=auth_headers("admin"))
        await app.state.hubspot_client.close()

        assert response.status_code == 200
        body = response.json()
        assert body["hubspot_deal_id"] == "901"
        assert body["hubspot_data"]["deal"]["properties"] == {"dealstage": "closedwon"}
        assert body["hubspot_data"]["contact"]["id"] == "501"
        assert body["cached_metadata"]["recurring_frequency"] == "weekly"
        assert paths == ["/crm/v3/objects/deals/901", "/crm/v3/objects/contacts/501"]


class TestDriversAndCustomers:
    @pytest.mark.asyncio
    async def test_driver_availability(self, client, auth_headers):
        await client.post(
            "/api/v1/orders/o1/assign",
            json={"driver_id": "d1"},
            headers=auth_headers("dispatcher"),
        )

        response = await client.get(
            "/api/v1/drivers", params={"available_only": True}, headers=auth_headers("dispatcher")
        )

        assert [d["id"] for d in response.json()] == ["d2"]

    @pytest.mark.asyncio
    async def test_customer_upsert_by_email(self, client, auth_headers):
        response = await client.post(
            "/api/v1/customers",
            json={"email": " ANN@example.com", "name": "Ann B. Smith"},
            headers=auth_headers("dispatcher"),
        )

        assert response.status_code == 200
        assert response.json()["id"] == "c1"
        assert response.json()["name"] == "Ann B. Smith"


class TestWebhookRoutes:
    @pytest.mark.asyncio
    async def test_stripe_bad_signature_is_401(self, client):
        response = await client.post(
            "/api/v1/webhooks/stripe",
            content=b"{}",
            headers={"Stripe-Signature": "t=1,v1=deadbeef"},
        )
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid signature"

    @pytest.mark.asyncio
    async def test_hubspot_single_then_duplicate(self, client):
        body = json.dumps(
            {
                "eventId": 77,
                "subscriptionType": "deal.propertyChange",
                "objectId": 901,
                "propertyName": "rush_requested",
                "propertyValue": "false",
            }
        ).encode()

        first = await client.post(
            "/api/v1/webhooks/hubspot", content=body, headers=_hubspot_headers(body)
        )
        second = await client.post(
            "/api/v1/webhooks/hubspot", content=body, headers=_hubspot_headers(body)
        )

        assert first.status_code == 200
        assert first.json() == {"message": "Webhook processed successfully", "eventId": "77"}
        assert second.json() == {"message": "Event already processed", "eventId": "77"}

    @pytest.mark.asyncio
    async def test_hubspot_malformed_is_400(self, client):
        body = b"[]"
        response = await client.post(
            "/api/v1/webhooks/hubspot", content=body, headers=_hubspot_headers(body)
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_hubspot_subscriptions(self, client):
        response = await client.get("/api/v1/webhooks/hubspot")
        assert response.json()["subscriptions"] == ["contact.propertyChange", "deal.propertyChange"]


class TestHealth:
    @pytest.mark.asyncio
    async def test_liveness(self, client):
        response = await client.get("/api/v1/health")
        assert response.json()["status"] == "ok"

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, client):
        response = await client.get("/api/v1/health", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"
