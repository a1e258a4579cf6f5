"""Tests for forward HubSpot property mapping and field ownership."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from src.logistics.config import Settings
from src.logistics.crm.field_mapping import (
    CRM_OWNED_FIELDS,
    filter_outbound_properties,
    format_currency,
    format_date,
    format_phone,
    map_status_to_stage,
    order_to_contact_properties,
    order_to_deal_properties,
    property_name,
    split_name,
)
from src.logistics.crm.schemas import FieldOwnershipConfig, OrderSyncData
from src.logistics.orders.state_machine import OrderStatus

S = OrderStatus


def _data(**overrides) -> OrderSyncData:
    values = dict(
        order_id="0b5e7c1a-1111-2222-3333-444455556666",
        customer_id="c1",
        customer_email="  Ann@Example.COM ",
        customer_name="Ann Marie Smith",
        customer_phone="+1 (555) 123-4567",
        status=S.ASSIGNED,
        price_total=Decimal("125"),
        pickup_address="1 Main St",
        dropoff_address="9 Elm St",
        distance_mi=4.256,
        driver_name="Dana Diaz",
        driver_phone="555-0101",
        vehicle_type="van",
    )
    values.update(overrides)
    return OrderSyncData(**values)


class TestTransformers:
    def test_format_currency_fixes_two_decimals(self):
        assert format_currency(Decimal("125")) == "125.00"
        assert format_currency(19.999) == "20.00"
        assert format_currency("7.5") == "7.50"

    def test_format_date_is_iso_utc(self):
        assert format_date(datetime(2026, 1, 2, 3, 4, 5)) == "2026-01-02T03:04:05Z"
        assert format_date("2026-01-02T03:04:05+00:00") == "2026-01-02T03:04:05Z"

    def test_format_phone_keeps_leading_plus(self):
        assert format_phone("+1 (555) 123-4567") == "+15551234567"
        assert format_phone("555.010.1111") == "5550101111"

    def test_split_name(self):
        assert split_name("Ann Marie Smith") == ("Ann", "Marie Smith")
        assert split_name("Cher") == ("Cher", None)
        assert split_name("  ") == (None, None)


class TestStageMapping:
    @pytest.mark.parametrize(
        "status,stage",
        [
            (S.READY_FOR_DISPATCH, "appointmentscheduled"),
            (S.ASSIGNED, "qualifiedtobuy"),
            (S.ACCEPTED, "qualifiedtobuy"),
            (S.PICKED_UP, "presentationscheduled"),
            (S.IN_TRANSIT, "presentationscheduled"),
            (S.DELIVERED, "closedwon"),
            (S.CANCELED, "closedlost"),
        ],
    )
    def test_default_stage_table(self, status, stage):
        assert map_status_to_stage(status, Settings()) == stage

    def test_stage_ids_are_configurable(self):
        settings = Settings(HUBSPOT_STAGE_DELIVERED="12345")
        assert map_status_to_stage(S.DELIVERED, settings) == "12345"


class TestContactProperties:
    def test_contact_mapping(self):
        properties = order_to_contact_properties(_data(), Settings())

        assert properties == {
            "email": "ann@example.com",
            "firstname": "Ann",
            "lastname": "Marie Smith",
            "phone": "+15551234567",
        }

    def test_missing_values_are_omitted(self):
        properties = order_to_contact_properties(
            _data(customer_name=None, customer_phone=None), Settings()
        )
        assert properties == {"email": "ann@example.com"}


class TestDealProperties:
    def test_deal_mapping(self):
        now = datetime(2026, 3, 1, tzinfo=timezone.utc)
        properties = order_to_deal_properties(_data(), Settings(), now=now)

        assert properties["dealname"] == "Delivery Order - 0b5e7c1a"
        assert properties["amount"] == "125.00"
        assert properties["pipeline"] == "default"
        assert properties["dealstage"] == "qualifiedtobuy"
        assert properties["closedate"] == "2026-03-31T00:00:00Z"
        assert properties["distance_miles"] == 4.26
        assert properties["driver_phone"] == "5550101"
        assert properties["delivery_status"] == "assigned"

    def test_crm_owned_fields_are_never_emitted(self):
        data = _data(
            extra_properties={
                "special_delivery_instructions": "ring twice",
                "rush_requested": "true",
                "recurring_frequency": "weekly",
                "promo_code": "SPRING",
            }
        )
        properties = order_to_deal_properties(data, Settings())

        assert CRM_OWNED_FIELDS.isdisjoint(properties)
        assert properties["promo_code"] == "SPRING"

    def test_property_overrides_rename_properties(self):
        settings = Settings(
            HUBSPOT_PROPERTY_OVERRIDES={
                "pickup_address": "pickup_location__c",
                "special_delivery_instructions": "sdi__c",
            }
        )
        properties = order_to_deal_properties(
            _data(extra_properties={"sdi__c": "from extra"}), settings
        )

        assert property_name("pickup_address", settings) == "pickup_location__c"
        assert properties["pickup_location__c"] == "1 Main St"
        assert "pickup_address" not in properties
        # Overridden CRM-owned name is still filtered
        assert "sdi__c" not in properties


class TestFilterOutbound:
    def test_drops_only_crm_owned(self):
        filtered = filter_outbound_properties(
            {"dealname": "x", "rush_requested": "true", "amount": "1.00"}, Settings()
        )
        assert filtered == {"dealname": "x", "amount": "1.00"}

    def test_custom_ownership_is_honoured(self):
        ownership = FieldOwnershipConfig(crm_owned_fields=["amount"])

        filtered = filter_outbound_properties(
            {"dealname": "x", "rush_requested": "true", "amount": "1.00"}, Settings(), ownership
        )

        assert filtered == {"dealname": "x", "rush_requested": "true"}
