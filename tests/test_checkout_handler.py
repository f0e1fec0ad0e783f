"""Tests for the domain handlers: checkout sessions become orders, customers are mirrored."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from sqlalchemy import select

from payment_inbox.handlers import HandlerError, build_registry
from payment_inbox.handlers.checkout import CheckoutSessionHandler, company_channel
from payment_inbox.handlers.customer import CustomerCreatedHandler
from payment_inbox.infrastructure import db
from payment_inbox.models.tables import Customer, Order, OrderItem, Place

COMPANY = "company_acme"


def _checkout_event(session_id="cs_test_1", **overrides) -> dict:
    obj = {
        "id": session_id,
        "payment_intent": "pi_123",
        "amount_total": 4599,
        "currency": "usd",
        "customer_details": {
            "name": "Ada Lovelace",
            "email": "ada@example.com",
            "phone": "+15550100",
            "address": {"line1": "1 Billing Rd", "city": "London", "postal_code": "N1", "country": "GB"},
        },
        "shipping_details": {
            "address": {"line1": "12 Ship St", "city": "Leeds", "state": "WY", "postal_code": "LS1", "country": "GB"},
        },
    }
    obj.update(overrides)
    return {"id": "evt_1", "type": "checkout.session.completed", "data": {"object": obj}}


def _all(model):
    with db.SessionLocal() as session:
        return list(session.execute(select(model).order_by(model.id)).scalars())


def _add_place(name: str, company_id: str = COMPANY) -> Place:
    with db.SessionLocal() as session, session.begin():
        place = Place(company_id=company_id, name=name, latitude=0.0, longitude=0.0)
        session.add(place)
    return place


class TestCheckoutSessionHandler:
    def test_creates_order_graph_and_notification(self, engine):
        result = CheckoutSessionHandler(COMPANY)("checkout.session.completed", _checkout_event())

        [order] = _all(Order)
        assert order.company_id == COMPANY
        assert order.provider_session_id == "cs_test_1"
        assert order.public_id.startswith("order_")
        assert order.meta == {"stripe_session_id": "cs_test_1", "payment_intent": "pi_123"}

        [customer] = _all(Customer)
        assert (customer.name, customer.email, customer.phone) == ("Ada Lovelace", "ada@example.com", "+15550100")
        assert order.customer_id == customer.id

        places = {p.id: p for p in _all(Place)}
        dropoff = places[order.dropoff_place_id]
        assert dropoff.street1 == "12 Ship St"  # shipping address wins over billing
        assert dropoff.city == "Leeds"
        assert places[order.pickup_place_id].name == "Default Store"

        [item] = _all(OrderItem)
        assert (item.name, item.quantity, item.amount_total, item.currency) == ("Stripe Order Item", 1, 4599, "usd")

        [notification] = result.notifications
        assert notification.channel == company_channel(COMPANY) == "company.company_acme"
        assert notification.event == "order.ready"
        assert notification.data["order_id"] == order.public_id
        assert notification.data["customer"]["email"] == "ada@example.com"

    def test_second_run_for_same_session_creates_nothing(self, engine):
        handler = CheckoutSessionHandler(COMPANY)
        handler("checkout.session.completed", _checkout_event())
        handler("checkout.session.completed", _checkout_event())
        assert len(_all(Order)) == 1
        assert len(_all(Customer)) == 1
        assert len(_all(Place)) == 2
        assert len(_all(OrderItem)) == 1

    def test_second_run_repeats_order_ready_announcement(self, engine):
        handler = CheckoutSessionHandler(COMPANY)
        first = handler("checkout.session.completed", _checkout_event())
        again = handler("checkout.session.completed", _checkout_event())
        [original] = first.notifications
        [repeated] = again.notifications
        assert repeated.channel == original.channel == "company.company_acme"
        assert repeated.event == "order.ready"
        assert repeated.data == original.data

    def test_existing_customer_reused_by_email(self, engine):
        handler = CheckoutSessionHandler(COMPANY)
        handler("checkout.session.completed", _checkout_event("cs_1"))
        handler("checkout.session.completed", _checkout_event("cs_2"))
        assert len(_all(Customer)) == 1
        assert len(_all(Order)) == 2

    def test_billing_address_used_without_shipping(self, engine):
        CheckoutSessionHandler(COMPANY)("checkout.session.completed", _checkout_event(shipping_details=None))
        [order] = _all(Order)
        dropoff = {p.id: p for p in _all(Place)}[order.dropoff_place_id]
        assert dropoff.street1 == "1 Billing Rd"

    def test_pickup_prefers_store_or_warehouse(self, engine):
        _add_place("Back Office")
        warehouse = _add_place("North Warehouse")
        _add_place("Other Tenant Store", company_id="company_other")
        CheckoutSessionHandler(COMPANY)("checkout.session.completed", _checkout_event())
        [order] = _all(Order)
        assert order.pickup_place_id == warehouse.id

    def test_pickup_falls_back_to_oldest_place(self, engine):
        first = _add_place("Back Office")
        _add_place("Front Desk")
        CheckoutSessionHandler(COMPANY)("checkout.session.completed", _checkout_event())
        [order] = _all(Order)
        assert order.pickup_place_id == first.id

    def test_line_items_become_order_items(self, engine):
        line_items = {"data": [
            {"description": "Blue mug", "quantity": 2, "amount_total": 2000},
            {"description": "Tea", "quantity": 1, "amount_total": 599, "currency": "gbp"},
        ]}
        CheckoutSessionHandler(COMPANY)("checkout.session.completed", _checkout_event(line_items=line_items))
        items = _all(OrderItem)
        assert [(i.name, i.quantity, i.currency) for i in items] == [("Blue mug", 2, "usd"), ("Tea", 1, "gbp")]

    def test_geocoder_sets_dropoff_coordinates(self, engine):
        geocoder = MagicMock()
        geocoder.geocode.return_value = (53.8, -1.55)
        CheckoutSessionHandler(COMPANY, geocoder=geocoder)("checkout.session.completed", _checkout_event())
        geocoder.geocode.assert_called_once_with("12 Ship St, Leeds, WY, LS1, GB")
        [order] = _all(Order)
        dropoff = {p.id: p for p in _all(Place)}[order.dropoff_place_id]
        assert (dropoff.latitude, dropoff.longitude) == (53.8, -1.55)

    def test_geocoder_miss_keeps_default_coordinates(self, engine):
        geocoder = MagicMock()
        geocoder.geocode.return_value = None
        CheckoutSessionHandler(COMPANY, geocoder=geocoder)("checkout.session.completed", _checkout_event())
        [order] = _all(Order)
        dropoff = {p.id: p for p in _all(Place)}[order.dropoff_place_id]
        assert (dropoff.latitude, dropoff.longitude) == (0.0, 0.0)

    def test_missing_company_raises(self, engine):
        with pytest.raises(HandlerError, match="STRIPE_TARGET_COMPANY_ID"):
            CheckoutSessionHandler(None)("checkout.session.completed", _checkout_event())
        assert _all(Order) == []

    @pytest.mark.parametrize("data", [{}, {"data": {}}, {"data": {"object": {"amount_total": 1}}}])
    def test_malformed_payload_raises(self, engine, data):
        with pytest.raises(HandlerError):
            CheckoutSessionHandler(COMPANY)("checkout.session.completed", data)


class TestCustomerCreatedHandler:
    def _event(self, **obj):
        return {"id": "evt_c", "type": "customer.created", "data": {"object": {"id": "cus_1", **obj}}}

    def test_creates_customer(self, engine):
        assert CustomerCreatedHandler(COMPANY)("customer.created", self._event(name="Grace", email="g@example.com")) is None
        [customer] = _all(Customer)
        assert (customer.company_id, customer.name, customer.email) == (COMPANY, "Grace", "g@example.com")

    def test_idempotent_by_email(self, engine):
        handler = CustomerCreatedHandler(COMPANY)
        handler("customer.created", self._event(email="g@example.com"))
        handler("customer.created", self._event(email="g@example.com"))
        [customer] = _all(Customer)
        assert customer.name == "Stripe Customer"

    def test_missing_company_raises(self, engine):
        with pytest.raises(HandlerError):
            CustomerCreatedHandler(None)("customer.created", self._event(email="g@example.com"))


class TestBuildRegistry:
    def test_wires_configured_company(self, monkeypatch):
        monkeypatch.setenv("STRIPE_TARGET_COMPANY_ID", COMPANY)
        registry = build_registry()
        assert registry.handles("checkout.session.completed")
        assert registry.handles("customer.created")
        assert not registry.handles("invoice.paid")
        assert registry.dispatch("invoice.paid", {}).notifications == []
