"""``checkout.session.completed``: turn a paid checkout session into a delivery order.

Creates (or reuses) the customer, a dropoff place from the shipping/billing address, picks
a pickup place for the company, then the order with its items. An order already linked to
the session id means an earlier run got that far, so the handler creates nothing and only
repeats the ``order.ready`` announcement.
"""
from __future__ import annotations
import logging
import uuid
from sqlalchemy import or_, select
from sqlalchemy.orm import Session
from payment_inbox.handlers import HandlerError, HandlerResult
from payment_inbox.handlers.customer import DEFAULT_CUSTOMER_NAME, find_or_create_customer
from payment_inbox.infrastructure import db
from payment_inbox.infrastructure.geocoding import Geocoder
from payment_inbox.infrastructure.notifications import Notification
from payment_inbox.models.tables import Customer, Order, OrderItem, Place

logger = logging.getLogger(__name__)

DEFAULT_PICKUP_NAME = "Default Store"
DEFAULT_ITEM_NAME = "Stripe Order Item"


def company_channel(company_id: str) -> str:
    return f"company.{company_id}"


def _address_fields(address: dict) -> dict:
    return {
        "street1": address.get("line1"),
        "street2": address.get("line2"),
        "city": address.get("city"),
        "province": address.get("state"),
        "postal_code": address.get("postal_code"),
        "country": address.get("country"),
    }


class CheckoutSessionHandler:
    def __init__(self, company_id: str | None, geocoder: Geocoder | None = None):
        self.company_id = company_id
        self.geocoder = geocoder

    def __call__(self, event_type: str, data: dict) -> HandlerResult:
        checkout = (data.get("data") or {}).get("object")
        if not isinstance(checkout, dict):
            raise HandlerError("payload data.object missing")
        session_id = checkout.get("id")
        if not session_id:
            raise HandlerError("checkout session has no id")
        if not self.company_id:
            raise HandlerError("STRIPE_TARGET_COMPANY_ID is not configured")

        customer_details = checkout.get("customer_details") or {}
        shipping_details = checkout.get("shipping_details") or {}
        name = customer_details.get("name") or DEFAULT_CUSTOMER_NAME
        address = shipping_details.get("address") or customer_details.get("address")

        dropoff = Place(company_id=self.company_id, name=name, latitude=0.0, longitude=0.0)
        if address:
            for attr, value in _address_fields(address).items():
                setattr(dropoff, attr, value)
            # Resolved before the transaction opens so no lock is held across the HTTP call
            if self.geocoder is not None:
                point = self.geocoder.geocode(dropoff.address_line())
                if point:
                    dropoff.latitude, dropoff.longitude = point

        with db.SessionLocal() as session, session.begin():
            existing = session.execute(
                select(Order).where(Order.provider_session_id == session_id)
            ).scalars().first()
            if existing is not None:
                # An earlier run created the order but its event was never marked done, so the
                # announcement may not have gone out either
                logger.info("Order for Stripe Session %s already exists. Skipping creation.", session_id)
                return HandlerResult(notifications=[self._order_ready(
                    existing, session.get(Customer, existing.customer_id), session.get(Place, existing.dropoff_place_id)
                )])
            customer = find_or_create_customer(
                session, self.company_id, name, customer_details.get("email"), customer_details.get("phone")
            )
            session.add(dropoff)
            pickup = self._pickup_place(session)
            session.flush()
            order = Order(
                public_id=f"order_{uuid.uuid4().hex[:12]}",
                company_id=self.company_id,
                customer_id=customer.id,
                pickup_place_id=pickup.id,
                dropoff_place_id=dropoff.id,
                provider_session_id=session_id,
                type="default",
                status="created",
                meta={"stripe_session_id": session_id, "payment_intent": checkout.get("payment_intent")},
            )
            session.add(order)
            session.flush()
            session.add_all(self._items(order, checkout))
            notification = self._order_ready(order, customer, dropoff)
        logger.info("Order created successfully: %s for company %s", order.public_id, self.company_id)
        return HandlerResult(notifications=[notification])

    @staticmethod
    def _order_ready(order: Order, customer: Customer | None, dropoff: Place | None) -> Notification:
        return Notification(
            channel=company_channel(order.company_id),
            event="order.ready",
            data={
                "order_id": order.public_id,
                "company_id": order.company_id,
                "status": order.status,
                "customer": {
                    "id": customer.id if customer else order.customer_id,
                    "name": customer.name if customer else None,
                    "email": customer.email if customer else None,
                },
                "dropoff": dropoff.address_line() if dropoff else None,
                "provider_session_id": order.provider_session_id,
            },
        )

    def _pickup_place(self, session: Session) -> Place:
        """Named store or warehouse, else the company's oldest place, else a created default."""
        named = session.execute(
            select(Place)
            .where(Place.company_id == self.company_id)
            .where(or_(Place.name.like("%Store%"), Place.name.like("%Warehouse%")))
            .order_by(Place.created_at, Place.id)
        ).scalars().first()
        if named is not None:
            return named
        oldest = session.execute(
            select(Place).where(Place.company_id == self.company_id).order_by(Place.created_at, Place.id)
        ).scalars().first()
        if oldest is not None:
            return oldest
        place = Place(company_id=self.company_id, name=DEFAULT_PICKUP_NAME, latitude=0.0, longitude=0.0)
        session.add(place)
        return place

    @staticmethod
    def _items(order: Order, checkout: dict) -> list[OrderItem]:
        line_items = (checkout.get("line_items") or {}).get("data") or []
        if not line_items:
            return [OrderItem(
                order_id=order.id,
                name=DEFAULT_ITEM_NAME,
                description="Order from Stripe Checkout",
                quantity=1,
                amount_total=checkout.get("amount_total"),
                currency=checkout.get("currency"),
            )]
        return [
            OrderItem(
                order_id=order.id,
                name=(li.get("description") or DEFAULT_ITEM_NAME)[:255],
                description=li.get("description"),
                quantity=li.get("quantity") or 1,
                amount_total=li.get("amount_total"),
                currency=li.get("currency") or checkout.get("currency"),
            )
            for li in line_items
        ]
