from __future__ import annotations
import logging
from sqlalchemy import select
from sqlalchemy.orm import Session
from payment_inbox.handlers import HandlerError
from payment_inbox.infrastructure import db
from payment_inbox.models.tables import Customer

logger = logging.getLogger(__name__)

DEFAULT_CUSTOMER_NAME = "Stripe Customer"


def find_or_create_customer(session: Session, company_id: str, name: str | None, email: str | None, phone: str | None) -> Customer:
    if email:
        existing = session.execute(
            select(Customer).where(Customer.company_id == company_id, Customer.email == email)
        ).scalars().first()
        if existing is not None:
            return existing
    customer = Customer(
        company_id=company_id,
        name=name or DEFAULT_CUSTOMER_NAME,
        email=email,
        phone=phone,
        type="customer",
    )
    session.add(customer)
    session.flush()
    return customer


class CustomerCreatedHandler:
    """``customer.created``: mirror the provider customer as a contact of the target company."""

    def __init__(self, company_id: str | None):
        self.company_id = company_id

    def __call__(self, event_type: str, data: dict):
        obj = (data.get("data") or {}).get("object")
        if not isinstance(obj, dict):
            raise HandlerError("payload data.object missing")
        if not self.company_id:
            raise HandlerError("STRIPE_TARGET_COMPANY_ID is not configured")
        with db.SessionLocal() as session, session.begin():
            customer = find_or_create_customer(session, self.company_id, obj.get("name"), obj.get("email"), obj.get("phone"))
            logger.info("Customer %s synced for company %s", customer.id, self.company_id)
        return None
