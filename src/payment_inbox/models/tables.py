from __future__ import annotations
from datetime import datetime, timezone
from enum import Enum
from sqlalchemy import String, Integer, DateTime, Text, JSON, Float, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column
from payment_inbox.infrastructure.db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


class BufferedEvent(Base):
    """One inbound provider event; the idempotency fence and audit record for it.

    Rows are created by ingestion, mutated only by the processing worker (and explicit
    operator actions), and never deleted.
    """
    __tablename__ = "stripe_events"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    event_type: Mapped[str] = mapped_column("type", String(255), index=True)
    payload: Mapped[str] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(16), default=EventStatus.PENDING.value, index=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    # Set while a worker holds the row in processing; lets that worker's own retry resume it
    claim_token: Mapped[str | None] = mapped_column(String(64), default=None)

    __table_args__ = (
        Index("ix_stripe_events_status_updated", "status", "updated_at"),
    )

    def to_dict(self, include_payload: bool = False) -> dict:
        data = {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
        }
        if include_payload:
            data["payload"] = self.payload
        return data


# Domain records produced by the checkout handler


class Customer(Base):
    __tablename__ = "customers"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[str] = mapped_column(String(64), index=True)
    name: Mapped[str] = mapped_column(String(255))
    email: Mapped[str | None] = mapped_column(String(255), index=True, default=None)
    phone: Mapped[str | None] = mapped_column(String(64), default=None)
    type: Mapped[str] = mapped_column(String(32), default="customer")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("ix_customers_company_email", "company_id", "email"),
    )


class Place(Base):
    __tablename__ = "places"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[str] = mapped_column(String(64), index=True)
    name: Mapped[str] = mapped_column(String(255), index=True)
    street1: Mapped[str | None] = mapped_column(String(255), default=None)
    street2: Mapped[str | None] = mapped_column(String(255), default=None)
    city: Mapped[str | None] = mapped_column(String(128), default=None)
    province: Mapped[str | None] = mapped_column(String(128), default=None)
    postal_code: Mapped[str | None] = mapped_column(String(32), default=None)
    country: Mapped[str | None] = mapped_column(String(8), default=None)
    latitude: Mapped[float] = mapped_column(Float, default=0.0)
    longitude: Mapped[float] = mapped_column(Float, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)

    def address_line(self) -> str:
        parts = [self.street1, self.city, self.province, self.postal_code, self.country]
        return ", ".join(p for p in parts if p)


class Order(Base):
    __tablename__ = "orders"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    public_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    company_id: Mapped[str] = mapped_column(String(64), index=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id"), index=True)
    pickup_place_id: Mapped[int] = mapped_column(ForeignKey("places.id"))
    dropoff_place_id: Mapped[int] = mapped_column(ForeignKey("places.id"))
    provider_session_id: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    type: Mapped[str] = mapped_column(String(32), default="default")
    status: Mapped[str] = mapped_column(String(32), default="created", index=True)
    meta: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)


class OrderItem(Base):
    __tablename__ = "order_items"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), index=True)
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(String(512), default=None)
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    amount_total: Mapped[int | None] = mapped_column(Integer, default=None)  # minor units
    currency: Mapped[str | None] = mapped_column(String(8), default=None)
