"""Domain side-effect handlers, dispatched on the provider event type.

A handler is any callable ``(event_type, data) -> HandlerResult | None`` that raises on
failure. Handlers are not required to be idempotent, but they do run again when the
buffer could not record a success, so the ones that create records check for their own
earlier output first.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Callable
from payment_inbox.config import Settings, get_settings
from payment_inbox.infrastructure.notifications import Notification

logger = logging.getLogger(__name__)


class HandlerError(Exception):
    """A domain handler could not apply an event."""


@dataclass
class HandlerResult:
    notifications: list[Notification] = field(default_factory=list)


EventHandler = Callable[[str, dict], "HandlerResult | None"]


class HandlerRegistry:
    def __init__(self):
        self._handlers: dict[str, EventHandler] = {}

    def register(self, event_type: str, handler: EventHandler) -> None:
        self._handlers[event_type] = handler

    def handles(self, event_type: str) -> bool:
        return event_type in self._handlers

    def dispatch(self, event_type: str, data: dict) -> HandlerResult:
        handler = self._handlers.get(event_type)
        if handler is None:
            logger.info("Handling generic or unhandled event type: %s", event_type)
            return HandlerResult()
        return handler(event_type, data) or HandlerResult()


def build_registry(settings: Settings | None = None) -> HandlerRegistry:
    """Registry wired with the configured tenant; handlers never read settings themselves."""
    from payment_inbox.handlers.checkout import CheckoutSessionHandler
    from payment_inbox.handlers.customer import CustomerCreatedHandler
    from payment_inbox.infrastructure.geocoding import Geocoder

    s = settings or get_settings()
    registry = HandlerRegistry()
    registry.register(
        "checkout.session.completed",
        CheckoutSessionHandler(
            company_id=s.target_company_id,
            geocoder=Geocoder(s.google_maps_api_key, timeout=s.geocode_timeout_seconds),
        ),
    )
    registry.register("customer.created", CustomerCreatedHandler(company_id=s.target_company_id))
    return registry
