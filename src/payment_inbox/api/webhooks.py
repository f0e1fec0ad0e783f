from __future__ import annotations
import logging
from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from prometheus_client import Counter
from payment_inbox.config import get_settings
from payment_inbox.infrastructure.event_buffer import StorageError
from payment_inbox.ingestion import EnqueueError, buffer_event
from payment_inbox.security.stripe_signature import PayloadError, SignatureVerificationError, construct_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

WEBHOOK_REQUESTS = Counter('webhook_requests_total', 'Inbound webhook requests', ['outcome'])


def _audit(event_type: str, event_id: str, outcome: str) -> None:
    WEBHOOK_REQUESTS.labels(outcome=outcome).inc()
    logger.info("WEBHOOK_AUDIT event=%s id=%s outcome=%s", event_type, event_id, outcome)


@router.post("/stripe")
async def stripe_webhook(request: Request, stripe_signature: str | None = Header(None, alias="Stripe-Signature")):
    """Verify, buffer and acknowledge. Processing happens later on the worker lane."""
    settings = get_settings()
    if not settings.stripe_webhook_secret:
        logger.error("Stripe webhook secret not set.")
        _audit("unknown", "unknown", "config_error")
        return JSONResponse({"error": "Configuration error"}, status_code=500)

    body = await request.body()
    try:
        event = construct_event(body, stripe_signature, settings.stripe_webhook_secret, settings.stripe_signature_tolerance_seconds)
    except PayloadError as e:
        logger.error("Invalid payload: %s", e)
        _audit("unknown", "unknown", "invalid_payload")
        return JSONResponse({"error": "Invalid payload"}, status_code=400)
    except SignatureVerificationError as e:
        logger.error("Invalid signature: %s", e)
        _audit("unknown", "unknown", "invalid_signature")
        return JSONResponse({"error": "Invalid signature"}, status_code=400)

    event_id, event_type = event["id"], event["type"]
    logger.info("Stripe webhook received: %s (ID: %s)", event_type, event_id)
    try:
        result = await run_in_threadpool(buffer_event, event_id, event_type, body.decode("utf-8"))
    except StorageError as e:
        logger.error("Database error buffering Stripe event %s: %s", event_id, e)
        _audit(event_type, event_id, "storage_error")
        return JSONResponse({"error": "Database error"}, status_code=500)
    except EnqueueError:
        # Buffered but not enqueued; logged by ingestion. A 5xx makes the provider retry.
        _audit(event_type, event_id, "enqueue_error")
        return JSONResponse({"error": "Queue error"}, status_code=500)

    _audit(event_type, event_id, result.outcome.value)
    return {"status": "buffered"}
