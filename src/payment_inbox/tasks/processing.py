"""Processing worker: the status state machine for buffered events.

    pending -> processing -> done
                          -> pending   (attempts + 1, redelivered after the retry delay)
                          -> failed    (attempts reached max_attempts; dead-lettered)

The status check and the move to ``processing`` happen under the row lock, before any
domain work, so duplicate task deliveries and racing workers observe ``processing`` or
``done`` and back off. A row left in ``processing`` by a crashed worker stays there until
an operator resets it (see tasks.maintenance.reset_stuck_event).

Each claim writes a fresh ``claim_token``. When the buffer fails after the claim and no
outcome could be recorded, the token travels with the Celery retry so that retry, and
only that retry, can take the row over again.
"""
from __future__ import annotations
import json
import logging
import time
import uuid
from enum import Enum
from functools import lru_cache
from typing import Callable
from prometheus_client import Counter, Histogram
from payment_inbox.config import get_settings
from payment_inbox.handlers import HandlerError, HandlerRegistry, build_registry
from payment_inbox.infrastructure import db, event_buffer
from payment_inbox.infrastructure.celery_app import celery_app
from payment_inbox.infrastructure.event_buffer import StorageError
from payment_inbox.infrastructure.notifications import Publisher, get_publisher, publish_best_effort
from payment_inbox.infrastructure.retry_policy import RetryPolicy
from payment_inbox.models.tables import BufferedEvent, EventStatus, utcnow

logger = logging.getLogger(__name__)

EVENTS_PROCESSED = Counter('webhook_events_processed_total', 'Buffered events by processing outcome', ['outcome'])
HANDLER_DURATION = Histogram('webhook_handler_duration_seconds', 'Domain handler runtime', ['event_type'], buckets=(0.01,0.05,0.1,0.25,0.5,1,2,5,10,30))

# (event_id, countdown seconds) -> None
Scheduler = Callable[[str, "float | None"], None]


class Outcome(str, Enum):
    DONE = "done"
    RETRY = "retry"
    FAILED = "failed"
    SKIPPED = "skipped"
    MISSING = "missing"


class ClaimHeldError(StorageError):
    """The row is still ``processing`` under ``claim`` because no outcome could be written."""

    def __init__(self, event_id: str, claim: str, message: str):
        super().__init__(message)
        self.event_id = event_id
        self.claim = claim


class RetryScheduleError(Exception):
    """The row went back to ``pending`` but its delayed redelivery could not be queued."""

    def __init__(self, event_id: str, delay: float | None, message: str):
        super().__init__(message)
        self.event_id = event_id
        self.delay = delay


@lru_cache
def default_registry() -> HandlerRegistry:
    return build_registry()


def _claim(event_id: str, claim: str | None = None) -> tuple[Outcome | None, BufferedEvent | None, str | None]:
    with db.SessionLocal() as session, session.begin():
        row = event_buffer.lock_for_update(session, event_id)
        if row is None:
            logger.error("Stripe event %s not found in buffer.", event_id)
            return Outcome.MISSING, None, None
        if claim and row.status == EventStatus.PROCESSING.value and row.claim_token == claim:
            logger.info("Stripe event %s: resuming claim %s after a storage failure", event_id, claim)
            return None, row, claim
        # failed is terminal for the worker; only an operator moves it back to pending
        if row.status in (EventStatus.DONE.value, EventStatus.PROCESSING.value, EventStatus.FAILED.value):
            logger.info("Stripe event %s is already %s. Skipping.", event_id, row.status)
            return Outcome.SKIPPED, row, None
        token = uuid.uuid4().hex
        event_buffer.update_status(session, event_id, EventStatus.PROCESSING, claim_token=token)
        return None, row, token


def _decode(payload: str) -> dict:
    try:
        data = json.loads(payload)
    except (TypeError, ValueError) as e:
        raise HandlerError(f"payload is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise HandlerError("payload is not a JSON object")
    return data


def _record_failure(event_id: str, claim: str, error: BaseException, policy: RetryPolicy, schedule: Scheduler) -> Outcome:
    message = str(error) or error.__class__.__name__
    try:
        with db.SessionLocal() as session, session.begin():
            row = event_buffer.lock_for_update(session, event_id)
            if row is None:
                logger.error("Stripe event %s vanished while recording failure: %s", event_id, message)
                return Outcome.MISSING
            decision = policy.decide(row.attempts)
            event_buffer.update_status(
                session, event_id, decision.status,
                attempts=decision.attempts, last_error=message, claim_token=None,
            )
    except StorageError as e:
        logger.error(
            "Could not record failure of Stripe event %s (claim %s), row stays processing: %s",
            event_id, claim, e,
        )
        raise ClaimHeldError(event_id, claim, str(e)) from e

    if decision.dead_lettered:
        logger.error(
            "Stripe event %s failed permanently after %d attempts: %s", event_id, decision.attempts, message
        )
        return Outcome.FAILED
    logger.warning(
        "Stripe event %s failed (attempt %d/%d), retrying in %ss: %s",
        event_id, decision.attempts, policy.max_attempts, decision.delay, message,
    )
    try:
        schedule(event_id, decision.delay)
    except Exception as e:
        logger.error("Could not schedule retry of Stripe event %s in %ss: %s", event_id, decision.delay, e)
        raise RetryScheduleError(event_id, decision.delay, str(e)) from e
    return Outcome.RETRY


def process_event(
    event_id: str,
    registry: HandlerRegistry | None = None,
    publisher: Publisher | None = None,
    policy: RetryPolicy | None = None,
    schedule: Scheduler | None = None,
    claim: str | None = None,
) -> Outcome:
    """Run one processing cycle for ``event_id``; safe to call for any delivery of its task.

    ``claim`` is only passed by a retry that follows ClaimHeldError. RetryScheduleError
    means the failure was recorded but the caller has to arrange the redelivery itself.
    """
    registry = registry or default_registry()
    policy = policy or RetryPolicy.from_settings()
    schedule = schedule or enqueue_processing

    outcome, row, claim = _claim(event_id, claim)
    if outcome is not None:
        EVENTS_PROCESSED.labels(outcome=outcome.value).inc()
        return outcome

    logger.info("Processing Stripe event %s type %s - status locked to processing", event_id, row.event_type)
    started = time.perf_counter()
    try:
        result = registry.dispatch(row.event_type, _decode(row.payload))
    except Exception as e:  # any handler failure counts against the retry budget
        outcome = _record_failure(event_id, claim, e, policy, schedule)
        EVENTS_PROCESSED.labels(outcome=outcome.value).inc()
        return outcome
    finally:
        HANDLER_DURATION.labels(event_type=row.event_type).observe(time.perf_counter() - started)

    try:
        with db.SessionLocal() as session, session.begin():
            event_buffer.update_status(session, event_id, EventStatus.DONE, processed_at=utcnow(), claim_token=None)
    except StorageError as e:
        # Side effects already happened; the retry re-runs the handler, which skips its own earlier output
        logger.error("Could not mark Stripe event %s done: %s", event_id, e)
        outcome = _record_failure(event_id, claim, e, policy, schedule)
        EVENTS_PROCESSED.labels(outcome=outcome.value).inc()
        return outcome

    logger.info("Successfully processed Stripe event %s", event_id)
    EVENTS_PROCESSED.labels(outcome=Outcome.DONE.value).inc()
    if result.notifications:
        publish_best_effort(publisher or get_publisher(), result.notifications, event_id=event_id)
    return Outcome.DONE


def enqueue_processing(event_id: str, countdown: float | None = None) -> None:
    """Put a processing task for ``event_id`` on the webhook lane."""
    options = {"queue": get_settings().webhook_queue}
    if countdown:
        options["countdown"] = countdown
    process_webhook_event.apply_async(args=[event_id], **options)


@celery_app.task(bind=True, name="payment_inbox.process_webhook_event", max_retries=10)
def process_webhook_event(self, event_id: str, claim: str | None = None) -> str:
    try:
        return process_event(event_id, claim=claim).value
    except ClaimHeldError as e:
        # Row still processing under our claim: hand the token to the retry so it can resume
        raise self.retry(
            args=[event_id], kwargs={"claim": e.claim}, exc=e,
            countdown=RetryPolicy.from_settings().retry_delay,
        )
    except StorageError as e:
        # Buffer unreachable before a status could be recorded: redeliver without
        # touching attempts, which only count handler failures.
        logger.error("Storage error while processing Stripe event %s: %s", event_id, e)
        raise self.retry(args=[event_id], kwargs={}, exc=e, countdown=RetryPolicy.from_settings().retry_delay)
    except RetryScheduleError as e:
        # Failure is recorded and the row is pending; let Celery carry the redelivery
        raise self.retry(args=[event_id], kwargs={}, exc=e, countdown=e.delay)
