"""Ingestion endpoint: buffer a verified provider event and hand it to the worker lane.

Nothing here runs domain logic; the caller can answer the provider as soon as
``buffer_event`` returns. A task is enqueued only after the transaction that made the
row ``pending`` has committed, and only by the caller that made it ``pending``, so a
non-terminal event never has two tasks racing from ingestion.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable
from prometheus_client import Counter
from payment_inbox.infrastructure import db, event_buffer
from payment_inbox.infrastructure.event_buffer import DuplicateEventError
from payment_inbox.models.tables import EventStatus

logger = logging.getLogger(__name__)

EVENTS_INGESTED = Counter('webhook_events_ingested_total', 'Webhook events seen by ingestion', ['outcome'])

Enqueue = Callable[[str], None]


class EnqueueError(Exception):
    """The event is buffered as pending but no processing task could be queued."""


class IngestOutcome(str, Enum):
    BUFFERED = "buffered"    # first sighting, task enqueued
    REQUEUED = "requeued"    # previously failed, reset to pending and enqueued
    DUPLICATE = "duplicate"  # already pending/processing/done, nothing enqueued


@dataclass
class IngestResult:
    event_id: str
    outcome: IngestOutcome
    status: str

    @property
    def enqueued(self) -> bool:
        return self.outcome in (IngestOutcome.BUFFERED, IngestOutcome.REQUEUED)


def _default_enqueue(event_id: str) -> None:
    from payment_inbox.tasks.processing import enqueue_processing
    enqueue_processing(event_id)


def buffer_event(event_id: str, event_type: str, payload: str, enqueue: Enqueue | None = None) -> IngestResult:
    """Insert-if-absent, then enqueue for processing when this call made the row pending.

    Raises StorageError when the buffer is unreachable; EnqueueError when the row is
    committed but the task could not be queued (the row stays pending for an operator requeue).
    """
    enqueue = enqueue or _default_enqueue
    try:
        with db.SessionLocal() as session, session.begin():
            inserted = event_buffer.insert_if_absent(session, event_id, event_type, payload)
            if inserted.inserted:
                result = IngestResult(event_id, IngestOutcome.BUFFERED, EventStatus.PENDING.value)
            else:
                result = _handle_known(session, event_id)
    except DuplicateEventError:
        logger.info("Event %s was inserted concurrently (race condition). Skipping.", event_id)
        result = IngestResult(event_id, IngestOutcome.DUPLICATE, EventStatus.PENDING.value)

    EVENTS_INGESTED.labels(outcome=result.outcome.value).inc()
    if result.enqueued:
        try:
            enqueue(event_id)
        except Exception as e:
            logger.exception("Could not enqueue Stripe event %s; it stays pending until requeued", event_id)
            raise EnqueueError(str(e)) from e
    return result


def _handle_known(session, event_id: str) -> IngestResult:
    # Lock so two concurrent re-deliveries of a failed event cannot both reset and enqueue it
    row = event_buffer.lock_for_update(session, event_id)
    logger.info("Event %s already exists in buffer. Status: %s", event_id, row.status)
    if row.status == EventStatus.FAILED.value:
        logger.info("Re-queueing failed event %s", event_id)
        event_buffer.update_status(session, event_id, EventStatus.PENDING)
        return IngestResult(event_id, IngestOutcome.REQUEUED, EventStatus.PENDING.value)
    return IngestResult(event_id, IngestOutcome.DUPLICATE, row.status)
