"""Operator recovery for buffered events, plus buffer observability.

Nothing here runs automatically except the gauge refresh. Failed (dead-lettered) and
stuck ``processing`` rows are only moved back to ``pending`` on explicit request.
"""
from __future__ import annotations
import logging
from typing import Callable
from prometheus_client import Gauge
from payment_inbox.infrastructure import db, event_buffer
from payment_inbox.infrastructure.celery_app import celery_app
from payment_inbox.models.tables import EventStatus

logger = logging.getLogger(__name__)

BUFFER_EVENTS = Gauge('webhook_buffer_events', 'Buffered webhook events by status', ['status'])


class EventNotFound(Exception):
    pass


class InvalidTransition(Exception):
    def __init__(self, event_id: str, status: str, action: str):
        super().__init__(f"cannot {action} event {event_id} in status {status}")
        self.event_id = event_id
        self.status = status


def _default_enqueue(event_id: str) -> None:
    from payment_inbox.tasks.processing import enqueue_processing
    enqueue_processing(event_id)


def _reset_to_pending(event_id: str, allowed: set[str], action: str, enqueue: Callable[[str], None] | None) -> dict:
    with db.SessionLocal() as session, session.begin():
        row = event_buffer.lock_for_update(session, event_id)
        if row is None:
            raise EventNotFound(event_id)
        if row.status not in allowed:
            raise InvalidTransition(event_id, row.status, action)
        previous = row.status
        event_buffer.update_status(session, event_id, EventStatus.PENDING, claim_token=None)
    logger.info("Operator %s of event %s: %s -> pending", action, event_id, previous)
    (enqueue or _default_enqueue)(event_id)
    return {"event_id": event_id, "previous_status": previous, "status": EventStatus.PENDING.value}


def requeue_event(event_id: str, enqueue: Callable[[str], None] | None = None) -> dict:
    """Re-enqueue a dead-lettered event, or a pending one whose task was lost.

    Attempts are left as they are, so a requeued failed event gets one more try before it
    dead-letters again.
    """
    return _reset_to_pending(event_id, {EventStatus.FAILED.value, EventStatus.PENDING.value}, "requeue", enqueue)


def reset_stuck_event(event_id: str, enqueue: Callable[[str], None] | None = None) -> dict:
    """Move a row stranded in ``processing`` (worker crashed mid-attempt) back to pending.

    Only the operator can tell a crashed attempt from a slow one; calling this while a
    worker is still running the handler lets the handler run twice.
    """
    return _reset_to_pending(event_id, {EventStatus.PROCESSING.value}, "reset", enqueue)


def requeue_failed(limit: int = 100, enqueue: Callable[[str], None] | None = None) -> dict:
    with db.SessionLocal() as session:
        rows = event_buffer.list_events(session, status=EventStatus.FAILED, limit=limit)
        event_ids = [r.event_id for r in rows]
    requeued = []
    for event_id in event_ids:
        try:
            requeue_event(event_id, enqueue=enqueue)
        except InvalidTransition:
            # Picked up by someone else between listing and locking
            continue
        requeued.append(event_id)
    return {"requeued": len(requeued), "event_ids": requeued}


def buffer_stats() -> dict[str, int]:
    with db.SessionLocal() as session:
        return event_buffer.count_by_status(session)


@celery_app.task(name="payment_inbox.refresh_buffer_gauges")
def refresh_buffer_gauges() -> dict:
    counts = buffer_stats()
    for status, n in counts.items():
        BUFFER_EVENTS.labels(status=status).set(n)
    return counts


@celery_app.task(name="payment_inbox.requeue_failed_events")
def requeue_failed_events(limit: int = 100) -> dict:
    return requeue_failed(limit=limit)
