"""Durable event buffer over the ``stripe_events`` table.

Every function takes the caller's Session so that callers own transaction boundaries:
``lock_for_update`` is only meaningful inside an open transaction, and its lock is held
until that transaction commits or rolls back. Storage failures surface as StorageError;
callers must assume nothing was written when one is raised.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from payment_inbox.models.tables import BufferedEvent, EventStatus, utcnow

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Reading or writing the event buffer failed."""


class DuplicateEventError(Exception):
    """An insert lost a uniqueness race and the winning row is not visible yet."""

    def __init__(self, event_id: str):
        super().__init__(f"event {event_id} already buffered")
        self.event_id = event_id


@dataclass
class InsertResult:
    inserted: bool
    row: BufferedEvent


def get_event(session: Session, event_id: str) -> BufferedEvent | None:
    try:
        return session.execute(
            select(BufferedEvent).where(BufferedEvent.event_id == event_id)
        ).scalar_one_or_none()
    except SQLAlchemyError as e:
        raise StorageError(str(e)) from e


def insert_if_absent(session: Session, event_id: str, event_type: str, payload: str) -> InsertResult:
    """Insert a pending row for ``event_id`` unless one already exists.

    The unique index on event_id is the real guard: a concurrent insert that slips
    between the lookup and our INSERT is rolled back to the savepoint and the winning
    row is returned instead.
    """
    existing = get_event(session, event_id)
    if existing is not None:
        return InsertResult(inserted=False, row=existing)
    row = BufferedEvent(
        event_id=event_id,
        event_type=event_type,
        payload=payload,
        status=EventStatus.PENDING.value,
        attempts=0,
    )
    try:
        with session.begin_nested():
            session.add(row)
    except IntegrityError:
        logger.info("Event %s was inserted concurrently; using the existing row", event_id)
        winner = get_event(session, event_id)
        if winner is None:
            raise DuplicateEventError(event_id)
        return InsertResult(inserted=False, row=winner)
    except SQLAlchemyError as e:
        raise StorageError(str(e)) from e
    return InsertResult(inserted=True, row=row)


def lock_for_update(session: Session, event_id: str) -> BufferedEvent | None:
    """SELECT ... FOR UPDATE the row; blocks while another transaction holds it."""
    try:
        return session.execute(
            select(BufferedEvent)
            .where(BufferedEvent.event_id == event_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
    except SQLAlchemyError as e:
        raise StorageError(str(e)) from e


def update_status(session: Session, event_id: str, status: EventStatus, **fields) -> int:
    values = {"status": EventStatus(status).value, "updated_at": utcnow(), **fields}
    try:
        result = session.execute(
            update(BufferedEvent)
            .where(BufferedEvent.event_id == event_id)
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
    except SQLAlchemyError as e:
        raise StorageError(str(e)) from e
    return result.rowcount


def list_events(session: Session, status: EventStatus | None = None, limit: int = 100, offset: int = 0) -> list[BufferedEvent]:
    stmt = select(BufferedEvent).order_by(BufferedEvent.created_at, BufferedEvent.id)
    if status is not None:
        stmt = stmt.where(BufferedEvent.status == EventStatus(status).value)
    try:
        return list(session.execute(stmt.limit(limit).offset(offset)).scalars())
    except SQLAlchemyError as e:
        raise StorageError(str(e)) from e


def count_by_status(session: Session) -> dict[str, int]:
    try:
        rows = session.execute(
            select(BufferedEvent.status, func.count(BufferedEvent.id)).group_by(BufferedEvent.status)
        ).all()
    except SQLAlchemyError as e:
        raise StorageError(str(e)) from e
    counts = {s.value: 0 for s in EventStatus}
    counts.update({status: n for status, n in rows})
    return counts
