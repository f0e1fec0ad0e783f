"""Shared fixtures for the payment inbox test suite.

Every test that touches storage gets its own SQLite file database, swapped in through
``override_engine``. Celery and Redis are never contacted: enqueue and publish functions
are injected or patched.
"""

from __future__ import annotations

import json
import os
import threading

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest

from payment_inbox.config import reset_settings
from payment_inbox.infrastructure import db
from payment_inbox.models.tables import BufferedEvent, EventStatus  # noqa: F401  (registers tables)


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Settings are cached; make env changes from monkeypatch visible and undo them."""
    reset_settings()
    yield
    reset_settings()


@pytest.fixture()
def engine(tmp_path):
    original_engine = db.engine
    e = db.build_engine(f"sqlite:///{tmp_path / 'inbox.db'}")
    db.Base.metadata.create_all(e)
    db.override_engine(e)
    yield e
    db.override_engine(original_engine)
    e.dispose()


@pytest.fixture()
def fetch_event(engine):
    def _fetch(event_id: str) -> BufferedEvent | None:
        with db.SessionLocal() as session:
            return session.query(BufferedEvent).filter_by(event_id=event_id).one_or_none()
    return _fetch


@pytest.fixture()
def make_event(engine):
    """Insert a buffered row directly, bypassing ingestion."""
    def _make(event_id: str = "evt_test", event_type: str = "checkout.session.completed",
              status: EventStatus = EventStatus.PENDING, attempts: int = 0, payload: dict | str | None = None,
              **fields) -> BufferedEvent:
        if payload is None:
            payload = {"id": event_id, "type": event_type, "data": {"object": {"id": f"cs_{event_id}"}}}
        body = payload if isinstance(payload, str) else json.dumps(payload)
        with db.SessionLocal() as session, session.begin():
            row = BufferedEvent(event_id=event_id, event_type=event_type, payload=body,
                                status=EventStatus(status).value, attempts=attempts, **fields)
            session.add(row)
        return row
    return _make


class RecordingQueue:
    """Stands in for the Celery lane: records (event_id, countdown) pairs."""

    def __init__(self):
        self.calls: list[tuple[str, float | None]] = []
        self._lock = threading.Lock()

    def enqueue(self, event_id: str) -> None:
        with self._lock:
            self.calls.append((event_id, None))

    def schedule(self, event_id: str, countdown: float | None = None) -> None:
        with self._lock:
            self.calls.append((event_id, countdown))

    def ids(self) -> list[str]:
        return [c[0] for c in self.calls]


class RecordingPublisher:
    def __init__(self, fail: bool = False):
        self.messages: list[tuple[str, dict]] = []
        self.fail = fail

    def publish(self, channel: str, message: bytes) -> None:
        if self.fail:
            raise ConnectionError("redis unavailable")
        self.messages.append((channel, json.loads(message)))


@pytest.fixture()
def queue() -> RecordingQueue:
    return RecordingQueue()


@pytest.fixture()
def publisher() -> RecordingPublisher:
    return RecordingPublisher()
