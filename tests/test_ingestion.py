"""Tests for the ingestion endpoint: insert-if-absent plus enqueue discipline."""

from __future__ import annotations

import json
import threading
from unittest.mock import patch

import pytest

from payment_inbox import ingestion
from payment_inbox.infrastructure import db
from payment_inbox.infrastructure.event_buffer import DuplicateEventError
from payment_inbox.ingestion import EnqueueError, IngestOutcome, buffer_event
from payment_inbox.models.tables import BufferedEvent, EventStatus

PAYLOAD = json.dumps({"id": "evt_1", "type": "checkout.session.completed", "data": {"object": {"id": "cs_1"}}})


def _rows(event_id: str) -> int:
    with db.SessionLocal() as session:
        return session.query(BufferedEvent).filter_by(event_id=event_id).count()


class TestFirstSighting:
    def test_buffers_and_enqueues(self, engine, queue, fetch_event):
        result = buffer_event("evt_1", "checkout.session.completed", PAYLOAD, enqueue=queue.enqueue)
        assert result.outcome is IngestOutcome.BUFFERED
        assert result.enqueued
        assert queue.ids() == ["evt_1"]
        row = fetch_event("evt_1")
        assert row.status == "pending"
        assert row.payload == PAYLOAD

    def test_twice_gives_one_row_and_one_task(self, engine, queue):
        first = buffer_event("evt_1", "checkout.session.completed", PAYLOAD, enqueue=queue.enqueue)
        second = buffer_event("evt_1", "checkout.session.completed", PAYLOAD, enqueue=queue.enqueue)
        assert first.outcome is IngestOutcome.BUFFERED
        assert second.outcome is IngestOutcome.DUPLICATE
        assert _rows("evt_1") == 1
        assert queue.ids() == ["evt_1"]

    def test_enqueue_happens_after_commit(self, engine, fetch_event):
        seen = []

        def _enqueue(event_id):
            seen.append(fetch_event(event_id))

        buffer_event("evt_1", "checkout.session.completed", PAYLOAD, enqueue=_enqueue)
        assert seen[0] is not None and seen[0].status == "pending"


class TestKnownEvent:
    @pytest.mark.parametrize("status", [EventStatus.PENDING, EventStatus.PROCESSING, EventStatus.DONE])
    def test_non_failed_status_is_not_enqueued(self, engine, make_event, queue, fetch_event, status):
        make_event("evt_1", status=status)
        result = buffer_event("evt_1", "checkout.session.completed", PAYLOAD, enqueue=queue.enqueue)
        assert result.outcome is IngestOutcome.DUPLICATE
        assert result.status == status.value
        assert queue.calls == []
        assert fetch_event("evt_1").status == status.value

    def test_failed_event_reset_and_requeued(self, engine, make_event, queue, fetch_event):
        original = make_event("evt_1", status=EventStatus.FAILED, attempts=5, last_error="boom",
                              payload='{"original": true}')
        result = buffer_event("evt_1", "something.else", '{"replayed": true}', enqueue=queue.enqueue)
        assert result.outcome is IngestOutcome.REQUEUED
        assert queue.ids() == ["evt_1"]
        row = fetch_event("evt_1")
        assert row.status == "pending"
        # only the status changes
        assert row.payload == original.payload
        assert row.event_type == original.event_type
        assert row.attempts == 5
        assert row.last_error == "boom"

    def test_lost_insert_race_enqueues_nothing(self, engine, queue):
        with patch.object(ingestion.event_buffer, "insert_if_absent", side_effect=DuplicateEventError("evt_1")):
            result = buffer_event("evt_1", "checkout.session.completed", PAYLOAD, enqueue=queue.enqueue)
        assert result.outcome is IngestOutcome.DUPLICATE
        assert queue.calls == []


class TestEnqueueFailure:
    def test_row_stays_pending_and_error_surfaces(self, engine, fetch_event):
        def _broken(event_id):
            raise ConnectionError("broker down")

        with pytest.raises(EnqueueError):
            buffer_event("evt_1", "checkout.session.completed", PAYLOAD, enqueue=_broken)
        assert fetch_event("evt_1").status == "pending"


class TestConcurrentIngestion:
    def test_same_event_at_the_same_instant(self, engine, queue):
        barrier = threading.Barrier(4)
        errors = []

        def _ingest():
            barrier.wait()
            try:
                buffer_event("evt_3", "checkout.session.completed", PAYLOAD, enqueue=queue.enqueue)
            except Exception as e:  # surfaced through the assertion below
                errors.append(e)

        threads = [threading.Thread(target=_ingest) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)
        assert errors == []
        assert _rows("evt_3") == 1
        assert queue.ids() == ["evt_3"]

    def test_concurrent_redelivery_of_failed_event_requeues_once(self, engine, make_event, queue):
        make_event("evt_f", status=EventStatus.FAILED, attempts=3)
        barrier = threading.Barrier(3)

        def _ingest():
            barrier.wait()
            buffer_event("evt_f", "checkout.session.completed", PAYLOAD, enqueue=queue.enqueue)

        threads = [threading.Thread(target=_ingest) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)
        assert queue.ids() == ["evt_f"]
