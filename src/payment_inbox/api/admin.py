from __future__ import annotations
import hmac
from fastapi import APIRouter, Depends, Header, HTTPException, Query
from payment_inbox.config import get_settings, parse_api_keys
from payment_inbox.infrastructure import db, event_buffer
from payment_inbox.models.tables import EventStatus
from payment_inbox.tasks.maintenance import (
    EventNotFound,
    InvalidTransition,
    buffer_stats,
    requeue_event,
    requeue_failed,
    reset_stuck_event,
)


def require_admin_key(x_api_key: str | None = Header(None, alias="X-API-Key")):
    settings = get_settings()
    keys = parse_api_keys(settings.admin_api_keys)
    if not keys:
        if settings.app_env == "test":
            return
        raise HTTPException(status_code=503, detail="admin API keys not configured")
    if not x_api_key or not any(hmac.compare_digest(x_api_key, k) for k in keys):
        raise HTTPException(status_code=401, detail="invalid API key")


router = APIRouter(prefix="/admin/events", tags=["admin"], dependencies=[Depends(require_admin_key)])


@router.get("")
def list_buffered_events(
    status: EventStatus | None = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
):
    with db.SessionLocal() as session:
        rows = event_buffer.list_events(session, status=status, limit=limit, offset=offset)
        return {"events": [r.to_dict() for r in rows], "limit": limit, "offset": offset}


@router.get("/stats")
def stats():
    return {"counts": buffer_stats()}


@router.post("/requeue-failed")
def requeue_all_failed(limit: int = Query(100, ge=1, le=1000)):
    return requeue_failed(limit=limit)


@router.get("/{event_id}")
def get_buffered_event(event_id: str):
    with db.SessionLocal() as session:
        row = event_buffer.get_event(session, event_id)
        if row is None:
            raise HTTPException(status_code=404, detail="event not found")
        return row.to_dict(include_payload=True)


def _transition(fn, event_id: str) -> dict:
    try:
        return fn(event_id)
    except EventNotFound:
        raise HTTPException(status_code=404, detail="event not found")
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/{event_id}/requeue")
def requeue(event_id: str):
    return _transition(requeue_event, event_id)


@router.post("/{event_id}/reset")
def reset(event_id: str):
    return _transition(reset_stuck_event, event_id)
