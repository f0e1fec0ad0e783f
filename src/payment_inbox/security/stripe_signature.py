from __future__ import annotations
import hmac
import hashlib
import json
import time


class SignatureVerificationError(Exception):
    pass


class PayloadError(Exception):
    pass


def _parse_header(header: str) -> tuple[int, list[str]]:
    timestamp = None
    signatures: list[str] = []
    for item in header.split(","):
        key, _, value = item.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise SignatureVerificationError("invalid timestamp in signature header")
        elif key == "v1" and value:
            signatures.append(value)
    if timestamp is None:
        raise SignatureVerificationError("no timestamp in signature header")
    if not signatures:
        raise SignatureVerificationError("no v1 signature in signature header")
    return timestamp, signatures


def verify_signature(body: bytes, header: str | None, secret: str, tolerance_seconds: int = 300, now: float | None = None) -> None:
    """Stripe v1 scheme: HMAC-SHA256 of ``"<t>." + body``; any listed v1 may match (key rotation)."""
    if not header:
        raise SignatureVerificationError("missing Stripe-Signature header")
    ts, signatures = _parse_header(header)
    current = time.time() if now is None else now
    if tolerance_seconds and abs(current - ts) > tolerance_seconds:
        raise SignatureVerificationError("signature timestamp outside tolerance")
    expected = hmac.new(secret.encode(), msg=f"{ts}.".encode() + body, digestmod=hashlib.sha256).hexdigest()
    if not any(hmac.compare_digest(expected, sig) for sig in signatures):
        raise SignatureVerificationError("no signature matches the payload")


def construct_event(body: bytes, header: str | None, secret: str, tolerance_seconds: int = 300) -> dict:
    """Parse then verify; returns the event object with a usable ``id`` and ``type``."""
    try:
        event = json.loads(body)
    except (UnicodeDecodeError, ValueError) as e:
        raise PayloadError(f"invalid JSON body: {e}")
    if not isinstance(event, dict):
        raise PayloadError("event body is not a JSON object")
    verify_signature(body, header, secret, tolerance_seconds)
    for field in ("id", "type"):
        if not isinstance(event.get(field), str) or not event[field]:
            raise PayloadError(f"event has no {field}")
    return event


def sign(body: bytes, secret: str, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header value (used by replay tooling and tests)."""
    ts = int(time.time()) if timestamp is None else timestamp
    sig = hmac.new(secret.encode(), msg=f"{ts}.".encode() + body, digestmod=hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"
