"""Best-effort realtime notifications over Redis pub/sub.

Publishing has its own timeout and retry budget. Nothing here may affect the status of
the buffered event that produced the notification: callers go through
``publish_best_effort`` which logs and swallows every failure.
"""
from __future__ import annotations
import json
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Iterable, Protocol
import redis
from prometheus_client import Counter
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential
from payment_inbox.config import get_settings

logger = logging.getLogger(__name__)

NOTIFICATIONS_PUBLISHED = Counter('webhook_notifications_published_total', 'Notifications published to subscribers', ['event'])
NOTIFICATIONS_FAILED = Counter('webhook_notifications_failed_total', 'Notifications that could not be published', ['event'])


class PublishError(Exception):
    pass


@dataclass
class Notification:
    channel: str
    event: str
    data: dict = field(default_factory=dict)

    def encode(self) -> bytes:
        return json.dumps({"event": self.event, "data": self.data}, default=str).encode()


class Publisher(Protocol):
    def publish(self, channel: str, message: bytes) -> None: ...


class RedisPublisher:
    def __init__(self, redis_url: str, timeout: float = 5.0, attempts: int = 3):
        self._client = redis.Redis.from_url(redis_url, socket_timeout=timeout, socket_connect_timeout=timeout)
        self.attempts = attempts

    def publish(self, channel: str, message: bytes) -> None:
        try:
            for attempt in Retrying(
                stop=stop_after_attempt(self.attempts),
                wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
                retry=retry_if_exception_type(redis.RedisError),
                reraise=True,
            ):
                with attempt:
                    receivers = self._client.publish(channel, message)
        except redis.RedisError as e:
            raise PublishError(f"publish to {channel} failed: {e}") from e
        logger.debug("Published %d bytes to %s (%d receivers)", len(message), channel, receivers)


@lru_cache
def get_publisher() -> RedisPublisher:
    s = get_settings()
    return RedisPublisher(s.redis_url, timeout=s.notify_timeout_seconds, attempts=s.notify_attempts)


def publish_best_effort(publisher: Publisher, notifications: Iterable[Notification], event_id: str | None = None) -> int:
    """Publish each notification; returns how many went out. Never raises."""
    sent = 0
    for n in notifications:
        try:
            publisher.publish(n.channel, n.encode())
        except Exception as e:
            NOTIFICATIONS_FAILED.labels(event=n.event).inc()
            logger.warning("Notification %s on %s failed for event %s: %s", n.event, n.channel, event_id, e)
            continue
        NOTIFICATIONS_PUBLISHED.labels(event=n.event).inc()
        sent += 1
    return sent
