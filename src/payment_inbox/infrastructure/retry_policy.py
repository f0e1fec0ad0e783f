"""Bounded fixed-delay retry with dead-lettering into the ``failed`` status."""
from __future__ import annotations
from dataclasses import dataclass
from payment_inbox.config import Settings, get_settings
from payment_inbox.models.tables import EventStatus


@dataclass(frozen=True)
class RetryDecision:
    status: EventStatus
    attempts: int
    delay: float | None  # seconds until redelivery; None when dead-lettered

    @property
    def dead_lettered(self) -> bool:
        return self.status is EventStatus.FAILED


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 5
    retry_delay: float = 30.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.retry_delay < 0:
            raise ValueError("retry_delay must be >= 0")

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "RetryPolicy":
        s = settings or get_settings()
        return cls(max_attempts=s.webhook_max_attempts, retry_delay=s.webhook_retry_delay_seconds)

    def decide(self, attempts: int) -> RetryDecision:
        """Outcome for a row whose ``attempts`` failures precede the one just observed."""
        new_attempts = attempts + 1
        if new_attempts >= self.max_attempts:
            return RetryDecision(EventStatus.FAILED, new_attempts, None)
        return RetryDecision(EventStatus.PENDING, new_attempts, self.retry_delay)
