"""Top-level package for payment_inbox.

Buffers payment-provider webhook events, processes each exactly once on a Celery lane,
and turns them into order records plus realtime notifications.
"""

__version__ = "0.1.0"

__all__ = ["config", "ingestion", "handlers", "tasks"]
