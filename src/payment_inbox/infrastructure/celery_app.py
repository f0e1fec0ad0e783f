from celery import Celery
from celery import signals
import logging
import time
from prometheus_client import Counter, Histogram
from payment_inbox.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

celery_app = Celery(
    "payment_inbox",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "payment_inbox.tasks.processing",
        "payment_inbox.tasks.maintenance",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # At-least-once: a task is acknowledged only after it ran, and is redelivered if the
    # worker dies mid-task. Duplicate deliveries are absorbed by the status check under lock.
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_ignore_result=True,
    # Webhook processing runs on its own lane so a backlog never starves other work
    task_routes={
        "payment_inbox.process_webhook_event": {"queue": settings.webhook_queue},
    },
)

TASK_SUCCESS = Counter('celery_task_success_total', 'Celery task successes', ['task'])
TASK_FAILURE = Counter('celery_task_failure_total', 'Celery task failures', ['task'])
TASK_DURATION = Histogram('celery_task_duration_seconds', 'Celery task runtime', ['task'], buckets=(0.05,0.1,0.25,0.5,1,2,5,10,30,60))

_task_start_times = {}

@signals.task_prerun.connect
def _task_prerun(sender=None, task_id=None, **kwargs):  # noqa
    _task_start_times[task_id] = time.time()

@signals.task_postrun.connect
def _task_postrun(sender=None, task_id=None, state=None, **kwargs):  # noqa
    task_name = sender.name if sender else 'unknown'
    start = _task_start_times.pop(task_id, None)
    if start is not None:
        TASK_DURATION.labels(task=task_name).observe(time.time() - start)
    if state == 'SUCCESS':
        TASK_SUCCESS.labels(task=task_name).inc()
    elif state is not None:
        TASK_FAILURE.labels(task=task_name).inc()

# Periodic tasks (beat). Requires worker with -B or separate beat service.
# Observation only: nothing here requeues stuck or failed events.
celery_app.conf.beat_schedule = {
    "refresh-buffer-gauges-1m": {
        "task": "payment_inbox.refresh_buffer_gauges",
        "schedule": 60.0,
        "options": {"expires": 50},
    },
}
