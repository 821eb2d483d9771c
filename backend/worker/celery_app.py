"""Celery application for the scheduler and event dispatch workers.

Two queues:
- ``triggers``: the beat-driven schedule poll, one at a time
- ``workflows``: queued event dispatches and manual runs

Beat fires ``poll_schedules`` every ``SCHEDULER_POLL_INTERVAL_SECONDS``.
A poll that is still running when the next one fires simply sees fewer
due schedules, because ``next_run_at`` moves forward as each run is
recorded. Workers log through the same structlog pipeline as the API.
"""

from celery import Celery
from celery.signals import setup_logging as celery_setup_logging

from app.config import get_settings

settings = get_settings()

celery_app = Celery(
    "workflow_engine",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=[
        "worker.tasks.workflow",
        "worker.tasks.schedule_poller",
    ],
)

# A run may visit many nodes, each bounded by the node timeout
_RUN_SOFT_LIMIT = max(settings.EXECUTOR_NODE_TIMEOUT_SECONDS * 2, 300)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_routes={
        "worker.tasks.schedule_poller.*": {"queue": "triggers"},
        "worker.tasks.workflow.*": {"queue": "workflows"},
    },
    task_default_queue="workflows",
    result_expires=86400,
    task_soft_time_limit=_RUN_SOFT_LIMIT,
    task_time_limit=_RUN_SOFT_LIMIT * 2,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    beat_schedule={
        "poll-schedules": {
            "task": "worker.tasks.schedule_poller.poll_schedules",
            "schedule": float(settings.SCHEDULER_POLL_INTERVAL_SECONDS),
            "options": {"queue": "triggers", "expires": settings.SCHEDULER_POLL_INTERVAL_SECONDS},
        },
    },
)


@celery_setup_logging.connect
def _configure_worker_logging(**kwargs):
    """Keep Celery from installing its own handlers."""
    from core.logging_config import setup_logging

    setup_logging()
