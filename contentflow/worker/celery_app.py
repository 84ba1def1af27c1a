from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging as celery_setup_logging

from contentflow.core.celery_settings import is_test_env
from contentflow.core.config import settings
from contentflow.core.logging_setup import setup_logging

# IMPORTANT: the variable name MUST be `celery_app`
celery_app = Celery(
    "contentflow",
    broker=settings.broker_url,
    backend=settings.result_backend or settings.broker_url,
)

# Ensure tasks are discovered
celery_app.autodiscover_tasks(["contentflow.worker"])


def _minutes(n: int) -> float:
    return float(n) * 60.0


celery_app.conf.update(
    task_track_started=True,
    result_extended=True,
    enable_utc=True,
    timezone="UTC",
    # one job batch at a time per worker process; a crashed batch is redelivered
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    beat_schedule={
        "run-created": {
            "task": "pipeline.run_batch",
            "schedule": _minutes(settings.schedule_created_min),
            "args": ("created",),
        },
        "run-awaiting-approval": {
            "task": "pipeline.run_batch",
            "schedule": _minutes(settings.schedule_awaiting_approval_min),
            "args": ("awaiting_approval",),
        },
        "run-generating-assets": {
            "task": "pipeline.run_batch",
            "schedule": _minutes(settings.schedule_generating_assets_min),
            "args": ("generating_assets",),
        },
        "run-assets-ready": {
            "task": "pipeline.run_batch",
            "schedule": _minutes(settings.schedule_assets_ready_min),
            "args": ("assets_ready",),
        },
        "process-timeouts": {
            "task": "pipeline.process_timeouts",
            "schedule": _minutes(settings.schedule_timeouts_min),
        },
        "daily-summary": {
            "task": "pipeline.daily_summary",
            "schedule": crontab(hour=settings.daily_summary_hour, minute=0),
        },
        "health-check": {
            "task": "pipeline.health_check",
            "schedule": _minutes(6 * 60),
        },
    },
)

if is_test_env():
    # run tasks inline; no broker needed
    celery_app.conf.update(task_always_eager=True, task_eager_propagates=True, task_store_eager_result=False)


@celery_setup_logging.connect
def _configure_worker_logging(**kwargs) -> None:
    # connecting here stops Celery from installing its own root handlers
    setup_logging(settings.log_level)


__all__ = ["celery_app"]
