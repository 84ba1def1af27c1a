import logging

from contentflow.services.container import get_orchestrator
from contentflow.worker.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="pipeline.run_batch")
def run_batch(status: str) -> dict:
    return get_orchestrator().run_batch(status).to_dict()


@celery_app.task(name="pipeline.process_timeouts")
def process_timeouts() -> dict:
    return get_orchestrator().process_timeouts().to_dict()


@celery_app.task(name="pipeline.process_single_unit")
def process_single_unit(job_id: int) -> dict:
    return get_orchestrator().process_single_unit(job_id).to_dict()


@celery_app.task(name="pipeline.daily_summary")
def daily_summary() -> dict:
    return get_orchestrator().daily_summary()


@celery_app.task(name="pipeline.health_check")
def health_check() -> dict:
    orchestrator = get_orchestrator()
    report = orchestrator.check_health()
    if not report.healthy:
        failing = [name for name, ok in report.checks.items() if not ok]
        orchestrator.notifier.send("health_degraded", {"failing": ", ".join(failing) or "no probes registered"})
    return report.to_dict()
