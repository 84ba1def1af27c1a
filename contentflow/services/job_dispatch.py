from __future__ import annotations

from typing import Any, Dict

from contentflow.worker import tasks as worker_tasks


# Map API-level action -> Celery task function (task object)
ACTION_TO_TASK = {
    "run_batch": worker_tasks.run_batch,
    "process_timeouts": worker_tasks.process_timeouts,
    "process_single_unit": worker_tasks.process_single_unit,
    "daily_summary": worker_tasks.daily_summary,
    "health_check": worker_tasks.health_check,
}


def dispatch(action: str, payload: Dict[str, Any] | None = None):
    """
    Dispatch using task objects (.apply_async) so ENV=test eager mode works.
    Returns celery result object (EagerResult or AsyncResult).
    """
    payload = payload or {}

    task = ACTION_TO_TASK.get(action)
    if not task:
        raise ValueError(f"Unknown action: {action}")

    return task.apply_async(kwargs=payload)
