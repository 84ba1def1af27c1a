from typing import Callable

from contentflow.services.container import get_orchestrator
from contentflow.services.job_dispatch import dispatch
from contentflow.services.orchestrator import Orchestrator


# Dependency providers; tests swap them through app.dependency_overrides
def orchestrator_dep() -> Orchestrator:
    return get_orchestrator()


def dispatch_dep() -> Callable:
    return dispatch
