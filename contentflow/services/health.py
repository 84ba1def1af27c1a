from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from contentflow.services.job_store import utcnow

logger = logging.getLogger(__name__)

# A probe returns a truthy value (or None) when healthy, False or raises otherwise
Probe = Callable[[], object]


@dataclass(frozen=True)
class HealthReport:
    checks: dict[str, bool]
    healthy: bool
    checked_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {"checks": dict(self.checks), "healthy": self.healthy, "checked_at": self.checked_at.isoformat()}


class HealthAggregator:
    def __init__(self, probes: dict[str, Probe] | None = None) -> None:
        self._probes: dict[str, Probe] = dict(probes or {})

    def register(self, name: str, probe: Probe) -> None:
        self._probes[name] = probe

    @property
    def names(self) -> list[str]:
        return list(self._probes)

    def check_health(self) -> HealthReport:
        checks: dict[str, bool] = {}
        for name, probe in self._probes.items():
            try:
                result = probe()
                checks[name] = result is None or bool(result)
            except Exception as e:
                logger.error("Health probe %s failed: %s", name, e)
                checks[name] = False
            if not checks[name]:
                logger.warning("Collaborator unhealthy: %s", name)

        healthy = bool(checks) and all(checks.values())
        logger.info("Health check completed: healthy=%s checks=%s", healthy, checks)
        return HealthReport(checks=checks, healthy=healthy)
