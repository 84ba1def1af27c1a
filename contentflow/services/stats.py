from __future__ import annotations

import threading
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Callable

from contentflow.services.job_store import utcnow


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    # handed off to a human (awaiting approval); not counted as processed
    PENDING = "pending"


@dataclass(frozen=True)
class ProcessingStats:
    total_processed: int
    successful: int
    failed: int
    pending: int
    timestamp: datetime

    def to_dict(self) -> dict:
        d = asdict(self)
        d["timestamp"] = self.timestamp.isoformat()
        return d


class StatsAggregator:
    """In-process counters. Every read and write happens under one lock."""

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._total_processed = 0
        self._successful = 0
        self._failed = 0
        self._pending = 0

    def record_outcome(self, kind: OutcomeKind) -> None:
        kind = OutcomeKind(kind)
        with self._lock:
            if kind is OutcomeKind.PENDING:
                self._pending += 1
                return
            self._total_processed += 1
            if kind is OutcomeKind.SUCCESS:
                self._successful += 1
            else:
                self._failed += 1

    def _snapshot_locked(self) -> ProcessingStats:
        return ProcessingStats(
            total_processed=self._total_processed,
            successful=self._successful,
            failed=self._failed,
            pending=self._pending,
            timestamp=self._clock(),
        )

    def snapshot(self) -> ProcessingStats:
        with self._lock:
            return self._snapshot_locked()

    def reset_and_report(self) -> ProcessingStats:
        """Return the counters as they were and zero them in the same critical section."""
        with self._lock:
            report = self._snapshot_locked()
            self._total_processed = 0
            self._successful = 0
            self._failed = 0
            self._pending = 0
            return report
