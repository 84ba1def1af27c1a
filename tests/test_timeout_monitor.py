from datetime import timedelta

import pytest

from contentflow.core.errors import BatchFetchError
from contentflow.core.state_machine import JobStatus
from contentflow.services.timeout_monitor import TimeoutMonitor

from conftest import VIDEO_URL


def _waiting_job(store):
    job = store.create(VIDEO_URL)
    return store.update_status(job.id, JobStatus.AWAITING_APPROVAL)


def test_escalates_once_after_48h(store, clock, notifier, orchestrator):
    job = _waiting_job(store)
    clock.advance(hours=50)

    first = orchestrator.process_timeouts()
    assert (first.scanned, first.escalated, first.warned) == (1, 1, 0)
    assert store.get(job.id).status is JobStatus.TIMEOUT_REVIEW

    second = orchestrator.process_timeouts()
    assert (second.scanned, second.escalated) == (0, 0)
    assert len(notifier.of("approval_escalated")) == 1
    assert store.get(job.id).status is JobStatus.TIMEOUT_REVIEW


def test_warns_exactly_once_at_30h(store, clock, notifier, orchestrator):
    job = _waiting_job(store)
    clock.advance(hours=30)

    results = [orchestrator.process_timeouts() for _ in range(3)]
    assert [r.warned for r in results] == [1, 0, 0]
    warnings = notifier.of("approval_timeout_warning")
    assert len(warnings) == 1
    assert warnings[0]["job_id"] == job.id
    assert store.get(job.id).status is JobStatus.AWAITING_APPROVAL


def test_nothing_before_24h(store, clock, notifier, timeout_monitor):
    _waiting_job(store)
    clock.advance(hours=23)
    result = timeout_monitor.scan()
    assert (result.scanned, result.warned, result.escalated) == (1, 0, 0)
    assert notifier.events == []


def test_warn_then_escalate(store, clock, notifier, timeout_monitor):
    job = _waiting_job(store)
    clock.advance(hours=25)
    assert timeout_monitor.scan().warned == 1
    clock.advance(hours=24)
    assert timeout_monitor.scan().escalated == 1
    assert store.get(job.id).status is JobStatus.TIMEOUT_REVIEW


def test_undelivered_warning_is_retried(store, clock, notifier, timeout_monitor):
    job = _waiting_job(store)
    clock.advance(hours=30)

    notifier.deliver = False
    assert timeout_monitor.scan().warned == 0
    assert store.get(job.id).last_warned_at is None

    notifier.deliver = True
    assert timeout_monitor.scan().warned == 1
    assert timeout_monitor.scan().warned == 0


def test_notifier_failure_is_isolated_per_job(store, clock, notifier, timeout_monitor):
    a = _waiting_job(store)
    clock.advance(hours=50)
    b = _waiting_job(store)
    clock.advance(hours=30)

    notifier.raise_error = True
    result = timeout_monitor.scan()

    # escalation still happens; the warning for b fails and is counted
    assert result.scanned == 2
    assert result.escalated == 1
    assert result.errors == 1
    assert store.get(a.id).status is JobStatus.TIMEOUT_REVIEW
    assert store.get(b.id).last_warned_at is None


def test_approved_jobs_are_not_chased(store, clock, notifier, timeout_monitor):
    job = _waiting_job(store)
    store.set_approval(job.id)
    clock.advance(hours=60)
    result = timeout_monitor.scan()
    assert (result.warned, result.escalated) == (0, 0)
    assert store.get(job.id).status is JobStatus.AWAITING_APPROVAL


def test_warning_marker_covers_current_stay(store, clock):
    job = _waiting_job(store)
    store.mark_warned(job.id, clock.now + timedelta(hours=1))
    assert TimeoutMonitor.already_warned(store.get(job.id))


def test_fetch_failure_aborts_scan(store, monkeypatch, timeout_monitor):
    def broken(status):
        raise RuntimeError("db gone")

    monkeypatch.setattr(store, "list_by_status", broken)
    with pytest.raises(BatchFetchError):
        timeout_monitor.scan()


def test_thresholds_must_be_ordered(store, notifier):
    with pytest.raises(ValueError):
        TimeoutMonitor(store, notifier, warn_after=timedelta(hours=48), escalate_after=timedelta(hours=24))
