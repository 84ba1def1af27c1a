from datetime import timedelta

import pytest

from contentflow.core.errors import InvalidStateTransitionError, JobNotFoundError, StaleJobError
from contentflow.core.state_machine import JobStatus
from contentflow.services.job_store import ErrorInfo, UnitCounters

from conftest import VIDEO_URL


def test_create_and_get(store, clock):
    job = store.create(VIDEO_URL)
    assert job.status is JobStatus.CREATED
    assert job.status_changed_at == clock.now
    assert job.error_info is None
    assert job.approval_flag is False

    again = store.get(job.id)
    assert again == job


def test_get_missing_raises(store):
    with pytest.raises(JobNotFoundError):
        store.get(999)


def test_list_by_status_is_ordered_and_filtered(store):
    a = store.create(VIDEO_URL)
    b = store.create(VIDEO_URL)
    c = store.create(VIDEO_URL)
    store.update_status(b.id, JobStatus.AWAITING_APPROVAL)

    assert [j.id for j in store.list_by_status(JobStatus.CREATED)] == [a.id, c.id]
    assert [j.id for j in store.list_by_status("AwaitingApproval")] == [b.id]


def test_update_status_moves_status_changed_at(store, clock):
    job = store.create(VIDEO_URL)
    clock.advance(minutes=5)
    updated = store.update_status(job.id, JobStatus.AWAITING_APPROVAL)
    assert updated.status_changed_at == clock.now
    assert updated.status_changed_at - job.status_changed_at == timedelta(minutes=5)


def test_update_status_merges_refs_and_payload(store):
    job = store.create(VIDEO_URL)
    store.update_status(
        job.id,
        JobStatus.AWAITING_APPROVAL,
        {"payload": {"metadata": {"title": "x"}}, "asset_refs": {"folder": "mem://jobs/1/"}},
    )
    store.update_status(job.id, JobStatus.GENERATING_ASSETS, {"counters": UnitCounters(3, 0)})
    updated = store.update_status(job.id, JobStatus.ASSETS_READY, {"asset_refs": {"thumbnail": "t.png"}})

    assert updated.asset_refs == {"folder": "mem://jobs/1/", "thumbnail": "t.png"}
    assert updated.payload == {"metadata": {"title": "x"}}
    assert updated.counters == UnitCounters(3, 0)


def test_invalid_transition_is_rejected(store):
    job = store.create(VIDEO_URL)
    with pytest.raises(InvalidStateTransitionError):
        store.update_status(job.id, JobStatus.COMPLETED)
    assert store.get(job.id).status is JobStatus.CREATED


def test_compare_and_set(store):
    job = store.create(VIDEO_URL)
    store.update_status(job.id, JobStatus.AWAITING_APPROVAL)
    with pytest.raises(StaleJobError):
        store.update_status(job.id, JobStatus.AWAITING_APPROVAL, expected_status=JobStatus.CREATED)


def test_failed_requires_error_info(store, clock):
    job = store.create(VIDEO_URL)
    with pytest.raises(ValueError):
        store.update_status(job.id, JobStatus.FAILED)

    info = ErrorInfo(message="boom", stage="initial_processing", occurred_at=clock.now, kind="internal")
    failed = store.update_status(job.id, JobStatus.FAILED, {"error_info": info})
    assert failed.error_info == info


def test_error_info_cleared_outside_failed(store, clock):
    job = store.create(VIDEO_URL)
    info = ErrorInfo(message="ignored", stage="x", occurred_at=clock.now)
    updated = store.update_status(job.id, JobStatus.AWAITING_APPROVAL, {"error_info": info})
    assert updated.error_info is None


def test_unknown_field_rejected(store):
    job = store.create(VIDEO_URL)
    with pytest.raises(ValueError):
        store.update_status(job.id, JobStatus.AWAITING_APPROVAL, {"title": "nope"})


def test_set_approval_and_mark_warned(store, clock):
    job = store.create(VIDEO_URL)
    assert store.set_approval(job.id).approval_flag is True
    assert store.mark_warned(job.id).last_warned_at == clock.now


def test_count_by_status_zero_fills(store):
    store.create(VIDEO_URL)
    store.create(VIDEO_URL)
    counts = store.count_by_status()
    assert counts[JobStatus.CREATED] == 2
    assert counts[JobStatus.COMPLETED] == 0
    assert set(counts) == set(JobStatus)


def test_ping(store):
    assert store.ping() is True
