import pytest
from fastapi.testclient import TestClient

from contentflow.api.deps import dispatch_dep, orchestrator_dep
from contentflow.core.state_machine import JobStatus
from contentflow.main import app

from conftest import VIDEO_URL


class RecordingDispatch:
    def __init__(self):
        self.calls = []

    def __call__(self, action, payload=None):
        self.calls.append((action, payload))
        return type("Result", (), {"id": f"task-{len(self.calls)}"})()


@pytest.fixture
def dispatched():
    return RecordingDispatch()


@pytest.fixture
def client(orchestrator, dispatched):
    app.dependency_overrides[orchestrator_dep] = lambda: orchestrator
    app.dependency_overrides[dispatch_dep] = lambda: dispatched
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_create_job_dispatches_initial_processing(client, dispatched, store):
    r = client.post("/jobs", json={"source_url": VIDEO_URL})
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert body["status"] == "created"
    assert body["task_id"] == "task-1"
    assert dispatched.calls == [("process_single_unit", {"job_id": body["job_id"]})]
    assert store.get(body["job_id"]).source_url == VIDEO_URL


def test_create_job_rejects_blank_url(client):
    assert client.post("/jobs", json={"source_url": "  "}).status_code == 400
    assert client.post("/jobs", json={}).status_code == 422


def test_get_job(client, store):
    job = store.create(VIDEO_URL)
    r = client.get(f"/jobs/{job.id}")
    assert r.status_code == 200
    body = r.json()
    assert body["job_id"] == job.id
    assert body["status"] == "created"
    assert body["error"] is None


def test_get_missing_job(client):
    assert client.get("/jobs/12345").status_code == 404


def test_list_jobs_by_status(client, store):
    a = store.create(VIDEO_URL)
    store.create(VIDEO_URL)
    store.update_status(a.id, JobStatus.AWAITING_APPROVAL)

    r = client.get("/jobs", params={"status": "AwaitingApproval"})
    assert r.status_code == 200
    body = r.json()
    assert body["count"] == 1
    assert body["items"][0]["job_id"] == a.id

    assert client.get("/jobs", params={"status": "bogus"}).status_code == 400


def test_approve_job(client, store):
    job = store.create(VIDEO_URL)
    assert client.post(f"/jobs/{job.id}/approve").status_code == 409

    store.update_status(job.id, JobStatus.AWAITING_APPROVAL)
    r = client.post(f"/jobs/{job.id}/approve")
    assert r.status_code == 200
    assert r.json()["approval_flag"] is True
    assert store.get(job.id).approval_flag is True

    assert client.post("/jobs/999/approve").status_code == 404


def test_failed_job_shows_error(client, orchestrator):
    result = orchestrator.process_single_unit("https://example.com/nope")
    body = client.get(f"/jobs/{result.job_id}").json()
    assert body["status"] == "failed"
    assert body["error"]["kind"] == "not_found"
    assert body["error"]["stage"] == "initial_processing"


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert body["service"] == "api"
    assert body["checks"]["job_store"] is True


def test_stats(client, orchestrator):
    orchestrator.process_single_unit(VIDEO_URL)
    body = client.get("/stats").json()
    assert body["ok"] is True
    assert body["stats"]["pending"] == 1
