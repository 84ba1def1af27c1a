from contentflow.core.config import settings
from contentflow.services.container import build_orchestrator
from contentflow.services.health import HealthAggregator


def _boom():
    raise RuntimeError("enhancer unreachable")


def test_all_healthy(orchestrator):
    report = orchestrator.check_health()
    assert report.healthy is True
    assert set(report.checks) == {"content_source", "job_store", "asset_storage", "enhancement_engine", "notifier"}


def test_throwing_probe_does_not_hide_the_others():
    health = HealthAggregator({
        "job_store": lambda: True,
        "content_source": lambda: True,
        "asset_storage": lambda: None,
        "enhancement_engine": _boom,
        "notifier": lambda: True,
    })
    report = health.check_health()

    assert report.healthy is False
    assert report.checks == {
        "job_store": True,
        "content_source": True,
        "asset_storage": True,
        "enhancement_engine": False,
        "notifier": True,
    }


def test_false_probe_is_unhealthy():
    health = HealthAggregator()
    health.register("job_store", lambda: False)
    assert health.check_health().checks["job_store"] is False


def test_no_probes_is_not_healthy():
    assert HealthAggregator().check_health().healthy is False


def test_report_to_dict():
    d = HealthAggregator({"job_store": lambda: True}).check_health().to_dict()
    assert d["healthy"] is True
    assert d["checks"] == {"job_store": True}
    assert isinstance(d["checked_at"], str)


def test_default_container_checks_every_collaborator():
    orchestrator = build_orchestrator(settings)
    assert set(orchestrator.health.names) == {
        "content_source",
        "job_store",
        "asset_storage",
        "enhancement_engine",
        "notifier",
    }
