from __future__ import annotations

from backend.netpulse.main import start_background_jobs, stop_background_jobs
from backend.netpulse.services.scheduler_monitor import JOB_RENEWALS, SchedulerMonitor


def test_background_jobs_respect_enable_flags(monkeypatch):
    started: list[str] = []

    monkeypatch.setenv("ENABLE_RENEWAL_SCHEDULER", "0")
    monkeypatch.setattr(
        "backend.netpulse.main.start_renewal_scheduler", lambda: started.append(JOB_RENEWALS)
    )

    start_background_jobs()

    assert started == []
    snapshot = SchedulerMonitor.snapshot()
    assert snapshot[JOB_RENEWALS]["enabled"] is False
    assert snapshot[JOB_RENEWALS]["last_tick"] is None


def test_background_jobs_start_when_enabled(monkeypatch):
    started: list[str] = []

    monkeypatch.setenv("ENABLE_RENEWAL_SCHEDULER", "1")
    monkeypatch.setattr(
        "backend.netpulse.main.start_renewal_scheduler", lambda: started.append(JOB_RENEWALS)
    )

    start_background_jobs()

    assert started == [JOB_RENEWALS]
    assert SchedulerMonitor.snapshot()[JOB_RENEWALS]["enabled"] is True


def test_background_jobs_stop_all(monkeypatch):
    stopped: list[str] = []

    monkeypatch.setattr(
        "backend.netpulse.main.stop_renewal_scheduler", lambda: stopped.append(JOB_RENEWALS)
    )
    monkeypatch.setattr(
        "backend.netpulse.main.shutdown_checkout_service", lambda: stopped.append("checkout")
    )

    stop_background_jobs()

    assert stopped == [JOB_RENEWALS, "checkout"]


def test_scheduler_health_endpoint_reports_status(client):
    SchedulerMonitor.set_job_enabled(JOB_RENEWALS, True)
    SchedulerMonitor.record_tick(JOB_RENEWALS)
    SchedulerMonitor.record_summary(JOB_RENEWALS, {"processed": 3, "renewed": 2, "failed": 1})
    SchedulerMonitor.record_error(JOB_RENEWALS, "client 42: access server unreachable")

    response = client.get("/metrics/scheduler")

    assert response.status_code == 200
    status = response.json()["jobs"][JOB_RENEWALS]
    assert status["enabled"] is True
    assert isinstance(status["last_tick"], str)
    assert status["last_summary"]["renewed"] == 2
    assert any("access server unreachable" in entry for entry in status["recent_errors"])
