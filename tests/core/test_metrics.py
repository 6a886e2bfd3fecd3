"""
Unit Tests for metrics collection and system health
"""

import pytest
from datetime import timedelta

from leadflow.models import StepExecution
from leadflow.core.circuit_breaker import get_circuit_breaker
from leadflow.core.metrics import MetricsCollector, check_system_health
from leadflow.core.scheduling import utcnow


def _add_executions(db_session, progress, outcomes, step_type="sms", age=timedelta(minutes=5)):
    for success in outcomes:
        db_session.add(StepExecution(
            progress_id=progress.id,
            lead_id=progress.lead_id,
            workflow_id=progress.workflow_id,
            step_type=step_type,
            action="sms_sent" if success else "sms_failed",
            success=success,
            timestamp=utcnow() - age,
        ))
    db_session.commit()


@pytest.fixture
def progress(make_lead, make_workflow, make_progress):
    return make_progress(make_lead(), make_workflow([("sms", {"sms_content": "x"})]))


@pytest.mark.unit
def test_enrollment_stats(db_session, make_lead, make_workflow, make_progress):
    workflow = make_workflow([("sms", {"sms_content": "x"})])
    make_progress(make_lead(), workflow)
    make_progress(make_lead(phone_number="+15550000002"), workflow, next_action_at=utcnow() + timedelta(days=1))
    make_progress(make_lead(phone_number="+15550000003"), workflow, status="paused")
    make_progress(make_lead(phone_number="+15550000004"), workflow, status="completed")

    stats = MetricsCollector(db_session).get_enrollment_stats()

    assert stats["total"] == 4
    assert stats["active"] == 2
    assert stats["paused"] == 1
    assert stats["completed"] == 1
    assert stats["removed"] == 0
    assert stats["due"] == 1


@pytest.mark.unit
def test_step_stats(db_session, progress):
    _add_executions(db_session, progress, [True, True, True, False])
    _add_executions(db_session, progress, [True], step_type="call")
    _add_executions(db_session, progress, [False], age=timedelta(hours=30))

    stats = MetricsCollector(db_session).get_step_stats(hours=24)

    assert stats["total"] == 5
    assert stats["succeeded"] == 4
    assert stats["failed"] == 1
    assert stats["failure_rate"] == 20.0
    assert stats["by_type"] == {"sms": 4, "call": 1}


@pytest.mark.unit
def test_step_stats_empty(db_session):
    stats = MetricsCollector(db_session).get_step_stats()

    assert stats["total"] == 0
    assert stats["failure_rate"] == 0.0


@pytest.mark.unit
def test_circuit_breaker_status(db_session):
    breaker = get_circuit_breaker("outbound-calling")
    for _ in range(5):
        breaker.record_failure()

    status = MetricsCollector(db_session).get_circuit_breaker_status()

    assert status["is_healthy"] is False
    assert status["breakers"]["outbound-calling"]["state"] == "open"


@pytest.mark.unit
def test_workflow_stats(db_session, progress, make_workflow):
    make_workflow([("tag", {})], name="Unused")

    stats = MetricsCollector(db_session).get_workflow_stats()

    assert stats == {"total_workflows": 2, "active_workflows": 1}


@pytest.mark.unit
def test_get_all_metrics_keys(db_session):
    metrics = MetricsCollector(db_session).get_all_metrics()

    assert set(metrics) == {"timestamp", "enrollments", "steps", "circuit_breakers", "workflows", "database"}
    assert metrics["database"]["connected"] is True


@pytest.mark.unit
def test_system_healthy(db_session, progress):
    _add_executions(db_session, progress, [True, True, False])

    health = check_system_health(db_session)

    assert health["healthy"] is True
    assert health["components"] == {"database": True, "collaborators": True, "step_failure_rate": True}
    assert health["issues"] is None


@pytest.mark.unit
def test_system_unhealthy(db_session, progress):
    _add_executions(db_session, progress, [False, False, True])
    breaker = get_circuit_breaker("sms-messaging")
    for _ in range(5):
        breaker.record_failure()

    health = check_system_health(db_session)

    assert health["healthy"] is False
    assert "Circuit breaker open for: sms-messaging" in health["issues"]
    assert any(issue.startswith("High step failure rate") for issue in health["issues"])
