"""
Unit Tests for WorkflowEngine

Tests cover:
- execute_step: step result wrapping, advancing, nudge tracking, audit trail
- Campaign drift gate
- Missing / unknown / misconfigured steps
- execute_pending: batch summary, drain loop, sequence-paused skip,
  claim lease, per-row error isolation
"""

import pytest
from datetime import datetime, timedelta
from unittest.mock import patch

from celery.exceptions import SoftTimeLimitExceeded

from leadflow.models import LeadWorkflowProgress, ProgressStatus, StepExecution
from leadflow.core.engine import WorkflowEngine, make_json_serializable
from leadflow.core.exceptions import CollaboratorError
from leadflow.core.nudges import NudgeTracker

FIXED_NOW = datetime(2026, 3, 10, 14, 0, 0)


@pytest.fixture
def engine(db_session, functions_client, webhook_sender, clock):
    return WorkflowEngine(
        db_session,
        functions_client=functions_client,
        webhook_sender=webhook_sender,
        clock=clock,
        batch_size=50,
        max_steps_per_pass=10,
        claim_ttl_seconds=300,
    )


def _executions(db_session, progress):
    return (
        db_session.query(StepExecution)
        .filter(StepExecution.progress_id == progress.id)
        .order_by(StepExecution.id.asc())
        .all()
    )


# ============================================================================
# EXECUTE STEP
# ============================================================================

@pytest.mark.unit
def test_execute_step_wraps_result_and_advances(db_session, engine, make_lead, make_workflow, make_progress):
    workflow = make_workflow([("tag", {"new_status": "contacted"}), ("wait", {"delay_hours": 1})])
    progress = make_progress(make_lead(), workflow)

    result = engine.execute_step(progress)

    assert result == {"stepType": "tag", "completed": True, "success": True, "action": "lead_updated"}
    assert progress.current_step_id == workflow.steps[1].id
    assert progress.next_action_at == FIXED_NOW + timedelta(hours=1)
    assert progress.last_action_at == FIXED_NOW


@pytest.mark.unit
def test_execute_step_records_contact(db_session, engine, make_lead, make_workflow, make_progress):
    lead = make_lead()
    progress = make_progress(lead, make_workflow([("condition", {}), ("condition", {})]))

    engine.execute_step(progress)
    engine.execute_step(progress)
    db_session.commit()
    db_session.expire_all()

    tracking = NudgeTracker(db_session).get(lead.id)
    assert tracking.nudge_count == 2
    assert tracking.last_ai_contact_at == FIXED_NOW


@pytest.mark.unit
def test_execute_step_writes_audit_entry(db_session, engine, make_lead, make_workflow, make_progress, functions_client):
    functions_client.place_call.side_effect = CollaboratorError("No available phone numbers")
    workflow = make_workflow([("call", {"agent_id": "a-1"}), ("sms", {"sms_content": "x"})])
    progress = make_progress(make_lead(), workflow)

    result = engine.execute_step(progress)

    assert result["success"] is False
    [entry] = _executions(db_session, progress)
    assert entry.step_type == "call"
    assert entry.step_number == 1
    assert entry.action == "call_failed"
    assert entry.success is False
    assert entry.error_message == "No available phone numbers"
    assert entry.result["stepType"] == "call"
    assert entry.timestamp == FIXED_NOW


@pytest.mark.unit
def test_failed_step_still_advances(engine, make_lead, make_workflow, make_progress):
    workflow = make_workflow([("sms", {}), ("tag", {})])
    progress = make_progress(make_lead(), workflow)

    result = engine.execute_step(progress)

    assert result["action"] == "sms_failed"
    assert progress.current_step_id == workflow.steps[1].id
    assert progress.status == ProgressStatus.ACTIVE


@pytest.mark.unit
def test_last_step_completes_workflow(engine, make_lead, make_workflow, make_progress):
    progress = make_progress(make_lead(), make_workflow([("tag", {})]))

    engine.execute_step(progress)

    assert progress.status == ProgressStatus.COMPLETED
    assert progress.completed_at == FIXED_NOW


@pytest.mark.unit
def test_end_step_completes_without_advancing(db_session, engine, make_lead, make_workflow, make_progress):
    lead = make_lead()
    workflow = make_workflow([("stop", {}), ("sms", {"sms_content": "never"})])
    progress = make_progress(lead, workflow)

    result = engine.execute_step(progress)

    assert result == {"success": True, "action": "workflow_ended"}
    assert progress.status == ProgressStatus.COMPLETED
    assert progress.current_step_id == workflow.steps[0].id
    assert NudgeTracker(db_session).get(lead.id) is None
    assert len(_executions(db_session, progress)) == 1


@pytest.mark.unit
def test_unknown_step_type_is_skipped(engine, make_lead, make_workflow, make_progress, functions_client):
    workflow = make_workflow([("email", {"subject": "Hi"}), ("tag", {})])
    progress = make_progress(make_lead(), workflow)

    result = engine.execute_step(progress)

    assert result == {
        "stepType": "email",
        "completed": True,
        "success": True,
        "action": "step_skipped",
        "reason": "Unknown step type: email",
    }
    assert progress.current_step_id == workflow.steps[1].id


@pytest.mark.unit
def test_invalid_config_at_runtime_fails_step(engine, make_lead, make_workflow, make_progress):
    workflow = make_workflow([("wait", {"time_of_day": "noon"}), ("tag", {})])
    progress = make_progress(make_lead(), workflow)

    result = engine.execute_step(progress)

    assert result["success"] is False
    assert result["action"] == "step_failed"
    assert "Invalid configuration for wait step" in result["error"]
    assert progress.current_step_id == workflow.steps[1].id


@pytest.mark.unit
def test_missing_step_completes(db_session, engine, make_lead, make_workflow, make_progress):
    progress = make_progress(make_lead(), make_workflow([("tag", {})]))
    progress.current_step_id = None
    progress.current_step = None
    db_session.commit()

    result = engine.execute_step(progress)

    assert result == {"success": False, "action": "skipped", "error": "Invalid step configuration"}
    assert progress.status == ProgressStatus.COMPLETED
    [entry] = _executions(db_session, progress)
    assert entry.step_id is None


# ============================================================================
# CAMPAIGN DRIFT GATE
# ============================================================================

@pytest.mark.unit
@pytest.mark.parametrize("campaign_status,points_at_workflow", [
    ("paused", True),
    ("active", False),
])
def test_drift_pauses_row(db_session, engine, make_lead, make_workflow, make_progress, make_campaign,
                          functions_client, campaign_status, points_at_workflow):
    workflow = make_workflow([("sms", {"sms_content": "Hi", "from_number": "+1555"})])
    other = make_workflow([("tag", {})], name="Replacement")
    campaign = make_campaign(workflow if points_at_workflow else other, status=campaign_status)
    progress = make_progress(make_lead(), workflow, campaign=campaign)

    result = engine.execute_step(progress)

    assert result == {"success": True, "action": "paused_due_to_campaign_workflow_change"}
    assert progress.status == ProgressStatus.PAUSED
    assert progress.current_step_id == workflow.steps[0].id
    assert progress.last_action_at is None
    functions_client.send_sms.assert_not_called()


@pytest.mark.unit
def test_campaign_without_workflow_is_drift(engine, make_lead, make_workflow, make_progress, make_campaign):
    workflow = make_workflow([("tag", {})])
    progress = make_progress(make_lead(), workflow, campaign=make_campaign(None))

    assert engine.execute_step(progress)["action"] == "paused_due_to_campaign_workflow_change"


@pytest.mark.unit
def test_matching_campaign_runs_step(engine, make_lead, make_workflow, make_progress, make_campaign):
    workflow = make_workflow([("tag", {})])
    progress = make_progress(make_lead(), workflow, campaign=make_campaign(workflow))

    assert engine.execute_step(progress)["action"] == "lead_updated"


# ============================================================================
# EXECUTE PENDING
# ============================================================================

@pytest.mark.unit
def test_execute_pending_summary(engine, make_lead, make_workflow, make_progress):
    workflow = make_workflow([("sms", {}), ("wait", {"delay_days": 1}), ("tag", {})])
    first = make_progress(make_lead(), workflow)
    make_progress(make_lead(phone_number="+15550000002"), workflow, next_action_at=FIXED_NOW + timedelta(hours=1))

    summary = engine.execute_pending()

    assert summary["processed"] == 1
    assert summary["succeeded"] == 1
    assert summary["failed"] == 0
    assert summary["skipped"] == 0
    assert summary["stepFailures"] == 1
    [row] = summary["results"]
    assert row["leadId"] == first.lead_id
    assert row["progressId"] == first.id
    assert row["success"] is True
    assert [step["action"] for step in row["steps"]] == ["sms_failed"]


@pytest.mark.unit
def test_zero_delay_wait_flows_into_next_step(engine, make_lead, make_workflow, make_progress):
    workflow = make_workflow([("wait", {"delay_minutes": 0}), ("tag", {"new_status": "x"}), ("wait", {"delay_days": 1})])
    progress = make_progress(make_lead(), workflow)

    summary = engine.execute_pending()

    actions = [step["action"] for step in summary["results"][0]["steps"]]
    assert actions == ["wait_completed", "lead_updated"]
    assert progress.current_step_id == workflow.steps[2].id
    assert progress.next_action_at == FIXED_NOW + timedelta(days=1)


@pytest.mark.unit
def test_drain_is_bounded(db_session, functions_client, webhook_sender, clock, make_lead, make_workflow, make_progress):
    workflow = make_workflow([("condition", {})] * 6)
    make_progress(make_lead(), workflow)
    engine = WorkflowEngine(db_session, functions_client, webhook_sender, clock=clock, max_steps_per_pass=4)

    summary = engine.execute_pending()

    assert len(summary["results"][0]["steps"]) == 4


@pytest.mark.unit
def test_sequence_paused_lead_is_skipped(db_session, engine, make_lead, make_workflow, make_progress):
    lead = make_lead()
    progress = make_progress(lead, make_workflow([("tag", {})]))
    NudgeTracker(db_session).set_sequence_paused(lead.id, "user-1", True, "engaged")
    db_session.commit()

    summary = engine.execute_pending()

    assert summary["skipped"] == 1
    assert summary["processed"] == 0
    assert summary["results"] == []
    db_session.refresh(progress)
    assert progress.status == ProgressStatus.ACTIVE
    assert progress.next_action_at == FIXED_NOW


@pytest.mark.unit
def test_row_claimed_elsewhere_is_skipped(db_session, engine, make_lead, make_workflow, make_progress):
    progress = make_progress(make_lead(), make_workflow([("tag", {})]))

    # Another pass takes the lease between selection and claim
    real_due = engine.progress_store.due

    def due_then_claim(now, limit):
        rows = real_due(now, limit)
        db_session.query(LeadWorkflowProgress).filter(LeadWorkflowProgress.id == progress.id).update(
            {LeadWorkflowProgress.claimed_until: now + timedelta(minutes=5)}, synchronize_session=False
        )
        return rows

    with patch.object(engine.progress_store, "due", side_effect=due_then_claim):
        summary = engine.execute_pending()

    assert summary["skipped"] == 1
    assert summary["processed"] == 0
    assert _executions(db_session, progress) == []


@pytest.mark.unit
def test_lease_released_after_pass(db_session, engine, make_lead, make_workflow, make_progress):
    progress = make_progress(make_lead(), make_workflow([("tag", {}), ("wait", {"delay_days": 1})]))

    engine.execute_pending()
    db_session.expire_all()

    assert db_session.get(LeadWorkflowProgress, progress.id).claimed_until is None


@pytest.mark.unit
def test_row_error_is_isolated(db_session, engine, make_lead, make_workflow, make_progress):
    workflow = make_workflow([("tag", {}), ("wait", {"delay_days": 1})])
    broken = make_progress(make_lead(), workflow)
    healthy = make_progress(make_lead(phone_number="+15550000002"), workflow)

    real_execute_step = engine.execute_step

    def flaky(progress):
        if progress.id == broken.id:
            raise RuntimeError("database connection lost")
        return real_execute_step(progress)

    with patch.object(engine, "execute_step", side_effect=flaky):
        summary = engine.execute_pending()

    assert summary["processed"] == 2
    assert summary["failed"] == 1
    assert summary["succeeded"] == 1
    failed_row = next(row for row in summary["results"] if not row["success"])
    assert failed_row["progressId"] == broken.id
    assert failed_row["error"] == "database connection lost"

    db_session.expire_all()
    assert db_session.get(LeadWorkflowProgress, healthy.id).current_step_id == workflow.steps[1].id
    assert db_session.get(LeadWorkflowProgress, broken.id).current_step_id == workflow.steps[0].id
    assert db_session.get(LeadWorkflowProgress, broken.id).claimed_until is None


@pytest.mark.unit
def test_soft_time_limit_stops_pass(db_session, engine, make_lead, make_workflow, make_progress):
    workflow = make_workflow([("tag", {}), ("wait", {"delay_days": 1})])
    first = make_progress(make_lead(), workflow)
    second = make_progress(make_lead(phone_number="+15550000002"), workflow)
    attempted = []

    def out_of_time(progress):
        attempted.append(progress.id)
        raise SoftTimeLimitExceeded()

    with patch.object(engine, "execute_step", side_effect=out_of_time):
        with pytest.raises(SoftTimeLimitExceeded):
            engine.execute_pending()

    assert len(attempted) == 1
    db_session.expire_all()
    for progress in (first, second):
        row = db_session.get(LeadWorkflowProgress, progress.id)
        assert row.claimed_until is None
        assert row.current_step_id == workflow.steps[0].id
        assert _executions(db_session, row) == []


@pytest.mark.unit
def test_execute_pending_with_nothing_due(engine):
    assert engine.execute_pending() == {
        "processed": 0,
        "succeeded": 0,
        "failed": 0,
        "skipped": 0,
        "stepFailures": 0,
        "results": [],
    }


# ============================================================================
# HELPERS
# ============================================================================

@pytest.mark.unit
def test_make_json_serializable():
    value = {"when": FIXED_NOW, "ids": (1, 2), "nested": {"obj": object}, 3: None}

    result = make_json_serializable(value)

    assert result["when"] == "2026-03-10T14:00:00"
    assert result["ids"] == [1, 2]
    assert isinstance(result["nested"]["obj"], str)
    assert result["3"] is None


@pytest.mark.unit
def test_engine_defaults_from_env(db_session, monkeypatch):
    monkeypatch.setenv("WORKFLOW_BATCH_SIZE", "25")
    monkeypatch.setenv("WORKFLOW_MAX_STEPS_PER_PASS", "3")
    monkeypatch.setenv("WORKFLOW_CLAIM_TTL_SECONDS", "120")

    engine = WorkflowEngine(db_session)

    assert engine.batch_size == 25
    assert engine.max_steps_per_pass == 3
    assert engine.claim_ttl_seconds == 120
