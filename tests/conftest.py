"""
Pytest fixtures for LeadFlow tests

This module provides shared fixtures for all tests:
- Database session fixtures (in-memory SQLite shared with the API client)
- A controllable clock
- Mock collaborator clients
- Factories for leads, campaigns and workflows
"""

import os

# leadflow.database and the Celery app read these at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")

import pytest
from datetime import datetime, timedelta
from unittest.mock import MagicMock
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from leadflow.models import (
    Base,
    Lead,
    Campaign,
    CampaignPhonePool,
    LeadWorkflowProgress,
    PhoneNumber,
    WorkflowDefinition,
    WorkflowStep,
)
from leadflow.core.circuit_breaker import reset_all_breakers
from leadflow.core.integrations import FunctionsClient, WebhookSender


FIXED_NOW = datetime(2026, 3, 10, 14, 0, 0)


# ============================================================================
# DATABASE FIXTURES
# ============================================================================

@pytest.fixture(scope="function")
def db_engine():
    """
    In-memory SQLite engine.
    StaticPool keeps one connection so the FastAPI TestClient sees the same data.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )
    Base.metadata.create_all(engine)

    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autocommit=False, autoflush=False)


@pytest.fixture(scope="function")
def db_session(session_factory):
    """
    Each test gets a fresh database that's torn down after the test.
    """
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


# ============================================================================
# CLOCK
# ============================================================================

class FakeClock:
    """Callable clock returning a settable naive UTC time"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(FIXED_NOW)


# ============================================================================
# COLLABORATOR FIXTURES
# ============================================================================

@pytest.fixture
def functions_client():
    """
    Mock functions client: every collaborator call succeeds.
    """
    mock = MagicMock(spec=FunctionsClient)
    mock.place_call.return_value = {"callId": "call-123"}
    mock.send_sms.return_value = {"sid": "SM-123"}
    mock.generate_and_send_ai_sms.return_value = {"sid": "SM-456", "message": "Hi there!"}
    return mock


@pytest.fixture
def webhook_sender():
    mock = MagicMock(spec=WebhookSender)
    mock.send.return_value = 200
    return mock


@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    """Breakers are process-wide; start every test CLOSED"""
    reset_all_breakers()
    yield
    reset_all_breakers()


# ============================================================================
# DATA FACTORIES
# ============================================================================

@pytest.fixture
def make_lead(db_session):
    """
    Factory: make_lead(first_name="Dana", phone_number="+15551234567", ...)
    """
    def _make_lead(**overrides):
        values = {
            "user_id": "user-1",
            "first_name": "Dana",
            "last_name": "Scully",
            "phone_number": "+15551234567",
            "email": "dana@example.com",
            "status": "new",
            "tags": [],
            "do_not_call": False,
        }
        values.update(overrides)
        lead = Lead(**values)
        db_session.add(lead)
        db_session.commit()
        db_session.refresh(lead)
        return lead

    return _make_lead


@pytest.fixture
def make_workflow(db_session):
    """
    Factory: make_workflow([("wait", {"delay_minutes": 30}), ("sms", {...})])

    Steps are numbered 1..N in list order.
    """
    def _make_workflow(steps, name="Test Workflow", user_id="user-1"):
        workflow = WorkflowDefinition(name=name, user_id=user_id)
        for number, (step_type, step_config) in enumerate(steps, start=1):
            workflow.steps.append(WorkflowStep(
                step_number=number,
                step_type=step_type,
                step_config=step_config,
            ))
        db_session.add(workflow)
        db_session.commit()
        db_session.refresh(workflow)
        return workflow

    return _make_workflow


@pytest.fixture
def make_campaign(db_session):
    """
    Factory: make_campaign(workflow, agent_id="agent-1", outbound_number="+15550001111")
    """
    def _make_campaign(workflow=None, status="active", agent_id="agent-1", outbound_number=None, user_id="user-1"):
        campaign = Campaign(
            user_id=user_id,
            name="Test Campaign",
            status=status,
            workflow_id=workflow.id if workflow else None,
            agent_id=agent_id,
        )
        db_session.add(campaign)
        db_session.flush()

        if outbound_number:
            number = PhoneNumber(user_id=user_id, number=outbound_number, status="active")
            db_session.add(number)
            db_session.flush()
            db_session.add(CampaignPhonePool(
                campaign_id=campaign.id,
                phone_number_id=number.id,
                role="outbound",
            ))

        db_session.commit()
        db_session.refresh(campaign)
        return campaign

    return _make_campaign


@pytest.fixture
def user_number(db_session):
    """An active number owned by user-1 (last-resort SMS sender)"""
    number = PhoneNumber(user_id="user-1", number="+15559990000", status="active")
    db_session.add(number)
    db_session.commit()
    return number


@pytest.fixture
def make_progress(db_session):
    """
    Factory: make_progress(lead, workflow, step_number=1, next_action_at=FIXED_NOW, ...)

    Inserts an enrollment row directly, bypassing enrollment validation.
    """
    def _make_progress(lead, workflow, step_number=1, status="active", next_action_at=FIXED_NOW,
                       campaign=None, user_id="user-1", claimed_until=None):
        step = next((s for s in workflow.steps if s.step_number == step_number), None)
        progress = LeadWorkflowProgress(
            user_id=user_id,
            lead_id=lead.id,
            workflow_id=workflow.id,
            campaign_id=campaign.id if campaign else None,
            current_step_id=step.id if step else None,
            status=status,
            next_action_at=next_action_at,
            started_at=FIXED_NOW,
            claimed_until=claimed_until,
        )
        db_session.add(progress)
        db_session.commit()
        db_session.refresh(progress)
        return progress

    return _make_progress
