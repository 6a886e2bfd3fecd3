"""
Unit Tests for Custom Exceptions

Tests cover:
- Exception hierarchy
- retry_allowed flag behavior
- Exception attributes
"""

import pytest

from leadflow.core.exceptions import (
    LeadflowException,
    WorkflowError,
    WorkflowNotFoundError,
    StepConfigError,
    WorkflowValidationError,
    TemplateError,
    CollaboratorError,
    CollaboratorUnavailableError,
    DatabaseError,
    ConfigurationError,
)


@pytest.mark.unit
def test_leadflow_exception_base():
    """Test LeadflowException base class"""
    exc = LeadflowException("Test error")

    assert str(exc) == "Test error"
    assert exc.message == "Test error"
    assert exc.retry_allowed is True


@pytest.mark.unit
def test_workflow_not_found_error():
    exc = WorkflowNotFoundError(42)

    assert isinstance(exc, WorkflowError)
    assert exc.message == "Workflow 42 not found"
    assert exc.workflow_id == 42
    assert exc.retry_allowed is False


@pytest.mark.unit
def test_step_config_error_keeps_step_type():
    exc = StepConfigError("Invalid configuration for wait step", step_type="wait")

    assert isinstance(exc, WorkflowError)
    assert exc.step_type == "wait"
    assert exc.retry_allowed is False


@pytest.mark.unit
def test_workflow_validation_error_lists_every_problem():
    """All validation errors are joined into the message"""
    exc = WorkflowValidationError(["Lead is on Do Not Call list", "Lead has no phone number"])

    assert exc.message == "Cannot start workflow: Lead is on Do Not Call list; Lead has no phone number"
    assert exc.validation_errors == ["Lead is on Do Not Call list", "Lead has no phone number"]
    assert exc.retry_allowed is False


@pytest.mark.unit
def test_template_error():
    exc = TemplateError("Unknown template variable(s): {{promo}}", placeholders=["promo"])

    assert exc.placeholders == ["promo"]
    assert exc.retry_allowed is False
    assert TemplateError("bad").placeholders == []


@pytest.mark.unit
def test_collaborator_errors():
    """Collaborator failures are retryable; an open breaker is a collaborator error"""
    exc = CollaboratorError("sms-messaging returned 502", service="sms-messaging", status_code=502)
    unavailable = CollaboratorUnavailableError("outbound-calling")

    assert exc.retry_allowed is True
    assert exc.status_code == 502
    assert isinstance(unavailable, CollaboratorError)
    assert unavailable.service == "outbound-calling"
    assert "circuit breaker open" in unavailable.message


@pytest.mark.unit
def test_infrastructure_errors():
    assert DatabaseError("connection reset").retry_allowed is True

    config_error = ConfigurationError("FUNCTIONS_BASE_URL environment variable not set", setting="FUNCTIONS_BASE_URL")
    assert config_error.retry_allowed is False
    assert config_error.setting == "FUNCTIONS_BASE_URL"


@pytest.mark.unit
def test_all_errors_share_base():
    for exc in (
        WorkflowNotFoundError(1),
        StepConfigError("x"),
        WorkflowValidationError(["x"]),
        TemplateError("x"),
        CollaboratorError("x"),
        DatabaseError("x"),
        ConfigurationError("x"),
    ):
        assert isinstance(exc, LeadflowException)
