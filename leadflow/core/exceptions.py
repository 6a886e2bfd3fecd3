"""
Custom Exceptions for LeadFlow

This module defines custom exception types for error handling and retry decisions.

Exception Hierarchy:
- LeadflowException (base)
  - WorkflowError
    - WorkflowNotFoundError (don't retry)
    - StepConfigError (don't retry)
    - WorkflowValidationError (don't retry)
  - TemplateError (don't retry)
  - CollaboratorError (retry)
    - CollaboratorUnavailableError (retry after circuit breaker timeout)
  - DatabaseError (retry)
  - ConfigurationError (don't retry)
"""

from typing import List, Optional


class LeadflowException(Exception):
    """Base exception for all LeadFlow errors"""

    def __init__(self, message: str, retry_allowed: bool = True):
        super().__init__(message)
        self.message = message
        self.retry_allowed = retry_allowed


# ============================================================================
# WORKFLOW ERRORS
# ============================================================================

class WorkflowError(LeadflowException):
    """Base class for workflow-related errors"""
    pass


class WorkflowNotFoundError(WorkflowError):
    """
    Workflow definition does not exist.
    Should NOT be retried.
    """

    def __init__(self, workflow_id: int):
        super().__init__(f"Workflow {workflow_id} not found", retry_allowed=False)
        self.workflow_id = workflow_id


class StepConfigError(WorkflowError):
    """
    Step type unknown or step configuration invalid.
    Should NOT be retried - fix the workflow definition.
    """

    def __init__(self, message: str, step_type: Optional[str] = None):
        super().__init__(message, retry_allowed=False)
        self.step_type = step_type


class WorkflowValidationError(WorkflowError):
    """
    A lead cannot be enrolled: every problem found is listed in validation_errors.
    Should NOT be retried until the lead, campaign or workflow is fixed.
    """

    def __init__(self, validation_errors: List[str]):
        super().__init__(
            f"Cannot start workflow: {'; '.join(validation_errors)}",
            retry_allowed=False
        )
        self.validation_errors = list(validation_errors)


# ============================================================================
# TEMPLATE ERRORS
# ============================================================================

class TemplateError(LeadflowException):
    """
    Message template references placeholders outside the lead field schema.
    Should NOT be retried - fix the message.
    """

    def __init__(self, message: str, placeholders: Optional[List[str]] = None):
        super().__init__(message, retry_allowed=False)
        self.placeholders = placeholders or []


# ============================================================================
# COLLABORATOR ERRORS
# ============================================================================

class CollaboratorError(LeadflowException):
    """
    An external collaborator (call placement, SMS, AI SMS, webhook) failed.
    Retry is allowed, but the engine leaves retries to the collaborator.
    """

    def __init__(self, message: str, service: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message, retry_allowed=True)
        self.service = service
        self.status_code = status_code


class CollaboratorUnavailableError(CollaboratorError):
    """
    Collaborator circuit breaker is OPEN, the call was not attempted.
    """

    def __init__(self, service: str):
        super().__init__(f"Service '{service}' unavailable (circuit breaker open)", service=service)


# ============================================================================
# INFRASTRUCTURE ERRORS
# ============================================================================

class DatabaseError(LeadflowException):
    """
    Database connection or query error.
    Should be retried (transient failures).
    """

    def __init__(self, message: str):
        super().__init__(message, retry_allowed=True)


class ConfigurationError(LeadflowException):
    """
    Required configuration (environment variable) is missing.
    Should NOT be retried - fix the deployment.
    """

    def __init__(self, message: str, setting: Optional[str] = None):
        super().__init__(message, retry_allowed=False)
        self.setting = setting
