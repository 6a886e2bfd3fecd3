"""
Enrollment - starting leads on workflows

start_workflow runs every check before touching the database:
1. Already enrolled (active/paused) in this workflow → no-op result
2. Another lead with the same phone already enrolled → no-op result
3. Workflow exists and has steps
4. Lead and every step validated; all problems reported together
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models import Campaign, Lead, LeadWorkflowProgress, ProgressStatus, WorkflowDefinition
from .exceptions import StepConfigError, WorkflowNotFoundError, WorkflowValidationError
from .progress import ProgressStore
from .scheduling import calculate_next_action_time, normalize_phone, utcnow
from .steps import (
    AiSmsStepConfig,
    CallStepConfig,
    SmsStepConfig,
    WaitStepConfig,
    canonical_step_type,
    parse_step_config,
)
from .templating import find_unknown_placeholders

logger = logging.getLogger(__name__)

ENROLLED = "enrolled"
ALREADY_ENROLLED = "already_enrolled"
DUPLICATE_PHONE_ENROLLED = "duplicate_phone_enrolled"


@dataclass
class EnrollmentResult:
    """
    Outcome of start_workflow.

    Attributes:
        action: enrolled, already_enrolled or duplicate_phone_enrolled
        progress: The new row (enrolled) or the existing row (already_enrolled)
        existing_lead_id: Lead holding the phone number (duplicate_phone_enrolled)
        message: Human-readable explanation for the no-op outcomes
    """
    action: str
    progress: Optional[LeadWorkflowProgress] = None
    existing_lead_id: Optional[int] = None
    message: Optional[str] = None

    @property
    def enrolled(self) -> bool:
        return self.action == ENROLLED


class EnrollmentService:
    """Validates and creates workflow enrollments"""

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock
        self.progress_store = ProgressStore(db)

    def start_workflow(
        self,
        lead_id: int,
        workflow_id: int,
        user_id: Optional[str],
        campaign_id: Optional[int] = None
    ) -> EnrollmentResult:
        """
        Enroll a lead in a workflow.

        Returns:
            EnrollmentResult (commits the new row when enrolled)

        Raises:
            WorkflowNotFoundError: If the workflow does not exist
            WorkflowValidationError: If the workflow has no steps, or the lead
                or any step fails validation (nothing is written)
        """
        logger.info(
            f"Checking for existing enrollment: lead={lead_id}, workflow={workflow_id}, campaign={campaign_id}"
        )

        existing = self.progress_store.get_open(lead_id, workflow_id)
        if existing:
            logger.info(
                f"Lead {lead_id} already has {existing.status} progress (id: {existing.id}), skipping enrollment"
            )
            return self._already_enrolled(existing)

        lead = self.db.get(Lead, lead_id)

        duplicate_lead_id = self._find_duplicate_phone(lead, workflow_id)
        if duplicate_lead_id is not None:
            logger.info(f"Phone already in workflow {workflow_id} via lead {duplicate_lead_id}, skipping")
            return EnrollmentResult(
                action=DUPLICATE_PHONE_ENROLLED,
                existing_lead_id=duplicate_lead_id,
                message="Another lead with this phone number is already in the workflow",
            )

        workflow = self.db.get(WorkflowDefinition, workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)

        steps = sorted(workflow.steps, key=lambda s: s.step_number)
        if not steps:
            raise WorkflowValidationError(["Workflow has no steps"])

        campaign = self.db.get(Campaign, campaign_id) if campaign_id else None

        validation_errors = self._validate_lead(lead) + self._validate_steps(steps, campaign, campaign_id)
        if validation_errors:
            logger.error(f"Validation failed: {validation_errors}")
            raise WorkflowValidationError(validation_errors)

        first_step = steps[0]
        now = self.clock()
        progress = LeadWorkflowProgress(
            user_id=user_id,
            lead_id=lead_id,
            workflow_id=workflow_id,
            campaign_id=campaign_id,
            current_step_id=first_step.id,
            status=ProgressStatus.ACTIVE,
            next_action_at=calculate_next_action_time(first_step.step_type, first_step.step_config, now),
            started_at=now,
            created_at=now,
            updated_at=now,
        )

        try:
            self.db.add(progress)
            self.db.commit()
        except IntegrityError:
            # A concurrent start won the open-enrollment unique index
            self.db.rollback()
            existing = self.progress_store.get_open(lead_id, workflow_id)
            if existing is None:
                raise
            return self._already_enrolled(existing)

        self.db.refresh(progress)
        logger.info(f"Started workflow {workflow_id} for lead {lead_id}")
        return EnrollmentResult(action=ENROLLED, progress=progress)

    def _already_enrolled(self, existing: LeadWorkflowProgress) -> EnrollmentResult:
        return EnrollmentResult(
            action=ALREADY_ENROLLED,
            progress=existing,
            message=f"Lead already enrolled in workflow ({existing.status})",
        )

    def _find_duplicate_phone(self, lead: Optional[Lead], workflow_id: int) -> Optional[int]:
        if lead is None or not lead.phone_number:
            return None

        normalized = normalize_phone(lead.phone_number)
        if not normalized:
            return None

        for progress in self.progress_store.list_open_for_workflow(workflow_id):
            if progress.lead_id == lead.id or progress.lead is None:
                continue
            if normalize_phone(progress.lead.phone_number) == normalized:
                return progress.lead_id
        return None

    def _validate_lead(self, lead: Optional[Lead]) -> List[str]:
        if lead is None:
            return ["Lead not found"]

        errors = []
        if lead.do_not_call:
            errors.append("Lead is on Do Not Call list")
        if not lead.phone_number:
            errors.append("Lead has no phone number")
        return errors

    def _validate_steps(self, steps, campaign: Optional[Campaign], campaign_id: Optional[int]) -> List[str]:
        errors = []

        for step in steps:
            label = f"Step {step.step_number} ({step.step_type})"

            # Unknown types are skipped at run time, nothing to validate
            if canonical_step_type(step.step_type) is None:
                continue

            try:
                config = parse_step_config(step.step_type, step.step_config)
            except StepConfigError as e:
                errors.append(f"{label}: {e.message}")
                continue

            if isinstance(config, WaitStepConfig):
                if not config.has_delay:
                    errors.append(f"{label}: No delay configured")

            elif isinstance(config, CallStepConfig):
                agent_id = (campaign.agent_id if campaign else None) or config.agent_id
                if not agent_id:
                    if not campaign_id:
                        hint = "Campaign ID is required for call steps, or configure agent_id in step config."
                    else:
                        hint = "Configure agent_id in campaign or step."
                    errors.append(f"{label}: No AI agent configured. {hint}")
                if not campaign_id:
                    logger.warning(f"{label} has no campaign - may fail if no phone numbers available")

            elif isinstance(config, SmsStepConfig):
                if not config.body:
                    errors.append(f"{label}: No message content")
                else:
                    unknown = find_unknown_placeholders(config.body)
                    if unknown:
                        names = ", ".join("{{" + name + "}}" for name in unknown)
                        errors.append(f"{label}: Unknown template variable(s): {names}")

            elif isinstance(config, AiSmsStepConfig):
                if not config.ai_prompt:
                    logger.info(f"{label} has no prompt - will use defaults")

        return errors
