"""
Step Executor System for LeadFlow

This module defines one execution strategy per step type:
- CallStepExecutor: Places an AI call (with duplicate/recent-contact guards)
- SmsStepExecutor: Renders and sends a templated SMS
- AiSmsStepExecutor: Delegates message writing and sending to the AI SMS processor
- WaitStepExecutor: No side effect (the delay was applied when the step was scheduled)
- WebhookStepExecutor: Sends lead data to a configured URL
- TagStepExecutor: Updates lead status and tags
- ConditionStepExecutor: No-op branch placeholder
- EndStepExecutor: Completes the enrollment

Every executor returns a result dict with at least "success" and "action".
Collaborator and template failures become success=False results; database
errors propagate to the scheduler.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..models import (
    CallLog,
    CampaignPhonePool,
    Lead,
    LeadWorkflowProgress,
    PhoneNumber,
    WorkflowStep,
)
from .exceptions import LeadflowException
from .integrations import FunctionsClient, WebhookSender
from .progress import ProgressStore
from .steps import (
    AiSmsStepConfig,
    CallStepConfig,
    SmsStepConfig,
    StepConfig,
    TagStepConfig,
    WebhookStepConfig,
)
from .templating import render_template

logger = logging.getLogger(__name__)

RECENT_CALL_WINDOW = timedelta(minutes=5)
PENDING_CALL_STATUSES = ("queued", "ringing", "initiated", "in_progress")
CONTACTED_OUTCOMES = ("connected", "answered", "appointment_set", "callback_requested")


class StepExecutor(ABC):
    """
    Abstract interface for all step executors.

    Executors get the enrollment row, its current step, the lead and the
    typed step config, perform the step's side effect and describe what
    happened. They never move the step pointer (except EndStepExecutor,
    which finishes the enrollment).
    """

    def __init__(
        self,
        db: Session,
        functions_client: Optional[FunctionsClient] = None,
        webhook_sender: Optional[WebhookSender] = None
    ):
        self.db = db
        self.functions_client = functions_client
        self.webhook_sender = webhook_sender

    @abstractmethod
    def execute(
        self,
        progress: LeadWorkflowProgress,
        step: WorkflowStep,
        lead: Lead,
        config: StepConfig,
        now: datetime
    ) -> Dict[str, Any]:
        """
        Execute the step.

        Returns:
            Result dict: success, action, plus error/data fields

        Raises:
            SQLAlchemyError: Database failures are left to the scheduler
        """
        pass

    def _functions(self) -> FunctionsClient:
        if self.functions_client is None:
            self.functions_client = FunctionsClient()
        return self.functions_client


def resolve_from_number(db: Session, progress: LeadWorkflowProgress, configured: Optional[str]) -> Optional[str]:
    """
    Pick the sender number for an SMS step.

    Order: step from_number, the campaign's outbound pool number, then the
    user's first active number.
    """
    if configured:
        return configured

    if progress.campaign_id:
        pool_number = (
            db.query(PhoneNumber.number)
            .join(CampaignPhonePool, CampaignPhonePool.phone_number_id == PhoneNumber.id)
            .filter(
                CampaignPhonePool.campaign_id == progress.campaign_id,
                CampaignPhonePool.role == "outbound",
            )
            .order_by(CampaignPhonePool.id.asc())
            .first()
        )
        if pool_number:
            return pool_number[0]

    user_number = (
        db.query(PhoneNumber.number)
        .filter(PhoneNumber.user_id == progress.user_id, PhoneNumber.status == "active")
        .order_by(PhoneNumber.id.asc())
        .first()
    )
    return user_number[0] if user_number else None


class CallStepExecutor(StepExecutor):
    """
    Places an outbound call through the calling service.

    Skips when a call for the lead is already in flight (last 5 minutes),
    and, with skip_if_contacted, when a recent call already reached the lead.
    """

    def execute(self, progress, step, lead, config: CallStepConfig, now):
        logger.info(f"Initiating call to lead {lead.id} (step: {step.id})")

        recent_calls: List[CallLog] = (
            self.db.query(CallLog)
            .filter(CallLog.lead_id == lead.id, CallLog.created_at >= now - RECENT_CALL_WINDOW)
            .order_by(CallLog.created_at.desc())
            .all()
        )

        pending_call = next((c for c in recent_calls if c.status in PENDING_CALL_STATUSES), None)
        if pending_call:
            logger.info(f"Lead {lead.id} has pending call {pending_call.id}, skipping duplicate")
            return {"success": True, "action": "call_already_pending", "callId": pending_call.id}

        if config.skip_if_contacted:
            recent_success = next((c for c in recent_calls if c.outcome in CONTACTED_OUTCOMES), None)
            if recent_success:
                logger.info(f"Lead {lead.id} was recently contacted and skip_if_contacted=true, skipping")
                return {"success": True, "action": "recently_contacted", "callId": recent_success.id}

        try:
            data = self._functions().place_call(
                lead_id=lead.id,
                campaign_id=progress.campaign_id,
                user_id=progress.user_id,
                workflow_step_id=step.id,
                agent_id=config.agent_id,
            )
        except LeadflowException as e:
            logger.error(f"Call step error for lead {lead.id}: {e.message}")
            return {"success": False, "action": "call_failed", "error": e.message}

        logger.info(f"Call initiated for lead {lead.id}")
        return {"success": True, "action": "call_initiated", "data": data}


class SmsStepExecutor(StepExecutor):
    """Renders the step's message for the lead and sends it"""

    def execute(self, progress, step, lead, config: SmsStepConfig, now):
        logger.info(f"Sending SMS to lead {lead.id}")

        try:
            if not config.body:
                return self._failed(lead, "No SMS content configured")

            from_number = resolve_from_number(self.db, progress, config.from_number)
            if not from_number:
                return self._failed(lead, "No from number available for SMS")

            body = render_template(config.body, lead)

            data = self._functions().send_sms(
                to=lead.phone_number,
                from_number=from_number,
                body=body,
                lead_id=lead.id,
                workflow_step_id=step.id,
            )
        except LeadflowException as e:
            return self._failed(lead, e.message)

        logger.info(f"SMS sent to lead {lead.id}")
        return {"success": True, "action": "sms_sent", "data": data}

    def _failed(self, lead: Lead, error: str) -> Dict[str, Any]:
        logger.error(f"SMS step error for lead {lead.id}: {error}")
        return {"success": False, "action": "sms_failed", "error": error}


class AiSmsStepExecutor(StepExecutor):
    """Has the AI SMS processor write and send a message to the lead"""

    def execute(self, progress, step, lead, config: AiSmsStepConfig, now):
        logger.info(f"Sending AI SMS to lead {lead.id}")

        from_number = resolve_from_number(self.db, progress, config.from_number)
        if not from_number:
            error = "No from number available for AI SMS"
            logger.error(f"AI SMS step error for lead {lead.id}: {error}")
            return {"success": False, "action": "ai_sms_failed", "error": error}

        try:
            data = self._functions().generate_and_send_ai_sms(
                lead_id=lead.id,
                user_id=progress.user_id,
                from_number=from_number,
                to_number=lead.phone_number,
                prompt=config.prompt,
                context={
                    "workflowStep": step.id,
                    "campaignId": progress.campaign_id,
                    "workflowId": progress.workflow_id,
                },
            )
        except LeadflowException as e:
            logger.error(f"AI SMS step error for lead {lead.id}: {e.message}")
            return {"success": False, "action": "ai_sms_failed", "error": e.message}

        logger.info(f"AI SMS sent to lead {lead.id}")
        return {"success": True, "action": "ai_sms_sent", "data": data}


class WaitStepExecutor(StepExecutor):
    def execute(self, progress, step, lead, config, now):
        return {"success": True, "action": "wait_completed"}


class WebhookStepExecutor(StepExecutor):
    """
    Sends a JSON description of the lead and enrollment to the step's URL.

    Payload:
        lead_id, lead_name, lead_phone, lead_email, lead_status,
        workflow_id, campaign_id, step_id, timestamp, custom_data
    """

    def execute(self, progress, step, lead, config: WebhookStepConfig, now):
        logger.info(f"Executing webhook for lead {lead.id}")

        url = config.target_url
        if not url:
            logger.error(f"Webhook step error for lead {lead.id}: no URL")
            return {"success": False, "action": "webhook_failed", "error": "No webhook URL configured"}

        payload = {
            "lead_id": lead.id,
            "lead_name": lead.full_name,
            "lead_phone": lead.phone_number,
            "lead_email": lead.email,
            "lead_status": lead.status,
            "workflow_id": progress.workflow_id,
            "campaign_id": progress.campaign_id,
            "step_id": step.id,
            "timestamp": now.isoformat() + "Z",
            "custom_data": config.custom_data,
        }

        sender = self.webhook_sender or WebhookSender()
        try:
            status_code = sender.send(
                url,
                payload,
                method=config.method,
                headers=config.headers,
                timeout=config.timeout_seconds,
            )
        except LeadflowException as e:
            logger.error(f"Webhook step error for lead {lead.id}: {e.message}")
            return {"success": False, "action": "webhook_failed", "error": e.message}

        logger.info(f"Webhook executed for lead {lead.id}")
        return {"success": True, "action": "webhook_sent", "status": status_code}


class TagStepExecutor(StepExecutor):
    """Sets the lead status and merges tags, keeping existing tag order"""

    def execute(self, progress, step, lead, config: TagStepConfig, now):
        if config.new_status:
            lead.status = config.new_status

        if config.tags:
            merged = list(lead.tags or [])
            for tag in config.tags:
                if tag not in merged:
                    merged.append(tag)
            # Reassign so the JSON column is flagged dirty
            lead.tags = merged

        if config.new_status or config.tags:
            lead.updated_at = now
            self.db.flush()

        return {"success": True, "action": "lead_updated"}


class ConditionStepExecutor(StepExecutor):
    def execute(self, progress, step, lead, config, now):
        logger.info(f"Condition step for lead {lead.id} - evaluating...")
        return {"success": True, "action": "condition_evaluated"}


class EndStepExecutor(StepExecutor):
    """Completes the enrollment; the engine does not advance after it"""

    def execute(self, progress, step, lead, config, now):
        ProgressStore(self.db).complete(progress, now)
        logger.info(f"Explicit end for lead {lead.id}")
        return {"success": True, "action": "workflow_ended"}


# Mapping: canonical step type → executor class
STEP_EXECUTORS = {
    "call": CallStepExecutor,
    "sms": SmsStepExecutor,
    "ai_sms": AiSmsStepExecutor,
    "wait": WaitStepExecutor,
    "webhook": WebhookStepExecutor,
    "tag": TagStepExecutor,
    "condition": ConditionStepExecutor,
    "end": EndStepExecutor,
}


def get_executor(
    step_type: str,
    db: Session,
    functions_client: Optional[FunctionsClient] = None,
    webhook_sender: Optional[WebhookSender] = None
) -> StepExecutor:
    """
    Factory function: Creates the executor for a canonical step type.

    Args:
        step_type: Canonical step type (resolve aliases with canonical_step_type first)
        db: SQLAlchemy session
        functions_client: Client for call/SMS/AI SMS functions (created lazily if None)
        webhook_sender: Sender for webhook steps (created lazily if None)

    Raises:
        ValueError: If step type is unknown

    Example:
        >>> executor = get_executor("wait", db)
        >>> isinstance(executor, WaitStepExecutor)
        True
    """
    executor_class = STEP_EXECUTORS.get(step_type)
    if not executor_class:
        raise ValueError(
            f"Unknown step type: '{step_type}'. "
            f"Valid types: {list(STEP_EXECUTORS.keys())}"
        )
    return executor_class(db, functions_client=functions_client, webhook_sender=webhook_sender)
