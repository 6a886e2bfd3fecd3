"""
Models module - SQLAlchemy database models
"""

from sqlalchemy.orm import declarative_base

Base = declarative_base()

# Import models after Base is defined to avoid circular imports
from .lead import Lead, CallLog
from .campaign import Campaign, PhoneNumber, CampaignPhonePool
from .workflow import WorkflowDefinition, WorkflowStep
from .progress import LeadWorkflowProgress, ProgressStatus
from .nudge_tracking import NudgeTracking
from .step_execution import StepExecution

__all__ = [
    "Base",
    "Lead",
    "CallLog",
    "Campaign",
    "PhoneNumber",
    "CampaignPhonePool",
    "WorkflowDefinition",
    "WorkflowStep",
    "LeadWorkflowProgress",
    "ProgressStatus",
    "NudgeTracking",
    "StepExecution",
]
