"""
Lead Workflow Progress Model
One row per (lead, workflow) enrollment attempt
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Index, text
from sqlalchemy.orm import relationship
from datetime import datetime
from . import Base


class ProgressStatus:
    """Enrollment states"""
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"  # Terminal
    REMOVED = "removed"  # Terminal

    OPEN = (ACTIVE, PAUSED)
    TERMINAL = (COMPLETED, REMOVED)


# At most one open (active/paused) enrollment per lead+workflow
_OPEN_ENROLLMENT_CLAUSE = text("status IN ('active', 'paused')")


class LeadWorkflowProgress(Base):
    """
    Lead Workflow Progress Model

    Tracks where a lead is inside a workflow and when its current step fires.

    Lifecycle:
        active -> paused      (manual pause, campaign workflow changed)
        paused -> active      (resume, next_action_at reset to now)
        active -> completed   (steps exhausted or explicit end step)
        active/paused -> removed (disposition trigger)
    """
    __tablename__ = "lead_workflow_progress"
    __table_args__ = (
        Index(
            "uq_lead_workflow_progress_open_enrollment",
            "lead_id",
            "workflow_id",
            unique=True,
            sqlite_where=_OPEN_ENROLLMENT_CLAUSE,
            postgresql_where=_OPEN_ENROLLMENT_CLAUSE,
        ),
        Index("ix_lead_workflow_progress_due", "status", "next_action_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=True, index=True)

    lead_id = Column(Integer, ForeignKey("leads.id"), nullable=False, index=True)
    workflow_id = Column(Integer, ForeignKey("campaign_workflows.id"), nullable=False, index=True)
    campaign_id = Column(Integer, ForeignKey("campaigns.id"), nullable=True, index=True)
    current_step_id = Column(Integer, ForeignKey("workflow_steps.id"), nullable=True)

    status = Column(String(50), nullable=False, default=ProgressStatus.ACTIVE)

    next_action_at = Column(DateTime, nullable=True)
    last_action_at = Column(DateTime, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    removal_reason = Column(Text, nullable=True)

    # Lease held by the scheduler pass currently executing this row
    claimed_until = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    lead = relationship("Lead")
    workflow = relationship("WorkflowDefinition")
    campaign = relationship("Campaign")
    current_step = relationship("WorkflowStep")

    @property
    def is_open(self) -> bool:
        return self.status in ProgressStatus.OPEN

    def __repr__(self):
        return (
            f"<LeadWorkflowProgress(id={self.id}, lead_id={self.lead_id}, "
            f"workflow_id={self.workflow_id}, status='{self.status}')>"
        )
