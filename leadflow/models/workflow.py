"""
Workflow Models
Database models for workflow definitions and their ordered steps
"""

from sqlalchemy import Column, Integer, String, Text, JSON, DateTime, Boolean, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
from . import Base


class WorkflowDefinition(Base):
    """
    Workflow Definition Model

    An ordered list of steps a lead is moved through.
    """
    __tablename__ = "campaign_workflows"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)
    enabled = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    steps = relationship(
        "WorkflowStep",
        back_populates="workflow",
        cascade="all, delete-orphan",
        order_by="WorkflowStep.step_number"
    )

    def __repr__(self):
        return f"<WorkflowDefinition(id={self.id}, name='{self.name}')>"


class WorkflowStep(Base):
    """
    Workflow Step Model

    step_number defines the total order inside a workflow.

    step_config is the per-type configuration blob, e.g.:
        wait:    {"delay_minutes": 30, "time_of_day": "09:00"}
        sms:     {"sms_content": "Hi {{first_name}}"}
        call:    {"agent_id": "agent_123"}
        webhook: {"webhook_url": "https://...", "custom_data": {...}}
    """
    __tablename__ = "workflow_steps"
    __table_args__ = (
        UniqueConstraint("workflow_id", "step_number", name="uq_workflow_steps_workflow_step_number"),
    )

    id = Column(Integer, primary_key=True, index=True)
    workflow_id = Column(Integer, ForeignKey("campaign_workflows.id"), nullable=False, index=True)
    step_number = Column(Integer, nullable=False)

    # call, sms, ai_sms, wait, webhook, tag, condition, end (+ aliases)
    step_type = Column(String(50), nullable=False)
    step_config = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    workflow = relationship("WorkflowDefinition", back_populates="steps")

    def __repr__(self):
        return f"<WorkflowStep(id={self.id}, workflow_id={self.workflow_id}, step_number={self.step_number}, type='{self.step_type}')>"
