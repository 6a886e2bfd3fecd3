"""
Step Execution Model
Audit trail of every workflow step the engine executed
"""

from sqlalchemy import Column, Integer, String, Text, JSON, DateTime, Float, Boolean, ForeignKey
from datetime import datetime
from . import Base


class StepExecution(Base):
    """
    Step Execution Model

    Records what each executed step did: the action it reported, whether it
    succeeded, the error and the collaborator response, and how long it took.
    Failed steps do not stop a workflow, so this table is where delivery
    failures become visible.
    """
    __tablename__ = "workflow_step_executions"

    id = Column(Integer, primary_key=True, index=True)
    progress_id = Column(Integer, ForeignKey("lead_workflow_progress.id"), nullable=False, index=True)
    lead_id = Column(Integer, nullable=False, index=True)
    workflow_id = Column(Integer, nullable=False, index=True)

    # Step identification (step_id is null when the progress pointed nowhere)
    step_id = Column(Integer, nullable=True)
    step_number = Column(Integer, nullable=True)
    step_type = Column(String(50), nullable=True)

    # e.g. sms_sent, call_failed, wait_completed, step_skipped
    action = Column(String(100), nullable=True)
    success = Column(Boolean, nullable=False, default=True)
    error_message = Column(Text, nullable=True)

    # Step result as returned to the scheduler (collaborator payloads included)
    result = Column(JSON, nullable=True)

    execution_time = Column(Float, nullable=True)  # seconds

    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    def __repr__(self):
        return (
            f"<StepExecution(id={self.id}, progress_id={self.progress_id}, "
            f"step_type='{self.step_type}', success={self.success})>"
        )
