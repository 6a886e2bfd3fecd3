"""
Nudge Tracking Model
Per-lead engagement counters shared with other subsystems
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey
from datetime import datetime
from . import Base


class NudgeTracking(Base):
    """
    Nudge Tracking Model

    One row per lead. nudge_count and last_ai_contact_at move every time a
    workflow step runs for the lead; sequence_paused stops the scheduler from
    executing any of the lead's workflows.
    """
    __tablename__ = "lead_nudge_tracking"

    id = Column(Integer, primary_key=True, index=True)
    lead_id = Column(Integer, ForeignKey("leads.id"), nullable=False, unique=True, index=True)
    user_id = Column(String(64), nullable=True)

    nudge_count = Column(Integer, nullable=False, default=0)
    last_ai_contact_at = Column(DateTime, nullable=True)

    is_engaged = Column(Boolean, nullable=False, default=False)
    sequence_paused = Column(Boolean, nullable=False, default=False)
    pause_reason = Column(String(255), nullable=True)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return (
            f"<NudgeTracking(lead_id={self.lead_id}, nudge_count={self.nudge_count}, "
            f"sequence_paused={self.sequence_paused})>"
        )
