"""
Lead and Call Log Models

Both tables are owned by other subsystems (lead management, the dialer).
The workflow engine patches lead status/tags and reads recent call logs.
"""

from sqlalchemy import Column, Integer, String, Boolean, JSON, DateTime, ForeignKey
from datetime import datetime
from . import Base


class Lead(Base):
    """
    Lead Model

    A contact that can be enrolled into workflows.
    """
    __tablename__ = "leads"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=True, index=True)

    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    phone_number = Column(String(50), nullable=True, index=True)
    email = Column(String(255), nullable=True)
    company = Column(String(255), nullable=True)
    city = Column(String(255), nullable=True)
    state = Column(String(100), nullable=True)

    status = Column(String(50), nullable=True, default="new")

    # JSON list of tag strings, e.g. ["hot", "callback"]
    tags = Column(JSON, nullable=True)

    do_not_call = Column(Boolean, nullable=False, default=False)
    next_callback_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    def __repr__(self):
        return f"<Lead(id={self.id}, phone='{self.phone_number}', status='{self.status}')>"


class CallLog(Base):
    """
    Call Log Model

    One row per call placed by the calling subsystem.
    Status: queued, ringing, initiated, in_progress, completed, failed, ...
    Outcome: connected, answered, appointment_set, callback_requested, no_answer, ...
    """
    __tablename__ = "call_logs"

    id = Column(Integer, primary_key=True, index=True)
    lead_id = Column(Integer, ForeignKey("leads.id"), nullable=False, index=True)
    campaign_id = Column(Integer, ForeignKey("campaigns.id"), nullable=True)

    status = Column(String(50), nullable=False, default="queued")
    outcome = Column(String(50), nullable=True)
    duration_seconds = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<CallLog(id={self.id}, lead_id={self.lead_id}, status='{self.status}')>"
