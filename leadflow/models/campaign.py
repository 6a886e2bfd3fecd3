"""
Campaign Models
Campaigns, outbound phone numbers and per-campaign number pools
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
from . import Base


class Campaign(Base):
    """
    Campaign Model

    A campaign points at the workflow its leads run through, and may carry
    the AI agent used by call steps and a default SMS sender.
    """
    __tablename__ = "campaigns"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=True, index=True)
    name = Column(String(255), nullable=False)

    # Status: draft, active, paused, completed
    status = Column(String(50), nullable=False, default="draft")

    workflow_id = Column(Integer, ForeignKey("campaign_workflows.id"), nullable=True)
    agent_id = Column(String(255), nullable=True)
    sms_from_number = Column(String(50), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    phone_pool = relationship("CampaignPhonePool", back_populates="campaign", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Campaign(id={self.id}, name='{self.name}', status='{self.status}')>"


class PhoneNumber(Base):
    """Outbound phone number owned by a user"""
    __tablename__ = "phone_numbers"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=True, index=True)
    number = Column(String(50), nullable=False)

    # Status: active, inactive, quarantined
    status = Column(String(50), nullable=False, default="active")

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<PhoneNumber(id={self.id}, number='{self.number}', status='{self.status}')>"


class CampaignPhonePool(Base):
    """Assignment of a phone number to a campaign with a role (outbound, inbound)"""
    __tablename__ = "campaign_phone_pools"

    id = Column(Integer, primary_key=True, index=True)
    campaign_id = Column(Integer, ForeignKey("campaigns.id"), nullable=False, index=True)
    phone_number_id = Column(Integer, ForeignKey("phone_numbers.id"), nullable=False)
    role = Column(String(50), nullable=False, default="outbound")

    campaign = relationship("Campaign", back_populates="phone_pool")
    phone_number = relationship("PhoneNumber")

    def __repr__(self):
        return f"<CampaignPhonePool(campaign_id={self.campaign_id}, phone_number_id={self.phone_number_id}, role='{self.role}')>"
