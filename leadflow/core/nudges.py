"""
Nudge Tracking Service

Keeps the per-lead nudge counters other subsystems read (AI SMS follow-up,
engagement detection) and the sequence_paused flag the scheduler honours.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models import NudgeTracking
from .scheduling import utcnow

logger = logging.getLogger(__name__)


class NudgeTracker:
    """
    Reads and updates lead_nudge_tracking rows.

    Does not commit; the caller owns the transaction.
    """

    def __init__(self, db: Session):
        self.db = db

    def get(self, lead_id: int) -> Optional[NudgeTracking]:
        return self.db.query(NudgeTracking).filter(NudgeTracking.lead_id == lead_id).first()

    def is_sequence_paused(self, lead_id: int) -> bool:
        tracking = self.get(lead_id)
        return bool(tracking and tracking.sequence_paused)

    def record_contact(self, lead_id: int, user_id: Optional[str], now: Optional[datetime] = None) -> None:
        """
        Count one workflow touch for the lead.

        Increments nudge_count in SQL so concurrent passes never lose an
        update, and creates the row on first contact.
        """
        now = now or utcnow()

        if self._increment(lead_id, now):
            return

        try:
            with self.db.begin_nested():
                self.db.add(NudgeTracking(
                    lead_id=lead_id,
                    user_id=user_id,
                    nudge_count=1,
                    last_ai_contact_at=now,
                    updated_at=now,
                ))
        except IntegrityError:
            # Another pass created the row between our update and insert
            logger.debug(f"Nudge row for lead {lead_id} created concurrently, incrementing")
            self._increment(lead_id, now)

    def set_sequence_paused(
        self,
        lead_id: int,
        user_id: Optional[str],
        paused: bool,
        reason: Optional[str] = None
    ) -> NudgeTracking:
        """Set (or clear) the sequence_paused flag, creating the row if needed"""
        tracking = self.get(lead_id)
        if tracking is None:
            tracking = NudgeTracking(lead_id=lead_id, user_id=user_id, nudge_count=0)
            self.db.add(tracking)

        tracking.sequence_paused = paused
        tracking.pause_reason = reason if paused else None
        tracking.updated_at = utcnow()
        return tracking

    def _increment(self, lead_id: int, now: datetime) -> bool:
        updated = (
            self.db.query(NudgeTracking)
            .filter(NudgeTracking.lead_id == lead_id)
            .update(
                {
                    NudgeTracking.nudge_count: NudgeTracking.nudge_count + 1,
                    NudgeTracking.last_ai_contact_at: now,
                    NudgeTracking.updated_at: now,
                },
                synchronize_session="fetch"
            )
        )
        return updated > 0
