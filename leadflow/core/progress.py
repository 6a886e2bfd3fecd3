"""
Workflow Progress Store

Owns every status transition of lead_workflow_progress rows:
- due(): rows the scheduler should run now
- claim()/release(): per-row lease so overlapping passes never run a row twice
- advance()/complete(): move the step pointer or finish the enrollment
- pause()/resume()/remove(): manual transitions

Methods flush but do not commit; the engine and API decide transaction
boundaries.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from ..models import LeadWorkflowProgress, ProgressStatus, WorkflowStep
from .scheduling import calculate_next_action_time, utcnow

logger = logging.getLogger(__name__)

REMOVAL_REASON_DISPOSITION = "disposition_trigger"


class ProgressStore:
    """Queries and transitions for workflow enrollments"""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, progress_id: int) -> Optional[LeadWorkflowProgress]:
        return self.db.query(LeadWorkflowProgress).filter(LeadWorkflowProgress.id == progress_id).first()

    def get_open(self, lead_id: int, workflow_id: int) -> Optional[LeadWorkflowProgress]:
        """Most recent active/paused enrollment of lead in workflow"""
        return (
            self.db.query(LeadWorkflowProgress)
            .filter(
                LeadWorkflowProgress.lead_id == lead_id,
                LeadWorkflowProgress.workflow_id == workflow_id,
                LeadWorkflowProgress.status.in_(ProgressStatus.OPEN),
            )
            .order_by(LeadWorkflowProgress.created_at.desc(), LeadWorkflowProgress.id.desc())
            .first()
        )

    def list_open_for_workflow(self, workflow_id: int) -> List[LeadWorkflowProgress]:
        return (
            self.db.query(LeadWorkflowProgress)
            .options(joinedload(LeadWorkflowProgress.lead))
            .filter(
                LeadWorkflowProgress.workflow_id == workflow_id,
                LeadWorkflowProgress.status.in_(ProgressStatus.OPEN),
            )
            .all()
        )

    def due(self, now: datetime, limit: int) -> List[LeadWorkflowProgress]:
        """
        Active rows whose next_action_at has passed and whose lease is free.

        Lead, workflow, campaign and current step are loaded with the row.
        No ordering guarantee.
        """
        return (
            self.db.query(LeadWorkflowProgress)
            .options(
                joinedload(LeadWorkflowProgress.lead),
                joinedload(LeadWorkflowProgress.workflow),
                joinedload(LeadWorkflowProgress.campaign),
                joinedload(LeadWorkflowProgress.current_step),
            )
            .filter(
                LeadWorkflowProgress.status == ProgressStatus.ACTIVE,
                LeadWorkflowProgress.next_action_at <= now,
                or_(
                    LeadWorkflowProgress.claimed_until.is_(None),
                    LeadWorkflowProgress.claimed_until <= now,
                ),
            )
            .limit(limit)
            .all()
        )

    # ------------------------------------------------------------------
    # Claim lease
    # ------------------------------------------------------------------

    def claim(self, progress_id: int, now: datetime, ttl_seconds: int) -> bool:
        """
        Take the row's lease if it is free or expired.

        Returns False when another pass holds a live lease or the row is no
        longer active.
        """
        claimed = (
            self.db.query(LeadWorkflowProgress)
            .filter(
                LeadWorkflowProgress.id == progress_id,
                LeadWorkflowProgress.status == ProgressStatus.ACTIVE,
                or_(
                    LeadWorkflowProgress.claimed_until.is_(None),
                    LeadWorkflowProgress.claimed_until <= now,
                ),
            )
            .update(
                {LeadWorkflowProgress.claimed_until: now + timedelta(seconds=ttl_seconds)},
                synchronize_session=False
            )
        )
        return claimed == 1

    def release(self, progress_id: int) -> None:
        (
            self.db.query(LeadWorkflowProgress)
            .filter(LeadWorkflowProgress.id == progress_id)
            .update({LeadWorkflowProgress.claimed_until: None}, synchronize_session=False)
        )

    # ------------------------------------------------------------------
    # Step pointer
    # ------------------------------------------------------------------

    def first_step(self, workflow_id: int) -> Optional[WorkflowStep]:
        return (
            self.db.query(WorkflowStep)
            .filter(WorkflowStep.workflow_id == workflow_id)
            .order_by(WorkflowStep.step_number.asc())
            .first()
        )

    def next_step(self, workflow_id: int, step_number: int) -> Optional[WorkflowStep]:
        return (
            self.db.query(WorkflowStep)
            .filter(
                WorkflowStep.workflow_id == workflow_id,
                WorkflowStep.step_number == step_number + 1,
            )
            .first()
        )

    def advance(
        self,
        progress: LeadWorkflowProgress,
        current_step: Optional[WorkflowStep],
        now: Optional[datetime] = None
    ) -> Optional[WorkflowStep]:
        """
        Point progress at the step after current_step.

        Completes the enrollment when there is no current step or no step
        numbered current + 1.

        Returns:
            The new current step, or None when the enrollment completed
        """
        now = now or utcnow()

        if current_step is None:
            self.complete(progress, now)
            return None

        following = self.next_step(current_step.workflow_id or progress.workflow_id, current_step.step_number or 0)
        if following is None:
            self.complete(progress, now)
            logger.info(f"Completed workflow for progress {progress.id}")
            return None

        progress.current_step_id = following.id
        progress.current_step = following
        progress.next_action_at = calculate_next_action_time(following.step_type, following.step_config, now)
        progress.updated_at = now
        self.db.flush()

        logger.info(f"Moved to step {following.id} for progress {progress.id}")
        return following

    def complete(self, progress: LeadWorkflowProgress, now: Optional[datetime] = None) -> None:
        now = now or utcnow()
        progress.status = ProgressStatus.COMPLETED
        progress.completed_at = now
        progress.updated_at = now
        self.db.flush()

    def pause_for_drift(self, progress: LeadWorkflowProgress, now: Optional[datetime] = None) -> None:
        """Pause a row whose campaign no longer runs its workflow"""
        progress.status = ProgressStatus.PAUSED
        progress.updated_at = now or utcnow()
        self.db.flush()

    # ------------------------------------------------------------------
    # Manual transitions
    # ------------------------------------------------------------------

    def remove(self, lead_id: int, workflow_id: Optional[int] = None, now: Optional[datetime] = None) -> int:
        """
        Remove the lead from one workflow, or from all when workflow_id is None.

        Only active and paused rows change. Returns the number of rows removed.
        """
        now = now or utcnow()
        query = self.db.query(LeadWorkflowProgress).filter(
            LeadWorkflowProgress.lead_id == lead_id,
            LeadWorkflowProgress.status.in_(ProgressStatus.OPEN),
        )
        if workflow_id is not None:
            query = query.filter(LeadWorkflowProgress.workflow_id == workflow_id)

        rows = query.all()
        for progress in rows:
            progress.status = ProgressStatus.REMOVED
            progress.removal_reason = REMOVAL_REASON_DISPOSITION
            progress.updated_at = now
        self.db.flush()
        return len(rows)

    def pause(self, lead_id: int, workflow_id: int, now: Optional[datetime] = None) -> int:
        """Pause active rows; terminal and already-paused rows are untouched"""
        now = now or utcnow()
        rows = self._rows(lead_id, workflow_id, ProgressStatus.ACTIVE)
        for progress in rows:
            progress.status = ProgressStatus.PAUSED
            progress.updated_at = now
        self.db.flush()
        return len(rows)

    def resume(self, lead_id: int, workflow_id: int, now: Optional[datetime] = None) -> int:
        """Resume paused rows immediately, keeping their step pointer"""
        now = now or utcnow()
        rows = self._rows(lead_id, workflow_id, ProgressStatus.PAUSED)
        for progress in rows:
            progress.status = ProgressStatus.ACTIVE
            progress.next_action_at = now
            progress.updated_at = now
        self.db.flush()
        return len(rows)

    def _rows(self, lead_id: int, workflow_id: int, status: str) -> List[LeadWorkflowProgress]:
        return (
            self.db.query(LeadWorkflowProgress)
            .filter(
                LeadWorkflowProgress.lead_id == lead_id,
                LeadWorkflowProgress.workflow_id == workflow_id,
                LeadWorkflowProgress.status == status,
            )
            .all()
        )
