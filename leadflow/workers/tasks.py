"""
Celery Tasks for LeadFlow

Main Tasks:
- execute_pending_task: Run one scheduler pass (triggered by beat)

A failed pass is not retried: the next beat runs a fresh pass, and rows a
crashed pass had claimed become eligible again once their lease expires.
"""

import logging
from typing import Dict, Any

from celery.exceptions import SoftTimeLimitExceeded

from .celery_app import celery_app
from ..database import get_db
from ..core.engine import WorkflowEngine
from ..core.logging_config import clear_request_id, set_request_id

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    name="execute_pending_task",
    max_retries=0,
)
def execute_pending_task(self) -> Dict[str, Any]:
    """
    Execute every due workflow step.

    Opens its own database session and runs WorkflowEngine.execute_pending().

    Returns:
        Pass summary without per-row details:
        {
            "processed": 12,
            "succeeded": 12,
            "failed": 0,
            "skipped": 1,
            "stepFailures": 2
        }
    """
    task_id = self.request.id
    set_request_id(f"pass-{task_id}")
    logger.info(f"Task {task_id}: Starting scheduler pass")

    try:
        with get_db() as db:
            engine = WorkflowEngine(db)
            summary = engine.execute_pending()

    except SoftTimeLimitExceeded:
        logger.warning(f"Task {task_id}: Scheduler pass stopped at the soft time limit")
        raise

    except Exception as e:
        logger.error(f"Task {task_id}: Scheduler pass failed: {e}", exc_info=True)
        raise

    finally:
        clear_request_id()

    logger.info(
        f"Task {task_id}: Scheduler pass completed "
        f"({summary['processed']} processed, {summary['failed']} failed, {summary['skipped']} skipped)"
    )

    # Per-row results stay in logs and the step audit trail, not in Redis
    return {key: value for key, value in summary.items() if key != "results"}
