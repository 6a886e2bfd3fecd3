"""
WorkflowEngine - Scheduler and step runner for LeadFlow

Each scheduler pass (execute_pending):
1. Selects active enrollments whose next_action_at has passed
2. Skips leads whose nudge sequence is paused
3. Claims each row with a short lease so overlapping passes never run it twice
4. Runs the row's current step, then keeps going while the row stays due
   (so a zero-delay wait flows into the next step in the same pass)
5. Records every executed step in workflow_step_executions

Step failures do not stop a workflow: the failure is recorded and the lead
moves on to the next step.
"""

import logging
import os
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from celery.exceptions import SoftTimeLimitExceeded
from sqlalchemy.orm import Session

from ..models import LeadWorkflowProgress, ProgressStatus, StepExecution
from .exceptions import StepConfigError
from .executors import get_executor
from .integrations import FunctionsClient, WebhookSender
from .logging_config import step_log_context
from .nudges import NudgeTracker
from .progress import ProgressStore
from .scheduling import utcnow
from .steps import canonical_step_type, parse_step_config

logger = logging.getLogger(__name__)


def make_json_serializable(obj):
    """
    Recursively convert step results to JSON-storable values.

    Handles:
    - datetime → ISO 8601 string
    - sets/tuples → lists
    - other objects → str(obj)
    """
    if isinstance(obj, dict):
        return {str(k): make_json_serializable(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple, set)):
        return [make_json_serializable(item) for item in obj]
    elif isinstance(obj, datetime):
        return obj.isoformat()
    elif obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    return str(obj)


class WorkflowEngine:
    """
    Runs due workflow steps.

    Features:
    - Batch selection with a per-row claim lease
    - Campaign drift gate (pauses rows whose campaign no longer runs the workflow)
    - Drain loop bounded by max_steps_per_pass
    - Per-row error isolation (one bad row never aborts the batch)
    - Step audit trail (StepExecution)
    """

    def __init__(
        self,
        db: Session,
        functions_client: Optional[FunctionsClient] = None,
        webhook_sender: Optional[WebhookSender] = None,
        clock: Callable[[], datetime] = utcnow,
        batch_size: Optional[int] = None,
        max_steps_per_pass: Optional[int] = None,
        claim_ttl_seconds: Optional[int] = None
    ):
        """
        Initialize WorkflowEngine.

        Args:
            db: SQLAlchemy session (the engine commits after each step)
            functions_client: Collaborator client (created on first use if None)
            webhook_sender: Webhook sender (created on first use if None)
            clock: Returns the current naive UTC time
            batch_size: Rows per pass (default: WORKFLOW_BATCH_SIZE or 100)
            max_steps_per_pass: Drain limit per row (default: WORKFLOW_MAX_STEPS_PER_PASS or 10)
            claim_ttl_seconds: Lease length (default: WORKFLOW_CLAIM_TTL_SECONDS or 300)
        """
        self.db = db
        self.functions_client = functions_client
        self.webhook_sender = webhook_sender
        self.clock = clock

        self.batch_size = batch_size or int(os.getenv("WORKFLOW_BATCH_SIZE", "100"))
        self.max_steps_per_pass = max_steps_per_pass or int(os.getenv("WORKFLOW_MAX_STEPS_PER_PASS", "10"))
        self.claim_ttl_seconds = claim_ttl_seconds or int(os.getenv("WORKFLOW_CLAIM_TTL_SECONDS", "300"))

        self.progress_store = ProgressStore(db)
        self.nudges = NudgeTracker(db)

    def execute_pending(self) -> Dict[str, Any]:
        """
        Run one scheduler pass.

        Returns:
            {
                "processed": rows executed (succeeded + failed),
                "succeeded": rows whose steps ran without an exception,
                "failed": rows that raised,
                "skipped": rows skipped (sequence paused or claimed elsewhere),
                "stepFailures": step results with success=False,
                "results": [{leadId, progressId, success, steps | error}, ...]
            }
        """
        now = self.clock()
        pending = self.progress_store.due(now, self.batch_size)

        logger.info(f"Found {len(pending)} pending steps to execute")

        results: List[Dict[str, Any]] = []
        succeeded = failed = skipped = step_failures = 0

        for progress in pending:
            progress_id = progress.id
            lead_id = progress.lead_id
            claimed = False

            try:
                if self.nudges.is_sequence_paused(lead_id):
                    logger.info(f"Skipping lead {lead_id} - sequence paused")
                    skipped += 1
                    continue

                claimed = self.progress_store.claim(progress_id, self.clock(), self.claim_ttl_seconds)
                self.db.commit()
                if not claimed:
                    logger.info(f"Skipping progress {progress_id} - claimed by another pass")
                    skipped += 1
                    continue

                steps = self._drain(progress)

                step_failures += sum(1 for step in steps if not step.get("success", False))
                succeeded += 1
                results.append({
                    "leadId": lead_id,
                    "progressId": progress_id,
                    "success": True,
                    "steps": steps,
                })

            except SoftTimeLimitExceeded:
                # Remaining rows wait for the next beat
                logger.warning(
                    f"Soft time limit reached at progress {progress_id}, stopping pass after {len(results)} row(s)",
                    extra={"lead_id": lead_id, "progress_id": progress_id}
                )
                self.db.rollback()
                raise

            except Exception as e:
                logger.error(
                    f"Error executing step for lead {lead_id}: {e}",
                    exc_info=True,
                    extra={"lead_id": lead_id, "progress_id": progress_id}
                )
                self.db.rollback()
                failed += 1
                results.append({
                    "leadId": lead_id,
                    "progressId": progress_id,
                    "success": False,
                    "error": str(e),
                })

            finally:
                if claimed:
                    self._release(progress_id)

        summary = {
            "processed": len(results),
            "succeeded": succeeded,
            "failed": failed,
            "skipped": skipped,
            "stepFailures": step_failures,
            "results": results,
        }

        logger.info(
            f"Scheduler pass finished: {summary['processed']} processed, "
            f"{failed} failed, {skipped} skipped, {step_failures} step failures"
        )
        return summary

    def _drain(self, progress: LeadWorkflowProgress) -> List[Dict[str, Any]]:
        """Execute steps while the row stays active and due"""
        steps = []

        for _ in range(self.max_steps_per_pass):
            steps.append(self.execute_step(progress))
            self.db.commit()

            if progress.status != ProgressStatus.ACTIVE:
                break
            if progress.next_action_at is None or progress.next_action_at > self.clock():
                break

        return steps

    def _release(self, progress_id: int) -> None:
        # An unreleased lease expires after claim_ttl_seconds
        try:
            self.progress_store.release(progress_id)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to release claim on progress {progress_id}: {e}")

    def execute_step(self, progress: LeadWorkflowProgress) -> Dict[str, Any]:
        """
        Execute the row's current step and move it forward.

        Does not commit; execute_pending commits after each step.

        Returns:
            Step result dict (success, action, plus step-specific fields)
        """
        now = self.clock()
        start_time = time.time()
        step = progress.current_step
        lead = progress.lead
        log_context = step_log_context(progress, step)

        # Campaign drift gate
        if progress.campaign_id is not None:
            campaign = progress.campaign
            workflow_changed = (
                campaign is None
                or campaign.status != "active"
                or not campaign.workflow_id
                or campaign.workflow_id != progress.workflow_id
            )
            if workflow_changed:
                logger.info(
                    f"Pausing workflow progress {progress.id} - campaign workflow disabled/changed",
                    extra=log_context
                )
                self.progress_store.pause_for_drift(progress, now)
                result = {"success": True, "action": "paused_due_to_campaign_workflow_change"}
                self._record(progress, step, result, start_time)
                return result

        progress.last_action_at = now

        if step is None or not step.step_type:
            logger.warning(
                f"Skipping invalid step - missing step data for lead {progress.lead_id}",
                extra=log_context
            )
            result = {"success": False, "action": "skipped", "error": "Invalid step configuration"}
            self.progress_store.advance(progress, None, now)
            self._record(progress, step, result, start_time)
            return result

        logger.info(f"Executing step {step.step_type} for lead {progress.lead_id}", extra=log_context)

        step_type = canonical_step_type(step.step_type)
        if step_type is None:
            logger.warning(
                f"Unhandled step type \"{step.step_type}\" for lead {progress.lead_id} - skipping",
                extra=log_context
            )
            result = {"success": True, "action": "step_skipped", "reason": f"Unknown step type: {step.step_type}"}
        else:
            try:
                config = parse_step_config(step.step_type, step.step_config)
            except StepConfigError as e:
                logger.error(f"Step {step.id} has invalid configuration: {e.message}", extra=log_context)
                result = {"success": False, "action": "step_failed", "error": e.message}
            else:
                executor = get_executor(
                    step_type,
                    self.db,
                    functions_client=self._functions_client(),
                    webhook_sender=self._webhook_sender(),
                )
                result = executor.execute(progress, step, lead, config, now)

            if step_type == "end" and result.get("action") == "workflow_ended":
                self._record(progress, step, result, start_time)
                return result

        self.nudges.record_contact(progress.lead_id, progress.user_id, now)
        self.progress_store.advance(progress, step, now)

        result = {"stepType": step.step_type, "completed": True, **result}
        self._record(progress, step, result, start_time)

        if not result.get("success", False):
            logger.warning(
                f"Step {step.step_type} failed for lead {progress.lead_id}: {result.get('error')}",
                extra=log_context
            )

        return result

    def _record(self, progress: LeadWorkflowProgress, step, result: Dict[str, Any], start_time: float) -> None:
        """Append the step outcome to the audit trail"""
        self.db.add(StepExecution(
            progress_id=progress.id,
            lead_id=progress.lead_id,
            workflow_id=progress.workflow_id,
            step_id=step.id if step else None,
            step_number=step.step_number if step else None,
            step_type=step.step_type if step else None,
            action=result.get("action"),
            success=bool(result.get("success", False)),
            error_message=result.get("error"),
            result=make_json_serializable(result),
            execution_time=round(time.time() - start_time, 4),
            timestamp=self.clock(),
        ))
        self.db.flush()

    def _functions_client(self) -> FunctionsClient:
        if self.functions_client is None:
            self.functions_client = FunctionsClient()
        return self.functions_client

    def _webhook_sender(self) -> WebhookSender:
        if self.webhook_sender is None:
            self.webhook_sender = WebhookSender()
        return self.webhook_sender
