"""
Metrics Collection for LeadFlow

Provides system health metrics including:
- Enrollment statistics by status
- Step execution statistics and failure rate
- Collaborator health (circuit breaker status)
- Database connectivity
"""

import logging
import time
from typing import Dict, Any
from datetime import datetime, timedelta
from sqlalchemy.orm import Session
from sqlalchemy import func, and_, text

from ..models import LeadWorkflowProgress, ProgressStatus, StepExecution, WorkflowDefinition
from .circuit_breaker import CircuitBreakerState, get_all_breaker_status

logger = logging.getLogger(__name__)


class MetricsCollector:
    """
    Collects and aggregates metrics for the workflow engine.

    Provides:
    - Enrollment stats (active, paused, completed, removed, due now)
    - Step execution stats and failure rate
    - Circuit breaker status per collaborator
    - System health indicators
    """

    def __init__(self, db_session: Session):
        """
        Initialize metrics collector.

        Args:
            db_session: SQLAlchemy database session
        """
        self.db_session = db_session

    def get_enrollment_stats(self) -> Dict[str, Any]:
        """
        Get enrollment counts.

        Returns:
            Dict with one count per status, the total, and "due" (active
            rows whose next_action_at has passed)
        """
        try:
            stats = self.db_session.query(
                LeadWorkflowProgress.status,
                func.count(LeadWorkflowProgress.id).label("count")
            ).group_by(LeadWorkflowProgress.status).all()

            result = {
                "total": 0,
                ProgressStatus.ACTIVE: 0,
                ProgressStatus.PAUSED: 0,
                ProgressStatus.COMPLETED: 0,
                ProgressStatus.REMOVED: 0,
            }
            for status, count in stats:
                result["total"] += count
                result[status] = count

            result["due"] = self.db_session.query(func.count(LeadWorkflowProgress.id)).filter(
                and_(
                    LeadWorkflowProgress.status == ProgressStatus.ACTIVE,
                    LeadWorkflowProgress.next_action_at <= datetime.utcnow()
                )
            ).scalar() or 0

            return result

        except Exception as e:
            logger.error(f"Failed to get enrollment stats: {e}")
            return {"total": 0, "due": 0, "error": str(e)}

    def get_step_stats(self, hours: int = 24) -> Dict[str, Any]:
        """
        Get step execution statistics.

        Args:
            hours: Number of hours to look back (default: 24)

        Returns:
            Dict with step stats:
            - total: Steps executed
            - succeeded / failed
            - failure_rate: Percentage of failed steps
            - by_type: Executed steps per step type
        """
        try:
            since = datetime.utcnow() - timedelta(hours=hours)

            rows = self.db_session.query(
                StepExecution.step_type,
                StepExecution.success,
                func.count(StepExecution.id)
            ).filter(
                StepExecution.timestamp >= since
            ).group_by(StepExecution.step_type, StepExecution.success).all()

            result = {
                "period_hours": hours,
                "total": 0,
                "succeeded": 0,
                "failed": 0,
                "failure_rate": 0.0,
                "by_type": {},
            }

            for step_type, success, count in rows:
                result["total"] += count
                if success:
                    result["succeeded"] += count
                else:
                    result["failed"] += count
                key = step_type or "unknown"
                result["by_type"][key] = result["by_type"].get(key, 0) + count

            if result["total"] > 0:
                result["failure_rate"] = round((result["failed"] / result["total"]) * 100, 2)

            return result

        except Exception as e:
            logger.error(f"Failed to get step stats: {e}")
            return {
                "period_hours": hours,
                "total": 0,
                "succeeded": 0,
                "failed": 0,
                "failure_rate": 0.0,
                "by_type": {},
                "error": str(e)
            }

    def get_circuit_breaker_status(self) -> Dict[str, Any]:
        """
        Get collaborator circuit breaker status.

        Returns:
            Dict with:
            - breakers: Status of each collaborator breaker
            - is_healthy: True if no breaker is OPEN
        """
        breakers = get_all_breaker_status()
        return {
            "breakers": breakers,
            "is_healthy": all(
                status["state"] != CircuitBreakerState.OPEN for status in breakers.values()
            ),
        }

    def get_workflow_stats(self) -> Dict[str, Any]:
        """
        Get workflow statistics.

        Returns:
            Dict with workflow stats:
            - total_workflows: Workflow definitions in system
            - active_workflows: Workflows with at least one active enrollment
        """
        try:
            total = self.db_session.query(func.count(WorkflowDefinition.id)).scalar() or 0

            active = self.db_session.query(
                func.count(func.distinct(LeadWorkflowProgress.workflow_id))
            ).filter(
                LeadWorkflowProgress.status == ProgressStatus.ACTIVE
            ).scalar() or 0

            return {
                "total_workflows": total,
                "active_workflows": active
            }

        except Exception as e:
            logger.error(f"Failed to get workflow stats: {e}")
            return {
                "total_workflows": 0,
                "active_workflows": 0,
                "error": str(e)
            }

    def get_database_health(self) -> Dict[str, Any]:
        """
        Check database connectivity.

        Returns:
            Dict with database health:
            - connected: True if database is reachable
            - response_time_ms: Query response time
        """
        try:
            start = time.time()
            self.db_session.execute(text("SELECT 1")).fetchone()
            response_time = round((time.time() - start) * 1000, 2)

            return {
                "connected": True,
                "response_time_ms": response_time
            }

        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {
                "connected": False,
                "response_time_ms": None,
                "error": str(e)
            }

    def get_all_metrics(self) -> Dict[str, Any]:
        """
        Get all system metrics.

        Returns:
            Dict with all metrics:
            - timestamp: Current UTC timestamp
            - enrollments: Enrollment counts
            - steps: Step execution stats (24 hours)
            - circuit_breakers: Collaborator breaker status
            - workflows: Workflow statistics
            - database: Database health
        """
        return {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "enrollments": self.get_enrollment_stats(),
            "steps": self.get_step_stats(hours=24),
            "circuit_breakers": self.get_circuit_breaker_status(),
            "workflows": self.get_workflow_stats(),
            "database": self.get_database_health()
        }


def check_system_health(db_session: Session) -> Dict[str, Any]:
    """
    Convenience function to check overall system health.

    Args:
        db_session: SQLAlchemy database session

    Returns:
        Dict with health status:
        - healthy: True if all components are healthy
        - components: Status of each component
        - issues: List of detected issues
    """
    collector = MetricsCollector(db_session)
    metrics = collector.get_all_metrics()

    issues = []
    components = {}

    db_health = metrics["database"]
    components["database"] = db_health["connected"]
    if not db_health["connected"]:
        issues.append("Database connection failed")

    cb_status = metrics["circuit_breakers"]
    components["collaborators"] = cb_status["is_healthy"]
    if not cb_status["is_healthy"]:
        open_breakers = [
            name for name, status in cb_status["breakers"].items()
            if status["state"] == CircuitBreakerState.OPEN
        ]
        issues.append(f"Circuit breaker open for: {', '.join(open_breakers)}")

    failure_rate = metrics["steps"]["failure_rate"]
    components["step_failure_rate"] = failure_rate < 50.0  # Alert if >50% failures
    if failure_rate >= 50.0:
        issues.append(f"High step failure rate: {failure_rate}%")

    healthy = all(components.values())

    return {
        "healthy": healthy,
        "components": components,
        "issues": issues if issues else None,
        "metrics": metrics
    }
