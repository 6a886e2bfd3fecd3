"""
Celery Application Configuration for LeadFlow

This module configures Celery for the periodic workflow scheduler.

Architecture:
- Message Broker: Redis
- Result Backend: Redis
- Beat: triggers execute_pending_task every WORKFLOW_POLL_INTERVAL_SECONDS
- Workers: run scheduler passes (one pass at a time per worker)

Key Features:
- Task time limits derived from WORKFLOW_CLAIM_TTL_SECONDS
- Result expiration (1 hour)
- JSON serialization (safe, debuggable)
"""

import os
import logging
from celery import Celery
from kombu import Queue, Exchange
from ..core.logging_config import setup_logging

# Initialize structured logging for Celery workers
setup_logging(
    level=os.getenv("LOG_LEVEL", "INFO"),
    json_logs=os.getenv("JSON_LOGS", "true").lower() == "true",  # Default to JSON in workers
    log_file=os.getenv("LOG_FILE", None)
)

logger = logging.getLogger(__name__)

# Get Redis URL from environment
REDIS_URL = os.getenv("REDIS_URL")
if not REDIS_URL:
    raise ValueError(
        "REDIS_URL environment variable not set. "
        "Required for Celery message broker and result backend."
    )

POLL_INTERVAL_SECONDS = float(os.getenv("WORKFLOW_POLL_INTERVAL_SECONDS", "60"))
CLAIM_TTL_SECONDS = int(os.getenv("WORKFLOW_CLAIM_TTL_SECONDS", "300"))

# Passes end before the leases they took expire
TASK_TIME_LIMIT = int(CLAIM_TTL_SECONDS * 0.8)
TASK_SOFT_TIME_LIMIT = int(CLAIM_TTL_SECONDS * 0.7)

# Create Celery app
celery_app = Celery("leadflow")

# Celery Configuration
celery_app.conf.update(
    # ============================================================================
    # BROKER & BACKEND
    # ============================================================================
    broker_url=REDIS_URL,
    result_backend=REDIS_URL,

    broker_connection_retry_on_startup=True,
    broker_connection_retry=True,
    broker_connection_max_retries=10,

    # ============================================================================
    # SERIALIZATION
    # ============================================================================
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],

    # ============================================================================
    # TIMEZONE
    # ============================================================================
    timezone="UTC",
    enable_utc=True,

    # ============================================================================
    # TASK EXECUTION
    # ============================================================================
    task_track_started=True,

    # Only one pass per worker at a time
    worker_prefetch_multiplier=1,

    # Task timeouts (derived from the claim lease)
    task_time_limit=TASK_TIME_LIMIT,  # Hard limit (kills task)
    task_soft_time_limit=TASK_SOFT_TIME_LIMIT,  # Soft limit (raises SoftTimeLimitExceeded)

    # ============================================================================
    # RESULTS
    # ============================================================================
    # Passes run every minute; keep summaries for an hour
    result_expires=3600,

    # ============================================================================
    # TASK ROUTING
    # ============================================================================
    task_default_queue="workflows",
    task_default_exchange="workflows",
    task_default_routing_key="workflow.execute",

    task_queues=(
        Queue(
            "workflows",
            Exchange("workflows"),
            routing_key="workflow.execute",
        ),
    ),

    task_routes={
        "execute_pending_task": {
            "queue": "workflows",
            "routing_key": "workflow.execute",
        },
    },

    # ============================================================================
    # WORKER CONFIGURATION
    # ============================================================================
    worker_pool="prefork",
    worker_concurrency=2,

    # Worker restarts after 1000 tasks (prevent memory leaks)
    worker_max_tasks_per_child=1000,

    # ============================================================================
    # MONITORING & LOGGING
    # ============================================================================
    worker_send_task_events=True,
    task_send_sent_event=True,

    worker_log_format="[%(asctime)s: %(levelname)s/%(processName)s] %(message)s",
    worker_task_log_format="[%(asctime)s: %(levelname)s/%(processName)s][%(task_name)s(%(task_id)s)] %(message)s",
)

# ============================================================================
# BEAT SCHEDULE (Periodic Tasks)
# ============================================================================

celery_app.conf.beat_schedule = {
    "execute-pending-workflow-steps": {
        "task": "execute_pending_task",
        "schedule": POLL_INTERVAL_SECONDS,
        # A pass that sat in the queue longer than one interval is superseded by the next
        "options": {"expires": POLL_INTERVAL_SECONDS},
    },
}

logger.info("Celery app configured successfully")
logger.info(f"Broker: {REDIS_URL.split('@')[1] if '@' in REDIS_URL else 'configured'}")
logger.info(f"Scheduler interval: {POLL_INTERVAL_SECONDS}s")

# ============================================================================
# IMPORT TASKS (so they get registered when worker starts)
# ============================================================================
# This import MUST come AFTER celery_app is configured
from . import tasks  # noqa: F401, E402

logger.info("Tasks imported and registered")
