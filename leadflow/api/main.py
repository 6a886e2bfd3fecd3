"""
FastAPI main application
REST API endpoints for LeadFlow
"""

from fastapi import FastAPI, HTTPException, Depends, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from typing import Optional
import os
import logging
import uuid

from ..database import check_database_connection, get_db_session
from ..models import LeadWorkflowProgress, StepExecution, WorkflowDefinition, WorkflowStep
from ..core.engine import WorkflowEngine
from ..core.enrollment import ENROLLED, EnrollmentService
from ..core.exceptions import (
    DatabaseError,
    LeadflowException,
    StepConfigError,
    WorkflowNotFoundError,
    WorkflowValidationError,
)
from ..core.integrations import FunctionsClient, WebhookSender
from ..core.logging_config import setup_logging, set_request_id, clear_request_id
from ..core.nudges import NudgeTracker
from ..core.progress import ProgressStore
from ..core.scheduling import utcnow
from ..core.steps import SmsStepConfig, parse_step_config
from ..core.templating import find_unknown_placeholders
from .schemas import (
    WorkflowExecutorRequest,
    WorkflowCreate, WorkflowResponse, WorkflowListResponse,
    ProgressResponse, ProgressListResponse,
    StepExecutionListResponse,
)

# ============================================================================
# LOGGING CONFIGURATION
# ============================================================================

# JSON logs in production (JSON_LOGS=true), standard logs in development
setup_logging(
    level=os.getenv("LOG_LEVEL", "INFO"),
    json_logs=os.getenv("JSON_LOGS", "false").lower() == "true",
    log_file=os.getenv("LOG_FILE", None)
)

logger = logging.getLogger(__name__)

SERVICE_NAME = "workflow-executor"

CAPABILITIES = [
    "start_workflow",
    "execute_pending",
    "remove_from_workflow",
    "pause_workflow",
    "resume_workflow",
]

# ============================================================================
# FASTAPI APP CONFIGURATION
# ============================================================================

app = FastAPI(
    title="LeadFlow API",
    description="""
# LeadFlow Workflow Engine

Moves CRM leads through multi-step outreach workflows: calls, SMS, AI SMS,
waits, webhooks and lead tagging.

## How it works

1. **POST /workflows** - Define a workflow as an ordered list of steps
2. **POST /workflow-executor** `{"action": "start_workflow", ...}` - Enroll a lead
3. A Celery beat task (or `{"action": "execute_pending"}`) runs every due step
4. **GET /progress/{id}/executions** - See what each step did

## Actions (POST /workflow-executor)

- `health_check`
- `start_workflow` (userId, leadId, workflowId, campaignId?)
- `execute_pending`
- `remove_from_workflow` (leadId, workflowId?)
- `pause_workflow` / `resume_workflow` (leadId, workflowId)
    """,
    version="0.1.0",
    openapi_tags=[
        {
            "name": "health",
            "description": "Health checks and system status"
        },
        {
            "name": "executor",
            "description": "Action-dispatch endpoint used by the CRM and the scheduler."
        },
        {
            "name": "workflows",
            "description": "Workflow definitions (ordered steps with typed configuration)."
        },
        {
            "name": "progress",
            "description": "Enrollments and their step audit trail."
        }
    ]
)

# ============================================================================
# MIDDLEWARE - CORS Configuration
# ============================================================================

# Called from browser clients on any origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# Dependency: Get database session
def get_db():
    """Dependency for database session"""
    db = get_db_session()
    try:
        yield db
    finally:
        db.close()


# Dependencies: collaborator clients (overridden in tests)
def get_functions_client() -> FunctionsClient:
    return FunctionsClient()


def get_webhook_sender() -> WebhookSender:
    return WebhookSender()


# ============================================================================
# MIDDLEWARE - Request ID Tracking
# ============================================================================

@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """
    Middleware to add request ID to all requests.

    - Generates UUID for each request
    - Sets request ID in logging context
    - Adds X-Request-ID header to response
    - Clears request ID after response
    """
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

    set_request_id(request_id)

    logger.info(
        f"{request.method} {request.url.path}",
        extra={
            "method": request.method,
            "path": request.url.path,
            "client_ip": request.client.host if request.client else None,
        }
    )

    try:
        response = await call_next(request)

        response.headers["X-Request-ID"] = request_id

        logger.info(
            f"Response {response.status_code}",
            extra={
                "status_code": response.status_code,
            }
        )

        return response

    except Exception as e:
        logger.exception("Unhandled exception in request", extra={"error": str(e)})
        raise

    finally:
        clear_request_id()


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc):
    """Custom HTTP exception handler for better error responses"""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.detail,
            "status_code": exc.status_code
        }
    )


@app.exception_handler(LeadflowException)
async def leadflow_exception_handler(request, exc):
    """Retryable errors (database, collaborators) are 503; the rest are 500"""
    status_code = 503 if exc.retry_allowed else 500
    return JSONResponse(
        status_code=status_code,
        content={
            "error": exc.message,
            "retryable": exc.retry_allowed,
            "status_code": status_code
        }
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc):
    """Malformed bodies are client errors (400), reported like other errors"""
    return JSONResponse(
        status_code=400,
        content={
            "error": "Invalid request",
            "details": jsonable_encoder(exc.errors()),
            "status_code": 400
        }
    )


# ============================================================================
# ROOT & HEALTH
# ============================================================================

@app.get(
    "/",
    tags=["health"],
    summary="API root",
    description="Returns basic API information and links to documentation."
)
def root():
    """Root endpoint - Returns API info"""
    return {
        "name": "LeadFlow API",
        "version": "0.1.0",
        "status": "healthy",
        "docs": "/docs",
        "redoc": "/redoc"
    }


@app.get(
    "/health",
    tags=["health"],
    summary="Health check (lightweight)",
    description="""
    Lightweight health check - just verifies the API server is running.

    For component health checks, use GET /health/components or GET /health/detailed
    """
)
def health_check():
    """Lightweight health check - just confirms API is alive"""
    return {
        "status": "healthy",
        "service": "LeadFlow API",
        "version": "0.1.0"
    }


@app.get(
    "/health/components",
    tags=["health"],
    summary="Component health check",
    description="""
    Check database connectivity and whether the broker and collaborator
    functions are configured.
    """
)
def health_check_components(db: Session = Depends(get_db)):
    """Component health check - Checks database, Celery, Redis, collaborator config"""
    db_status = "connected" if check_database_connection(db) else "error"

    celery_status = "not_configured"
    try:
        from ..workers.celery_app import celery_app  # noqa: F401
        from ..workers.tasks import execute_pending_task  # noqa: F401
        celery_status = "configured"
    except Exception as e:
        celery_status = f"error: {str(e)}"

    return {
        "status": "healthy",
        "database": db_status,
        "celery": celery_status,
        "redis": "configured" if os.getenv("REDIS_URL") else "not_configured",
        "functions": "configured" if os.getenv("FUNCTIONS_BASE_URL") else "not_configured",
    }


@app.get(
    "/metrics",
    tags=["health"],
    summary="System metrics",
    description="""
    Get system metrics and health indicators.

    Returns:
    - **enrollments**: Rows per status plus rows due now
    - **steps**: Step executions in the last 24 hours (succeeded, failed, failure_rate, by_type)
    - **circuit_breakers**: State of each collaborator breaker
    - **workflows**: total_workflows, active_workflows
    - **database**: connected, response_time_ms
    """
)
def get_metrics(db: Session = Depends(get_db)):
    """Get system metrics"""
    from ..core.metrics import MetricsCollector

    try:
        collector = MetricsCollector(db)
        metrics = collector.get_all_metrics()

        logger.info(
            "Metrics collected",
            extra={
                "step_failure_rate": metrics["steps"]["failure_rate"],
                "due_enrollments": metrics["enrollments"].get("due", 0),
            }
        )

        return metrics

    except Exception as e:
        logger.exception("Failed to collect metrics")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to collect metrics: {str(e)}"
        )


@app.get(
    "/health/detailed",
    tags=["health"],
    summary="Detailed health check",
    description="""
    Get detailed system health status with component-level diagnostics.

    Returns:
    - **healthy**: Overall health status (true/false)
    - **components**: database, collaborators, step_failure_rate
    - **issues**: List of detected issues (if any)
    - **metrics**: Full system metrics
    """
)
def detailed_health_check(db: Session = Depends(get_db)):
    """Detailed health check - Returns component-level health diagnostics"""
    from ..core.metrics import check_system_health

    try:
        health = check_system_health(db)

        if health["healthy"]:
            logger.info("System health check: HEALTHY")
        else:
            logger.warning(
                "System health check: UNHEALTHY",
                extra={"issues": health["issues"]}
            )

        return health

    except Exception as e:
        logger.exception("Health check failed")
        raise HTTPException(
            status_code=500,
            detail=f"Health check failed: {str(e)}"
        )


# ============================================================================
# WORKFLOW EXECUTOR (action dispatch)
# ============================================================================

def _require(request: WorkflowExecutorRequest, *fields: str) -> None:
    missing = [name for name in fields if getattr(request, name) is None]
    if missing:
        raise HTTPException(
            status_code=400,
            detail=f"Missing required field(s) for {request.action}: {', '.join(missing)}"
        )


@app.post(
    "/workflow-executor",
    tags=["executor"],
    summary="Run a workflow action",
    description="""
    Dispatches on `action`:

    - **health_check**: capabilities of this service
    - **start_workflow**: enroll leadId in workflowId (400 with `validationErrors` when
      the lead or any step is invalid; no-op results for already enrolled leads and
      duplicate phone numbers)
    - **execute_pending**: run one scheduler pass
    - **remove_from_workflow**: remove leadId from workflowId (or from every workflow)
    - **pause_workflow** / **resume_workflow**: pause or resume leadId in workflowId

    Unknown actions and missing fields return 400, a missing workflow 404, a lost
    database connection 503 (retryable), anything else 500 with the error message.
    """
)
def workflow_executor(
    request: WorkflowExecutorRequest,
    db: Session = Depends(get_db),
    functions_client: FunctionsClient = Depends(get_functions_client),
    webhook_sender: WebhookSender = Depends(get_webhook_sender)
):
    """Action-dispatch endpoint"""
    action = request.action

    try:
        if action == "health_check":
            logger.info("Health check requested")
            return {
                "success": True,
                "healthy": True,
                "timestamp": utcnow().isoformat() + "Z",
                "function": SERVICE_NAME,
                "capabilities": CAPABILITIES,
            }

        if action == "start_workflow":
            _require(request, "userId", "leadId", "workflowId")
            return _start_workflow(db, request)

        if action == "execute_pending":
            engine = WorkflowEngine(db, functions_client=functions_client, webhook_sender=webhook_sender)
            return engine.execute_pending()

        if action == "remove_from_workflow":
            _require(request, "leadId")
            removed = ProgressStore(db).remove(request.leadId, request.workflowId)
            db.commit()
            logger.info(f"Removed lead {request.leadId} from {removed} workflow(s)")
            return {"success": True, "removed": removed}

        if action == "pause_workflow":
            _require(request, "leadId", "workflowId")
            updated = ProgressStore(db).pause(request.leadId, request.workflowId)
            # The flag is lead-wide, so it follows every request even when no row changed
            NudgeTracker(db).set_sequence_paused(request.leadId, request.userId, True, "manual_pause")
            db.commit()
            logger.info(f"Paused lead {request.leadId} in workflow {request.workflowId} ({updated} row(s))")
            return {"success": True, "updated": updated}

        if action == "resume_workflow":
            _require(request, "leadId", "workflowId")
            updated = ProgressStore(db).resume(request.leadId, request.workflowId)
            NudgeTracker(db).set_sequence_paused(request.leadId, request.userId, False)
            db.commit()
            logger.info(f"Resumed lead {request.leadId} in workflow {request.workflowId} ({updated} row(s))")
            return {"success": True, "updated": updated}

        raise HTTPException(status_code=400, detail=f"Unknown action: {action}")

    except HTTPException:
        raise

    except WorkflowValidationError as e:
        db.rollback()
        logger.error(f"Workflow validation failed: {e.validation_errors}")
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": "Workflow validation failed",
                "validationErrors": e.validation_errors,
                "message": e.message,
            }
        )

    except WorkflowNotFoundError as e:
        db.rollback()
        return JSONResponse(status_code=404, content={"error": e.message})

    except OperationalError as e:
        db.rollback()
        logger.exception(f"Workflow action {action} failed: database unavailable")
        raise DatabaseError(f"Database unavailable during {action}") from e

    except Exception as e:
        db.rollback()
        logger.exception(f"Workflow action {action} failed")
        return JSONResponse(status_code=500, content={"error": str(e)})


def _start_workflow(db: Session, request: WorkflowExecutorRequest):
    result = EnrollmentService(db).start_workflow(
        lead_id=request.leadId,
        workflow_id=request.workflowId,
        user_id=request.userId,
        campaign_id=request.campaignId,
    )

    if result.action == ENROLLED:
        return {"success": True, "progress": ProgressResponse.model_validate(result.progress)}

    if result.progress is not None:
        return {
            "success": True,
            "action": result.action,
            "progressId": result.progress.id,
            "status": result.progress.status,
            "message": result.message,
        }

    return {
        "success": True,
        "action": result.action,
        "existingLeadId": result.existing_lead_id,
        "message": result.message,
    }


# ============================================================================
# WORKFLOW DEFINITIONS
# ============================================================================

@app.post(
    "/workflows",
    response_model=WorkflowResponse,
    status_code=201,
    tags=["workflows"],
    summary="Create workflow",
    description="""
    Create a workflow definition with all of its steps.

    Every step configuration is validated against its type; unknown step
    types, malformed configuration, duplicate step numbers and unknown
    SMS template variables are rejected with 400.
    """
)
def create_workflow(workflow: WorkflowCreate, db: Session = Depends(get_db)):
    """Create a new workflow"""
    errors = []
    step_numbers = set()

    for index, step in enumerate(workflow.steps, start=1):
        step_number = step.step_number or index
        label = f"Step {step_number} ({step.step_type})"

        if step_number in step_numbers:
            errors.append(f"{label}: Duplicate step number")
        step_numbers.add(step_number)

        try:
            config = parse_step_config(step.step_type, step.step_config)
        except StepConfigError as e:
            errors.append(f"{label}: {e.message}")
            continue

        if isinstance(config, SmsStepConfig) and config.body:
            unknown = find_unknown_placeholders(config.body)
            if unknown:
                names = ", ".join("{{" + name + "}}" for name in unknown)
                errors.append(f"{label}: Unknown template variable(s): {names}")

    if errors:
        raise HTTPException(status_code=400, detail={"message": "Invalid workflow definition", "errors": errors})

    db_workflow = WorkflowDefinition(
        user_id=workflow.user_id,
        name=workflow.name,
        description=workflow.description,
        enabled=workflow.enabled,
    )
    for index, step in enumerate(workflow.steps, start=1):
        db_workflow.steps.append(WorkflowStep(
            step_number=step.step_number or index,
            step_type=step.step_type,
            step_config=step.step_config,
        ))

    db.add(db_workflow)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=f"Invalid workflow definition: {e.orig}")
    db.refresh(db_workflow)

    logger.info(f"Created workflow {db_workflow.id} with {len(workflow.steps)} steps")
    return db_workflow


@app.get(
    "/workflows",
    response_model=WorkflowListResponse,
    tags=["workflows"],
    summary="List workflows",
    description="List workflows with pagination. Use skip/limit for pagination."
)
def list_workflows(
    skip: int = 0,
    limit: int = 100,
    user_id: Optional[str] = None,
    db: Session = Depends(get_db)
):
    """List workflows with pagination"""
    query = db.query(WorkflowDefinition)
    if user_id:
        query = query.filter(WorkflowDefinition.user_id == user_id)

    total = query.count()
    workflows = query.order_by(WorkflowDefinition.id.asc()).offset(skip).limit(limit).all()

    return {"workflows": workflows, "total": total}


@app.get(
    "/workflows/{workflow_id}",
    response_model=WorkflowResponse,
    tags=["workflows"],
    summary="Get workflow",
    description="Get a workflow definition with its ordered steps."
)
def get_workflow(workflow_id: int, db: Session = Depends(get_db)):
    """Get a specific workflow by ID"""
    workflow = db.query(WorkflowDefinition).filter(WorkflowDefinition.id == workflow_id).first()

    if not workflow:
        raise HTTPException(status_code=404, detail=f"Workflow {workflow_id} not found")

    return workflow


# ============================================================================
# PROGRESS
# ============================================================================

@app.get(
    "/progress",
    response_model=ProgressListResponse,
    tags=["progress"],
    summary="List enrollments",
    description="Filter enrollments by lead, workflow and status."
)
def list_progress(
    lead_id: Optional[int] = Query(None, alias="leadId"),
    workflow_id: Optional[int] = Query(None, alias="workflowId"),
    status: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db)
):
    """List enrollments"""
    query = db.query(LeadWorkflowProgress)
    if lead_id is not None:
        query = query.filter(LeadWorkflowProgress.lead_id == lead_id)
    if workflow_id is not None:
        query = query.filter(LeadWorkflowProgress.workflow_id == workflow_id)
    if status:
        query = query.filter(LeadWorkflowProgress.status == status)

    total = query.count()
    rows = query.order_by(LeadWorkflowProgress.id.desc()).offset(skip).limit(limit).all()

    return {"progress": rows, "total": total}


@app.get(
    "/progress/{progress_id}/executions",
    response_model=StepExecutionListResponse,
    tags=["progress"],
    summary="Get step audit trail",
    description="Every step executed for an enrollment, oldest first."
)
def get_progress_executions(progress_id: int, db: Session = Depends(get_db)):
    """Get the step executions of an enrollment"""
    progress = db.query(LeadWorkflowProgress).filter(LeadWorkflowProgress.id == progress_id).first()

    if not progress:
        raise HTTPException(status_code=404, detail=f"Progress {progress_id} not found")

    entries = (
        db.query(StepExecution)
        .filter(StepExecution.progress_id == progress_id)
        .order_by(StepExecution.timestamp.asc(), StepExecution.id.asc())
        .all()
    )

    return {
        "progress_id": progress_id,
        "entries": entries,
        "total": len(entries)
    }
