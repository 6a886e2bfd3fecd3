"""
Pydantic schemas for API request/response validation
"""

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List
from datetime import datetime


# ============================================================================
# WORKFLOW EXECUTOR SCHEMAS
# ============================================================================

class WorkflowExecutorRequest(BaseModel):
    """Schema for the action-dispatch endpoint"""
    action: str = Field(..., description="health_check, start_workflow, execute_pending, "
                                         "remove_from_workflow, pause_workflow or resume_workflow")
    userId: Optional[str] = Field(None, description="Owner of the enrollment")
    leadId: Optional[int] = Field(None, description="Lead to act on")
    workflowId: Optional[int] = Field(None, description="Workflow to act on")
    campaignId: Optional[int] = Field(None, description="Campaign the enrollment belongs to")

    class Config:
        json_schema_extra = {
            "example": {
                "action": "start_workflow",
                "userId": "user-42",
                "leadId": 1001,
                "workflowId": 7,
                "campaignId": 3
            }
        }


# ============================================================================
# WORKFLOW SCHEMAS
# ============================================================================

class WorkflowStepCreate(BaseModel):
    """Schema for one step of a new workflow"""
    step_number: Optional[int] = Field(None, ge=1, description="Position (defaults to list order)")
    step_type: str = Field(..., min_length=1, description="call, sms, ai_sms, wait, webhook, tag, condition, end")
    step_config: Dict[str, Any] = Field(default_factory=dict, description="Per-type configuration")


class WorkflowCreate(BaseModel):
    """Schema for creating a new workflow with its steps"""
    name: str = Field(..., min_length=1, max_length=255, description="Workflow name")
    description: Optional[str] = Field(None, description="Workflow description")
    user_id: Optional[str] = Field(None, description="Owner")
    enabled: bool = True
    steps: List[WorkflowStepCreate] = Field(default_factory=list)

    class Config:
        json_schema_extra = {
            "example": {
                "name": "New lead follow-up",
                "description": "Text, wait a day, then call",
                "user_id": "user-42",
                "steps": [
                    {"step_type": "sms", "step_config": {"sms_content": "Hi {{first_name}}!"}},
                    {"step_type": "wait", "step_config": {"delay_days": 1, "time_of_day": "09:00"}},
                    {"step_type": "call", "step_config": {"agent_id": "agent_123"}}
                ]
            }
        }


class WorkflowStepResponse(BaseModel):
    """Schema for workflow step response"""
    id: int
    step_number: int
    step_type: str
    step_config: Optional[Dict[str, Any]]

    class Config:
        from_attributes = True


class WorkflowResponse(BaseModel):
    """Schema for workflow response"""
    id: int
    user_id: Optional[str]
    name: str
    description: Optional[str]
    enabled: bool
    steps: List[WorkflowStepResponse]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class WorkflowListResponse(BaseModel):
    """Schema for listing workflows"""
    workflows: List[WorkflowResponse]
    total: int


# ============================================================================
# PROGRESS SCHEMAS
# ============================================================================

class ProgressResponse(BaseModel):
    """Schema for an enrollment row"""
    id: int
    user_id: Optional[str]
    lead_id: int
    workflow_id: int
    campaign_id: Optional[int]
    current_step_id: Optional[int]
    status: str
    next_action_at: Optional[datetime]
    last_action_at: Optional[datetime]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    removal_reason: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ProgressListResponse(BaseModel):
    """Schema for listing enrollments"""
    progress: List[ProgressResponse]
    total: int


class StepExecutionEntry(BaseModel):
    """Schema for one step audit entry"""
    id: int
    progress_id: int
    step_id: Optional[int]
    step_number: Optional[int]
    step_type: Optional[str]
    action: Optional[str]
    success: bool
    error_message: Optional[str]
    result: Optional[Dict[str, Any]]
    execution_time: Optional[float]
    timestamp: datetime

    class Config:
        from_attributes = True


class StepExecutionListResponse(BaseModel):
    """Schema for the step audit trail of an enrollment"""
    progress_id: int
    entries: List[StepExecutionEntry]
    total: int
