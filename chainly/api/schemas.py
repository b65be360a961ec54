"""
Pydantic schemas for API request/response validation
"""

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List
from datetime import datetime


# ============================================================================
# EXECUTION SCHEMAS
# ============================================================================

class ExecutionRequest(BaseModel):
    """Schema for executing a workflow"""
    initial_data: Optional[Dict[str, Any]] = Field(
        default_factory=dict,
        description="Seed context for the run"
    )
    trigger_node_id: Optional[str] = Field(
        None,
        description="Start only from this trigger node"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "initial_data": {"customer": {"email": "ana@example.com"}},
                "trigger_node_id": None
            }
        }


class ExecutionQueuedResponse(BaseModel):
    """Schema returned when a run is queued"""
    task_id: str
    status: str
    workflow_id: int
    message: str


class ExecutionResponse(BaseModel):
    """Schema for execution response"""
    id: int
    workflow_id: int
    status: str
    initial_data: Optional[Dict[str, Any]]
    trigger_node_id: Optional[str]
    output: Optional[Dict[str, Any]]
    error: Optional[str]
    error_stack: Optional[str]
    started_at: datetime
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True


class ExecutionStepResponse(BaseModel):
    """Schema for one run step"""
    id: int
    execution_id: int
    order: int
    node_id: str
    node_type: str
    node_name: Optional[str]
    status: str
    input: Optional[Dict[str, Any]]
    output: Optional[Dict[str, Any]]
    error: Optional[str]
    started_at: datetime
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True


class ExecutionStepListResponse(BaseModel):
    execution_id: int
    steps: List[ExecutionStepResponse]
    total: int


# ============================================================================
# APPROVAL SCHEMAS
# ============================================================================

class ApprovalResponse(BaseModel):
    """Schema for approval response"""
    id: str
    execution_id: int
    node_id: str
    user_id: Optional[str]
    status: str
    message: str
    context: Dict[str, Any]
    response: Optional[Dict[str, Any]]
    responded_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class ApprovalListResponse(BaseModel):
    approvals: List[ApprovalResponse]
    total: int


class ApproveRequest(BaseModel):
    response: Optional[Dict[str, Any]] = Field(None, description="Structured response stored with the approval")


class RejectRequest(BaseModel):
    reason: Optional[str] = Field(None, description="Why the run is rejected (becomes the run's error)")


class ModifyRequest(BaseModel):
    modified_context: Dict[str, Any] = Field(..., description="Patch merged into the paused context")

    class Config:
        json_schema_extra = {
            "example": {
                "modified_context": {"amount": 120}
            }
        }


# ============================================================================
# GENERIC SCHEMAS
# ============================================================================

class MessageResponse(BaseModel):
    """Generic message response"""
    message: str


class WebhookResponse(BaseModel):
    success: bool
    task_id: Optional[str] = None
