"""Workflow, schedule and approval schemas."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class WorkflowCreate(BaseModel):
    """Request to create a new workflow."""

    name: str = Field(min_length=1, description="Workflow name")
    description: Optional[str] = Field(default="", description="Workflow description")
    definition: Dict[str, Any] = Field(description="Nodes, connections, triggers and variables")
    is_active: bool = Field(default=True, description="Whether triggers and schedules fire")


class WorkflowUpdate(BaseModel):
    """Request to update a workflow."""

    definition: Optional[Dict[str, Any]] = Field(default=None, description="Workflow definition")
    is_active: Optional[bool] = Field(default=None, description="Whether workflow is active")


class WorkflowResponse(BaseModel):
    """Workflow information response."""

    id: str = Field(description="Workflow ID")
    organization_id: str = Field(description="Owning organization")
    name: str = Field(description="Workflow name")
    description: str = Field(description="Workflow description")
    definition: Dict[str, Any] = Field(description="Stored workflow definition")
    version: int = Field(description="Workflow version number")
    is_active: bool = Field(description="Whether workflow is active")
    created_at: datetime = Field(description="Creation timestamp")
    updated_at: datetime = Field(description="Last update timestamp")

    class Config:
        from_attributes = True


class WorkflowListResponse(BaseModel):
    """Paginated list of workflows."""

    workflows: List[WorkflowResponse] = Field(description="List of workflows")
    total: int = Field(description="Total number of workflows")
    page: int = Field(description="Current page number")
    per_page: int = Field(description="Items per page")


class ExecuteRequest(BaseModel):
    """Manual run of a workflow."""

    payload: Dict[str, Any] = Field(default_factory=dict, description="Trigger payload")
    variables: Dict[str, Any] = Field(default_factory=dict, description="Initial variables")
    trigger_node_id: Optional[str] = Field(default=None, description="TRIGGER node to start from")


class ScheduleUpsert(BaseModel):
    """Schedule attached to a TRIGGER node."""

    cron: Optional[str] = Field(default=None, description="5-field cron expression")
    frequency: Optional[str] = Field(default=None, description="hourly, daily, weekly, monthly or yearly")
    timezone: str = Field(default="UTC", max_length=64)
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    is_active: bool = True


class ApprovalDecision(BaseModel):
    """Approver's answer to a pending APPROVAL node."""

    approved: bool
    decided_by: Optional[str] = Field(default=None, description="User who decided")
    comments: Optional[str] = None


class EventRequest(BaseModel):
    """A business event emitted by CRUD code."""

    event_category: str = Field(min_length=1, description="created, updated, status_changed, ...")
    entity_type: str = Field(min_length=1, description="Record kind, e.g. task or invoice")
    module: Optional[str] = Field(default=None, description="CRM, HR, FINANCE or PROJECTS")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Record snapshot")


class TemplateVariablesRequest(BaseModel):
    """Content to scan for ``{placeholder}`` names."""

    subject: Optional[str] = None
    html_body: Optional[str] = None
    message: Optional[str] = None
    required_variables: List[str] = Field(default_factory=list)
