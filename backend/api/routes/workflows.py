"""Workflow endpoints.

CRUD over workflow definitions, manual execution, schedules attached to
TRIGGER nodes and the execution log of a workflow. Saving a definition
validates it first; schedules follow the definition automatically.
"""

from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends, Query, status

from api.schemas.common import MessageResponse
from api.schemas.workflow import (
    ExecuteRequest,
    ScheduleUpsert,
    WorkflowCreate,
    WorkflowListResponse,
    WorkflowResponse,
    WorkflowUpdate,
)
from app.dependencies import get_app_services, get_organization_id
from core.constants import LogLevel, TriggerType
from core.exceptions import ConflictError, NotFoundError
from services.container import Services
from triggers.base import TriggerEvent

logger = structlog.get_logger(__name__)

router = APIRouter()


# ─── CRUD ─────────────────────────────────────────────────────

@router.post("", response_model=WorkflowResponse, status_code=status.HTTP_201_CREATED)
async def create_workflow(
    body: WorkflowCreate,
    organization_id: str = Depends(get_organization_id),
    services: Services = Depends(get_app_services),
) -> Any:
    """Validate and store a workflow; scheduled TRIGGER nodes get their schedules."""
    return await services.workflows.create_workflow(
        organization_id,
        body.name,
        body.definition,
        description=body.description or "",
        is_active=body.is_active,
    )


@router.get("", response_model=WorkflowListResponse)
async def list_workflows(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    is_active: Optional[bool] = Query(None),
    organization_id: str = Depends(get_organization_id),
    services: Services = Depends(get_app_services),
) -> Any:
    filters = {"is_active": is_active} if is_active is not None else None
    workflows, total = await services.workflows.list(
        organization_id=organization_id,
        offset=(page - 1) * per_page,
        limit=per_page,
        filters=filters,
    )
    return {"workflows": workflows, "total": total, "page": page, "per_page": per_page}


@router.get("/{workflow_id}", response_model=WorkflowResponse)
async def get_workflow(
    workflow_id: str,
    organization_id: str = Depends(get_organization_id),
    services: Services = Depends(get_app_services),
) -> Any:
    return await services.workflows.get_workflow(workflow_id, organization_id)


@router.patch("/{workflow_id}", response_model=WorkflowResponse)
async def update_workflow(
    workflow_id: str,
    body: WorkflowUpdate,
    organization_id: str = Depends(get_organization_id),
    services: Services = Depends(get_app_services),
) -> Any:
    """Replace the definition and/or toggle the workflow."""
    workflow = await services.workflows.get_workflow(workflow_id, organization_id)
    if body.definition is not None:
        workflow = await services.workflows.update_definition(
            workflow_id, organization_id, body.definition
        )
    if body.is_active is not None and body.is_active != workflow.is_active:
        workflow = await services.workflows.set_active(workflow_id, organization_id, body.is_active)
    return workflow


@router.delete("/{workflow_id}", response_model=MessageResponse)
async def delete_workflow(
    workflow_id: str,
    organization_id: str = Depends(get_organization_id),
    services: Services = Depends(get_app_services),
) -> Any:
    await services.workflows.delete_workflow(workflow_id, organization_id)
    return {"message": f"Workflow {workflow_id} deleted"}


# ─── Execution ────────────────────────────────────────────────

@router.post("/{workflow_id}/execute")
async def execute_workflow(
    workflow_id: str,
    body: ExecuteRequest,
    organization_id: str = Depends(get_organization_id),
    services: Services = Depends(get_app_services),
) -> dict:
    """Run the workflow now and return its ExecutionResult."""
    workflow = await services.workflows.get_workflow(workflow_id, organization_id)
    if not workflow.is_active:
        raise ConflictError(f"Workflow {workflow_id} is inactive")

    result = await services.engine.execute(
        services.workflows.to_definition(workflow),
        TriggerEvent(
            trigger_type=TriggerType.MANUAL,
            organization_id=organization_id,
            payload=body.payload,
            variables=body.variables,
            trigger_node_id=body.trigger_node_id,
        ),
    )
    return result.to_dict()


@router.get("/{workflow_id}/logs")
async def get_execution_logs(
    workflow_id: str,
    execution_id: Optional[str] = Query(None),
    level: Optional[LogLevel] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    organization_id: str = Depends(get_organization_id),
    services: Services = Depends(get_app_services),
) -> dict:
    """Execution history of a workflow, newest first."""
    await services.workflows.get_workflow(workflow_id, organization_id)
    entries = await services.execution_logger.list_entries(
        workflow_id,
        execution_id=execution_id,
        level=level.value if level else None,
        limit=limit,
        offset=offset,
    )
    return {"workflow_id": workflow_id, "entries": [entry.to_dict() for entry in entries]}


# ─── Schedules ────────────────────────────────────────────────

@router.get("/{workflow_id}/schedules")
async def list_schedules(
    workflow_id: str,
    organization_id: str = Depends(get_organization_id),
    services: Services = Depends(get_app_services),
) -> dict:
    await services.workflows.get_workflow(workflow_id, organization_id)
    records = await services.scheduler.list_for_workflow(workflow_id)
    return {"schedules": [record.to_dict() for record in records]}


@router.put("/{workflow_id}/schedules/{node_id}")
async def upsert_schedule(
    workflow_id: str,
    node_id: str,
    body: ScheduleUpsert,
    organization_id: str = Depends(get_organization_id),
    services: Services = Depends(get_app_services),
) -> dict:
    """Create or replace the schedule of one TRIGGER node."""
    definition = await services.workflows.load_definition(workflow_id, organization_id)
    node = definition.node(node_id)
    if node is None or node.type != "TRIGGER":
        raise NotFoundError(f"TRIGGER node {node_id} not found in workflow {workflow_id}")

    record = await services.scheduler.upsert_schedule(
        workflow_id, node_id, body.model_dump()
    )
    return record.to_dict()
