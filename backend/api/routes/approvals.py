"""Approval endpoints for runs suspended at an APPROVAL node."""

from fastapi import APIRouter, Depends

from api.schemas.workflow import ApprovalDecision
from app.dependencies import get_app_services, get_organization_id
from core.exceptions import NotFoundError
from services.container import Services

router = APIRouter()


@router.get("/{continuation_id}")
async def get_approval(
    continuation_id: str,
    organization_id: str = Depends(get_organization_id),
    services: Services = Depends(get_app_services),
) -> dict:
    continuation = await services.continuations.get(continuation_id)
    if continuation.organization_id != organization_id:
        raise NotFoundError(f"Continuation {continuation_id} not found")
    return continuation.to_dict()


@router.post("/{continuation_id}")
async def decide_approval(
    continuation_id: str,
    body: ApprovalDecision,
    organization_id: str = Depends(get_organization_id),
    services: Services = Depends(get_app_services),
) -> dict:
    """Approve (the run continues) or reject (the run closes as failed)."""
    continuation = await services.continuations.get(continuation_id)
    if continuation.organization_id != organization_id:
        raise NotFoundError(f"Continuation {continuation_id} not found")

    definition = await services.workflows.load_definition(
        continuation.workflow_id, organization_id
    )
    result = await services.engine.resume_approval(
        definition,
        continuation_id,
        approved=body.approved,
        decided_by=body.decided_by,
        comments=body.comments,
    )
    return result.to_dict()
