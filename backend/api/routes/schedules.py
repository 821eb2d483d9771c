"""Schedule endpoints.

Schedules are created through the workflow they belong to
(``PUT /workflows/{id}/schedules/{node_id}``); here they are read and
switched on or off.
"""

from fastapi import APIRouter, Depends

from app.dependencies import get_app_services, get_organization_id
from services.container import Services

router = APIRouter()


async def _owned_schedule(schedule_id: str, organization_id: str, services: Services):
    record = await services.scheduler.get_schedule(schedule_id)
    # NotFoundError for schedules of other organizations
    await services.workflows.get_workflow(record.workflow_id, organization_id)
    return record


@router.get("/{schedule_id}")
async def get_schedule(
    schedule_id: str,
    organization_id: str = Depends(get_organization_id),
    services: Services = Depends(get_app_services),
) -> dict:
    record = await _owned_schedule(schedule_id, organization_id, services)
    return record.to_dict()


@router.post("/{schedule_id}/activate")
async def activate_schedule(
    schedule_id: str,
    organization_id: str = Depends(get_organization_id),
    services: Services = Depends(get_app_services),
) -> dict:
    await _owned_schedule(schedule_id, organization_id, services)
    record = await services.scheduler.set_active_state(schedule_id, True)
    return record.to_dict()


@router.post("/{schedule_id}/deactivate")
async def deactivate_schedule(
    schedule_id: str,
    organization_id: str = Depends(get_organization_id),
    services: Services = Depends(get_app_services),
) -> dict:
    await _owned_schedule(schedule_id, organization_id, services)
    record = await services.scheduler.set_active_state(schedule_id, False)
    return record.to_dict()
