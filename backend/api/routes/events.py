"""Business event endpoint.

CRUD services that live in other processes report mutations here; the
dispatcher runs every workflow whose event trigger matches.
"""

from fastapi import APIRouter, Depends

from api.schemas.workflow import EventRequest
from app.dependencies import get_app_services, get_organization_id
from services.container import Services

router = APIRouter()


@router.post("")
async def dispatch_event(
    body: EventRequest,
    organization_id: str = Depends(get_organization_id),
    services: Services = Depends(get_app_services),
) -> dict:
    """Dispatch one event and return the per-workflow outcome."""
    result = await services.dispatcher.dispatch(
        body.event_category,
        body.entity_type,
        organization_id,
        body.payload,
        module=body.module,
    )
    return result.to_dict()
