"""Router for everything mounted under ``API_V1_PREFIX``."""

from fastapi import APIRouter

from api.routes import approvals, events, health, schedules, templates, workflows

api_v1_router = APIRouter()

api_v1_router.include_router(health.router, tags=["Health"])

for module, prefix, tag in (
    (workflows, "/workflows", "Workflows"),
    (schedules, "/schedules", "Schedules"),
    (events, "/events", "Events"),
    (approvals, "/approvals", "Approvals"),
    (templates, "/templates", "Templates"),
):
    api_v1_router.include_router(module.router, prefix=prefix, tags=[tag])
