"""Template endpoints used by the workflow builder."""

from fastapi import APIRouter, Depends

from api.schemas.workflow import TemplateVariablesRequest
from app.dependencies import get_app_services, get_organization_id
from services.container import Services
from services.template_resolver import (
    extract_variables_from_content,
    validate_required_variables,
)

router = APIRouter()


@router.post("/variables")
async def preview_variables(body: TemplateVariablesRequest) -> dict:
    """Placeholders found in the content and the required ones it lacks."""
    content = body.model_dump(include={"subject", "html_body", "message"})
    check = validate_required_variables(body.required_variables, content)
    return {
        "variables": extract_variables_from_content(content),
        "is_valid": check.is_valid,
        "missing_variables": check.missing_variables,
    }


@router.get("/{template_id}")
async def get_template(
    template_id: str,
    organization_id: str = Depends(get_organization_id),
    services: Services = Depends(get_app_services),
) -> dict:
    """A system, organization or public template as an EMAIL/SMS node sees it."""
    template = await services.templates.resolve_template(template_id, organization_id)
    return {
        "id": template.id,
        "name": template.name,
        "channel": template.channel,
        "content": template.content,
        "is_locked": template.is_locked,
        "is_system": template.is_system,
        "required_variables": template.required_variables,
        "optional_variables": template.optional_variables,
    }
