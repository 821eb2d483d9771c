"""Template resolution for EMAIL / SMS nodes.

Lookup order for ``resolve_template``:
1. System templates (``sys_tpl_`` prefix), always locked
2. The organization's own templates
3. Public templates shared by other organizations

``validate_template_content`` decides what content is actually sent:
locked templates ignore caller overrides; unlocked templates take
per-field overrides; CUSTOM mode needs at least one content field.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

import structlog
from sqlalchemy import or_, select

from core.constants import TemplateMode
from core.exceptions import MissingContent, TemplateNotFound, TemplateRequired
from db.models.action_template import ActionTemplate
from services.system_templates import find_system_template, is_system_template
from workflow.placeholders import extract_variables_from_values, render_text

logger = structlog.get_logger(__name__)

CONTENT_FIELDS = ("subject", "html_body", "message")


@dataclass
class ResolvedTemplate:
    id: str
    name: str
    channel: str
    content: dict[str, Optional[str]]
    is_locked: bool = False
    is_system: bool = False
    required_variables: list[str] = field(default_factory=list)
    optional_variables: list[str] = field(default_factory=list)


@dataclass
class VariableCheck:
    is_valid: bool
    missing_variables: list[str]


# ─── Pure helpers ─────────────────────────────────────────────

def _content_fields(content: Optional[dict]) -> dict[str, Optional[str]]:
    content = content or {}
    return {name: content.get(name) or None for name in CONTENT_FIELDS}


def extract_variables_from_content(content: Any) -> list[str]:
    """Placeholder names in a string or a content dict, first-seen order."""
    if isinstance(content, dict):
        return extract_variables_from_values(content.get(name) for name in CONTENT_FIELDS)
    return extract_variables_from_values([content])


def validate_required_variables(required: list[str], content: Any) -> VariableCheck:
    """Report required placeholders that ``content`` does not mention."""
    present = set(extract_variables_from_content(content))
    missing = [name for name in required if name not in present]
    return VariableCheck(is_valid=not missing, missing_variables=missing)


def render_content(content: dict, source: Any) -> dict[str, Optional[str]]:
    """Substitute placeholders in every content field."""
    return {
        name: render_text(value, source) if value else value
        for name, value in _content_fields(content).items()
    }


def validate_template_content(
    mode: str,
    template: Optional[ResolvedTemplate],
    provided: Optional[dict],
) -> dict[str, Optional[str]]:
    """Final (unrendered) content for a message node.

    Raises:
        TemplateRequired: TEMPLATE mode without a template
        MissingContent: CUSTOM mode without any content field
    """
    mode = TemplateMode(mode)
    provided = _content_fields(provided)

    if mode == TemplateMode.TEMPLATE:
        if template is None:
            raise TemplateRequired()
        stored = _content_fields(template.content)
        if template.is_locked:
            if any(provided.values()):
                logger.info("Ignoring overrides for locked template", template_id=template.id)
            return stored
        return {name: provided[name] or stored[name] for name in CONTENT_FIELDS}

    if not any(provided.values()):
        raise MissingContent()
    return provided


# ─── Resolver ─────────────────────────────────────────────────

class TemplateResolver:
    """Looks templates up and produces the content a node sends."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def resolve_template(self, template_id: str, organization_id: str) -> ResolvedTemplate:
        """Find a template by id for ``organization_id``.

        Raises:
            TemplateNotFound: no system, organization or public template matches
        """
        if is_system_template(template_id):
            system = find_system_template(template_id)
            if system is None:
                raise TemplateNotFound(template_id)
            return ResolvedTemplate(
                id=system.id,
                name=system.name,
                channel=system.channel,
                content=_content_fields(system.content),
                is_locked=True,
                is_system=True,
                required_variables=list(system.required_variables),
                optional_variables=list(system.optional_variables),
            )

        async with self._session_factory() as session:
            result = await session.execute(
                select(ActionTemplate).where(
                    ActionTemplate.id == template_id,
                    or_(
                        ActionTemplate.organization_id == organization_id,
                        ActionTemplate.is_public == True,  # noqa: E712
                    ),
                )
            )
            row = result.scalar_one_or_none()

        if row is None:
            raise TemplateNotFound(template_id)

        return ResolvedTemplate(
            id=row.id,
            name=row.name,
            channel=row.channel,
            content=_content_fields(row.content),
            is_locked=bool(row.is_locked),
            required_variables=list(row.required_variables or []),
            optional_variables=list(row.optional_variables or []),
        )

    async def process_template(
        self,
        mode: str,
        template_id: Optional[str],
        organization_id: str,
        provided: Optional[dict],
        source: Any,
    ) -> dict[str, Optional[str]]:
        """Resolve, apply override rules and render against ``source``."""
        template = None
        if TemplateMode(mode) == TemplateMode.TEMPLATE:
            if not template_id:
                raise TemplateRequired()
            template = await self.resolve_template(template_id, organization_id)
        content = validate_template_content(mode, template, provided)
        if template is not None and template.required_variables:
            check = validate_required_variables(template.required_variables, content)
            if not check.is_valid:
                logger.warning(
                    "Template content is missing required placeholders",
                    template_id=template.id,
                    missing=check.missing_variables,
                )
        return render_content(content, source)

    async def process_email_template(
        self, mode, template_id, organization_id, provided, source
    ) -> dict[str, Optional[str]]:
        content = await self.process_template(mode, template_id, organization_id, provided, source)
        if not content.get("subject") and not content.get("html_body") and not content.get("message"):
            raise MissingContent("Email has no subject or body")
        return content

    async def process_sms_template(
        self, mode, template_id, organization_id, provided, source
    ) -> dict[str, Optional[str]]:
        content = await self.process_template(mode, template_id, organization_id, provided, source)
        if not content.get("message"):
            raise MissingContent("SMS has no message")
        return content
