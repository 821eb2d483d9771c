"""Workflow service — definition storage and schedule synchronisation."""

import logging
from typing import Optional, Union

from core.exceptions import DefinitionError, NotFoundError
from db.models.workflow import Workflow
from services.base import BaseService
from workflow.definition import WorkflowDefinition, parse_definition, validate_definition

logger = logging.getLogger(__name__)


class WorkflowService(BaseService[Workflow]):
    """Service for workflow management.

    Saving a definition validates it first (a bad definition never reaches
    the database) and then keeps ``workflow_schedules`` in step with the
    definition's scheduled TRIGGER nodes.
    """

    def __init__(self, session_factory, scheduler, continuation_service=None):
        super().__init__(Workflow, session_factory)
        self.scheduler = scheduler
        self.continuations = continuation_service

    # ─── Write ─────────────────────────────────────────────

    async def create_workflow(
        self,
        organization_id: str,
        name: str,
        definition: Union[dict, WorkflowDefinition],
        description: str = "",
        is_active: bool = True,
    ) -> Workflow:
        """Validate and store a new workflow, then create its schedules.

        Raises:
            DefinitionError / InvalidScheduleSpec / ConflictError: nothing is stored
        """
        parsed = parse_definition(definition)
        validate_definition(parsed)
        await self.scheduler.ensure_nodes_available(
            None, [node.id for node in parsed.scheduled_trigger_nodes()]
        )

        workflow = await self.create({
            "organization_id": organization_id,
            "name": name,
            "description": description,
            "definition": parsed.to_storage(),
            "version": 1,
            "is_active": is_active,
        })
        try:
            await self._sync_schedules(workflow.id, parsed, is_active)
        except Exception:
            await self.scheduler.delete_for_workflow(workflow.id)
            await self.delete(workflow.id, organization_id)
            raise
        logger.info(f"Workflow created: {workflow.id} ({name})")
        return workflow

    async def update_definition(
        self,
        workflow_id: str,
        organization_id: str,
        definition: Union[dict, WorkflowDefinition],
    ) -> Workflow:
        """Replace a workflow's definition and bump its version."""
        workflow = await self.get_workflow(workflow_id, organization_id)
        parsed = parse_definition(definition)
        validate_definition(parsed)
        await self.scheduler.ensure_nodes_available(
            workflow_id, [node.id for node in parsed.scheduled_trigger_nodes()]
        )

        workflow = await self.update(
            workflow_id,
            {"definition": parsed.to_storage(), "version": workflow.version + 1},
            organization_id,
        )
        await self._sync_schedules(workflow_id, parsed, workflow.is_active)
        logger.info(f"Workflow {workflow_id} updated to version {workflow.version}")
        return workflow

    async def set_active(self, workflow_id: str, organization_id: str, is_active: bool) -> Workflow:
        """Enable / disable a workflow together with its schedules."""
        await self.get_workflow(workflow_id, organization_id)
        workflow = await self.update(workflow_id, {"is_active": is_active}, organization_id)
        definition = self.to_definition(workflow)
        await self._sync_schedules(workflow_id, definition, is_active)
        if not is_active and self.continuations is not None:
            await self.continuations.cancel_for_workflow(workflow_id)
        return workflow

    async def delete_workflow(self, workflow_id: str, organization_id: str) -> bool:
        """Delete a workflow; schedules and continuations cascade."""
        await self.get_workflow(workflow_id, organization_id)
        await self.scheduler.delete_for_workflow(workflow_id)
        deleted = await self.delete(workflow_id, organization_id)
        logger.info(f"Workflow deleted: {workflow_id}")
        return deleted

    async def _sync_schedules(
        self,
        workflow_id: str,
        definition: WorkflowDefinition,
        is_active: bool,
    ) -> None:
        """Upsert a schedule per scheduled TRIGGER node, drop the rest."""
        wanted = {node.id: node.config.schedule for node in definition.scheduled_trigger_nodes()}
        for record in await self.scheduler.list_for_workflow(workflow_id):
            if record.node_id not in wanted:
                await self.scheduler.delete_for_node(workflow_id, record.node_id)
        for node_id, spec in wanted.items():
            if not is_active:
                spec = spec.model_copy(update={"is_active": False})
            await self.scheduler.upsert_schedule(workflow_id, node_id, spec)

    # ─── Read ──────────────────────────────────────────────

    async def get_workflow(self, workflow_id: str, organization_id: Optional[str] = None) -> Workflow:
        if organization_id:
            workflow = await self.get_by_id_and_org(workflow_id, organization_id)
        else:
            workflow = await self.get_by_id(workflow_id)
        if workflow is None:
            raise NotFoundError(f"Workflow {workflow_id} not found")
        return workflow

    async def load_definition(
        self, workflow_id: str, organization_id: Optional[str] = None
    ) -> WorkflowDefinition:
        """Stored definition with the workflow's identity filled in."""
        return self.to_definition(await self.get_workflow(workflow_id, organization_id))

    async def list_active_definitions(self, organization_id: str) -> list[WorkflowDefinition]:
        """Every active workflow of an organization that still parses."""
        workflows, _ = await self.list(
            organization_id=organization_id,
            limit=10_000,
            order_by="created_at",
            order_desc=False,
            filters={"is_active": True},
        )
        definitions = []
        for workflow in workflows:
            try:
                definitions.append(self.to_definition(workflow))
            except DefinitionError as e:
                logger.warning(f"Skipping workflow {workflow.id} with unreadable definition: {e.message}")
        return definitions

    @staticmethod
    def to_definition(workflow: Workflow) -> WorkflowDefinition:
        return parse_definition(
            workflow.definition or {},
            id=workflow.id,
            organization_id=workflow.organization_id,
            name=workflow.name,
            is_active=workflow.is_active,
        )
