"""Event Dispatcher — routes business events to matching workflows.

CRUD code calls ``emit_event`` (or the ``dispatch_event`` Celery task)
after a mutation commits. The dispatcher loads the organization's
active workflows, keeps the most specific matching event triggers of
each, filters them by their payload conditions and runs the executor
once per match. A failing workflow never stops its siblings, and the
caller never sees an exception.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

from core.constants import TriggerType
from triggers.base import EventKey, TriggerEvent
from workflow.conditions import evaluate_conditions

logger = structlog.get_logger(__name__)

SOURCE = "event-dispatcher"

# Exact entity and exact event each add 2; wildcards add nothing
ENTITY_SCORE = 2
EVENT_SCORE = 2

MODULE_ALIASES = {
    "crm": "CRM",
    "hr": "HR",
    "human resources": "HR",
    "finance": "FINANCE",
    "fin": "FINANCE",
    "finances": "FINANCE",
    "projects": "PROJECTS",
    "project": "PROJECTS",
    "pm": "PROJECTS",
    "project management": "PROJECTS",
}

ENTITY_ALIASES = {
    "CRM": {"customer": "contact", "opportunity": "deal"},
    "HR": {"time_off": "timeoff", "time-off": "timeoff"},
}

ENTITY_MODULES = {
    "contact": "CRM",
    "customer": "CRM",
    "deal": "CRM",
    "opportunity": "CRM",
    "employee": "HR",
    "timeoff": "HR",
    "time_off": "HR",
    "time-off": "HR",
    "invoice": "FINANCE",
    "expense": "FINANCE",
    "payment": "FINANCE",
    "project": "PROJECTS",
    "task": "PROJECTS",
}


def normalize_module(module: Optional[str]) -> Optional[str]:
    if not module:
        return None
    return MODULE_ALIASES.get(module.strip().lower(), module.strip().upper())


def normalize_entity(entity: Optional[str], module: Optional[str] = None) -> Optional[str]:
    if not entity:
        return None
    e = entity.strip().lower()
    return ENTITY_ALIASES.get(normalize_module(module) or "", {}).get(e, e)


def infer_module(entity_type: str) -> Optional[str]:
    return ENTITY_MODULES.get((entity_type or "").strip().lower())


# ─── Results ──────────────────────────────────────────────────

@dataclass
class WorkflowDispatch:
    """Outcome of one executor invocation started by an event."""
    workflow_id: str
    workflow_name: str
    trigger_node_id: str
    execution_id: str = ""
    success: bool = False
    status: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "workflow_id": self.workflow_id,
            "workflow_name": self.workflow_name,
            "trigger_node_id": self.trigger_node_id,
            "execution_id": self.execution_id,
            "success": self.success,
            "status": self.status,
            "error": self.error,
        }


@dataclass
class DispatchResult:
    event: str
    triggered_workflows: int = 0
    results: list[WorkflowDispatch] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "event": self.event,
            "triggered_workflows": self.triggered_workflows,
            "execution_results": [r.to_dict() for r in self.results],
        }


# ─── Dispatcher ───────────────────────────────────────────────

class EventDispatcher:
    """Matches events against workflow triggers and invokes the executor."""

    def __init__(self, workflow_service, engine, execution_logger):
        self._workflows = workflow_service
        self._engine = engine
        self._log = execution_logger
        self._background: set[asyncio.Task] = set()

    async def dispatch(
        self,
        event_category: str,
        entity_type: str,
        organization_id: str,
        payload: Optional[dict[str, Any]] = None,
        *,
        module: Optional[str] = None,
    ) -> DispatchResult:
        """Run every workflow whose event trigger matches. Never raises."""
        payload = payload or {}
        module = normalize_module(module) or infer_module(entity_type)
        key = EventKey(module or "", entity_type, event_category)
        result = DispatchResult(event=f"{entity_type}.{event_category}")

        try:
            definitions = await self._workflows.list_active_definitions(organization_id)
        except Exception as e:
            logger.error(
                "Could not load workflows for dispatch",
                organization_id=organization_id,
                event_name=result.event,
                error=str(e),
            )
            return result

        matches = []
        for definition in definitions:
            try:
                triggers = self.match_triggers(definition, key, payload)
            except Exception as e:
                logger.error(
                    "Trigger matching failed",
                    workflow_id=definition.id,
                    event_name=result.event,
                    error=str(e),
                )
                continue
            if triggers:
                matches.append((definition, triggers))

        if not matches:
            logger.info(
                "No workflows matched event",
                organization_id=organization_id,
                event_name=str(key),
            )
            return result

        for definition, triggers in matches:
            await self._log.trigger_matching(
                definition.id, str(key), [t.node_id for t in triggers]
            )
            for trigger in triggers:
                result.results.append(
                    await self._run(definition, trigger, key, organization_id, payload)
                )
        result.triggered_workflows = len(matches)
        return result

    def dispatch_nowait(self, *args, **kwargs) -> asyncio.Task:
        """Schedule ``dispatch`` in the background and return immediately."""
        task = asyncio.create_task(self.dispatch(*args, **kwargs))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def match_triggers(self, definition, key: EventKey, payload: dict) -> list:
        """Most specific active event triggers of ``definition`` matching ``key``."""
        event_module = normalize_module(key.module)
        event_entity = normalize_entity(key.entity_type, event_module)
        event_type = (key.event_type or "").strip().lower()

        candidates = []
        for trigger in definition.triggers:
            if trigger.type != "event" or not trigger.is_active:
                continue
            if trigger.module and normalize_module(trigger.module) != event_module:
                continue
            trigger_entity = normalize_entity(trigger.entity_type, trigger.module or event_module)
            if trigger_entity and trigger_entity != event_entity:
                continue
            trigger_event = (trigger.event_type or "").strip().lower()
            if trigger_event and trigger_event != event_type:
                continue
            score = (ENTITY_SCORE if trigger_entity else 0) + (EVENT_SCORE if trigger_event else 0)
            candidates.append((score, trigger))

        if not candidates:
            return []
        best = max(score for score, _ in candidates)
        return [
            trigger
            for score, trigger in candidates
            if score == best
            and evaluate_conditions(trigger.conditions, payload, trigger.logical_operator)
        ]

    async def _run(self, definition, trigger, key: EventKey, organization_id: str, payload: dict) -> WorkflowDispatch:
        outcome = WorkflowDispatch(
            workflow_id=definition.id,
            workflow_name=definition.name,
            trigger_node_id=trigger.node_id,
        )
        event = TriggerEvent(
            trigger_type=TriggerType.EVENT,
            organization_id=organization_id,
            payload=payload,
            trigger_node_id=trigger.node_id,
            metadata={
                "module": key.module,
                "entity_type": key.entity_type,
                "event_type": key.event_type,
            },
        )
        outcome.execution_id = event.execution_id
        try:
            execution = await self._engine.execute(definition, event)
        except Exception as e:
            logger.error(
                "Workflow dispatch failed",
                workflow_id=definition.id,
                trigger_node_id=trigger.node_id,
                error=str(e),
            )
            outcome.error = str(e)
            return outcome

        outcome.success = execution.succeeded
        outcome.status = execution.status.value
        outcome.error = execution.error
        return outcome


# ─── Singleton / helpers ──────────────────────────────────────

def get_event_dispatcher() -> EventDispatcher:
    """The dispatcher bound to the application database."""
    from services.container import get_services
    return get_services().dispatcher


async def emit_event(
    event_category: str,
    entity_type: str,
    organization_id: str,
    payload: Optional[dict[str, Any]] = None,
    module: Optional[str] = None,
) -> None:
    """Fire-and-forget dispatch for CRUD code paths; never raises."""
    try:
        get_event_dispatcher().dispatch_nowait(
            event_category, entity_type, organization_id, payload, module=module
        )
    except Exception as e:
        logger.warning(
            "Event dispatch could not be scheduled",
            event_name=f"{entity_type}.{event_category}",
            organization_id=organization_id,
            error=str(e),
        )
