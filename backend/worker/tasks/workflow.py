"""Celery tasks that run workflows off the API process.

``dispatch_event`` is the queued counterpart of ``emit_event``;
``execute_workflow`` is a queued manual run. Each job gets a fresh event
loop and its own database engine, and returns the JSON form of its
result so it can travel through the Redis result backend.
"""

import asyncio
from typing import Optional

import structlog

from worker.celery_app import celery_app

logger = structlog.get_logger(__name__)


def _run_in_fresh_loop(coro):
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def _with_services(callback):
    from db.database import worker_session_factory
    from services.container import build_services

    async with worker_session_factory() as session_factory:
        return await callback(build_services(session_factory))


@celery_app.task(
    name="worker.tasks.workflow.dispatch_event",
    bind=True,
    max_retries=3,
    default_retry_delay=30,
)
def dispatch_event(
    self,
    event_category: str,
    entity_type: str,
    organization_id: str,
    payload: Optional[dict] = None,
    module: Optional[str] = None,
):
    """Run every workflow whose event trigger matches.

    Workflow failures are part of the returned summary. Only a failure to
    reach the database is retried.
    """
    async def dispatch(services):
        return await services.dispatcher.dispatch(
            event_category, entity_type, organization_id, payload or {}, module=module
        )

    log = logger.bind(event_name=f"{entity_type}.{event_category}", organization_id=organization_id)
    try:
        result = _run_in_fresh_loop(_with_services(dispatch))
    except Exception as exc:
        log.exception("Queued dispatch could not run", retries=self.request.retries)
        raise self.retry(exc=exc)

    log.info("Queued dispatch finished", triggered_workflows=result.triggered_workflows)
    return result.to_dict()


@celery_app.task(name="worker.tasks.workflow.execute_workflow", max_retries=0)
def execute_workflow(
    workflow_id: str,
    organization_id: str,
    payload: Optional[dict] = None,
    variables: Optional[dict] = None,
    trigger_node_id: Optional[str] = None,
):
    """One manual run. A failed run is reported, never retried."""
    from core.constants import TriggerType
    from triggers.base import TriggerEvent

    async def execute(services):
        definition = await services.workflows.load_definition(workflow_id, organization_id)
        return await services.engine.execute(
            definition,
            TriggerEvent(
                trigger_type=TriggerType.MANUAL,
                organization_id=organization_id,
                payload=payload or {},
                variables=variables or {},
                trigger_node_id=trigger_node_id,
            ),
        )

    result = _run_in_fresh_loop(_with_services(execute))
    logger.info(
        "Queued manual run finished",
        workflow_id=workflow_id,
        execution_id=result.execution_id,
        status=result.status.value,
    )
    return result.to_dict()
