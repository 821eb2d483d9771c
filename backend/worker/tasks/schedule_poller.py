"""Schedule poller — runs due schedules and resumes suspended runs.

``poll_schedules`` runs every minute via Celery Beat. Each poll:

1. fetches active schedules whose ``next_run_at`` has passed (earliest
   first, at most ``SCHEDULER_BATCH_SIZE``);
2. runs their workflows concurrently, bounded by
   ``SCHEDULER_MAX_CONCURRENT``, and records success or failure on the
   schedule (failures back off exponentially);
3. resumes DELAY continuations that are due and expires approvals past
   their timeout.

A missed window is caught up by a single run: ``mark_run_success``
recomputes the next fire from the scheduled instant, so a schedule
that fell several periods behind becomes due again on the next poll.

``run_poll_loop`` drives the same poller from a single standalone
process (``python -m worker.tasks.schedule_poller``) or inside the API
when ``SCHEDULER_IN_PROCESS`` is set.
"""

import asyncio
from typing import Optional

import structlog

from app.config import get_settings
from core.constants import ContinuationStatus, TriggerType
from core.exceptions import ConflictError, NotFoundError
from triggers.base import TriggerEvent
from worker.celery_app import celery_app

logger = structlog.get_logger(__name__)

SOURCE = "schedule-poller"


class SchedulePoller:
    """One poll of the schedule store, shared by Celery and the standalone loop."""

    def __init__(
        self,
        scheduler,
        workflow_service,
        engine,
        continuation_service,
        execution_logger,
        batch_size: Optional[int] = None,
        max_concurrent: Optional[int] = None,
    ):
        settings = get_settings()
        self.scheduler = scheduler
        self.workflows = workflow_service
        self.engine = engine
        self.continuations = continuation_service
        self.execution_logger = execution_logger
        self.batch_size = batch_size or settings.SCHEDULER_BATCH_SIZE
        self.max_concurrent = max_concurrent or settings.SCHEDULER_MAX_CONCURRENT

    async def poll_once(self) -> dict:
        """Run every due schedule once, then service continuations.

        Returns:
            Counts: dispatched, succeeded, failed, skipped, resumed, expired
        """
        counts = {
            "dispatched": 0,
            "succeeded": 0,
            "failed": 0,
            "skipped": 0,
            "resumed": 0,
            "expired": 0,
        }

        due = await self.scheduler.fetch_due_schedules(self.batch_size)
        if due:
            logger.info("Due schedules found", count=len(due))
            semaphore = asyncio.Semaphore(self.max_concurrent)

            async def bounded(record):
                async with semaphore:
                    return await self._run_schedule(record)

            outcomes = await asyncio.gather(
                *(bounded(record) for record in due), return_exceptions=True
            )
            for record, outcome in zip(due, outcomes):
                if isinstance(outcome, BaseException):
                    logger.error(
                        "Schedule run crashed",
                        schedule_id=record.id,
                        error=str(outcome),
                    )
                    counts["failed"] += 1
                    counts["dispatched"] += 1
                    continue
                counts[outcome] += 1
                if outcome != "skipped":
                    counts["dispatched"] += 1

        counts["resumed"] = await self._resume_due_delays()
        counts["expired"] = await self._expire_approvals()
        return counts

    async def _run_schedule(self, record) -> str:
        """Execute one due schedule; returns ``succeeded``, ``failed`` or ``skipped``."""
        try:
            workflow = await self.workflows.get_workflow(record.workflow_id)
        except NotFoundError:
            workflow = None

        if workflow is None or not workflow.is_active:
            await self.scheduler.set_active_state(record.id, False)
            await self.execution_logger.warn(
                record.workflow_id,
                f"Schedule {record.id} deactivated: workflow is missing or inactive",
                node_id=record.node_id,
                source=SOURCE,
            )
            return "skipped"

        scheduled_for = record.next_run_at
        try:
            definition = self.workflows.to_definition(workflow)
            result = await self.engine.execute(
                definition,
                TriggerEvent(
                    trigger_type=TriggerType.SCHEDULE,
                    organization_id=workflow.organization_id,
                    payload={
                        "schedule_id": record.id,
                        "scheduled_for": scheduled_for.isoformat() if scheduled_for else None,
                    },
                    trigger_node_id=record.node_id,
                ),
            )
        except Exception as e:
            await self.scheduler.mark_run_failure(record.id, e)
            return "failed"

        if result.succeeded:
            await self.scheduler.mark_run_success(record.id, executed_at=scheduled_for)
            return "succeeded"

        await self.scheduler.mark_run_failure(record.id, result.error or "Workflow execution failed")
        return "failed"

    async def _resume_due_delays(self) -> int:
        resumed = 0
        for continuation in await self.continuations.fetch_due_delays(self.batch_size):
            try:
                continuation = await self.continuations.claim(
                    continuation.id, ContinuationStatus.RESUMED
                )
            except ConflictError:
                continue

            try:
                definition = await self.workflows.load_definition(continuation.workflow_id)
                await self.engine.resume(definition, continuation)
                resumed += 1
            except Exception as e:
                logger.error(
                    "Delayed run could not be resumed",
                    continuation_id=continuation.id,
                    workflow_id=continuation.workflow_id,
                    error=str(e),
                )
                await self.execution_logger.error(
                    continuation.workflow_id,
                    f"Resume after delay failed: {e}",
                    execution_id=continuation.execution_id,
                    node_id=continuation.node_id,
                    source=SOURCE,
                )
        return resumed

    async def _expire_approvals(self) -> int:
        expired = await self.continuations.expire_overdue_approvals()
        for continuation in expired:
            await self.execution_logger.warn(
                continuation.workflow_id,
                f"Approval at node {continuation.node_id} expired without a decision",
                execution_id=continuation.execution_id,
                node_id=continuation.node_id,
                context={"continuation_id": continuation.id},
                source=SOURCE,
            )
        return len(expired)


def build_poller(services) -> SchedulePoller:
    """Poller wired to a ``services.container.Services`` bundle."""
    return SchedulePoller(
        scheduler=services.scheduler,
        workflow_service=services.workflows,
        engine=services.engine,
        continuation_service=services.continuations,
        execution_logger=services.execution_logger,
    )


# ─── Celery entry point ───────────────────────────────────────────

@celery_app.task(
    name="worker.tasks.schedule_poller.poll_schedules",
    bind=True,
    max_retries=2,
    default_retry_delay=15,
    queue="triggers",
)
def poll_schedules(self):
    """Check for due schedules and run their workflows."""
    logger.info("Polling schedules for due executions")

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        result = loop.run_until_complete(_poll_with_fresh_engine())
        logger.info("Schedule poll finished", **result)
        return result
    except Exception as exc:
        logger.error("Schedule polling failed", error=str(exc), exc_info=True)
        raise self.retry(exc=exc)
    finally:
        loop.close()


async def _poll_with_fresh_engine() -> dict:
    from db.database import worker_session_factory
    from services.container import build_services

    async with worker_session_factory() as session_factory:
        return await build_poller(build_services(session_factory)).poll_once()


# ─── Standalone loop ──────────────────────────────────────────────

async def run_poll_loop(
    poller: SchedulePoller,
    interval: Optional[float] = None,
    stop_event: Optional[asyncio.Event] = None,
) -> None:
    """Poll every ``interval`` seconds until ``stop_event`` is set."""
    interval = interval or get_settings().SCHEDULER_POLL_INTERVAL_SECONDS
    stop_event = stop_event or asyncio.Event()
    logger.info("Schedule poll loop started", interval=interval)

    while not stop_event.is_set():
        try:
            counts = await poller.poll_once()
            if counts["dispatched"] or counts["resumed"] or counts["expired"]:
                logger.info("Schedule poll finished", **counts)
        except Exception as e:
            logger.error("Schedule poll failed", error=str(e), exc_info=True)

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass

    logger.info("Schedule poll loop stopped")


async def _main() -> None:
    from core.logging_config import setup_logging
    from db.database import init_db
    from services.container import get_services

    setup_logging()
    await init_db()
    await run_poll_loop(build_poller(get_services()))


if __name__ == "__main__":
    asyncio.run(_main())
