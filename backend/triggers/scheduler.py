"""Workflow Scheduler — durable per-node schedules.

Each schedulable TRIGGER node owns one ``workflow_schedules`` row. The
scheduler creates and updates rows, reports which are due, and moves
``next_run_at`` after a run:

- success: recomputed from the run's *intended* time, retry state reset
- failure: pushed out by the retry strategy's backoff; the schedule is
  deactivated once the consecutive failure limit is reached

Every read-modify-write is protected by the row's ``version`` column; a
writer that loses the race gets ConcurrentUpdateError and the row keeps
the winner's state.
"""

from datetime import datetime, timedelta
from typing import Iterable, Optional, Sequence, Union

import structlog
from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from core.exceptions import ConcurrentUpdateError, ConflictError, NotFoundError
from core.utils import ensure_utc, utcnow
from db.models.schedule import WorkflowSchedule
from triggers.cron import ScheduleSpec, first_fire_time, next_fire_time, validate_schedule_spec
from workflow.retry_strategies import RetryStrategy

logger = structlog.get_logger(__name__)

SOURCE = "workflow-scheduler"
RETRY_KEYS = ("retryCount", "lastError", "lastErrorAt")


def schedule_spec_of(record: WorkflowSchedule) -> ScheduleSpec:
    """The ScheduleSpec a stored row was built from."""
    return ScheduleSpec(
        cron=record.cron,
        frequency=record.frequency,
        timezone=record.timezone or "UTC",
        start_at=record.start_at,
        end_at=record.end_at,
        is_active=record.is_active,
    )


def _without_retry_state(metadata: Optional[dict]) -> dict:
    return {k: v for k, v in (metadata or {}).items() if k not in RETRY_KEYS}


class WorkflowScheduler:
    """Schedule store operations used by the API, the workflow service and the poller."""

    def __init__(
        self,
        session_factory,
        execution_logger,
        retry_strategy: Optional[RetryStrategy] = None,
        now_fn=utcnow,
    ):
        self._session_factory = session_factory
        self._log = execution_logger
        self._retry = retry_strategy or RetryStrategy.from_settings()
        self._now = now_fn

    @property
    def retry_strategy(self) -> RetryStrategy:
        return self._retry

    async def _commit(self, session, label: str) -> None:
        try:
            await session.commit()
        except StaleDataError as e:
            await session.rollback()
            raise ConcurrentUpdateError(
                f"Schedule {label} was modified concurrently"
            ) from e
        except IntegrityError as e:
            await session.rollback()
            raise ConcurrentUpdateError(
                "Schedule for this node was created concurrently"
            ) from e

    # ─── Writes ───────────────────────────────────────────────

    async def upsert_schedule(
        self,
        workflow_id: str,
        node_id: str,
        spec: Union[ScheduleSpec, dict],
    ) -> WorkflowSchedule:
        """Create or replace the schedule of ``node_id``.

        Raises:
            InvalidScheduleSpec: before anything is written
            ConflictError: the node id belongs to another workflow
            ConcurrentUpdateError: lost a race with another writer
        """
        if isinstance(spec, dict):
            spec = ScheduleSpec.model_validate(spec)
        validate_schedule_spec(spec)
        next_run_at = first_fire_time(spec, self._now())

        async with self._session_factory() as session:
            result = await session.execute(
                select(WorkflowSchedule).where(WorkflowSchedule.node_id == node_id)
            )
            record = result.scalar_one_or_none()
            if record is not None and record.workflow_id != workflow_id:
                raise ConflictError(f"Node {node_id} is scheduled by another workflow")
            if record is None:
                record = WorkflowSchedule(workflow_id=workflow_id, node_id=node_id)
                session.add(record)

            record.cron = " ".join(spec.cron.split()) if spec.cron else None
            record.frequency = spec.frequency.strip().lower() if not spec.cron and spec.frequency else None
            record.timezone = spec.timezone or "UTC"
            record.start_at = spec.start_at
            record.end_at = spec.end_at
            record.is_active = spec.is_active and next_run_at is not None
            record.next_run_at = next_run_at
            record.schedule_metadata = _without_retry_state(record.schedule_metadata)
            await self._commit(session, f"for node {node_id}")

        await self._log.info(
            workflow_id,
            f"Schedule saved for node {node_id}",
            node_id=node_id,
            context={
                "schedule_id": record.id,
                "cron": record.cron,
                "frequency": record.frequency,
                "timezone": record.timezone,
                "next_run_at": next_run_at.isoformat() if next_run_at else None,
            },
            source=SOURCE,
        )
        return record

    async def mark_run_success(self, schedule_id: str, executed_at: datetime) -> WorkflowSchedule:
        """Record a successful run and advance ``next_run_at`` from ``executed_at``."""
        executed_at = ensure_utc(executed_at)
        async with self._session_factory() as session:
            record = await self._load(session, schedule_id)
            spec = schedule_spec_of(record)
            next_run_at = next_fire_time(spec, record.timezone, executed_at)
            if record.end_at is not None and next_run_at > record.end_at:
                next_run_at = None

            record.last_run_at = executed_at
            record.next_run_at = next_run_at
            record.schedule_metadata = _without_retry_state(record.schedule_metadata)
            if next_run_at is None:
                record.is_active = False
            await self._commit(session, schedule_id)

        if next_run_at is None:
            await self._log.info(
                record.workflow_id,
                f"Schedule for node {record.node_id} has no further runs; deactivated",
                node_id=record.node_id,
                context={"schedule_id": schedule_id},
                source=SOURCE,
            )
        else:
            logger.debug(
                "Schedule advanced",
                schedule_id=schedule_id,
                executed_at=executed_at.isoformat(),
                next_run_at=next_run_at.isoformat(),
            )
        return record

    async def mark_run_failure(self, schedule_id: str, error: Union[str, Exception]) -> WorkflowSchedule:
        """Record a failed run, back off, and deactivate past the failure limit."""
        now = self._now()
        message = str(error)[:1000]
        async with self._session_factory() as session:
            record = await self._load(session, schedule_id)
            retry_count = record.retry_count + 1
            delay = self._retry.compute_delay(retry_count)

            metadata = dict(record.schedule_metadata or {})
            metadata.update(retryCount=retry_count, lastError=message, lastErrorAt=now.isoformat())
            record.schedule_metadata = metadata
            record.next_run_at = now + timedelta(seconds=delay)
            deactivated = self._retry.should_deactivate(retry_count)
            if deactivated:
                record.is_active = False
            await self._commit(session, schedule_id)

        await self._log.error(
            record.workflow_id,
            f"Scheduled run failed (attempt {retry_count}): {message}",
            node_id=record.node_id,
            context={
                "schedule_id": schedule_id,
                "retry_count": retry_count,
                "retry_in_seconds": delay,
                "next_run_at": record.next_run_at.isoformat(),
            },
            source=SOURCE,
        )
        if deactivated:
            await self._log.error(
                record.workflow_id,
                f"Schedule for node {record.node_id} deactivated after "
                f"{retry_count} consecutive failures",
                node_id=record.node_id,
                context={"schedule_id": schedule_id},
                source=SOURCE,
            )
        return record

    async def set_active_state(self, schedule_id: str, is_active: bool) -> WorkflowSchedule:
        """Pause or resume a schedule; resuming recomputes ``next_run_at`` from now."""
        async with self._session_factory() as session:
            record = await self._load(session, schedule_id)
            if is_active:
                record.next_run_at = first_fire_time(schedule_spec_of(record), self._now())
                record.schedule_metadata = _without_retry_state(record.schedule_metadata)
                record.is_active = record.next_run_at is not None
            else:
                record.is_active = False
            await self._commit(session, schedule_id)

        await self._log.info(
            record.workflow_id,
            f"Schedule for node {record.node_id} {'activated' if record.is_active else 'deactivated'}",
            node_id=record.node_id,
            context={
                "schedule_id": schedule_id,
                "next_run_at": record.next_run_at.isoformat() if record.next_run_at else None,
            },
            source=SOURCE,
        )
        return record

    async def delete_for_node(self, workflow_id: str, node_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(WorkflowSchedule).where(
                    WorkflowSchedule.workflow_id == workflow_id,
                    WorkflowSchedule.node_id == node_id,
                )
            )
            await session.commit()
        return result.rowcount > 0

    async def delete_for_workflow(self, workflow_id: str) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(WorkflowSchedule).where(WorkflowSchedule.workflow_id == workflow_id)
            )
            await session.commit()
        return result.rowcount

    # ─── Reads ────────────────────────────────────────────────

    async def fetch_due_schedules(self, limit: int = 10) -> Sequence[WorkflowSchedule]:
        """Active schedules due now and inside their window, earliest first."""
        now = self._now()
        async with self._session_factory() as session:
            result = await session.execute(
                select(WorkflowSchedule)
                .where(
                    WorkflowSchedule.is_active == True,  # noqa: E712
                    WorkflowSchedule.next_run_at != None,  # noqa: E711
                    WorkflowSchedule.next_run_at <= now,
                    or_(WorkflowSchedule.end_at == None, WorkflowSchedule.end_at >= now),  # noqa: E711
                    or_(WorkflowSchedule.start_at == None, WorkflowSchedule.start_at <= now),  # noqa: E711
                )
                .order_by(WorkflowSchedule.next_run_at.asc())
                .limit(limit)
            )
            return result.scalars().all()

    async def ensure_nodes_available(self, workflow_id: Optional[str], node_ids: Iterable[str]) -> None:
        """Raise ConflictError when another workflow schedules any of ``node_ids``."""
        node_ids = list(node_ids)
        if not node_ids:
            return
        query = select(WorkflowSchedule.node_id).where(WorkflowSchedule.node_id.in_(node_ids))
        if workflow_id:
            query = query.where(WorkflowSchedule.workflow_id != workflow_id)
        async with self._session_factory() as session:
            taken = sorted((await session.execute(query)).scalars().all())
        if taken:
            raise ConflictError(f"Node {', '.join(taken)} is scheduled by another workflow")

    async def get_schedule(self, schedule_id: str) -> WorkflowSchedule:
        async with self._session_factory() as session:
            return await self._load(session, schedule_id)

    async def list_for_workflow(self, workflow_id: str) -> Sequence[WorkflowSchedule]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(WorkflowSchedule)
                .where(WorkflowSchedule.workflow_id == workflow_id)
                .order_by(WorkflowSchedule.node_id)
            )
            return result.scalars().all()

    @staticmethod
    async def _load(session, schedule_id: str) -> WorkflowSchedule:
        record = await session.get(WorkflowSchedule, schedule_id)
        if record is None:
            raise NotFoundError(f"Schedule {schedule_id} not found")
        return record
