"""Persistence for suspended branches (DELAY and APPROVAL nodes).

A DELAY node stores a continuation with ``resume_at``; the schedule
poller picks due ones up and hands them back to the executor. An
APPROVAL node stores a pending continuation that an approver decides
through the API; approvals with a timeout expire on the next poll.
"""

from datetime import datetime, timedelta
from typing import Optional, Sequence

import structlog
from sqlalchemy import select, update

from core.constants import ContinuationKind, ContinuationStatus
from core.exceptions import ConflictError, NotFoundError
from core.utils import safe_serialize, utcnow
from db.models.continuation import WorkflowContinuation

logger = structlog.get_logger(__name__)


class ContinuationService:
    """CRUD and state transitions for ``workflow_continuations``."""

    def __init__(self, session_factory, now_fn=utcnow):
        self._session_factory = session_factory
        self._now = now_fn

    async def create(
        self,
        *,
        kind: ContinuationKind,
        workflow_id: str,
        organization_id: str,
        execution_id: str,
        node_id: str,
        scope: dict,
        trigger: dict,
        resume_at: Optional[datetime] = None,
        approvers: Optional[list[str]] = None,
    ) -> WorkflowContinuation:
        continuation = WorkflowContinuation(
            workflow_id=workflow_id,
            organization_id=organization_id,
            execution_id=execution_id,
            node_id=node_id,
            kind=ContinuationKind(kind).value,
            status=ContinuationStatus.PENDING.value,
            resume_at=resume_at,
            scope=safe_serialize(scope),
            trigger=safe_serialize(trigger),
            approvers=list(approvers or []),
        )
        async with self._session_factory() as session:
            session.add(continuation)
            await session.commit()
        logger.info(
            "Continuation stored",
            continuation_id=continuation.id,
            kind=continuation.kind,
            node_id=node_id,
            resume_at=resume_at.isoformat() if resume_at else None,
        )
        return continuation

    async def create_delay(self, delay_seconds: float, **kwargs) -> WorkflowContinuation:
        return await self.create(
            kind=ContinuationKind.DELAY,
            resume_at=self._now() + timedelta(seconds=delay_seconds),
            **kwargs,
        )

    async def create_approval(
        self,
        approvers: list[str],
        timeout_hours: Optional[float] = None,
        **kwargs,
    ) -> WorkflowContinuation:
        expires_at = self._now() + timedelta(hours=timeout_hours) if timeout_hours else None
        return await self.create(
            kind=ContinuationKind.APPROVAL,
            resume_at=expires_at,
            approvers=approvers,
            **kwargs,
        )

    async def get(self, continuation_id: str) -> WorkflowContinuation:
        async with self._session_factory() as session:
            continuation = await session.get(WorkflowContinuation, continuation_id)
        if continuation is None:
            raise NotFoundError(f"Continuation {continuation_id} not found")
        return continuation

    async def fetch_due_delays(self, limit: int = 50) -> Sequence[WorkflowContinuation]:
        """Pending DELAY continuations whose ``resume_at`` has passed, oldest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(WorkflowContinuation)
                .where(
                    WorkflowContinuation.kind == ContinuationKind.DELAY.value,
                    WorkflowContinuation.status == ContinuationStatus.PENDING.value,
                    WorkflowContinuation.resume_at <= self._now(),
                )
                .order_by(WorkflowContinuation.resume_at.asc())
                .limit(limit)
            )
            return result.scalars().all()

    async def claim(
        self,
        continuation_id: str,
        status: ContinuationStatus,
        decided_by: Optional[str] = None,
        comments: Optional[str] = None,
    ) -> WorkflowContinuation:
        """Move a pending continuation to ``status`` exactly once.

        Raises:
            NotFoundError: unknown continuation
            ConflictError: already resumed / decided / expired
        """
        async with self._session_factory() as session:
            result = await session.execute(
                update(WorkflowContinuation)
                .where(
                    WorkflowContinuation.id == continuation_id,
                    WorkflowContinuation.status == ContinuationStatus.PENDING.value,
                )
                .values(
                    status=ContinuationStatus(status).value,
                    decided_by=decided_by,
                    comments=comments,
                    updated_at=self._now(),
                )
            )
            await session.commit()
            claimed = result.rowcount == 1

        continuation = await self.get(continuation_id)
        if not claimed:
            raise ConflictError(
                f"Continuation {continuation_id} is already {continuation.status}"
            )
        return continuation

    async def expire_overdue_approvals(self) -> list[WorkflowContinuation]:
        """Mark approvals past their timeout as expired and return them."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(WorkflowContinuation.id).where(
                    WorkflowContinuation.kind == ContinuationKind.APPROVAL.value,
                    WorkflowContinuation.status == ContinuationStatus.PENDING.value,
                    WorkflowContinuation.resume_at != None,  # noqa: E711
                    WorkflowContinuation.resume_at <= self._now(),
                )
            )
            ids = list(result.scalars().all())

        expired = []
        for continuation_id in ids:
            try:
                expired.append(await self.claim(continuation_id, ContinuationStatus.EXPIRED))
            except ConflictError:
                continue
        return expired

    async def cancel_for_workflow(self, workflow_id: str) -> int:
        """Expire every pending continuation of a workflow."""
        async with self._session_factory() as session:
            result = await session.execute(
                update(WorkflowContinuation)
                .where(
                    WorkflowContinuation.workflow_id == workflow_id,
                    WorkflowContinuation.status == ContinuationStatus.PENDING.value,
                )
                .values(status=ContinuationStatus.EXPIRED.value, updated_at=self._now())
            )
            await session.commit()
            return result.rowcount
