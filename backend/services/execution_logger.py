"""Execution Logger — append-only execution history.

Every entry is written in its own short transaction so a failing run
still leaves its trail, and mirrored to structlog for operators tailing
the process output. A logging failure is reported through structlog and
never propagates into the run that produced it.
"""

from typing import Any, Optional, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from core.constants import LogLevel
from core.utils import safe_serialize, utcnow
from db.models.execution_log import ExecutionLog

logger = structlog.get_logger(__name__)

_STRUCTLOG_METHOD = {
    LogLevel.INFO: "info",
    LogLevel.WARN: "warning",
    LogLevel.ERROR: "error",
}


class ExecutionLogger:
    """Writes and reads ``execution_logs`` rows."""

    def __init__(self, session_factory, now_fn=utcnow):
        self._session_factory = session_factory
        self._now = now_fn

    async def append(
        self,
        workflow_id: str,
        level: LogLevel,
        message: str,
        *,
        execution_id: Optional[str] = None,
        node_id: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
        source: Optional[str] = None,
    ) -> Optional[str]:
        """Append one entry. Returns its id, or None if persisting failed."""
        level = LogLevel(level)
        getattr(logger, _STRUCTLOG_METHOD[level])(
            message,
            workflow_id=workflow_id,
            execution_id=execution_id,
            node_id=node_id,
            source=source,
            **({"context": context} if context else {}),
        )

        entry = ExecutionLog(
            workflow_id=workflow_id,
            execution_id=execution_id,
            node_id=node_id,
            level=level.value,
            message=message,
            context=safe_serialize(context or {}),
            source=source,
            timestamp=self._now(),
        )
        try:
            async with self._session_factory() as session:
                session.add(entry)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to persist execution log entry",
                workflow_id=workflow_id,
                execution_id=execution_id,
                error=str(e),
            )
            return None
        return entry.id

    async def info(self, workflow_id: str, message: str, **kwargs) -> Optional[str]:
        return await self.append(workflow_id, LogLevel.INFO, message, **kwargs)

    async def warn(self, workflow_id: str, message: str, **kwargs) -> Optional[str]:
        return await self.append(workflow_id, LogLevel.WARN, message, **kwargs)

    async def error(self, workflow_id: str, message: str, **kwargs) -> Optional[str]:
        return await self.append(workflow_id, LogLevel.ERROR, message, **kwargs)

    # ─── Convenience writers ──────────────────────────────────

    async def node_started(self, workflow_id: str, execution_id: str, node, **kwargs):
        return await self.info(
            workflow_id,
            f"Executing {node.type} node {node.id}",
            execution_id=execution_id,
            node_id=node.id,
            source="workflow-executor",
            **kwargs,
        )

    async def node_completed(self, workflow_id: str, execution_id: str, node, **kwargs):
        return await self.info(
            workflow_id,
            f"Node {node.id} completed",
            execution_id=execution_id,
            node_id=node.id,
            source="workflow-executor",
            **kwargs,
        )

    async def node_failed(self, workflow_id: str, execution_id: str, node_id: str, error: str, **kwargs):
        return await self.error(
            workflow_id,
            f"Node {node_id} failed: {error}",
            execution_id=execution_id,
            node_id=node_id,
            source="workflow-executor",
            **kwargs,
        )

    async def trigger_matching(
        self, workflow_id: str, event_name: str, matched: list[str], **kwargs
    ) -> Optional[str]:
        return await self.info(
            workflow_id,
            f"Event {event_name} matched {len(matched)} trigger(s)",
            context={"event": event_name, "trigger_node_ids": matched},
            source="event-dispatcher",
            **kwargs,
        )

    async def list_entries(
        self,
        workflow_id: str,
        execution_id: Optional[str] = None,
        level: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Sequence[ExecutionLog]:
        """Execution history for a workflow, newest first."""
        query = select(ExecutionLog).where(ExecutionLog.workflow_id == workflow_id)
        if execution_id:
            query = query.where(ExecutionLog.execution_id == execution_id)
        if level:
            query = query.where(ExecutionLog.level == LogLevel(level).value)
        query = (
            query.order_by(ExecutionLog.timestamp.desc(), ExecutionLog.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(query)
            return result.scalars().all()
