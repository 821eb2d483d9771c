"""ExecutionLog model for the workflow automation engine."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON
from sqlalchemy.orm import Mapped, mapped_column

from core.constants import LogLevel
from core.utils import utcnow
from db.base import BaseModel, UTCDateTime


class ExecutionLog(BaseModel):
    """Append-only execution history entry.

    Rows outlive the workflow they describe, so ``workflow_id`` is a
    plain indexed column rather than a foreign key.

    Attributes:
        id: Unique identifier (UUID string)
        workflow_id: Workflow the entry belongs to
        execution_id: Executor invocation, None for scheduler diagnostics
        node_id: Node the entry is about, if any
        level: info / warn / error
        message: Human readable message
        context: JSON context data for the log entry
        source: Component that wrote the entry
        timestamp: When the entry was appended
    """

    __tablename__ = "execution_logs"

    workflow_id: Mapped[str] = mapped_column(nullable=False, index=True)
    execution_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    node_id: Mapped[Optional[str]] = mapped_column(nullable=True)
    level: Mapped[str] = mapped_column(default=LogLevel.INFO.value, index=True)
    message: Mapped[str] = mapped_column(nullable=False)
    context: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    source: Mapped[Optional[str]] = mapped_column(nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, index=True
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "execution_id": self.execution_id,
            "node_id": self.node_id,
            "level": self.level,
            "message": self.message,
            "context": self.context or {},
            "source": self.source,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }
