"""Workflow schedule model."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, ForeignKey, Integer
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import BaseModel, UTCDateTime


class WorkflowSchedule(BaseModel):
    """One schedule per schedulable TRIGGER node.

    Attributes:
        id: Unique identifier (UUID string)
        workflow_id: Foreign key to Workflow
        node_id: TRIGGER node id inside the workflow definition (unique)
        cron: 5-field cron expression, or None when ``frequency`` is used
        frequency: hourly / daily / weekly / monthly / yearly
        timezone: IANA timezone the cron / frequency is evaluated in
        start_at: Start of the validity window
        end_at: End of the validity window
        is_active: Inactive schedules are never returned as due
        last_run_at: Intended time of the last successful run
        next_run_at: Next time the schedule is due, None when exhausted
        schedule_metadata: retryCount / lastError / lastErrorAt
        version: Optimistic concurrency counter
    """

    __tablename__ = "workflow_schedules"

    workflow_id: Mapped[str] = mapped_column(
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    node_id: Mapped[str] = mapped_column(nullable=False, unique=True)
    cron: Mapped[Optional[str]] = mapped_column(nullable=True)
    frequency: Mapped[Optional[str]] = mapped_column(nullable=True)
    timezone: Mapped[str] = mapped_column(nullable=False, default="UTC")
    start_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    end_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    is_active: Mapped[bool] = mapped_column(default=True, index=True)
    last_run_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    next_run_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime, nullable=True, index=True
    )
    # "metadata" is reserved on declarative classes
    schedule_metadata: Mapped[Optional[dict]] = mapped_column(
        "metadata", JSON, nullable=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    workflow: Mapped["Workflow"] = relationship(
        "Workflow", back_populates="schedules", lazy="noload"
    )

    @property
    def retry_count(self) -> int:
        return int((self.schedule_metadata or {}).get("retryCount", 0))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "node_id": self.node_id,
            "cron": self.cron,
            "frequency": self.frequency,
            "timezone": self.timezone,
            "start_at": self.start_at.isoformat() if self.start_at else None,
            "end_at": self.end_at.isoformat() if self.end_at else None,
            "is_active": self.is_active,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "next_run_at": self.next_run_at.isoformat() if self.next_run_at else None,
            "metadata": self.schedule_metadata or {},
        }
