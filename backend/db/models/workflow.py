"""Workflow model for the workflow automation engine."""

from typing import Optional

from sqlalchemy import JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import BaseModel


class Workflow(BaseModel):
    """An organization-owned automation.

    Attributes:
        id: Unique identifier (UUID string)
        organization_id: Owning tenant
        name: Workflow name
        description: Free-form description
        definition: JSON graph (triggers, nodes, connections, variables)
        version: Bumped on every definition save
        is_active: Inactive workflows are never dispatched or scheduled
        created_at: Creation timestamp
        updated_at: Last update timestamp
    """

    __tablename__ = "workflows"

    organization_id: Mapped[str] = mapped_column(nullable=False, index=True)
    name: Mapped[str] = mapped_column(nullable=False, index=True)
    description: Mapped[str] = mapped_column(nullable=False, default="")
    definition: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    version: Mapped[int] = mapped_column(default=1)
    is_active: Mapped[bool] = mapped_column(default=True, index=True)

    # Relationships use "noload"; queries that need children select them explicitly.
    schedules: Mapped[list["WorkflowSchedule"]] = relationship(
        "WorkflowSchedule",
        back_populates="workflow",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="noload",
    )
    continuations: Mapped[list["WorkflowContinuation"]] = relationship(
        "WorkflowContinuation",
        back_populates="workflow",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="noload",
    )
