"""Suspended-branch model for DELAY and APPROVAL nodes."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import ContinuationStatus
from db.base import BaseModel, UTCDateTime


class WorkflowContinuation(BaseModel):
    """Persisted resumption point of a run.

    Attributes:
        workflow_id: Foreign key to Workflow
        organization_id: Owning tenant
        execution_id: Run that was suspended
        node_id: DELAY / APPROVAL node that suspended it
        kind: delay / approval
        status: pending / resumed / approved / rejected / expired
        resume_at: Delay deadline, or approval expiry
        scope: Flattened variable scope at suspension
        trigger: Trigger event the run started from
        approvers: Approver ids (approval only)
        decided_by: Approver who decided
        comments: Approver comments
    """

    __tablename__ = "workflow_continuations"

    workflow_id: Mapped[str] = mapped_column(
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    organization_id: Mapped[str] = mapped_column(nullable=False, index=True)
    execution_id: Mapped[str] = mapped_column(nullable=False, index=True)
    node_id: Mapped[str] = mapped_column(nullable=False)
    kind: Mapped[str] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        default=ContinuationStatus.PENDING.value, index=True
    )
    resume_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime, nullable=True, index=True
    )
    scope: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    trigger: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    approvers: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    decided_by: Mapped[Optional[str]] = mapped_column(nullable=True)
    comments: Mapped[Optional[str]] = mapped_column(nullable=True)

    workflow: Mapped["Workflow"] = relationship(
        "Workflow", back_populates="continuations", lazy="noload"
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "execution_id": self.execution_id,
            "node_id": self.node_id,
            "kind": self.kind,
            "status": self.status,
            "resume_at": self.resume_at.isoformat() if self.resume_at else None,
            "approvers": self.approvers or [],
            "decided_by": self.decided_by,
            "comments": self.comments,
        }
