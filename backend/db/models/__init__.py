"""Database models for the workflow automation engine.

This module imports all models to ensure they are registered
with SQLAlchemy's declarative base.
"""

from db.models.workflow import Workflow
from db.models.schedule import WorkflowSchedule
from db.models.execution_log import ExecutionLog
from db.models.continuation import WorkflowContinuation
from db.models.action_template import ActionTemplate

__all__ = [
    "Workflow",
    "WorkflowSchedule",
    "ExecutionLog",
    "WorkflowContinuation",
    "ActionTemplate",
]
