"""
Action contract for ACTION nodes.

An action receives its node config rendered against the run scope
(except the keys it lists in ``unrendered_fields``), plus a TaskContext
naming the run. It answers with an ActionResult. The engine only ever calls ``run()``,
which never raises: an exception inside ``execute()`` becomes a failed
result so the engine can turn it into a node failure.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class TaskResult:
    """Outcome of one action.

    ``output`` is what the engine stores in scope (under the node id and
    the optional ``output_key``). ``metadata`` is for details worth
    logging but not worth exposing to later nodes.
    """

    success: bool
    output: Any = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    elapsed_ms: float = 0.0

    @classmethod
    def failed(cls, error: str, **metadata) -> "TaskResult":
        return cls(success=False, error=error, metadata=metadata)


@dataclass
class TaskContext:
    """What an action needs to know about the run it belongs to."""

    organization_id: str
    workflow_id: str
    execution_id: str
    node_id: str
    scope: Any = None


@dataclass
class ActionServices:
    """Collaborators injected into every action task."""

    notification_sender: Any = None
    template_resolver: Any = None
    record_repository: Any = None
    webhook_timeout: float = 30
    allow_private_networks: bool = False
    http_transport: Any = None


class BaseTask(ABC):
    """
    One kind of ACTION node.

    Subclasses set ``task_type`` to the NodeType value they handle and
    implement ``execute``. Services come in through the constructor so
    the registry can build a fresh instance per node.
    """

    task_type: str = "base"
    display_name: str = "Base Task"
    description: str = "Abstract base task"
    # Config keys the task renders itself; the engine passes them through raw
    unrendered_fields: tuple = ()

    def __init__(self, services: Optional[ActionServices] = None):
        self.services = services or ActionServices()

    @abstractmethod
    async def execute(self, config: Dict[str, Any], context: TaskContext) -> TaskResult:
        ...

    async def run(self, config: Dict[str, Any], context: TaskContext) -> TaskResult:
        log = logger.bind(action=self.task_type, node_id=context.node_id)
        started = time.monotonic()
        log.debug("Action dispatched")
        try:
            result = await self.execute(config, context)
        except Exception as e:
            # Unexpected errors still surface as a node failure with a message
            log.exception("Action raised")
            result = TaskResult.failed(str(e) or type(e).__name__)

        result.elapsed_ms = round((time.monotonic() - started) * 1000, 2)
        if result.success:
            log.info("Action succeeded", elapsed_ms=result.elapsed_ms)
        else:
            log.warning("Action failed", error=result.error, elapsed_ms=result.elapsed_ms)
        return result
