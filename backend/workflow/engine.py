"""Workflow Execution Engine — graph interpreter for workflow definitions.

Takes a validated WorkflowDefinition and a TriggerEvent and walks the
node graph from the firing TRIGGER node, handling:

- ACTION nodes (email, SMS, webhook, record create/update) through the
  task registry, with ``{placeholder}`` config rendering
- DATA_TRANSFORM nodes writing derived values into scope
- CONDITION branching over "true" / "false" connections
- LOOP iteration over a scope collection in per-iteration child scopes
- GROUP markers, APPROVAL gates and DELAY suspension
- Per-node timeout and failure isolation

Traversal is an iterative FIFO frontier with a visited set, so join
nodes run once per traversal and deep graphs never recurse. DELAY and
APPROVAL nodes persist a continuation and end their branch; the
schedule poller (or an approver) resumes the run later with the saved
scope.
"""

import asyncio
from collections import deque
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Union

import structlog

from app.config import get_settings
from core.constants import (
    ACTION_NODE_TYPES,
    ConnectionLabel,
    ContinuationStatus,
    ExecutionStatus,
    NodeType,
    TriggerType,
)
from core.exceptions import DefinitionError, InvalidScheduleSpec, NodeExecutionError
from core.logging_config import execution_context
from core.utils import safe_serialize
from notifications.channels import NotificationChannel
from tasks.base_task import TaskContext
from triggers.base import TriggerEvent
from workflow.conditions import evaluate_conditions
from workflow.definition import (
    WorkflowDefinition,
    WorkflowGraph,
    parse_definition,
    validate_definition,
)
from workflow.placeholders import render_text, render_value
from workflow.scope import Scope
from workflow.transforms import apply_transform

logger = structlog.get_logger(__name__)

SOURCE = "workflow-executor"


# ─── Results ──────────────────────────────────────────────────

@dataclass
class ExecutionResult:
    """Outcome of one executor invocation."""

    execution_id: str
    workflow_id: str
    status: ExecutionStatus
    completed_node_ids: list[str] = field(default_factory=list)
    failed_node_id: Optional[str] = None
    error: Optional[str] = None
    final_scope: dict[str, Any] = field(default_factory=dict)
    continuation_ids: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == ExecutionStatus.COMPLETED

    @property
    def suspended(self) -> bool:
        return bool(self.continuation_ids)

    def to_dict(self) -> dict:
        return {
            "execution_id": self.execution_id,
            "workflow_id": self.workflow_id,
            "status": self.status.value,
            "completed_node_ids": list(self.completed_node_ids),
            "failed_node_id": self.failed_node_id,
            "error": self.error,
            "final_scope": safe_serialize(self.final_scope),
            "continuation_ids": list(self.continuation_ids),
        }


@dataclass
class _Run:
    """Mutable bookkeeping for a single traversal."""

    definition: WorkflowDefinition
    graph: WorkflowGraph
    trigger: TriggerEvent
    completed: list[str] = field(default_factory=list)
    continuation_ids: list[str] = field(default_factory=list)
    last_output: Any = None
    current_node_id: Optional[str] = None

    @property
    def workflow_id(self) -> str:
        return self.definition.id

    @property
    def execution_id(self) -> str:
        return self.trigger.execution_id

    def mark_completed(self, node_id: str) -> None:
        if node_id not in self.completed:
            self.completed.append(node_id)

    def result(self, status: ExecutionStatus, scope: Scope, **kwargs) -> ExecutionResult:
        return ExecutionResult(
            execution_id=self.execution_id,
            workflow_id=self.workflow_id,
            status=status,
            completed_node_ids=list(self.completed),
            final_scope=scope.flatten(),
            continuation_ids=list(self.continuation_ids),
            **kwargs,
        )


NodeHandler = Callable[[_Run, Any, Scope], Awaitable[list[str]]]


# ─── Workflow Engine ───────────────────────────────────────────

class WorkflowEngine:
    """Main workflow execution engine.

    Node visitation is sequential within a run. Each node type maps to
    exactly one handler; a handler returns the ids of the successors to
    enqueue (an empty list ends the branch).
    """

    def __init__(
        self,
        execution_logger,
        task_registry,
        continuation_service=None,
        notification_sender=None,
        node_timeout: Optional[float] = None,
        max_loop_iterations: Optional[int] = None,
        approvals_enabled: Optional[bool] = None,
    ):
        settings = get_settings()
        self._logger = execution_logger
        self._registry = task_registry
        self._continuations = continuation_service
        self._sender = notification_sender
        self._node_timeout = node_timeout or settings.EXECUTOR_NODE_TIMEOUT_SECONDS
        self._max_loop_iterations = max_loop_iterations or settings.EXECUTOR_MAX_LOOP_ITERATIONS
        self._approvals_enabled = (
            settings.WORKFLOW_APPROVALS_ENABLED if approvals_enabled is None else approvals_enabled
        )
        self._running_executions: dict[str, _Run] = {}

        handlers: dict[NodeType, NodeHandler] = {
            NodeType.TRIGGER: self._run_trigger,
            NodeType.DATA_TRANSFORM: self._run_transform,
            NodeType.CONDITION: self._run_condition,
            NodeType.LOOP: self._run_loop,
            NodeType.GROUP: self._run_group,
            NodeType.APPROVAL: self._run_approval,
            NodeType.DELAY: self._run_delay,
        }
        for node_type in ACTION_NODE_TYPES:
            handlers[node_type] = self._run_action
        missing = set(NodeType) - set(handlers)
        if missing:
            raise RuntimeError(f"No executor handler for node types: {sorted(missing)}")
        self._handlers = handlers

    @property
    def handled_node_types(self) -> set[NodeType]:
        return set(self._handlers)

    # ─── Entry points ─────────────────────────────────────────

    async def execute(
        self,
        definition: Union[WorkflowDefinition, dict],
        trigger: TriggerEvent,
    ) -> ExecutionResult:
        """Execute a workflow for one trigger firing.

        Args:
            definition: Parsed definition (or its stored JSON)
            trigger: Firing trigger, its payload and initial variables

        Returns:
            ExecutionResult; node failures are reported here, never raised
        """
        prepared = await self._prepare(definition, trigger)
        if isinstance(prepared, ExecutionResult):
            return prepared
        definition, graph = prepared

        scope = Scope({v.name: deepcopy(v.default) for v in definition.variables})
        scope.update(trigger.payload or {})
        scope.update(trigger.variables or {})
        scope.set(
            "trigger",
            {
                "type": TriggerType(trigger.trigger_type).value,
                "node_id": trigger.trigger_node_id,
                "payload": trigger.payload or {},
                "timestamp": trigger.timestamp.isoformat(),
            },
        )

        start_ids = graph.start_nodes(trigger.trigger_node_id)
        return await self._run(definition, graph, trigger, scope, start_ids)

    async def resume(self, definition: Union[WorkflowDefinition, dict], continuation) -> ExecutionResult:
        """Re-enter a suspended run after its DELAY / APPROVAL node."""
        trigger = TriggerEvent.from_dict(
            continuation.trigger or {},
            trigger_type=TriggerType.RESUME,
            organization_id=continuation.organization_id,
            execution_id=continuation.execution_id,
        )
        prepared = await self._prepare(definition, trigger)
        if isinstance(prepared, ExecutionResult):
            return prepared
        definition, graph = prepared

        if continuation.node_id not in graph.nodes:
            error = f"Node {continuation.node_id} no longer exists in the workflow"
            await self._logger.error(
                definition.id,
                f"Cannot resume execution: {error}",
                execution_id=trigger.execution_id,
                node_id=continuation.node_id,
                source=SOURCE,
            )
            return ExecutionResult(
                execution_id=trigger.execution_id,
                workflow_id=definition.id,
                status=ExecutionStatus.FAILED,
                failed_node_id=continuation.node_id,
                error=error,
            )

        await self._logger.info(
            definition.id,
            f"Resuming after {continuation.kind} node {continuation.node_id}",
            execution_id=trigger.execution_id,
            node_id=continuation.node_id,
            context={"continuation_id": continuation.id},
            source=SOURCE,
        )
        scope = Scope(dict(continuation.scope or {}))
        return await self._run(
            definition, graph, trigger, scope, graph.successors(continuation.node_id)
        )

    async def resume_approval(
        self,
        definition: Union[WorkflowDefinition, dict],
        continuation_id: str,
        approved: bool,
        decided_by: Optional[str] = None,
        comments: Optional[str] = None,
    ) -> ExecutionResult:
        """Record an approver's decision and continue or close the run.

        Raises:
            NotFoundError: unknown continuation
            ConflictError: already decided or expired
        """
        if self._continuations is None:
            raise RuntimeError("Approvals require a continuation service")
        status = ContinuationStatus.APPROVED if approved else ContinuationStatus.REJECTED
        continuation = await self._continuations.claim(continuation_id, status, decided_by, comments)

        if approved:
            return await self.resume(definition, continuation)

        error = f"Approval rejected by {decided_by or 'approver'}"
        await self._logger.warn(
            continuation.workflow_id,
            error,
            execution_id=continuation.execution_id,
            node_id=continuation.node_id,
            context={"continuation_id": continuation.id, "comments": comments},
            source=SOURCE,
        )
        return ExecutionResult(
            execution_id=continuation.execution_id,
            workflow_id=continuation.workflow_id,
            status=ExecutionStatus.FAILED,
            failed_node_id=continuation.node_id,
            error=error,
            final_scope=dict(continuation.scope or {}),
        )

    def get_running_executions(self) -> dict[str, dict]:
        """Executions currently being traversed by this engine."""
        return {
            execution_id: {
                "workflow_id": run.workflow_id,
                "current_node": run.current_node_id,
                "nodes_completed": len(run.completed),
            }
            for execution_id, run in self._running_executions.items()
        }

    # ─── Traversal ────────────────────────────────────────────

    async def _prepare(self, definition, trigger: TriggerEvent):
        """Parse and validate; a definition error becomes a failed result."""
        workflow_id = (
            definition.get("id", "") if isinstance(definition, dict) else definition.id
        )
        try:
            definition = parse_definition(definition)
            graph = validate_definition(definition)
        except (DefinitionError, InvalidScheduleSpec) as e:
            await self._logger.error(
                workflow_id,
                f"Workflow definition rejected: {e.message}",
                execution_id=trigger.execution_id,
                source=SOURCE,
            )
            return ExecutionResult(
                execution_id=trigger.execution_id,
                workflow_id=workflow_id,
                status=ExecutionStatus.FAILED,
                error=e.message,
            )
        return definition, graph

    async def _run(
        self,
        definition: WorkflowDefinition,
        graph: WorkflowGraph,
        trigger: TriggerEvent,
        scope: Scope,
        start_ids: list[str],
    ) -> ExecutionResult:
        run = _Run(definition=definition, graph=graph, trigger=trigger)
        with execution_context(run.workflow_id, run.execution_id):
            return await self._run_bound(run, scope, start_ids)

    async def _run_bound(self, run: "_Run", scope: Scope, start_ids: list[str]) -> ExecutionResult:
        trigger = run.trigger
        self._running_executions[run.execution_id] = run

        await self._logger.info(
            run.workflow_id,
            "Execution started",
            execution_id=run.execution_id,
            context={
                "trigger_type": TriggerType(trigger.trigger_type).value,
                "trigger_node_id": trigger.trigger_node_id,
                "start_nodes": start_ids,
            },
            source=SOURCE,
        )

        try:
            await self._traverse(run, start_ids, scope, visited=set())
        except NodeExecutionError as e:
            await self._logger.node_failed(
                run.workflow_id, run.execution_id, e.node_id, e.message
            )
            return run.result(
                ExecutionStatus.FAILED, scope, failed_node_id=e.node_id, error=e.message
            )
        finally:
            self._running_executions.pop(run.execution_id, None)

        await self._logger.info(
            run.workflow_id,
            "Execution completed",
            execution_id=run.execution_id,
            context={
                "completed_node_ids": run.completed,
                "continuation_ids": run.continuation_ids,
            },
            source=SOURCE,
        )
        return run.result(ExecutionStatus.COMPLETED, scope)

    async def _traverse(
        self,
        run: _Run,
        start_ids: list[str],
        scope: Scope,
        visited: set[str],
        boundary: Optional[str] = None,
    ) -> None:
        """Drain a FIFO frontier; ``boundary`` (a LOOP id) is never entered."""
        queue = deque(start_ids)
        while queue:
            node_id = queue.popleft()
            if node_id in visited or node_id == boundary:
                continue
            visited.add(node_id)
            queue.extend(await self._visit(run, run.graph.node(node_id), scope))

    async def _visit(self, run: _Run, node, scope: Scope) -> list[str]:
        run.current_node_id = node.id
        await self._logger.node_started(run.workflow_id, run.execution_id, node)

        handler = self._handlers[NodeType(node.type)]
        try:
            if node.type == NodeType.LOOP.value:
                # body nodes carry their own timeouts
                next_ids = await handler(run, node, scope)
            else:
                next_ids = await asyncio.wait_for(
                    handler(run, node, scope), timeout=self._node_timeout
                )
        except NodeExecutionError:
            raise
        except asyncio.TimeoutError as e:
            raise NodeExecutionError(
                node.id, f"{node.type} node timed out after {self._node_timeout}s", cause=e
            ) from e
        except Exception as e:
            raise NodeExecutionError(node.id, str(e) or type(e).__name__, cause=e) from e

        run.mark_completed(node.id)
        await self._logger.node_completed(run.workflow_id, run.execution_id, node)
        return next_ids

    # ─── Node handlers ────────────────────────────────────────

    async def _run_trigger(self, run: _Run, node, scope: Scope) -> list[str]:
        return run.graph.successors(node.id)

    async def _run_group(self, run: _Run, node, scope: Scope) -> list[str]:
        await self._logger.info(
            run.workflow_id,
            f"Entering group {node.config.label or node.name or node.id}",
            execution_id=run.execution_id,
            node_id=node.id,
            source=SOURCE,
        )
        return run.graph.successors(node.id)

    async def _run_action(self, run: _Run, node, scope: Scope) -> list[str]:
        task = self._registry.create_instance(node.type)
        if task is None:
            raise NodeExecutionError(node.id, f"No action registered for {node.type}")

        config = {
            name: value if name in task.unrendered_fields else render_value(value, scope)
            for name, value in node.config.model_dump(mode="json").items()
        }
        context = TaskContext(
            organization_id=run.trigger.organization_id,
            workflow_id=run.workflow_id,
            execution_id=run.execution_id,
            node_id=node.id,
            scope=scope,
        )
        result = await task.run(config, context)
        if not result.success:
            raise NodeExecutionError(node.id, result.error or f"{node.type} action failed")

        if node.config.output_key:
            scope.set(node.config.output_key, result.output)
        scope.set(node.id, result.output)
        run.last_output = result.output
        return run.graph.successors(node.id)

    async def _run_transform(self, run: _Run, node, scope: Scope) -> list[str]:
        value = apply_transform(node.config, scope)
        scope.set(node.config.output_variable, value)
        run.last_output = value
        return run.graph.successors(node.id)

    async def _run_condition(self, run: _Run, node, scope: Scope) -> list[str]:
        outcome = evaluate_conditions(
            node.config.conditions, scope, node.config.logical_operator
        )
        label = ConnectionLabel.TRUE if outcome else ConnectionLabel.FALSE
        await self._logger.info(
            run.workflow_id,
            f"Condition {node.id} evaluated to {label.value}",
            execution_id=run.execution_id,
            node_id=node.id,
            source=SOURCE,
        )
        return run.graph.successors(node.id, {label.value})

    async def _run_loop(self, run: _Run, node, scope: Scope) -> list[str]:
        config = node.config
        items = scope.get_path(config.source_key)
        if items is None:
            await self._logger.warn(
                run.workflow_id,
                f"LOOP source {config.source_key} is empty",
                execution_id=run.execution_id,
                node_id=node.id,
                source=SOURCE,
            )
            items = []
        if isinstance(items, tuple):
            items = list(items)
        if not isinstance(items, list):
            raise NodeExecutionError(
                node.id,
                f"LOOP source {config.source_key} is {type(items).__name__}, expected a list",
            )

        cap = config.max_iterations if config.max_iterations is not None else self._max_loop_iterations
        if len(items) > cap:
            await self._logger.warn(
                run.workflow_id,
                f"LOOP {node.id} stopped at {cap} of {len(items)} items",
                execution_id=run.execution_id,
                node_id=node.id,
                context={"max_iterations": cap, "total_items": len(items)},
                source=SOURCE,
            )

        body_start = run.graph.successors(node.id, {ConnectionLabel.LOOP_BODY.value})
        collected: list[Any] = []
        iterations = 0
        for index, item in enumerate(items[:cap]):
            child = scope.child({config.item_variable: item, config.index_variable: index})
            run.last_output = None
            await self._traverse(run, body_start, child, visited=set(), boundary=node.id)
            iterations += 1

            if config.result_key:
                if child.has_local(config.result_key):
                    collected.append(child.get_local(config.result_key))
                else:
                    collected.append(run.last_output)

            if config.break_conditions and evaluate_conditions(config.break_conditions, child):
                await self._logger.info(
                    run.workflow_id,
                    f"LOOP {node.id} break condition met at index {index}",
                    execution_id=run.execution_id,
                    node_id=node.id,
                    source=SOURCE,
                )
                break

        if config.result_key:
            scope.set(config.result_key, collected)
        run.last_output = collected if config.result_key else None

        logger.debug("Loop finished", node_id=node.id, iterations=iterations)
        return run.graph.successors(node.id, {ConnectionLabel.LOOP_EXIT.value, None})

    async def _run_approval(self, run: _Run, node, scope: Scope) -> list[str]:
        config = node.config
        if not self._approvals_enabled or self._continuations is None:
            await self._logger.info(
                run.workflow_id,
                f"Approval gate {node.id} not enforced; continuing",
                execution_id=run.execution_id,
                node_id=node.id,
                source=SOURCE,
            )
            return run.graph.successors(node.id)

        continuation = await self._continuations.create_approval(
            config.approvers,
            config.timeout_hours,
            workflow_id=run.workflow_id,
            organization_id=run.trigger.organization_id,
            execution_id=run.execution_id,
            node_id=node.id,
            scope=scope.flatten(),
            trigger=run.trigger.to_dict(),
        )
        run.continuation_ids.append(continuation.id)
        await self._logger.info(
            run.workflow_id,
            f"Waiting for approval at {node.id}",
            execution_id=run.execution_id,
            node_id=node.id,
            context={"continuation_id": continuation.id, "approvers": config.approvers},
            source=SOURCE,
        )

        if config.notify_approvers and self._sender is not None:
            await self._notify_approvers(run, node, scope, continuation.id)
        return []

    async def _notify_approvers(self, run: _Run, node, scope: Scope, continuation_id: str) -> None:
        message = render_text(
            node.config.message or f"Workflow {run.definition.name or run.workflow_id} needs your approval.",
            scope,
        )
        content = {
            "subject": f"Approval required: {run.definition.name or run.workflow_id}",
            "message": f"{message}\n\nApproval id: {continuation_id}",
        }
        for approver in node.config.approvers:
            try:
                result = await self._sender.send(NotificationChannel.EMAIL, content, approver)
            except Exception as e:
                result = None
                error = str(e)
            else:
                error = result.error
            if result is None or not result.success:
                await self._logger.warn(
                    run.workflow_id,
                    f"Could not notify approver {approver}: {error}",
                    execution_id=run.execution_id,
                    node_id=node.id,
                    source=SOURCE,
                )

    async def _run_delay(self, run: _Run, node, scope: Scope) -> list[str]:
        if self._continuations is None:
            raise NodeExecutionError(node.id, "DELAY requires a continuation service")

        seconds = node.config.total_seconds
        continuation = await self._continuations.create_delay(
            seconds,
            workflow_id=run.workflow_id,
            organization_id=run.trigger.organization_id,
            execution_id=run.execution_id,
            node_id=node.id,
            scope=scope.flatten(),
            trigger=run.trigger.to_dict(),
        )
        run.continuation_ids.append(continuation.id)
        await self._logger.info(
            run.workflow_id,
            f"Delaying {seconds:g}s at {node.id}",
            execution_id=run.execution_id,
            node_id=node.id,
            context={
                "continuation_id": continuation.id,
                "resume_at": continuation.resume_at.isoformat() if continuation.resume_at else None,
            },
            source=SOURCE,
        )
        return []


# ─── Singleton ─────────────────────────────────────────────────


def get_workflow_engine() -> WorkflowEngine:
    """The engine bound to the application database."""
    from services.container import get_services
    return get_services().engine
