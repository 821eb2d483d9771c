"""Workflow definition model: triggers, nodes, connections, variables.

Definitions are stored as JSON on ``Workflow.definition`` and parsed into
these pydantic models on every save and every load. ``validate_definition``
enforces the graph invariants the executor relies on:

- node ids are unique and every connection endpoint exists
- every trigger points at a TRIGGER node
- CONDITION edges are labelled "true" / "false", at most one of each
- every cycle goes through a LOOP node's "loop-body" edge and comes back
  to that LOOP node (bounded by its iteration cap)
- DELAY and APPROVAL nodes never sit inside a loop body

Example (JSON as stored):
{
    "triggers": [{"node_id": "t1", "type": "event", "entity_type": "task",
                  "event_type": "created"}],
    "nodes": [
        {"id": "t1", "type": "TRIGGER", "name": "Task created"},
        {"id": "n1", "type": "EMAIL", "name": "Notify",
         "config": {"template_mode": "CUSTOM", "to": "{trigger.payload.email}",
                    "subject": "New task {trigger.payload.title}"}}
    ],
    "connections": [{"from_node_id": "t1", "to_node_id": "n1"}],
    "variables": [{"name": "threshold", "type": "number", "default": 10}]
}
"""

from collections import defaultdict, deque
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError as PydanticValidationError,
    model_validator,
)
from pydantic.alias_generators import to_camel

from core.constants import ConnectionLabel, NodeType, TemplateMode
from core.exceptions import DefinitionError
from triggers.cron import ScheduleSpec, validate_schedule_spec
from workflow.conditions import ConditionRule


class _Model(BaseModel):
    """Accepts snake_case and the builder UI's camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# ─── Node configs ─────────────────────────────────────────────

class TriggerConfig(_Model):
    schedule: Optional[ScheduleSpec] = None


class EmailConfig(_Model):
    template_mode: TemplateMode = TemplateMode.CUSTOM
    template_id: Optional[str] = None
    to: str
    subject: Optional[str] = None
    html_body: Optional[str] = None
    message: Optional[str] = None
    output_key: Optional[str] = None

    @model_validator(mode="after")
    def _template_needs_id(self):
        if self.template_mode == TemplateMode.TEMPLATE and not self.template_id:
            raise ValueError("template_id is required in TEMPLATE mode")
        return self


class SmsConfig(_Model):
    template_mode: TemplateMode = TemplateMode.CUSTOM
    template_id: Optional[str] = None
    to: str
    message: Optional[str] = None
    output_key: Optional[str] = None

    @model_validator(mode="after")
    def _template_needs_id(self):
        if self.template_mode == TemplateMode.TEMPLATE and not self.template_id:
            raise ValueError("template_id is required in TEMPLATE mode")
        return self


class WebhookConfig(_Model):
    url: str
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = None
    output_key: Optional[str] = None


class CreateRecordConfig(_Model):
    model: str
    data: dict[str, Any] = Field(default_factory=dict)
    output_key: Optional[str] = None


class UpdateRecordConfig(_Model):
    model: str
    record_id: Union[str, int]
    data: dict[str, Any] = Field(default_factory=dict)
    output_key: Optional[str] = None


class DataTransformConfig(_Model):
    """Pure transform over a scope value.

    ``source`` names the input collection (dotted path into scope).
    Operation parameters:
      map:       mapping {new_key: "{item.field}" | literal}
      filter:    conditions + logical_operator, evaluated per item
      reduce:    reduce_operation sum|count|concat on ``field``
      query:     conditions, sort_by, sort_order, limit
      aggregate: aggregate_function count|sum|avg|min|max on ``field``
      extract:   extract_fields
    """

    operation: Literal["map", "filter", "reduce", "query", "aggregate", "extract"]
    source: str
    output_variable: str
    mapping: dict[str, Any] = Field(default_factory=dict)
    conditions: list[ConditionRule] = Field(default_factory=list)
    logical_operator: Literal["AND", "OR"] = "AND"
    reduce_operation: Literal["sum", "count", "concat"] = "sum"
    aggregate_function: Literal["count", "sum", "avg", "min", "max"] = "count"
    field: Optional[str] = None
    separator: str = ", "
    sort_by: Optional[str] = None
    sort_order: Literal["asc", "desc"] = "asc"
    limit: Optional[int] = Field(default=None, ge=0)
    extract_fields: list[str] = Field(default_factory=list)


class ConditionConfig(_Model):
    conditions: list[ConditionRule] = Field(default_factory=list)
    logical_operator: Literal["AND", "OR"] = "AND"


class LoopConfig(_Model):
    source_key: str
    item_variable: str = "item"
    index_variable: str = "index"
    max_iterations: Optional[int] = Field(default=None, ge=0)
    result_key: Optional[str] = None
    break_conditions: list[ConditionRule] = Field(default_factory=list)


class GroupConfig(_Model):
    label: Optional[str] = None


class ApprovalConfig(_Model):
    approvers: list[str] = Field(default_factory=list)
    timeout_hours: Optional[float] = Field(default=None, gt=0)
    notify_approvers: bool = True
    message: Optional[str] = None


class DelayConfig(_Model):
    seconds: float = 0
    minutes: float = 0
    hours: float = 0
    days: float = 0

    @property
    def total_seconds(self) -> float:
        return self.seconds + self.minutes * 60 + self.hours * 3600 + self.days * 86400

    @model_validator(mode="after")
    def _positive(self):
        if self.total_seconds <= 0:
            raise ValueError("DELAY needs a positive duration")
        return self


# ─── Nodes ────────────────────────────────────────────────────

class _NodeBase(_Model):
    id: str = Field(min_length=1)
    name: str = ""


class TriggerNode(_NodeBase):
    type: Literal["TRIGGER"]
    config: TriggerConfig = Field(default_factory=TriggerConfig)


class EmailNode(_NodeBase):
    type: Literal["EMAIL"]
    config: EmailConfig


class SmsNode(_NodeBase):
    type: Literal["SMS"]
    config: SmsConfig


class WebhookNode(_NodeBase):
    type: Literal["WEBHOOK"]
    config: WebhookConfig


class CreateRecordNode(_NodeBase):
    type: Literal["CREATE_RECORD"]
    config: CreateRecordConfig


class UpdateRecordNode(_NodeBase):
    type: Literal["UPDATE_RECORD"]
    config: UpdateRecordConfig


class DataTransformNode(_NodeBase):
    type: Literal["DATA_TRANSFORM"]
    config: DataTransformConfig


class ConditionNode(_NodeBase):
    type: Literal["CONDITION"]
    config: ConditionConfig = Field(default_factory=ConditionConfig)


class LoopNode(_NodeBase):
    type: Literal["LOOP"]
    config: LoopConfig


class GroupNode(_NodeBase):
    type: Literal["GROUP"]
    config: GroupConfig = Field(default_factory=GroupConfig)


class ApprovalNode(_NodeBase):
    type: Literal["APPROVAL"]
    config: ApprovalConfig = Field(default_factory=ApprovalConfig)


class DelayNode(_NodeBase):
    type: Literal["DELAY"]
    config: DelayConfig


Node = Annotated[
    Union[
        TriggerNode,
        EmailNode,
        SmsNode,
        WebhookNode,
        CreateRecordNode,
        UpdateRecordNode,
        DataTransformNode,
        ConditionNode,
        LoopNode,
        GroupNode,
        ApprovalNode,
        DelayNode,
    ],
    Field(discriminator="type"),
]


class Connection(_Model):
    from_node_id: str
    to_node_id: str
    label: Optional[str] = None


class WorkflowVariable(_Model):
    name: str
    type: Literal["string", "number", "boolean", "array", "object", "any"] = "any"
    default: Any = None


class WorkflowTrigger(_Model):
    """How a TRIGGER node is fired.

    Event triggers match ``(module, entity_type, event_type)``; a None
    field is a wildcard. ``conditions`` filter on the event payload.
    """

    node_id: str
    type: Literal["event", "schedule", "manual"] = "event"
    module: Optional[str] = None
    entity_type: Optional[str] = None
    event_type: Optional[str] = None
    conditions: list[ConditionRule] = Field(default_factory=list)
    logical_operator: Literal["AND", "OR"] = "AND"
    is_active: bool = True


class WorkflowDefinition(_Model):
    id: str = ""
    organization_id: str = ""
    name: str = ""
    is_active: bool = True
    triggers: list[WorkflowTrigger] = Field(default_factory=list)
    nodes: list[Node] = Field(default_factory=list)
    connections: list[Connection] = Field(default_factory=list)
    variables: list[WorkflowVariable] = Field(default_factory=list)

    def node(self, node_id: str):
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def scheduled_trigger_nodes(self) -> list[TriggerNode]:
        return [
            node
            for node in self.nodes
            if node.type == NodeType.TRIGGER.value and node.config.schedule is not None
        ]

    def to_storage(self) -> dict:
        """JSON shape written to ``Workflow.definition``."""
        return self.model_dump(mode="json", exclude={"id", "organization_id", "name", "is_active"})


# ─── Graph view ───────────────────────────────────────────────

class WorkflowGraph:
    """Adjacency view over a definition used by validation and the executor."""

    def __init__(self, definition: WorkflowDefinition):
        self.definition = definition
        self.nodes = {node.id: node for node in definition.nodes}
        self._outgoing: dict[str, list[Connection]] = defaultdict(list)
        for connection in definition.connections:
            self._outgoing[connection.from_node_id].append(connection)

    def node(self, node_id: str):
        return self.nodes[node_id]

    def outgoing(self, node_id: str) -> list[Connection]:
        return self._outgoing.get(node_id, [])

    def successors(self, node_id: str, labels: Optional[set] = None) -> list[str]:
        """Target ids of outgoing edges, optionally restricted to ``labels``.

        ``None`` inside ``labels`` selects unlabelled edges.
        """
        return [
            c.to_node_id
            for c in self.outgoing(node_id)
            if labels is None or c.label in labels
        ]

    def start_nodes(self, trigger_node_id: Optional[str] = None) -> list[str]:
        """Successors of the firing TRIGGER node (or of every TRIGGER node)."""
        if trigger_node_id is not None:
            return self.successors(trigger_node_id)
        start: list[str] = []
        for node in self.definition.nodes:
            if node.type == NodeType.TRIGGER.value:
                start.extend(self.successors(node.id))
        return start

    def loop_body(self, loop_id: str) -> set[str]:
        """Node ids reachable from a LOOP's "loop-body" edges without passing the LOOP."""
        body: set[str] = set()
        queue = deque(self.successors(loop_id, {ConnectionLabel.LOOP_BODY.value}))
        while queue:
            node_id = queue.popleft()
            if node_id == loop_id or node_id in body:
                continue
            body.add(node_id)
            queue.extend(self.successors(node_id))
        return body


def _find_cycle(node_ids: list[str], edges: dict[str, list[str]]) -> Optional[list[str]]:
    """Iterative DFS; returns one cycle path or None."""
    WHITE, GREY, BLACK = 0, 1, 2
    color = {node_id: WHITE for node_id in node_ids}
    for root in node_ids:
        if color[root] != WHITE:
            continue
        stack = [(root, iter(edges.get(root, [])))]
        path = [root]
        color[root] = GREY
        while stack:
            node_id, children = stack[-1]
            child = next(children, None)
            if child is None:
                color[node_id] = BLACK
                stack.pop()
                path.pop()
                continue
            if color.get(child) == GREY:
                return path[path.index(child):] + [child]
            if color.get(child) == WHITE:
                color[child] = GREY
                path.append(child)
                stack.append((child, iter(edges.get(child, []))))
    return None


def parse_definition(data: Union[dict, WorkflowDefinition], **identity) -> WorkflowDefinition:
    """Parse stored JSON into a definition, raising DefinitionError."""
    if isinstance(data, WorkflowDefinition):
        return data.model_copy(update=identity) if identity else data
    try:
        return WorkflowDefinition.model_validate({**(data or {}), **identity})
    except PydanticValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise DefinitionError(f"Invalid workflow definition: {problems}") from e


def validate_definition(definition: WorkflowDefinition) -> WorkflowGraph:
    """Check graph invariants and return the graph view.

    Raises:
        DefinitionError: structural problem
        InvalidScheduleSpec: a TRIGGER node carries an unusable schedule
    """
    seen: set[str] = set()
    for node in definition.nodes:
        if node.id in seen:
            raise DefinitionError(f"Duplicate node id: {node.id}")
        seen.add(node.id)

    graph = WorkflowGraph(definition)

    for connection in definition.connections:
        for endpoint in (connection.from_node_id, connection.to_node_id):
            if endpoint not in graph.nodes:
                raise DefinitionError(
                    f"Connection {connection.from_node_id} -> {connection.to_node_id} "
                    f"references unknown node {endpoint}"
                )

    for trigger in definition.triggers:
        node = graph.nodes.get(trigger.node_id)
        if node is None or node.type != NodeType.TRIGGER.value:
            raise DefinitionError(f"Trigger references non-TRIGGER node {trigger.node_id}")
        if trigger.type == "schedule" and node.config.schedule is None:
            raise DefinitionError(f"Schedule trigger {trigger.node_id} has no schedule config")

    for node in definition.nodes:
        if node.type == NodeType.TRIGGER.value and node.config.schedule is not None:
            validate_schedule_spec(node.config.schedule)
        if node.type == NodeType.CONDITION.value:
            labels: set[str] = set()
            for connection in graph.outgoing(node.id):
                if connection.label not in (ConnectionLabel.TRUE.value, ConnectionLabel.FALSE.value):
                    raise DefinitionError(
                        f"CONDITION {node.id} edge to {connection.to_node_id} "
                        f"must be labelled 'true' or 'false'"
                    )
                if connection.label in labels:
                    raise DefinitionError(
                        f"CONDITION {node.id} has more than one '{connection.label}' edge"
                    )
                labels.add(connection.label)

    # Edges that return from a loop body to its LOOP node are the only allowed back-edges
    back_edges: set[tuple[str, str]] = set()
    for node in definition.nodes:
        if node.type != NodeType.LOOP.value:
            continue
        body = graph.loop_body(node.id)
        for member in body:
            member_node = graph.nodes[member]
            if member_node.type in (NodeType.DELAY.value, NodeType.APPROVAL.value):
                raise DefinitionError(
                    f"{member_node.type} node {member} cannot run inside LOOP {node.id}"
                )
            if node.id in graph.successors(member):
                back_edges.add((member, node.id))

    edges: dict[str, list[str]] = defaultdict(list)
    for connection in definition.connections:
        if (connection.from_node_id, connection.to_node_id) not in back_edges:
            edges[connection.from_node_id].append(connection.to_node_id)

    cycle = _find_cycle([node.id for node in definition.nodes], edges)
    if cycle:
        raise DefinitionError(f"Unbounded cycle: {' -> '.join(cycle)}")

    return graph
