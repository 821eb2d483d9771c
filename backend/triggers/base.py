"""Trigger payloads passed from the scheduler / dispatcher to the executor."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from core.constants import TriggerType
from core.utils import safe_serialize, utcnow


@dataclass
class TriggerEvent:
    """Represents a single trigger firing.

    This is the payload that gets passed from a trigger source to the
    workflow executor. ``trigger_node_id`` selects which TRIGGER node's
    successors the run starts from; ``variables`` are seeded into the
    run's root scope.
    """

    trigger_type: TriggerType
    organization_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    trigger_node_id: Optional[str] = None
    variables: dict[str, Any] = field(default_factory=dict)
    execution_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=utcnow)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": TriggerType(self.trigger_type).value,
            "organization_id": self.organization_id,
            "payload": safe_serialize(self.payload),
            "node_id": self.trigger_node_id,
            "execution_id": self.execution_id,
            "timestamp": self.timestamp.isoformat(),
            "metadata": safe_serialize(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], **overrides) -> "TriggerEvent":
        """Rebuild an event stored with ``to_dict`` (continuations)."""
        values = {
            "trigger_type": TriggerType(data.get("type") or TriggerType.MANUAL.value),
            "organization_id": data.get("organization_id", ""),
            "payload": data.get("payload") or {},
            "trigger_node_id": data.get("node_id"),
            "metadata": data.get("metadata") or {},
        }
        if data.get("execution_id"):
            values["execution_id"] = data["execution_id"]
        values.update(overrides)
        return cls(**values)


@dataclass
class EventKey:
    """Identity of a business event: ``(module, entity_type, event_type)``."""

    module: str
    entity_type: str
    event_type: str

    def __str__(self) -> str:
        return f"{self.module}.{self.entity_type}.{self.event_type}"
