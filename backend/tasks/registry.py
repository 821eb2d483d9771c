"""
Task Type Registry — maps ACTION node types to their implementations.

Every node type in ACTION_NODE_TYPES must have a registered task; the
executor resolves ACTION nodes through this registry and injects the
shared ActionServices into each instance.
"""

from typing import Dict, Optional, Type

from core.constants import ACTION_NODE_TYPES
from tasks.base_task import ActionServices, BaseTask
from tasks.implementations.http_task import HTTP_TASK_TYPES
from tasks.implementations.message_task import MESSAGE_TASK_TYPES
from tasks.implementations.record_task import RECORD_TASK_TYPES


class TaskRegistry:
    """Central registry for all action implementations."""

    def __init__(self, services: Optional[ActionServices] = None):
        self.services = services or ActionServices()
        self._tasks: Dict[str, Type[BaseTask]] = {}
        self._register_builtin_tasks()

    def _register_builtin_tasks(self):
        """Register all built-in action types."""
        # EMAIL / SMS
        for task_type, task_class in MESSAGE_TASK_TYPES.items():
            self.register(task_type, task_class)

        # WEBHOOK
        for task_type, task_class in HTTP_TASK_TYPES.items():
            self.register(task_type, task_class)

        # CREATE_RECORD / UPDATE_RECORD
        for task_type, task_class in RECORD_TASK_TYPES.items():
            self.register(task_type, task_class)

    def register(self, task_type: str, task_class: Type[BaseTask]):
        """Register (or replace) an action implementation."""
        self._tasks[str(getattr(task_type, "value", task_type))] = task_class

    def get(self, task_type: str) -> Optional[Type[BaseTask]]:
        """Get a task class by node type string."""
        return self._tasks.get(str(getattr(task_type, "value", task_type)))

    def create_instance(self, task_type: str) -> Optional[BaseTask]:
        """Create a new instance of a task by type, wired to the shared services."""
        task_class = self.get(task_type)
        if task_class:
            return task_class(self.services)
        return None

    def missing_types(self) -> list:
        """ACTION node types that have no implementation registered."""
        return sorted(t.value for t in ACTION_NODE_TYPES if t.value not in self._tasks)

    def list_all(self) -> list:
        """List all registered action types with metadata."""
        return [
            {
                "task_type": task_type,
                "display_name": cls.display_name,
                "description": cls.description,
            }
            for task_type, cls in self._tasks.items()
        ]

    @property
    def available_types(self) -> list:
        return list(self._tasks.keys())


def get_task_registry() -> TaskRegistry:
    """The registry bound to the application's notification sender and database."""
    from services.container import get_services
    return get_services().task_registry
