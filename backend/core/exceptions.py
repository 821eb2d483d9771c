"""Custom exceptions for the workflow automation engine."""

from typing import Optional


class WorkflowEngineError(Exception):
    """Base exception for the workflow automation engine."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code.

        Args:
            message: Exception message
            status_code: HTTP status code
        """
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundError(WorkflowEngineError):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize NotFoundError with 404 status code."""
        super().__init__(message, 404)


class ValidationError(WorkflowEngineError):
    """Validation error exception."""

    def __init__(self, message: str = "Validation failed"):
        """Initialize ValidationError with 422 status code."""
        super().__init__(message, 422)


class ConflictError(WorkflowEngineError):
    """Resource conflict exception."""

    def __init__(self, message: str = "Resource conflict"):
        """Initialize ConflictError with 409 status code."""
        super().__init__(message, 409)


# ─── Definition / scheduling ──────────────────────────────────

class DefinitionError(ValidationError):
    """A workflow definition is structurally invalid.

    Raised at save time for dangling connections, missing node config,
    unbounded cycles and similar problems.
    """

    def __init__(self, message: str = "Invalid workflow definition"):
        super().__init__(message)


class InvalidScheduleSpec(ValidationError):
    """Cron expression, frequency or timezone cannot be evaluated."""

    def __init__(self, message: str = "Invalid schedule specification"):
        super().__init__(message)


class ConcurrentUpdateError(ConflictError):
    """A schedule record was modified by another writer mid-update."""

    def __init__(self, message: str = "Schedule was modified concurrently"):
        super().__init__(message)


# ─── Templates ────────────────────────────────────────────────

class TemplateNotFound(NotFoundError):
    """Template id matches neither a system nor an organization template."""

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Template not found: {template_id}")


class TemplateRequired(ValidationError):
    """TEMPLATE mode was requested without a resolved template."""

    def __init__(self, message: str = "A template is required in TEMPLATE mode"):
        super().__init__(message)


class MissingContent(ValidationError):
    """CUSTOM mode was requested without any content field."""

    def __init__(self, message: str = "Custom content requires at least one content field"):
        super().__init__(message)


# ─── Execution ────────────────────────────────────────────────

class NodeExecutionError(WorkflowEngineError):
    """A single node failed while the executor was visiting it."""

    def __init__(self, node_id: str, message: str, cause: Optional[Exception] = None):
        self.node_id = node_id
        self.cause = cause
        super().__init__(message, 500)
