"""Constants and enums for the workflow automation engine."""

from enum import Enum


class NodeType(str, Enum):
    """Node kinds a workflow definition may contain."""

    TRIGGER = "TRIGGER"
    EMAIL = "EMAIL"
    SMS = "SMS"
    WEBHOOK = "WEBHOOK"
    CREATE_RECORD = "CREATE_RECORD"
    UPDATE_RECORD = "UPDATE_RECORD"
    DATA_TRANSFORM = "DATA_TRANSFORM"
    CONDITION = "CONDITION"
    LOOP = "LOOP"
    GROUP = "GROUP"
    APPROVAL = "APPROVAL"
    DELAY = "DELAY"


ACTION_NODE_TYPES = frozenset(
    {
        NodeType.EMAIL,
        NodeType.SMS,
        NodeType.WEBHOOK,
        NodeType.CREATE_RECORD,
        NodeType.UPDATE_RECORD,
    }
)


class ExecutionStatus(str, Enum):
    """Terminal status of one executor invocation."""

    COMPLETED = "completed"
    FAILED = "failed"


class TriggerType(str, Enum):
    """What started an execution."""

    MANUAL = "manual"
    SCHEDULE = "schedule"
    EVENT = "event"
    RESUME = "resume"


class LogLevel(str, Enum):
    """Severity of an execution log entry."""

    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class ConnectionLabel(str, Enum):
    """Reserved connection labels the executor understands."""

    TRUE = "true"
    FALSE = "false"
    LOOP_BODY = "loop-body"
    LOOP_EXIT = "loop-exit"


class ContinuationKind(str, Enum):
    """Why a run was suspended."""

    DELAY = "delay"
    APPROVAL = "approval"


class ContinuationStatus(str, Enum):
    """Lifecycle of a suspended branch."""

    PENDING = "pending"
    RESUMED = "resumed"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


class TemplateMode(str, Enum):
    """How an EMAIL/SMS node obtains its content."""

    TEMPLATE = "TEMPLATE"
    CUSTOM = "CUSTOM"


class Frequency(str, Enum):
    """Coarse schedule frequencies."""

    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


SYSTEM_TEMPLATE_PREFIX = "sys_tpl_"
