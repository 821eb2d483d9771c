"""Wiring of the engine's collaborators around one session factory.

The API process uses ``get_services()`` (bound to the global
``AsyncSessionLocal``); Celery tasks and tests call ``build_services``
with their own session factory.
"""

from dataclasses import dataclass
from typing import Optional

from app.config import get_settings
from core.utils import utcnow
from notifications.channels import NotificationSender, get_notification_sender
from services.continuation_service import ContinuationService
from services.execution_logger import ExecutionLogger
from services.record_repository import InMemoryRecordRepository, RecordRepository
from services.template_resolver import TemplateResolver
from services.workflow_service import WorkflowService
from tasks.base_task import ActionServices
from tasks.registry import TaskRegistry
from triggers.dispatcher import EventDispatcher
from triggers.scheduler import WorkflowScheduler
from workflow.engine import WorkflowEngine
from workflow.retry_strategies import RetryStrategy


@dataclass
class Services:
    session_factory: object
    execution_logger: ExecutionLogger
    continuations: ContinuationService
    scheduler: WorkflowScheduler
    workflows: WorkflowService
    templates: TemplateResolver
    notification_sender: NotificationSender
    record_repository: RecordRepository
    task_registry: TaskRegistry
    engine: WorkflowEngine
    dispatcher: EventDispatcher


def build_services(
    session_factory,
    now_fn=utcnow,
    notification_sender: Optional[NotificationSender] = None,
    record_repository: Optional[RecordRepository] = None,
    retry_strategy: Optional[RetryStrategy] = None,
    http_transport=None,
    approvals_enabled: Optional[bool] = None,
    max_loop_iterations: Optional[int] = None,
) -> Services:
    """Build every service on ``session_factory``."""
    settings = get_settings()
    sender = notification_sender or get_notification_sender()
    records = record_repository or InMemoryRecordRepository()

    execution_logger = ExecutionLogger(session_factory, now_fn=now_fn)
    continuations = ContinuationService(session_factory, now_fn=now_fn)
    scheduler = WorkflowScheduler(
        session_factory, execution_logger, retry_strategy=retry_strategy, now_fn=now_fn
    )
    workflows = WorkflowService(session_factory, scheduler, continuations)
    templates = TemplateResolver(session_factory)
    registry = TaskRegistry(
        ActionServices(
            notification_sender=sender,
            template_resolver=templates,
            record_repository=records,
            webhook_timeout=settings.WEBHOOK_TIMEOUT_SECONDS,
            allow_private_networks=settings.WEBHOOK_ALLOW_PRIVATE_NETWORKS,
            http_transport=http_transport,
        )
    )
    engine = WorkflowEngine(
        execution_logger=execution_logger,
        task_registry=registry,
        continuation_service=continuations,
        notification_sender=sender,
        approvals_enabled=approvals_enabled,
        max_loop_iterations=max_loop_iterations,
    )
    dispatcher = EventDispatcher(workflows, engine, execution_logger)

    return Services(
        session_factory=session_factory,
        execution_logger=execution_logger,
        continuations=continuations,
        scheduler=scheduler,
        workflows=workflows,
        templates=templates,
        notification_sender=sender,
        record_repository=records,
        task_registry=registry,
        engine=engine,
        dispatcher=dispatcher,
    )


# Singleton
_services: Optional[Services] = None


def get_services() -> Services:
    """Services bound to the application database."""
    global _services
    if _services is None:
        from db.database import AsyncSessionLocal
        _services = build_services(AsyncSessionLocal)
    return _services


def reset_services() -> None:
    global _services
    _services = None
