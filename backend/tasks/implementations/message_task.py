"""EMAIL and SMS action implementations.

Content comes from a template (system, organization or public) or from
the node's own fields; the resolved text is rendered against the run's
variable scope and handed to the configured NotificationSender.
"""

from abc import abstractmethod
from typing import Any, Dict

import structlog
from pydantic import ValidationError as PydanticValidationError

from core.constants import NodeType
from notifications.channels import NotificationChannel
from tasks.base_task import BaseTask, TaskContext, TaskResult
from workflow.definition import EmailConfig, SmsConfig

logger = structlog.get_logger(__name__)


class _MessageTask(BaseTask):
    """Shared flow: parse config, resolve content, send."""

    channel: NotificationChannel
    config_model = None
    content_fields: tuple = ()

    @abstractmethod
    async def _resolve(self, message, context: TaskContext) -> Dict[str, Any]:
        ...

    async def execute(self, config: Dict[str, Any], context: TaskContext) -> TaskResult:
        try:
            message = self.config_model.model_validate(config)
        except PydanticValidationError as e:
            return TaskResult.failed(f"Invalid {self.task_type} config: {e}")

        if not message.to:
            return TaskResult.failed("Missing recipient")

        sender = self.services.notification_sender
        if sender is None:
            return TaskResult.failed("No notification sender configured")

        content = await self._resolve(message, context)
        result = await sender.send(self.channel, content, message.to)
        if not result.success:
            return TaskResult(
                success=False,
                output=result.to_dict(),
                error=result.error or f"{self.channel.value} delivery failed",
            )

        return TaskResult(
            success=True,
            output={
                **result.to_dict(),
                **{name: content.get(name) for name in self.content_fields},
            },
            metadata={"template_id": message.template_id, "template_mode": message.template_mode.value},
        )


class EmailTask(_MessageTask):
    """Send an email.

    Config:
        template_mode: TEMPLATE | CUSTOM
        template_id: Required in TEMPLATE mode
        to: Recipient address
        subject / html_body / message: Custom content (or overrides of
            an unlocked template)
    """

    task_type = NodeType.EMAIL.value
    display_name = "Send Email"
    description = "Send an email from a template or custom content"
    channel = NotificationChannel.EMAIL
    config_model = EmailConfig
    content_fields = ("subject", "html_body", "message")
    # Rendered once by the template resolver, after overrides apply
    unrendered_fields = content_fields

    async def _resolve(self, message: EmailConfig, context: TaskContext) -> Dict[str, Any]:
        return await self.services.template_resolver.process_email_template(
            message.template_mode.value,
            message.template_id,
            context.organization_id,
            {"subject": message.subject, "html_body": message.html_body, "message": message.message},
            context.scope,
        )


class SmsTask(_MessageTask):
    """Send an SMS.

    Config:
        template_mode: TEMPLATE | CUSTOM
        template_id: Required in TEMPLATE mode
        to: Recipient phone number
        message: Custom text (or override of an unlocked template)
    """

    task_type = NodeType.SMS.value
    display_name = "Send SMS"
    description = "Send a text message from a template or custom content"
    channel = NotificationChannel.SMS
    config_model = SmsConfig
    content_fields = ("message",)
    unrendered_fields = content_fields

    async def _resolve(self, message: SmsConfig, context: TaskContext) -> Dict[str, Any]:
        return await self.services.template_resolver.process_sms_template(
            message.template_mode.value,
            message.template_id,
            context.organization_id,
            {"message": message.message},
            context.scope,
        )


MESSAGE_TASK_TYPES = {
    NodeType.EMAIL.value: EmailTask,
    NodeType.SMS.value: SmsTask,
}
