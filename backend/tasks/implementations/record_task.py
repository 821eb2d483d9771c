"""CREATE_RECORD and UPDATE_RECORD action implementations."""

from typing import Any, Dict

from pydantic import ValidationError as PydanticValidationError

from core.constants import NodeType
from core.exceptions import NotFoundError
from tasks.base_task import BaseTask, TaskContext, TaskResult
from workflow.definition import CreateRecordConfig, UpdateRecordConfig


class CreateRecordTask(BaseTask):
    """Create a business record through the RecordRepository."""

    task_type = NodeType.CREATE_RECORD.value
    display_name = "Create Record"
    description = "Create a record (contact, invoice, task...) in the host application"

    async def execute(self, config: Dict[str, Any], context: TaskContext) -> TaskResult:
        try:
            params = CreateRecordConfig.model_validate(config)
        except PydanticValidationError as e:
            return TaskResult.failed(f"Invalid record config: {e}")

        repository = self.services.record_repository
        if repository is None:
            return TaskResult.failed("No record repository configured")

        record = await repository.create(context.organization_id, params.model, params.data)
        return TaskResult(success=True, output=record, metadata={"model": params.model})


class UpdateRecordTask(BaseTask):
    """Patch an existing business record."""

    task_type = NodeType.UPDATE_RECORD.value
    display_name = "Update Record"
    description = "Update fields of an existing record"

    async def execute(self, config: Dict[str, Any], context: TaskContext) -> TaskResult:
        try:
            params = UpdateRecordConfig.model_validate(config)
        except PydanticValidationError as e:
            return TaskResult.failed(f"Invalid record config: {e}")

        repository = self.services.record_repository
        if repository is None:
            return TaskResult.failed("No record repository configured")

        try:
            record = await repository.update(
                context.organization_id, params.model, str(params.record_id), params.data
            )
        except NotFoundError as e:
            return TaskResult.failed(e.message)
        return TaskResult(success=True, output=record, metadata={"model": params.model})


RECORD_TASK_TYPES = {
    NodeType.CREATE_RECORD.value: CreateRecordTask,
    NodeType.UPDATE_RECORD.value: UpdateRecordTask,
}
