"""Record repository boundary for CREATE_RECORD / UPDATE_RECORD nodes.

Business entities (contacts, invoices, tasks...) live in the host
application; the engine reaches them only through this interface.
"""

from abc import ABC, abstractmethod
from copy import deepcopy
from typing import Any, Optional
from uuid import uuid4

from core.exceptions import NotFoundError
from core.utils import utcnow


class RecordRepository(ABC):
    """Abstract create / update access to business records."""

    @abstractmethod
    async def create(self, organization_id: str, model: str, data: dict[str, Any]) -> dict:
        """Create a record and return it (including its ``id``)."""
        ...

    @abstractmethod
    async def update(
        self,
        organization_id: str,
        model: str,
        record_id: str,
        data: dict[str, Any],
    ) -> dict:
        """Patch a record and return the updated version.

        Raises:
            NotFoundError: unknown record
        """
        ...


class InMemoryRecordRepository(RecordRepository):
    """Dict-backed repository for local runs and tests."""

    def __init__(self):
        self._records: dict[tuple[str, str], dict[str, dict]] = {}

    async def create(self, organization_id, model, data) -> dict:
        record = {
            **deepcopy(data),
            "id": data.get("id") or str(uuid4()),
            "created_at": utcnow().isoformat(),
        }
        self._records.setdefault((organization_id, model.lower()), {})[record["id"]] = record
        return deepcopy(record)

    async def update(self, organization_id, model, record_id, data) -> dict:
        table = self._records.get((organization_id, model.lower()), {})
        record = table.get(record_id)
        if record is None:
            raise NotFoundError(f"{model} {record_id} not found")
        record.update(deepcopy(data))
        record["updated_at"] = utcnow().isoformat()
        return deepcopy(record)

    def get(self, organization_id: str, model: str, record_id: str) -> Optional[dict]:
        record = self._records.get((organization_id, model.lower()), {}).get(record_id)
        return deepcopy(record) if record is not None else None

    def all(self, organization_id: str, model: str) -> list[dict]:
        return [deepcopy(r) for r in self._records.get((organization_id, model.lower()), {}).values()]
