"""Organization-scoped CRUD over a session factory.

Each call opens and commits its own session. The API, the schedule
poller and the event dispatcher all share one service instance and
never hand sessions to each other. Instances come back detached
(``expire_on_commit=False``) and stay readable after the session closes.
"""

from typing import Any, Generic, Optional, Sequence, Type, TypeVar

from sqlalchemy import Select, func, select

from db.base import BaseModel

ModelType = TypeVar("ModelType", bound=BaseModel)


class BaseService(Generic[ModelType]):
    """CRUD for one model. Subclasses add the domain operations."""

    def __init__(self, model: Type[ModelType], session_factory):
        self.model = model
        self.session_factory = session_factory

    def _where(self, query: Select, organization_id: Optional[str], filters: Optional[dict]) -> Select:
        if organization_id:
            query = query.where(self.model.organization_id == organization_id)
        for name, value in (filters or {}).items():
            column = getattr(self.model, name)
            query = query.where(column.in_(value) if isinstance(value, (list, tuple)) else column == value)
        return query

    def _owned_by(self, instance, organization_id: Optional[str]) -> bool:
        return instance is not None and (
            not organization_id or instance.organization_id == organization_id
        )

    # ─── Read ──────────────────────────────────────────────

    async def get_by_id(self, id: str) -> Optional[ModelType]:
        async with self.session_factory() as session:
            return await session.get(self.model, id)

    async def get_by_id_and_org(self, id: str, organization_id: str) -> Optional[ModelType]:
        instance = await self.get_by_id(id)
        return instance if self._owned_by(instance, organization_id) else None

    async def list(
        self,
        organization_id: Optional[str] = None,
        offset: int = 0,
        limit: int = 50,
        order_by: str = "created_at",
        order_desc: bool = True,
        filters: Optional[dict[str, Any]] = None,
    ) -> tuple[Sequence[ModelType], int]:
        """One page of records plus the unpaged total.

        ``filters`` maps column names to a value, or to a list of
        accepted values.
        """
        order_column = getattr(self.model, order_by)
        query = (
            self._where(select(self.model), organization_id, filters)
            .order_by(order_column.desc() if order_desc else order_column.asc())
            .offset(offset)
            .limit(limit)
        )
        count_query = self._where(
            select(func.count()).select_from(self.model), organization_id, filters
        )

        async with self.session_factory() as session:
            items = (await session.execute(query)).scalars().all()
            total = (await session.execute(count_query)).scalar_one()
        return items, total

    # ─── Write ─────────────────────────────────────────────

    async def create(self, data: dict[str, Any]) -> ModelType:
        instance = self.model(**data)
        async with self.session_factory() as session:
            session.add(instance)
            await session.commit()
        return instance

    async def update(
        self,
        id: str,
        data: dict[str, Any],
        organization_id: Optional[str] = None,
    ) -> Optional[ModelType]:
        """Apply the non-None values of ``data``; None when not found."""
        async with self.session_factory() as session:
            instance = await session.get(self.model, id)
            if not self._owned_by(instance, organization_id):
                return None
            for key, value in data.items():
                if value is not None:
                    setattr(instance, key, value)
            await session.commit()
        return instance

    async def delete(self, id: str, organization_id: Optional[str] = None) -> bool:
        async with self.session_factory() as session:
            instance = await session.get(self.model, id)
            if not self._owned_by(instance, organization_id):
                return False
            await session.delete(instance)
            await session.commit()
        return True
