"""
Generic async repository (Data Access Layer).

Implements the Repository pattern on top of SQLAlchemy's ``AsyncSession``.
Concrete repositories inherit from ``BaseRepository[T]`` and add
entity-specific queries.

- ``get_all()`` orders by primary key so paginated results are stable.
- **IntegrityError** is NOT caught here.  Each service translates it into
  the domain error that fits (duplicate email → 409, bad amount → 422).
- **OperationalError** (connection loss, deadlock) rolls the session back
  and is re-raised, so a dirty transaction never leaks into the next call.
"""

import logging
from typing import Any, Generic, Iterable, List, Optional, Type, TypeVar

from sqlalchemy import func
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlmodel import SQLModel

from captable.core.resilience import db_circuit_breaker

logger = logging.getLogger(__name__)

ModelType = TypeVar("ModelType", bound=SQLModel)


class BaseRepository(Generic[ModelType]):
    """
    Generic CRUD repository for SQLModel entities.

    Parameters
    ----------
    model : Type[ModelType]
        The SQLModel class this repository manages.
    db : AsyncSession
        An active async database session (injected per-request).

    Every database call is routed through the global ``db_circuit_breaker``.
    After consecutive connection-level failures the circuit opens and calls
    fail fast with ``CircuitBreakerError`` instead of waiting on timeouts.
    """

    def __init__(self, model: Type[ModelType], db: AsyncSession):
        self.model = model
        self.db = db

    # ── Internal helpers ──

    async def _execute_with_circuit_breaker(
        self, func: Any, *args: Any, **kwargs: Any
    ) -> Any:
        """Route any async callable through the circuit breaker."""
        return await db_circuit_breaker.call(func, *args, **kwargs)

    async def _commit(self, action: str) -> None:
        try:
            await self.db.commit()
        except OperationalError:
            await self.db.rollback()
            logger.error("OperationalError during %s for %s", action, self.model.__name__)
            raise

    # ── Queries ──

    async def get(self, id: Any) -> Optional[ModelType]:
        """Fetch a single entity by primary key.  Returns ``None`` if not found."""

        async def _get() -> Optional[ModelType]:
            return await self.db.get(self.model, id)

        return await self._execute_with_circuit_breaker(_get)

    async def get_all(self, skip: int = 0, limit: int = 100) -> List[ModelType]:
        """Return a page of entities ordered by primary key."""

        async def _get_all() -> List[ModelType]:
            pk_columns = self.model.__table__.primary_key.columns
            stmt = select(self.model).order_by(*pk_columns).offset(skip).limit(limit)
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

        return await self._execute_with_circuit_breaker(_get_all)

    async def count(self) -> int:
        async def _count() -> int:
            stmt = select(func.count()).select_from(self.model)
            result = await self.db.execute(stmt)
            return result.scalar_one()

        return await self._execute_with_circuit_breaker(_count)

    # ── Commands ──

    async def create(self, obj_in: ModelType) -> ModelType:
        """Insert a new entity and return the refreshed instance."""

        async def _create() -> ModelType:
            self.db.add(obj_in)
            await self._commit("create")
            await self.db.refresh(obj_in)
            return obj_in

        return await self._execute_with_circuit_breaker(_create)

    async def update(self, entity: ModelType) -> ModelType:
        """
        Persist changes to an already-tracked entity.

        The caller mutates the entity's attributes first; we merge, commit
        and refresh.
        """

        async def _update() -> ModelType:
            merged = await self.db.merge(entity)
            await self._commit("update")
            await self.db.refresh(merged)
            return merged

        return await self._execute_with_circuit_breaker(_update)

    async def save_all(
        self, *entities: SQLModel, deleted: Iterable[SQLModel] = ()
    ) -> List[SQLModel]:
        """
        Add/update ``entities`` and delete ``deleted`` in a single commit.

        Used where several rows must change together: a subscription and
        its allocation, or a project and its default cap table.
        """

        async def _save_all() -> List[SQLModel]:
            for entity in entities:
                self.db.add(entity)
            for entity in deleted:
                await self.db.delete(entity)
            await self._commit("save_all")
            for entity in entities:
                await self.db.refresh(entity)
            return list(entities)

        return await self._execute_with_circuit_breaker(_save_all)

    async def delete(self, id: Any) -> bool:
        """
        Delete an entity by primary key.

        Returns ``True`` if the entity was found and deleted, ``False`` if
        it did not exist.
        """

        async def _delete() -> bool:
            entity = await self.db.get(self.model, id)
            if entity is None:
                return False
            await self.db.delete(entity)
            await self._commit("delete")
            return True

        return await self._execute_with_circuit_breaker(_delete)
