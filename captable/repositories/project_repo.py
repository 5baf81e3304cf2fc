"""
Project repository — data-access layer for ``projects``.

Project deletion cascades explicitly (links → cap tables → project) in one
transaction, so the behaviour does not depend on the database honouring
``ON DELETE CASCADE``.
"""

from typing import List
from uuid import UUID

from sqlalchemy import delete
from sqlalchemy.future import select

from captable.models.cap_table import CapTable, CapTableInvestor
from captable.models.project import Project
from captable.repositories.base import BaseRepository


class ProjectRepository(BaseRepository[Project]):
    """Concrete repository for :class:`Project` entities."""

    async def list_ordered(self) -> List[Project]:
        """All projects, oldest first (the first one is the default selection)."""

        async def _list() -> List[Project]:
            stmt = select(Project).order_by(Project.created_at, Project.id)
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

        return await self._execute_with_circuit_breaker(_list)

    async def delete_cascade(self, project_id: UUID) -> None:
        """Delete a project together with its cap tables and their memberships."""

        async def _delete() -> None:
            cap_table_ids = select(CapTable.id).where(CapTable.project_id == project_id)
            await self.db.execute(
                delete(CapTableInvestor).where(CapTableInvestor.cap_table_id.in_(cap_table_ids))
            )
            await self.db.execute(delete(CapTable).where(CapTable.project_id == project_id))
            await self.db.execute(delete(Project).where(Project.id == project_id))
            await self._commit("delete_cascade")

        await self._execute_with_circuit_breaker(_delete)
