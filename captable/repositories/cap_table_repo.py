"""
Cap table repository — ``cap_tables`` plus the ``cap_table_investors``
membership links.
"""

from typing import List, Optional
from uuid import UUID

from sqlalchemy import delete, func
from sqlalchemy.future import select

from captable.models.cap_table import CapTable, CapTableInvestor
from captable.repositories.base import BaseRepository


class CapTableRepository(BaseRepository[CapTable]):
    """Concrete repository for :class:`CapTable` entities and their links."""

    async def list_by_project(self, project_id: UUID) -> List[CapTable]:
        """Cap tables of a project, oldest first."""

        async def _list() -> List[CapTable]:
            stmt = (
                select(CapTable)
                .where(CapTable.project_id == project_id)
                .order_by(CapTable.created_at, CapTable.id)
            )
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

        return await self._execute_with_circuit_breaker(_list)

    async def count_by_project(self, project_id: UUID) -> int:
        async def _count() -> int:
            stmt = (
                select(func.count())
                .select_from(CapTable)
                .where(CapTable.project_id == project_id)
            )
            result = await self.db.execute(stmt)
            return result.scalar_one()

        return await self._execute_with_circuit_breaker(_count)

    async def delete_cascade(self, cap_table_id: UUID) -> None:
        """Delete a cap table and its membership links (never the investors)."""

        async def _delete() -> None:
            await self.db.execute(
                delete(CapTableInvestor).where(CapTableInvestor.cap_table_id == cap_table_id)
            )
            await self.db.execute(delete(CapTable).where(CapTable.id == cap_table_id))
            await self._commit("delete_cascade")

        await self._execute_with_circuit_breaker(_delete)

    # ── Membership ──

    async def get_link(
        self, cap_table_id: UUID, investor_id: UUID
    ) -> Optional[CapTableInvestor]:
        async def _get() -> Optional[CapTableInvestor]:
            return await self.db.get(CapTableInvestor, (cap_table_id, investor_id))

        return await self._execute_with_circuit_breaker(_get)

    async def add_link(self, cap_table_id: UUID, investor_id: UUID) -> CapTableInvestor:
        async def _add() -> CapTableInvestor:
            link = CapTableInvestor(cap_table_id=cap_table_id, investor_id=investor_id)
            self.db.add(link)
            await self._commit("add_link")
            return link

        return await self._execute_with_circuit_breaker(_add)

    async def remove_link(self, cap_table_id: UUID, investor_id: UUID) -> bool:
        """Remove a membership.  Returns ``False`` if it did not exist."""

        async def _remove() -> bool:
            result = await self.db.execute(
                delete(CapTableInvestor).where(
                    CapTableInvestor.cap_table_id == cap_table_id,
                    CapTableInvestor.investor_id == investor_id,
                )
            )
            await self._commit("remove_link")
            return result.rowcount > 0

        return await self._execute_with_circuit_breaker(_remove)
