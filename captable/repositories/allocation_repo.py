"""
Token allocation repository — data-access layer for ``token_allocations``.
"""

from typing import Optional
from uuid import UUID

from sqlalchemy.future import select

from captable.models.allocation import TokenAllocation
from captable.repositories.base import BaseRepository


class AllocationRepository(BaseRepository[TokenAllocation]):
    """Concrete repository for :class:`TokenAllocation` entities."""

    async def get_by_subscription(self, subscription_id: UUID) -> Optional[TokenAllocation]:
        """The allocation attached to a subscription, or ``None``."""

        async def _get() -> Optional[TokenAllocation]:
            stmt = select(TokenAllocation).where(
                TokenAllocation.subscription_id == subscription_id
            )
            result = await self.db.execute(stmt)
            return result.scalars().first()

        return await self._execute_with_circuit_breaker(_get)
