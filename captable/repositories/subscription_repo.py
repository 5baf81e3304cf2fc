"""
Subscription repository — data-access layer for ``subscriptions``.
"""

from typing import List, Optional
from uuid import UUID

from sqlalchemy import delete
from sqlalchemy.future import select

from captable.models.allocation import TokenAllocation
from captable.models.subscription import Subscription
from captable.repositories.base import BaseRepository


class SubscriptionRepository(BaseRepository[Subscription]):
    """Concrete repository for :class:`Subscription` entities."""

    async def get_by_code(self, code: str) -> Optional[Subscription]:
        """Look up a subscription by its external ``subscription_id`` code."""

        async def _get() -> Optional[Subscription]:
            stmt = select(Subscription).where(Subscription.subscription_id == code)
            result = await self.db.execute(stmt)
            return result.scalars().first()

        return await self._execute_with_circuit_breaker(_get)

    async def list_by_investor(self, investor_id: UUID) -> List[Subscription]:
        """Subscriptions of one investor, oldest first."""

        async def _list() -> List[Subscription]:
            stmt = (
                select(Subscription)
                .where(Subscription.investor_id == investor_id)
                .order_by(Subscription.subscription_date, Subscription.created_at)
            )
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

        return await self._execute_with_circuit_breaker(_list)

    async def delete_with_allocation(self, subscription_id: UUID) -> None:
        """Delete a subscription and its allocation (if any) in one commit."""

        async def _delete() -> None:
            await self.db.execute(
                delete(TokenAllocation).where(TokenAllocation.subscription_id == subscription_id)
            )
            await self.db.execute(delete(Subscription).where(Subscription.id == subscription_id))
            await self._commit("delete_with_allocation")

        await self._execute_with_circuit_breaker(_delete)
