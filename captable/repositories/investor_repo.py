"""
Investor repository — data-access layer for the ``investors`` table.

Besides look-ups used for duplicate detection, it builds the eager-loaded
investor listings (subscriptions and their allocations) that feed the cap
table views and reports.  Relationships are never lazy-loaded under the
async session, so every listing states its loader options explicitly.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from captable.models.cap_table import CapTableInvestor
from captable.models.enums import KycStatus
from captable.models.investor import Investor
from captable.models.subscription import Subscription
from captable.repositories.base import BaseRepository


def _with_holdings(stmt):
    return stmt.options(
        selectinload(Investor.subscriptions).selectinload(Subscription.allocation)
    ).execution_options(populate_existing=True)


class InvestorRepository(BaseRepository[Investor]):
    """Concrete repository for :class:`Investor` entities."""

    async def get_by_email(self, email: str) -> Optional[Investor]:
        """Case-insensitive email look-up used for duplicate detection."""

        async def _get() -> Optional[Investor]:
            stmt = select(Investor).where(func.lower(Investor.email) == email.lower())
            result = await self.db.execute(stmt)
            return result.scalars().first()

        return await self._execute_with_circuit_breaker(_get)

    async def get_by_investor_id(self, investor_id: str) -> Optional[Investor]:
        """Look up an investor by its external identifier."""

        async def _get() -> Optional[Investor]:
            stmt = select(Investor).where(Investor.investor_id == investor_id)
            result = await self.db.execute(stmt)
            return result.scalars().first()

        return await self._execute_with_circuit_breaker(_get)

    async def find_by_name(
        self, name: str, cap_table_id: Optional[UUID] = None
    ) -> List[Investor]:
        """
        Investors whose name matches ``name`` case-insensitively.

        When ``cap_table_id`` is given the search is restricted to that cap
        table's members.
        """

        async def _find() -> List[Investor]:
            stmt = select(Investor).where(func.lower(Investor.name) == name.strip().lower())
            if cap_table_id is not None:
                stmt = stmt.join(
                    CapTableInvestor, CapTableInvestor.investor_id == Investor.id
                ).where(CapTableInvestor.cap_table_id == cap_table_id)
            result = await self.db.execute(stmt.order_by(Investor.created_at))
            return list(result.scalars().all())

        return await self._execute_with_circuit_breaker(_find)

    async def get_with_holdings(self, id: UUID) -> Optional[Investor]:
        """Single investor with subscriptions and allocations loaded."""

        async def _get() -> Optional[Investor]:
            stmt = _with_holdings(select(Investor).where(Investor.id == id))
            result = await self.db.execute(stmt)
            return result.scalars().first()

        return await self._execute_with_circuit_breaker(_get)

    async def list_with_holdings(self, skip: int = 0, limit: int = 100) -> List[Investor]:
        """Page of investors ordered by name, holdings loaded."""

        async def _list() -> List[Investor]:
            stmt = _with_holdings(
                select(Investor).order_by(Investor.name, Investor.id).offset(skip).limit(limit)
            )
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

        return await self._execute_with_circuit_breaker(_list)

    async def list_for_cap_table(self, cap_table_id: UUID) -> List[Investor]:
        """Members of a cap table, ordered by name, holdings loaded."""

        async def _list() -> List[Investor]:
            stmt = _with_holdings(
                select(Investor)
                .join(CapTableInvestor, CapTableInvestor.investor_id == Investor.id)
                .where(CapTableInvestor.cap_table_id == cap_table_id)
                .order_by(Investor.name, Investor.id)
            )
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

        return await self._execute_with_circuit_breaker(_list)

    async def expire_kyc(self, now: datetime) -> int:
        """
        Flip every ``Verified`` investor whose KYC expiry is before ``now``
        to ``Expired``.  Returns the number of investors changed.

        Investors already ``Expired`` are outside the scan, so a repeated
        call with no time passing changes nothing.
        """

        async def _expire() -> int:
            stmt = select(Investor).where(
                Investor.kyc_status == KycStatus.VERIFIED,
                Investor.kyc_expiry_date.is_not(None),  # type: ignore[union-attr]
                Investor.kyc_expiry_date < now,  # type: ignore[operator]
            )
            result = await self.db.execute(stmt)
            expired = list(result.scalars().all())
            if not expired:
                return 0
            for investor in expired:
                investor.kyc_status = KycStatus.EXPIRED
                investor.updated_at = now
            await self._commit("expire_kyc")
            return len(expired)

        return await self._execute_with_circuit_breaker(_expire)
