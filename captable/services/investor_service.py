"""
Investor service — business logic for investors and the KYC expiry sweep.

Raises domain exceptions from ``captable.core.exceptions`` so the layer
stays framework-agnostic.

Caching:
    Listings are cached under ``investors:`` and ``cap_tables:`` keys.
    Writes publish a change event; the cache drops affected keys on receipt.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError

from captable.core.cache import CAP_TABLES_PREFIX, INVESTORS_PREFIX, cache
from captable.core.config import settings
from captable.core.events import INSERT, UPDATE, change_feed
from captable.core.exceptions import ConflictException, NotFoundException
from captable.models.enums import KycStatus
from captable.models.investor import Investor
from captable.repositories.cap_table_repo import CapTableRepository
from captable.repositories.investor_repo import InvestorRepository
from captable.schemas.investor import InvestorCreate, InvestorUpdate, InvestorView

logger = logging.getLogger(__name__)

# Columns that may not be cleared through a partial update
_REQUIRED_FIELDS = {"name", "email", "investor_type", "wallet", "kyc_status"}


def kyc_expiry_for(
    status: KycStatus, explicit: Optional[datetime], now: Optional[datetime] = None
) -> Optional[datetime]:
    """
    Expiry to store alongside ``status``.

    An explicit date always wins.  Otherwise ``Verified`` gets
    ``now + KYC_VALIDITY_DAYS`` and every other status gets none.
    """
    if explicit is not None:
        return explicit
    if status == KycStatus.VERIFIED:
        now = now or datetime.now(timezone.utc)
        return now + timedelta(days=settings.KYC_VALIDITY_DAYS)
    return None


class InvestorService:
    """Encapsulates CRUD + business rules for :class:`Investor`."""

    CACHE_PREFIX = INVESTORS_PREFIX

    def __init__(self, investor_repo: InvestorRepository, cap_table_repo: CapTableRepository):
        self._repo = investor_repo
        self._cap_table_repo = cap_table_repo

    # ── Queries ──

    async def list_investors(self, skip: int = 0, limit: int = 100) -> List[InvestorView]:
        """Page of investors with their subscriptions (cache-backed)."""
        cache_key = f"{self.CACHE_PREFIX}list:{skip}:{limit}"
        cached = cache.get(cache_key)
        if cached is not None:
            return cached

        investors = await self._repo.list_with_holdings(skip=skip, limit=limit)
        views = [InvestorView.from_record(inv) for inv in investors]
        cache.set(cache_key, views)
        return views

    async def get_investor(self, investor_id: UUID) -> InvestorView:
        """
        Single investor with subscriptions and allocations.

        Raises :class:`NotFoundException` if the investor does not exist.
        """
        investor = await self._repo.get_with_holdings(investor_id)
        if investor is None:
            raise NotFoundException("Investor", investor_id)
        return InvestorView.from_record(investor)

    async def list_cap_table_investors(self, cap_table_id: UUID) -> List[InvestorView]:
        """Members of a cap table with their holdings (cache-backed)."""
        cache_key = f"{CAP_TABLES_PREFIX}{cap_table_id}:investors"
        cached = cache.get(cache_key)
        if cached is not None:
            return cached

        if await self._cap_table_repo.get(cap_table_id) is None:
            raise NotFoundException("Cap table", cap_table_id)
        investors = await self._repo.list_for_cap_table(cap_table_id)
        views = [InvestorView.from_record(inv) for inv in investors]
        cache.set(cache_key, views)
        return views

    # ── Commands ──

    async def create_investor(self, investor_in: InvestorCreate) -> Investor:
        """
        Create an investor, optionally adding it to a cap table.

        Raises :class:`ConflictException` when the email or external
        investor id is already taken, :class:`NotFoundException` when the
        target cap table does not exist.
        """
        cap_table_id = investor_in.cap_table_id
        if cap_table_id is not None and await self._cap_table_repo.get(cap_table_id) is None:
            raise NotFoundException("Cap table", cap_table_id)

        if await self._repo.get_by_email(investor_in.email):
            raise ConflictException(f"An investor with email '{investor_in.email}' already exists")

        external_id = investor_in.investor_id or str(uuid.uuid4())
        if investor_in.investor_id and await self._repo.get_by_investor_id(external_id):
            raise ConflictException(f"An investor with investor id '{external_id}' already exists")

        fields = investor_in.model_dump(exclude={"investor_id", "cap_table_id"})
        fields["kyc_expiry_date"] = kyc_expiry_for(
            investor_in.kyc_status, investor_in.kyc_expiry_date
        )
        investor = Investor(investor_id=external_id, **fields)
        try:
            created = await self._repo.create(investor)
        except IntegrityError as exc:
            await self._repo.db.rollback()
            logger.warning("IntegrityError creating investor %s: %s", investor_in.email, exc)
            raise ConflictException(
                "An investor with this email or investor id already exists"
            )
        change_feed.emit("investors", INSERT, created.id)

        if cap_table_id is not None:
            await self._cap_table_repo.add_link(cap_table_id, created.id)
            change_feed.emit("cap_table_investors", INSERT, cap_table_id)

        logger.info("Created investor %s (%s)", created.investor_id, created.name)
        return created

    async def update_investor(self, investor_id: UUID, investor_in: InvestorUpdate) -> Investor:
        """
        Merge the supplied fields into an existing investor.

        A KYC status change stamps or clears the expiry date (see
        :func:`kyc_expiry_for`).  Raises :class:`NotFoundException` or
        :class:`ConflictException` (email taken).
        """
        investor = await self._repo.get(investor_id)
        if investor is None:
            raise NotFoundException("Investor", investor_id)

        changes = investor_in.model_dump(exclude_unset=True)
        for name in _REQUIRED_FIELDS:
            if name in changes and changes[name] is None:
                del changes[name]

        new_email = changes.get("email")
        if new_email and new_email.lower() != investor.email.lower():
            if await self._repo.get_by_email(new_email):
                raise ConflictException(f"An investor with email '{new_email}' already exists")

        now = datetime.now(timezone.utc)
        if "kyc_status" in changes:
            changes["kyc_expiry_date"] = kyc_expiry_for(
                changes["kyc_status"], changes.get("kyc_expiry_date"), now
            )

        for key, value in changes.items():
            setattr(investor, key, value)
        investor.updated_at = now

        try:
            updated = await self._repo.update(investor)
        except IntegrityError as exc:
            await self._repo.db.rollback()
            logger.warning("IntegrityError updating investor %s: %s", investor_id, exc)
            raise ConflictException("Investor update conflicts with an existing investor")
        change_feed.emit("investors", UPDATE, updated.id)
        logger.info("Updated investor %s (%s)", updated.investor_id, ", ".join(sorted(changes)))
        return updated

    async def check_kyc_expirations(self, now: Optional[datetime] = None) -> int:
        """
        Flip Verified investors whose KYC has expired to Expired.

        Returns the number changed.  Safe to call repeatedly.
        """
        count = await self._repo.expire_kyc(now or datetime.now(timezone.utc))
        if count:
            change_feed.emit("investors", UPDATE)
        logger.info("KYC expiry sweep: %d investor(s) expired", count)
        return count
