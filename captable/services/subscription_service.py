"""
Subscription service — subscriptions, token allocations and distribution.

Every lifecycle change goes through :mod:`captable.services.lifecycle`:
the stored row and allocation are turned into a state variant, the
transition function computes the next state (or raises), and the result is
written back in a single commit.

``distribute_tokens`` is the one batch operation.  It walks the ids in
order, commits each item on its own and reports per-item outcomes; a failed
item never undoes or blocks the others.  Nothing here retries a write.
"""

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from captable.core.events import DELETE, INSERT, UPDATE, change_feed
from captable.core.exceptions import (
    AppException,
    ConflictException,
    NotFoundException,
    ValidationException,
)
from captable.core.resilience import CircuitBreakerError
from captable.models.allocation import TokenAllocation
from captable.models.enums import SubscriptionStatus
from captable.models.subscription import Subscription
from captable.repositories.allocation_repo import AllocationRepository
from captable.repositories.investor_repo import InvestorRepository
from captable.repositories.subscription_repo import SubscriptionRepository
from captable.schemas.distribution import (
    DISTRIBUTED,
    FAILED,
    SKIPPED,
    DistributionBatch,
    DistributionItemResult,
)
from captable.schemas.subscription import SubscriptionCreate, SubscriptionUpdate, SubscriptionView
from captable.services import lifecycle
from captable.services.reporting import percent

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]

# Fields that may not be cleared through a partial update
_REQUIRED_FIELDS = {"subscription_id", "fiat_amount", "currency", "subscription_date"}


class SubscriptionService:
    """Encapsulates subscription CRUD and lifecycle transitions."""

    def __init__(
        self,
        subscription_repo: SubscriptionRepository,
        allocation_repo: AllocationRepository,
        investor_repo: InvestorRepository,
    ):
        self._repo = subscription_repo
        self._allocation_repo = allocation_repo
        self._investor_repo = investor_repo

    # ── Internal helpers ──

    async def _load(self, subscription_id: UUID):
        subscription = await self._repo.get(subscription_id)
        if subscription is None:
            raise NotFoundException("Subscription", subscription_id)
        allocation = await self._allocation_repo.get_by_subscription(subscription.id)
        return subscription, allocation

    async def _generate_code(self) -> str:
        """``SUB-<epoch ms>``, bumped by a millisecond until unused."""
        millis = int(time.time() * 1000)
        while await self._repo.get_by_code(f"SUB-{millis}") is not None:
            millis += 1
        return f"SUB-{millis}"

    async def _rollback(self) -> None:
        await self._repo.db.rollback()

    # ── Queries ──

    async def get_subscription(self, subscription_id: UUID) -> SubscriptionView:
        subscription, allocation = await self._load(subscription_id)
        return SubscriptionView.from_record(subscription, allocation)

    # ── Commands ──

    async def create_subscription(
        self, investor_id: UUID, subscription_in: SubscriptionCreate
    ) -> SubscriptionView:
        """
        Record a new subscription for an investor.

        Raises :class:`NotFoundException` (investor missing) or
        :class:`ConflictException` (subscription code taken).
        """
        if await self._investor_repo.get(investor_id) is None:
            raise NotFoundException("Investor", investor_id)

        code = subscription_in.subscription_id
        if code is None:
            code = await self._generate_code()
        elif await self._repo.get_by_code(code) is not None:
            raise ConflictException(f"Subscription '{code}' already exists")

        subscription = Subscription(
            subscription_id=code,
            investor_id=investor_id,
            fiat_amount=subscription_in.fiat_amount,
            currency=subscription_in.currency,
            notes=subscription_in.notes,
            status=(
                SubscriptionStatus.CONFIRMED
                if subscription_in.confirmed
                else SubscriptionStatus.PENDING
            ),
        )
        if subscription_in.subscription_date is not None:
            subscription.subscription_date = subscription_in.subscription_date

        try:
            created = await self._repo.create(subscription)
        except IntegrityError as exc:
            await self._rollback()
            logger.warning("IntegrityError creating subscription %s: %s", code, exc)
            raise ConflictException(f"Subscription '{code}' could not be created")
        change_feed.emit("subscriptions", INSERT, created.id)
        logger.info(
            "Created subscription %s for investor %s (%s %s)",
            created.subscription_id,
            investor_id,
            created.fiat_amount,
            created.currency.value,
        )
        return SubscriptionView.from_record(created)

    async def update_subscription(
        self, subscription_id: UUID, subscription_in: SubscriptionUpdate
    ) -> SubscriptionView:
        """Merge descriptive fields.  Lifecycle status is never patched here."""
        subscription, allocation = await self._load(subscription_id)

        changes = subscription_in.model_dump(exclude_unset=True)
        for name in _REQUIRED_FIELDS:
            if name in changes and changes[name] is None:
                del changes[name]

        new_code = changes.get("subscription_id")
        if new_code and new_code != subscription.subscription_id:
            if await self._repo.get_by_code(new_code) is not None:
                raise ConflictException(f"Subscription '{new_code}' already exists")

        for key, value in changes.items():
            setattr(subscription, key, value)
        subscription.updated_at = datetime.now(timezone.utc)

        try:
            updated = await self._repo.update(subscription)
        except IntegrityError as exc:
            await self._rollback()
            logger.warning("IntegrityError updating subscription %s: %s", subscription_id, exc)
            raise ConflictException("Subscription update conflicts with an existing subscription")
        change_feed.emit("subscriptions", UPDATE, updated.id)
        return SubscriptionView.from_record(updated, allocation)

    async def confirm_subscription(self, subscription_id: UUID) -> SubscriptionView:
        """Pending → Confirmed.  Confirming again is a no-op."""
        subscription, allocation = await self._load(subscription_id)
        state = lifecycle.state_from_record(subscription, allocation)
        new_state = lifecycle.confirm(state)
        if new_state is state:
            return SubscriptionView.from_record(subscription, allocation)

        subscription.status = new_state.status
        subscription.updated_at = datetime.now(timezone.utc)
        updated = await self._repo.update(subscription)
        change_feed.emit("subscriptions", UPDATE, updated.id)
        logger.info("Confirmed subscription %s", updated.subscription_id)
        return SubscriptionView.from_record(updated, allocation)

    async def allocate_tokens(
        self, subscription_id: UUID, token_type: object, token_amount: object
    ) -> SubscriptionView:
        """
        Confirmed → Allocated: create the allocation row and move the status
        in one commit.
        """
        subscription, allocation = await self._load(subscription_id)
        state = lifecycle.state_from_record(subscription, allocation)
        new_state = lifecycle.allocate(state, token_type, token_amount, uuid.uuid4())

        allocation = TokenAllocation(
            id=new_state.allocation_id,
            subscription_id=subscription.id,
            token_type=new_state.token_type,
            token_amount=new_state.amount,
        )
        subscription.status = new_state.status
        subscription.updated_at = datetime.now(timezone.utc)
        try:
            await self._repo.save_all(allocation, subscription)
        except IntegrityError as exc:
            await self._rollback()
            logger.warning("IntegrityError allocating subscription %s: %s", subscription_id, exc)
            raise ConflictException("Subscription already has a token allocation")
        change_feed.emit("token_allocations", INSERT, allocation.id)
        change_feed.emit("subscriptions", UPDATE, subscription.id)
        logger.info(
            "Allocated %s %s to subscription %s",
            allocation.token_amount,
            allocation.token_type.value,
            subscription.subscription_id,
        )
        return SubscriptionView.from_record(subscription, allocation)

    async def remove_allocation(self, subscription_id: UUID) -> SubscriptionView:
        """Allocated → Confirmed.  The allocation row is deleted, not archived."""
        subscription, allocation = await self._load(subscription_id)
        state = lifecycle.state_from_record(subscription, allocation)
        new_state = lifecycle.remove_allocation(state)

        subscription.status = new_state.status
        subscription.updated_at = datetime.now(timezone.utc)
        await self._repo.save_all(subscription, deleted=[allocation])
        change_feed.emit("token_allocations", DELETE, allocation.id)
        change_feed.emit("subscriptions", UPDATE, subscription.id)
        logger.info("Removed allocation %s from subscription %s", allocation.id, subscription.subscription_id)
        return SubscriptionView.from_record(subscription)

    async def delete_subscription(self, subscription_id: UUID) -> None:
        """Delete a subscription and its allocation.  Refused once distributed."""
        subscription, allocation = await self._load(subscription_id)
        lifecycle.ensure_deletable(lifecycle.state_from_record(subscription, allocation))

        await self._repo.delete_with_allocation(subscription.id)
        if allocation is not None:
            change_feed.emit("token_allocations", DELETE, allocation.id)
        change_feed.emit("subscriptions", DELETE, subscription.id)
        logger.info("Deleted subscription %s", subscription.subscription_id)

    # ── Distribution ──

    async def distribute_tokens(
        self,
        allocation_ids: Sequence[UUID],
        progress: Optional[ProgressCallback] = None,
    ) -> DistributionBatch:
        """
        Distribute each allocation in order.

        Per item: missing → failed; already distributed → skipped (counts as
        success, not as newly distributed); wrong state → failed; database
        error → rolled back, failed.  Per-item failures never raise.
        ``progress`` receives the completed percentage after each item.
        """
        if not allocation_ids:
            raise ValidationException("allocation_ids", "At least one allocation id is required")

        total = len(allocation_ids)
        results: List[DistributionItemResult] = []
        for index, allocation_id in enumerate(allocation_ids, start=1):
            results.append(await self._distribute_one(allocation_id))
            if progress is not None:
                progress(percent(index, total))

        distributed = sum(1 for r in results if r.status == DISTRIBUTED)
        failed = sum(1 for r in results if not r.success)
        logger.info(
            "Distribution batch: %d distributed, %d skipped, %d failed",
            distributed,
            total - distributed - failed,
            failed,
        )
        return DistributionBatch(success=failed == 0, distributed=distributed, results=results)

    async def _distribute_one(self, allocation_id: UUID) -> DistributionItemResult:
        subscription_id: Optional[UUID] = None
        try:
            allocation = await self._allocation_repo.get(allocation_id)
            if allocation is None:
                raise NotFoundException("Allocation", allocation_id)
            subscription_id = allocation.subscription_id
            if allocation.distributed:
                return DistributionItemResult(
                    allocation_id=allocation_id,
                    subscription_id=subscription_id,
                    tx_hash=allocation.distribution_tx_hash,
                    success=True,
                    status=SKIPPED,
                )

            subscription = await self._repo.get(allocation.subscription_id)
            if subscription is None:
                raise NotFoundException("Subscription", allocation.subscription_id)
            state = lifecycle.state_from_record(subscription, allocation)
            now = datetime.now(timezone.utc)
            new_state = lifecycle.distribute(state, lifecycle.generate_tx_hash(), now)

            allocation.distributed = True
            allocation.distribution_date = new_state.distributed_at
            allocation.distribution_tx_hash = new_state.tx_hash
            subscription.status = new_state.status
            subscription.updated_at = now
            await self._repo.save_all(allocation, subscription)
        except AppException as exc:
            logger.warning("Distribution of allocation %s failed: %s", allocation_id, exc.message)
            return DistributionItemResult(
                allocation_id=allocation_id,
                subscription_id=subscription_id,
                success=False,
                status=FAILED,
                error=exc.message,
            )
        except (SQLAlchemyError, CircuitBreakerError) as exc:
            try:
                await self._rollback()
            except SQLAlchemyError as rollback_exc:
                logger.error("Rollback after allocation %s failed: %s", allocation_id, rollback_exc)
            logger.warning("Distribution of allocation %s failed: %s", allocation_id, exc)
            return DistributionItemResult(
                allocation_id=allocation_id,
                subscription_id=subscription_id,
                success=False,
                status=FAILED,
                error="Database unavailable; allocation left unchanged",
            )

        change_feed.emit("token_allocations", UPDATE, allocation_id)
        change_feed.emit("subscriptions", UPDATE, subscription_id)
        return DistributionItemResult(
            allocation_id=allocation_id,
            subscription_id=subscription_id,
            tx_hash=new_state.tx_hash,
            success=True,
            status=DISTRIBUTED,
        )
