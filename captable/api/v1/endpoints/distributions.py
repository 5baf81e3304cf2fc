"""
Distribution API endpoint.

- POST /distributions  — Distribute a batch of token allocations
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from captable.db.session import get_db
from captable.models.allocation import TokenAllocation
from captable.models.investor import Investor
from captable.models.subscription import Subscription
from captable.repositories.allocation_repo import AllocationRepository
from captable.repositories.investor_repo import InvestorRepository
from captable.repositories.subscription_repo import SubscriptionRepository
from captable.schemas.common import ValidationErrorResponse
from captable.schemas.distribution import DistributionBatch, DistributionRequest
from captable.services.subscription_service import SubscriptionService

router = APIRouter()


def _get_subscription_service(db: AsyncSession = Depends(get_db)) -> SubscriptionService:
    return SubscriptionService(
        subscription_repo=SubscriptionRepository(Subscription, db),
        allocation_repo=AllocationRepository(TokenAllocation, db),
        investor_repo=InvestorRepository(Investor, db),
    )


@router.post(
    "",
    response_model=DistributionBatch,
    summary="Distribute tokens",
    description=(
        "Processes the allocations in order, committing each one separately.  "
        "The batch is not atomic: per-item outcomes are reported in "
        "``results`` and a failed item does not affect the others.  Already "
        "distributed allocations are reported as ``skipped``."
    ),
    responses={
        422: {"model": ValidationErrorResponse, "description": "Empty allocation list"},
    },
)
async def distribute_tokens(
    request: DistributionRequest,
    service: SubscriptionService = Depends(_get_subscription_service),
) -> DistributionBatch:
    return await service.distribute_tokens(request.allocation_ids)
