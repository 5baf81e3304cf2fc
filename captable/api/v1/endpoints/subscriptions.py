"""
Subscription API endpoints and lifecycle transitions.

- GET    /subscriptions/{id}             — Subscription with its allocation
- PATCH  /subscriptions/{id}             — Update descriptive fields
- DELETE /subscriptions/{id}             — Delete (refused once distributed)
- POST   /subscriptions/{id}/confirm     — Pending → Confirmed
- POST   /subscriptions/{id}/allocation  — Confirmed → Allocated
- DELETE /subscriptions/{id}/allocation  — Allocated → Confirmed
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from captable.db.session import get_db
from captable.models.allocation import TokenAllocation
from captable.models.investor import Investor
from captable.models.subscription import Subscription
from captable.repositories.allocation_repo import AllocationRepository
from captable.repositories.investor_repo import InvestorRepository
from captable.repositories.subscription_repo import SubscriptionRepository
from captable.schemas.common import ErrorResponse, ValidationErrorResponse
from captable.schemas.subscription import AllocationCreate, SubscriptionUpdate, SubscriptionView
from captable.services.subscription_service import SubscriptionService

router = APIRouter()

_NOT_FOUND = {404: {"model": ErrorResponse, "description": "Subscription not found"}}
_CONFLICT = {409: {"model": ErrorResponse, "description": "Not allowed in the current state"}}


# ── Dependency injection ──


def _get_subscription_service(db: AsyncSession = Depends(get_db)) -> SubscriptionService:
    """Build a SubscriptionService wired to the current request's DB session."""
    return SubscriptionService(
        subscription_repo=SubscriptionRepository(Subscription, db),
        allocation_repo=AllocationRepository(TokenAllocation, db),
        investor_repo=InvestorRepository(Investor, db),
    )


# ── Endpoints ──


@router.get(
    "/{subscription_id}",
    response_model=SubscriptionView,
    summary="Get a subscription",
    responses=_NOT_FOUND,
)
async def get_subscription(
    subscription_id: UUID,
    service: SubscriptionService = Depends(_get_subscription_service),
) -> SubscriptionView:
    return await service.get_subscription(subscription_id)


@router.patch(
    "/{subscription_id}",
    response_model=SubscriptionView,
    summary="Update a subscription",
    description="Amount, currency, notes, date and code.  Status is changed via the transitions.",
    responses={
        **_NOT_FOUND,
        409: {"model": ErrorResponse, "description": "Subscription id already in use"},
        422: {"model": ValidationErrorResponse, "description": "Validation error"},
    },
)
async def update_subscription(
    subscription_id: UUID,
    subscription: SubscriptionUpdate,
    service: SubscriptionService = Depends(_get_subscription_service),
) -> SubscriptionView:
    return await service.update_subscription(subscription_id, subscription)


@router.delete(
    "/{subscription_id}",
    status_code=204,
    summary="Delete a subscription",
    description="Deletes the subscription and its allocation.  Distributed subscriptions are kept (409).",
    responses={**_NOT_FOUND, **_CONFLICT},
)
async def delete_subscription(
    subscription_id: UUID,
    service: SubscriptionService = Depends(_get_subscription_service),
) -> Response:
    await service.delete_subscription(subscription_id)
    return Response(status_code=204)


@router.post(
    "/{subscription_id}/confirm",
    response_model=SubscriptionView,
    summary="Confirm a subscription",
    description="Idempotent: confirming a confirmed subscription returns it unchanged.",
    responses={**_NOT_FOUND, **_CONFLICT},
)
async def confirm_subscription(
    subscription_id: UUID,
    service: SubscriptionService = Depends(_get_subscription_service),
) -> SubscriptionView:
    return await service.confirm_subscription(subscription_id)


@router.post(
    "/{subscription_id}/allocation",
    response_model=SubscriptionView,
    summary="Allocate tokens",
    description="Requires a confirmed subscription without an allocation.",
    responses={
        **_NOT_FOUND,
        **_CONFLICT,
        422: {"model": ValidationErrorResponse, "description": "Invalid token type or amount"},
    },
)
async def allocate_tokens(
    subscription_id: UUID,
    allocation: AllocationCreate,
    service: SubscriptionService = Depends(_get_subscription_service),
) -> SubscriptionView:
    return await service.allocate_tokens(
        subscription_id, allocation.token_type, allocation.token_amount
    )


@router.delete(
    "/{subscription_id}/allocation",
    response_model=SubscriptionView,
    summary="Remove a token allocation",
    description="Only undistributed allocations can be removed.",
    responses={**_NOT_FOUND, **_CONFLICT},
)
async def remove_allocation(
    subscription_id: UUID,
    service: SubscriptionService = Depends(_get_subscription_service),
) -> SubscriptionView:
    return await service.remove_allocation(subscription_id)
