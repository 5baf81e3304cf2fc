"""
Investor API endpoints.

- GET    /investors                              — List investors with holdings
- POST   /investors                              — Create an investor
- GET    /investors/{investor_id}                — Investor with subscriptions
- PATCH  /investors/{investor_id}                — Partial update
- POST   /investors/{investor_id}/subscriptions  — Record a subscription
"""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from captable.db.session import get_db
from captable.models.allocation import TokenAllocation
from captable.models.cap_table import CapTable
from captable.models.investor import Investor
from captable.models.subscription import Subscription
from captable.repositories.allocation_repo import AllocationRepository
from captable.repositories.cap_table_repo import CapTableRepository
from captable.repositories.investor_repo import InvestorRepository
from captable.repositories.subscription_repo import SubscriptionRepository
from captable.schemas.common import ErrorResponse, ValidationErrorResponse
from captable.schemas.investor import InvestorCreate, InvestorResponse, InvestorUpdate, InvestorView
from captable.schemas.subscription import SubscriptionCreate, SubscriptionView
from captable.services.investor_service import InvestorService
from captable.services.subscription_service import SubscriptionService

router = APIRouter()


# ── Dependency injection ──


def _get_investor_service(db: AsyncSession = Depends(get_db)) -> InvestorService:
    """Build an InvestorService wired to the current request's DB session."""
    return InvestorService(InvestorRepository(Investor, db), CapTableRepository(CapTable, db))


def _get_subscription_service(db: AsyncSession = Depends(get_db)) -> SubscriptionService:
    return SubscriptionService(
        subscription_repo=SubscriptionRepository(Subscription, db),
        allocation_repo=AllocationRepository(TokenAllocation, db),
        investor_repo=InvestorRepository(Investor, db),
    )


# ── Endpoints ──


@router.get(
    "",
    response_model=List[InvestorView],
    summary="List all investors",
    description=(
        "Returns a paginated list of investors with their subscriptions.  Use "
        "``skip`` and ``limit`` query parameters to page through large result sets."
    ),
)
async def list_investors(
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(100, ge=1, le=1000, description="Max records to return"),
    service: InvestorService = Depends(_get_investor_service),
) -> List[InvestorView]:
    return await service.list_investors(skip=skip, limit=limit)


@router.post(
    "",
    response_model=InvestorResponse,
    status_code=201,
    summary="Create a new investor",
    description=(
        "Registers a new investor.  Email and investor id must be unique; a "
        "409 Conflict is returned otherwise.  ``cap_table_id`` also adds the "
        "investor to that cap table."
    ),
    responses={
        404: {"model": ErrorResponse, "description": "Cap table not found"},
        409: {"model": ErrorResponse, "description": "Duplicate email or investor id"},
        422: {"model": ValidationErrorResponse, "description": "Validation error"},
    },
)
async def create_investor(
    investor: InvestorCreate,
    service: InvestorService = Depends(_get_investor_service),
) -> InvestorResponse:
    return await service.create_investor(investor)


@router.get(
    "/{investor_id}",
    response_model=InvestorView,
    summary="Get an investor",
    responses={404: {"model": ErrorResponse, "description": "Investor not found"}},
)
async def get_investor(
    investor_id: UUID,
    service: InvestorService = Depends(_get_investor_service),
) -> InvestorView:
    return await service.get_investor(investor_id)


@router.patch(
    "/{investor_id}",
    response_model=InvestorResponse,
    summary="Update an investor",
    description=(
        "Merges the supplied fields.  Setting ``kyc_status`` to Verified "
        "without an expiry date stamps one; any other status clears it."
    ),
    responses={
        404: {"model": ErrorResponse, "description": "Investor not found"},
        409: {"model": ErrorResponse, "description": "Email already in use"},
        422: {"model": ValidationErrorResponse, "description": "Validation error"},
    },
)
async def update_investor(
    investor_id: UUID,
    investor: InvestorUpdate,
    service: InvestorService = Depends(_get_investor_service),
) -> InvestorResponse:
    return await service.update_investor(investor_id, investor)


@router.post(
    "/{investor_id}/subscriptions",
    response_model=SubscriptionView,
    status_code=201,
    summary="Record a subscription",
    responses={
        404: {"model": ErrorResponse, "description": "Investor not found"},
        409: {"model": ErrorResponse, "description": "Subscription id already in use"},
        422: {"model": ValidationErrorResponse, "description": "Validation error"},
    },
)
async def create_subscription(
    investor_id: UUID,
    subscription: SubscriptionCreate,
    service: SubscriptionService = Depends(_get_subscription_service),
) -> SubscriptionView:
    return await service.create_subscription(investor_id, subscription)
