"""
Cap table API endpoints.

- GET    /cap-tables/{id}                          — Retrieve a cap table
- PUT    /cap-tables/{id}                          — Update a cap table
- DELETE /cap-tables/{id}                          — Delete a cap table (never its investors)
- GET    /cap-tables/{id}/investors                — Members with holdings, filterable
- POST   /cap-tables/{id}/investors                — Add an existing investor
- DELETE /cap-tables/{id}/investors/{investor_id}  — Remove an investor from the cap table
- GET    /cap-tables/{id}/summary                  — Dashboard aggregates
- GET    /cap-tables/{id}/token-summary            — To-mint amounts per token type
- GET    /cap-tables/{id}/export.csv               — CSV export
"""

from datetime import date
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from captable.api.v1.responses import csv_response
from captable.db.session import get_db
from captable.models.cap_table import CapTable
from captable.models.investor import Investor
from captable.models.project import Project
from captable.repositories.cap_table_repo import CapTableRepository
from captable.repositories.investor_repo import InvestorRepository
from captable.repositories.project_repo import ProjectRepository
from captable.schemas.common import ErrorResponse, ValidationErrorResponse
from captable.schemas.investor import InvestorView
from captable.schemas.project import (
    CapTableDeleted,
    CapTableMemberAdd,
    CapTableResponse,
    CapTableUpdate,
)
from captable.schemas.reporting import DashboardSummary, TokenTypeSummary
from captable.services import csv_io, reporting
from captable.services.cap_table_service import CapTableService
from captable.services.investor_service import InvestorService

router = APIRouter()


# ── Dependency injection ──


def _get_cap_table_service(db: AsyncSession = Depends(get_db)) -> CapTableService:
    return CapTableService(
        project_repo=ProjectRepository(Project, db),
        cap_table_repo=CapTableRepository(CapTable, db),
        investor_repo=InvestorRepository(Investor, db),
    )


def _get_investor_service(db: AsyncSession = Depends(get_db)) -> InvestorService:
    return InvestorService(InvestorRepository(Investor, db), CapTableRepository(CapTable, db))


# ── Cap tables ──


@router.get(
    "/{cap_table_id}",
    response_model=CapTableResponse,
    summary="Get a cap table",
    responses={404: {"model": ErrorResponse, "description": "Cap table not found"}},
)
async def get_cap_table(
    cap_table_id: UUID,
    service: CapTableService = Depends(_get_cap_table_service),
) -> CapTableResponse:
    return await service.get_cap_table(cap_table_id)


@router.put(
    "/{cap_table_id}",
    response_model=CapTableResponse,
    summary="Update a cap table",
    responses={
        404: {"model": ErrorResponse, "description": "Cap table not found"},
        422: {"model": ValidationErrorResponse, "description": "Validation error"},
    },
)
async def update_cap_table(
    cap_table_id: UUID,
    cap_table: CapTableUpdate,
    service: CapTableService = Depends(_get_cap_table_service),
) -> CapTableResponse:
    return await service.update_cap_table(cap_table_id, cap_table)


@router.delete(
    "/{cap_table_id}",
    response_model=CapTableDeleted,
    summary="Delete a cap table",
    description=(
        "Deletes the cap table and its memberships.  Investors and their "
        "subscriptions are kept.  The last cap table of a project cannot be "
        "deleted (409)."
    ),
    responses={
        404: {"model": ErrorResponse, "description": "Cap table not found"},
        409: {"model": ErrorResponse, "description": "Last cap table in the project"},
    },
)
async def delete_cap_table(
    cap_table_id: UUID,
    service: CapTableService = Depends(_get_cap_table_service),
) -> CapTableDeleted:
    selected = await service.delete_cap_table(cap_table_id)
    return CapTableDeleted(deleted_id=cap_table_id, selected_cap_table_id=selected)


# ── Membership ──


@router.get(
    "/{cap_table_id}/investors",
    response_model=List[InvestorView],
    summary="List cap table investors",
    description=(
        "Members with their subscriptions and allocations.  ``search`` matches "
        "name, email, wallet or token type; the list filters match when any "
        "value matches.  Status filters accept Confirmed / Unconfirmed and "
        "Allocated / Unallocated / Distributed / Undistributed."
    ),
    responses={404: {"model": ErrorResponse, "description": "Cap table not found"}},
)
async def list_cap_table_investors(
    cap_table_id: UUID,
    search: Optional[str] = Query(None, description="Free-text search"),
    investor_type: Optional[List[str]] = Query(None, alias="type"),
    kyc_status: Optional[List[str]] = Query(None),
    subscription_status: Optional[List[str]] = Query(None),
    token_status: Optional[List[str]] = Query(None),
    service: InvestorService = Depends(_get_investor_service),
) -> List[InvestorView]:
    investors = await service.list_cap_table_investors(cap_table_id)
    return reporting.filter_investors(
        investors,
        search=search,
        types=investor_type,
        kyc_statuses=kyc_status,
        subscription_statuses=subscription_status,
        token_statuses=token_status,
    )


@router.post(
    "/{cap_table_id}/investors",
    status_code=204,
    summary="Add an investor to a cap table",
    responses={
        404: {"model": ErrorResponse, "description": "Cap table or investor not found"},
        409: {"model": ErrorResponse, "description": "Investor already a member"},
    },
)
async def add_cap_table_investor(
    cap_table_id: UUID,
    member: CapTableMemberAdd,
    service: CapTableService = Depends(_get_cap_table_service),
) -> Response:
    await service.add_investor_to_cap_table(cap_table_id, member.investor_id)
    return Response(status_code=204)


@router.delete(
    "/{cap_table_id}/investors/{investor_id}",
    status_code=204,
    summary="Remove an investor from a cap table",
    description="Only the membership is removed; the investor and its subscriptions are kept.",
    responses={
        404: {"model": ErrorResponse, "description": "Cap table or membership not found"},
    },
)
async def remove_cap_table_investor(
    cap_table_id: UUID,
    investor_id: UUID,
    service: CapTableService = Depends(_get_cap_table_service),
) -> Response:
    await service.remove_investor_from_cap_table(cap_table_id, investor_id)
    return Response(status_code=204)


# ── Reports ──


@router.get(
    "/{cap_table_id}/summary",
    response_model=DashboardSummary,
    summary="Cap table dashboard",
    responses={404: {"model": ErrorResponse, "description": "Cap table not found"}},
)
async def get_summary(
    cap_table_id: UUID,
    service: InvestorService = Depends(_get_investor_service),
) -> DashboardSummary:
    investors = await service.list_cap_table_investors(cap_table_id)
    return reporting.dashboard_summary(investors)


@router.get(
    "/{cap_table_id}/token-summary",
    response_model=Dict[str, TokenTypeSummary],
    summary="Tokens to mint per token type",
    description="Restricted to ``investor_ids`` when given, otherwise every member.",
    responses={404: {"model": ErrorResponse, "description": "Cap table not found"}},
)
async def get_token_summary(
    cap_table_id: UUID,
    investor_ids: Optional[List[UUID]] = Query(None),
    service: InvestorService = Depends(_get_investor_service),
) -> Dict[str, TokenTypeSummary]:
    investors = await service.list_cap_table_investors(cap_table_id)
    return reporting.token_type_summary(investors, investor_ids)


@router.get(
    "/{cap_table_id}/export.csv",
    response_class=StreamingResponse,
    summary="Export a cap table as CSV",
    responses={404: {"model": ErrorResponse, "description": "Cap table not found"}},
)
async def export_cap_table(
    cap_table_id: UUID,
    include_kyc: bool = Query(True),
    include_wallets: bool = Query(True),
    include_transactions: bool = Query(True),
    service: InvestorService = Depends(_get_investor_service),
) -> StreamingResponse:
    investors = await service.list_cap_table_investors(cap_table_id)
    content = csv_io.export_cap_table_csv(
        investors,
        include_kyc=include_kyc,
        include_wallets=include_wallets,
        include_transactions=include_transactions,
    )
    return csv_response(content, f"cap-table-{date.today().isoformat()}.csv")
