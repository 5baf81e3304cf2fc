"""
CSV import and template endpoints.

- POST /imports/investors               — Bulk-create investors from a CSV file
- POST /imports/subscriptions           — Bulk-create subscriptions from a CSV file
- GET  /templates/investors.csv         — Investor import template
- GET  /templates/subscriptions.csv     — Subscription import template
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Query, UploadFile
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from captable.api.v1.responses import csv_response
from captable.core.exceptions import ValidationException
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
from captable.schemas.imports import ImportResult
from captable.services import csv_io
from captable.services.import_service import ImportService
from captable.services.investor_service import InvestorService
from captable.services.subscription_service import SubscriptionService

router = APIRouter()

# Uploads larger than this are rejected before parsing
MAX_UPLOAD_BYTES = 10 * 1024 * 1024

_RESPONSES = {
    404: {"model": ErrorResponse, "description": "Cap table not found"},
    422: {"model": ValidationErrorResponse, "description": "Unreadable file or missing headers"},
}


# ── Dependency injection ──


def _get_import_service(db: AsyncSession = Depends(get_db)) -> ImportService:
    """
    Build an ImportService wired to the current request's DB session.

    Every row goes through the regular investor and subscription services.
    """
    investor_repo = InvestorRepository(Investor, db)
    cap_table_repo = CapTableRepository(CapTable, db)
    return ImportService(
        investor_service=InvestorService(investor_repo, cap_table_repo),
        subscription_service=SubscriptionService(
            subscription_repo=SubscriptionRepository(Subscription, db),
            allocation_repo=AllocationRepository(TokenAllocation, db),
            investor_repo=investor_repo,
        ),
        investor_repo=investor_repo,
        cap_table_repo=cap_table_repo,
    )


async def _read_text(file: UploadFile) -> str:
    content = await file.read()
    if len(content) > MAX_UPLOAD_BYTES:
        raise ValidationException("file", "File too large. Maximum size is 10MB")
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ValidationException("file", "File must be UTF-8 encoded CSV")


# ── Imports ──


@router.post(
    "/imports/investors",
    response_model=ImportResult,
    summary="Import investors from CSV",
    description=(
        "Required columns: ``name``, ``email``, ``wallet``.  Optional: ``type``, "
        "``country``, ``investorid``, ``kyc status``.  Tab, semicolon and "
        "comma delimiters are detected.  Rows are created one by one; invalid "
        "rows are reported and existing emails are skipped."
    ),
    responses=_RESPONSES,
)
async def import_investors(
    file: UploadFile = File(...),
    cap_table_id: Optional[UUID] = Query(None, description="Add imported investors to this cap table"),
    service: ImportService = Depends(_get_import_service),
) -> ImportResult:
    return await service.import_investors(await _read_text(file), cap_table_id)


@router.post(
    "/imports/subscriptions",
    response_model=ImportResult,
    summary="Import subscriptions from CSV",
    description=(
        "Required columns: ``investor name``, ``fiat amount``, ``currency``, "
        "``subscription id``.  Investors are matched by name, within "
        "``cap_table_id`` when given."
    ),
    responses=_RESPONSES,
)
async def import_subscriptions(
    file: UploadFile = File(...),
    cap_table_id: Optional[UUID] = Query(None, description="Match investors within this cap table"),
    service: ImportService = Depends(_get_import_service),
) -> ImportResult:
    return await service.import_subscriptions(await _read_text(file), cap_table_id)


# ── Templates ──


@router.get(
    "/templates/investors.csv",
    response_class=StreamingResponse,
    summary="Investor import template",
)
async def investor_template() -> StreamingResponse:
    return csv_response(csv_io.investor_template(), "investor-template.csv")


@router.get(
    "/templates/subscriptions.csv",
    response_class=StreamingResponse,
    summary="Subscription import template",
)
async def subscription_template() -> StreamingResponse:
    return csv_response(csv_io.subscription_template(), "subscription-template.csv")
