"""
KYC maintenance endpoint.

- POST /kyc/expire  — Mark Verified investors with a past expiry date as Expired
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from captable.db.session import get_db
from captable.models.cap_table import CapTable
from captable.models.investor import Investor
from captable.repositories.cap_table_repo import CapTableRepository
from captable.repositories.investor_repo import InvestorRepository
from captable.schemas.common import CountResponse
from captable.services.investor_service import InvestorService

router = APIRouter()


def _get_investor_service(db: AsyncSession = Depends(get_db)) -> InvestorService:
    return InvestorService(InvestorRepository(Investor, db), CapTableRepository(CapTable, db))


@router.post(
    "/expire",
    response_model=CountResponse,
    summary="Run the KYC expiry sweep",
    description="Safe to repeat: a second run with nothing newly expired returns 0.",
)
async def expire_kyc(
    service: InvestorService = Depends(_get_investor_service),
) -> CountResponse:
    count = await service.check_kyc_expirations()
    return CountResponse(count=count, message=f"{count} investor(s) marked as Expired")
