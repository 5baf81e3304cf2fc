"""
Pydantic schemas for dashboard and token summaries.
"""

from decimal import Decimal
from typing import Dict

from pydantic import BaseModel, Field, field_serializer


class KycCounts(BaseModel):
    verified: int = 0
    pending: int = 0
    expired: int = 0
    not_started: int = 0


class TokenTypeSummary(BaseModel):
    """Per token type: confirmed fiat amount to mint and whether any is allocated."""

    to_mint: Decimal = Decimal("0")
    minted: bool = False

    @field_serializer("to_mint")
    @classmethod
    def serialize_decimal_as_number(cls, v: Decimal) -> float:
        return float(v)


class DashboardSummary(BaseModel):
    investor_count: int = Field(..., ge=0)
    subscription_count: int = Field(..., ge=0)
    total_allocated: Decimal
    total_distributed: Decimal
    distribution_progress: int = Field(..., ge=0, le=100, description="Percent, rounded half-up")
    kyc: KycCounts
    type_categories: Dict[str, int]
    token_types: Dict[str, TokenTypeSummary]

    @field_serializer("total_allocated", "total_distributed")
    @classmethod
    def serialize_decimal_as_number(cls, v: Decimal) -> float:
        return float(v)
