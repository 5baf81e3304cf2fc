"""
Pydantic schemas for Investor API request / response serialisation.

``InvestorCreate`` is also the row validator for CSV imports, so a file
row and an API payload are held to the same rules.
"""

import re
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from captable.models.enums import AccreditationStatus, InvestorType, KycStatus
from captable.models.investor import Investor
from captable.schemas.subscription import SubscriptionView

WALLET_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")


def _check_wallet(v: str) -> str:
    v = v.strip()
    if not WALLET_PATTERN.match(v):
        raise ValueError("wallet must be 0x followed by 40 hex characters")
    return v


def _check_name(v: str) -> str:
    if not v.strip():
        raise ValueError("name must not be blank")
    return v.strip()


class InvestorBase(BaseModel):
    """Fields common to investor creation payloads."""

    name: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Full name of the investor or institution",
        examples=["John Doe"],
    )
    email: EmailStr = Field(
        ...,
        description="Contact email address (unique across investors)",
        examples=["john.doe@example.com"],
    )
    investor_type: InvestorType = Field(
        default=InvestorType.INDIVIDUAL,
        description="Investor classification (case-insensitive)",
    )
    wallet: str = Field(
        ...,
        description="Wallet address: 0x followed by 40 hex characters",
        examples=["0x742d35Cc6634C0532925a3b844Bc454e4438f44e"],
    )
    kyc_status: KycStatus = Field(default=KycStatus.PENDING)
    kyc_expiry_date: Optional[datetime] = None
    country: Optional[str] = Field(default=None, max_length=100)
    accreditation_status: Optional[AccreditationStatus] = None

    @field_validator("name")
    @classmethod
    def validate_name_not_blank(cls, v: str) -> str:
        return _check_name(v)

    @field_validator("wallet")
    @classmethod
    def validate_wallet(cls, v: str) -> str:
        return _check_wallet(v)

    @field_validator("investor_type", mode="before")
    @classmethod
    def default_blank_type(cls, v: object) -> object:
        """Blank type (common in spreadsheets) means ``Individual``."""
        if v is None or (isinstance(v, str) and not v.strip()):
            return InvestorType.INDIVIDUAL
        return v

    @field_validator("country")
    @classmethod
    def blank_country_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip()


class InvestorCreate(InvestorBase):
    """
    Schema for ``POST /investors``.

    ``investor_id`` is generated when omitted.  ``cap_table_id`` adds the
    new investor to that cap table.
    """

    investor_id: Optional[str] = Field(default=None, max_length=64)
    cap_table_id: Optional[UUID] = None

    @field_validator("investor_id")
    @classmethod
    def blank_investor_id_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip()


class InvestorUpdate(BaseModel):
    """
    Schema for ``PATCH /investors/{investor_id}``.  Every field is optional;
    only supplied fields are merged.
    """

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    investor_type: Optional[InvestorType] = None
    wallet: Optional[str] = None
    kyc_status: Optional[KycStatus] = None
    kyc_expiry_date: Optional[datetime] = None
    country: Optional[str] = Field(default=None, max_length=100)
    accreditation_status: Optional[AccreditationStatus] = None

    @field_validator("name")
    @classmethod
    def validate_name_not_blank(cls, v: Optional[str]) -> Optional[str]:
        return None if v is None else _check_name(v)

    @field_validator("wallet")
    @classmethod
    def validate_wallet(cls, v: Optional[str]) -> Optional[str]:
        return None if v is None else _check_wallet(v)


class InvestorResponse(BaseModel):
    """Schema returned by investor create / update endpoints."""

    id: UUID
    investor_id: str
    name: str
    email: str
    investor_type: InvestorType
    wallet: str
    kyc_status: KycStatus
    kyc_expiry_date: Optional[datetime] = None
    country: Optional[str] = None
    accreditation_status: Optional[AccreditationStatus] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class InvestorView(InvestorResponse):
    """An investor with all subscriptions (and their allocations) attached."""

    subscriptions: List[SubscriptionView] = Field(default_factory=list)

    @classmethod
    def from_record(cls, investor: Investor) -> "InvestorView":
        """Build from an investor loaded with subscriptions and allocations."""
        base = InvestorResponse.model_validate(investor)
        subscriptions = sorted(
            investor.subscriptions,
            key=lambda s: (s.subscription_date, s.created_at),
        )
        return cls(
            **base.model_dump(),
            subscriptions=[SubscriptionView.from_record(s, s.allocation) for s in subscriptions],
        )
