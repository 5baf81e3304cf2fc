"""
Pydantic schemas for subscriptions, allocations and their combined view.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from captable.models.allocation import TokenAllocation
from captable.models.enums import Currency, SubscriptionStatus, TokenType
from captable.models.subscription import Subscription


class SubscriptionCreate(BaseModel):
    """
    Schema for ``POST /investors/{investor_id}/subscriptions``.

    ``subscription_id`` is generated (``SUB-<epoch ms>``) when omitted.
    """

    subscription_id: Optional[str] = Field(
        default=None,
        min_length=1,
        max_length=64,
        description="External subscription code",
        examples=["SUB-1718000000000"],
    )
    fiat_amount: Decimal = Field(
        ...,
        gt=0,
        max_digits=20,
        decimal_places=2,
        description="Subscribed fiat amount (must be positive)",
        examples=[10000.00],
    )
    currency: Currency = Field(default=Currency.USD)
    notes: Optional[str] = Field(default=None, max_length=2000)
    subscription_date: Optional[date] = Field(
        default=None, description="Defaults to today", examples=["2024-03-15"]
    )
    confirmed: bool = Field(default=False, description="Create directly in Confirmed state")

    @field_validator("subscription_id")
    @classmethod
    def strip_code(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("subscription_id must not be blank")
        return v


class SubscriptionUpdate(BaseModel):
    """
    Schema for ``PATCH /subscriptions/{id}``.

    Only descriptive fields; lifecycle status changes go through the
    dedicated transition endpoints.
    """

    subscription_id: Optional[str] = Field(default=None, min_length=1, max_length=64)
    fiat_amount: Optional[Decimal] = Field(default=None, gt=0, max_digits=20, decimal_places=2)
    currency: Optional[Currency] = None
    notes: Optional[str] = Field(default=None, max_length=2000)
    subscription_date: Optional[date] = None


class AllocationCreate(BaseModel):
    """Schema for ``POST /subscriptions/{id}/allocation``."""

    token_type: TokenType = Field(..., examples=["ERC-20"])
    token_amount: Decimal = Field(..., description="Token quantity", examples=[1000])


class SubscriptionView(BaseModel):
    """
    A subscription merged with its allocation.

    ``confirmed`` / ``allocated`` / ``distributed`` are derived from
    ``status`` and never stored.
    """

    id: UUID
    subscription_id: str
    investor_id: UUID
    fiat_amount: Decimal
    currency: Currency
    status: SubscriptionStatus
    confirmed: bool
    allocated: bool
    distributed: bool
    token_type: Optional[TokenType] = None
    token_allocation: Optional[Decimal] = None
    token_allocation_id: Optional[UUID] = None
    distribution_date: Optional[datetime] = None
    distribution_tx_hash: Optional[str] = None
    notes: Optional[str] = None
    subscription_date: date

    model_config = ConfigDict(from_attributes=True)

    @field_serializer("fiat_amount", "token_allocation")
    @classmethod
    def serialize_decimal_as_number(cls, v: Optional[Decimal]) -> Optional[float]:
        """Emit amounts as JSON numbers rather than strings."""
        return None if v is None else float(v)

    @classmethod
    def from_record(
        cls, subscription: Subscription, allocation: Optional[TokenAllocation] = None
    ) -> "SubscriptionView":
        status = subscription.status
        return cls(
            id=subscription.id,
            subscription_id=subscription.subscription_id,
            investor_id=subscription.investor_id,
            fiat_amount=subscription.fiat_amount,
            currency=subscription.currency,
            status=status,
            confirmed=status != SubscriptionStatus.PENDING,
            allocated=status in (SubscriptionStatus.ALLOCATED, SubscriptionStatus.DISTRIBUTED),
            distributed=status == SubscriptionStatus.DISTRIBUTED,
            token_type=allocation.token_type if allocation else None,
            token_allocation=allocation.token_amount if allocation else None,
            token_allocation_id=allocation.id if allocation else None,
            distribution_date=allocation.distribution_date if allocation else None,
            distribution_tx_hash=allocation.distribution_tx_hash if allocation else None,
            notes=subscription.notes,
            subscription_date=subscription.subscription_date,
        )
