"""
Subscription domain model.

A fiat commitment from one investor.  Its lifecycle position lives in the
single ``status`` column; the token allocation (once made) is a separate
row in ``token_allocations``.
"""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import CheckConstraint, DateTime, Index
from sqlmodel import Field, Relationship, SQLModel

from captable.models.enums import Currency, SubscriptionStatus

if TYPE_CHECKING:
    from captable.models.allocation import TokenAllocation
    from captable.models.investor import Investor


class Subscription(SQLModel, table=True):
    """
    SQLModel / SQLAlchemy table definition for subscriptions.

    - ``subscription_id`` is the external code (``SUB-<epoch ms>`` when
      generated) and is unique.
    - ``fiat_amount`` uses DECIMAL(20,2) for cent-precise amounts.
    - Deleting an investor with subscriptions is refused (RESTRICT).
    """

    __tablename__ = "subscriptions"  # type: ignore[assignment]

    # Covers: WHERE investor_id = ? ORDER BY subscription_date
    __table_args__ = (
        Index("ix_subscriptions_investor_date", "investor_id", "subscription_date"),
        CheckConstraint("fiat_amount > 0", name="ck_subscriptions_amount_positive"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    subscription_id: str = Field(unique=True, index=True, max_length=64)
    investor_id: uuid.UUID = Field(
        foreign_key="investors.id",
        index=True,
        ondelete="RESTRICT",
    )
    fiat_amount: Decimal = Field(max_digits=20, decimal_places=2)
    currency: Currency = Field(default=Currency.USD)
    status: SubscriptionStatus = Field(default=SubscriptionStatus.PENDING, index=True)
    notes: Optional[str] = Field(default=None, max_length=2000)
    subscription_date: date = Field(default_factory=date.today)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )

    # ── Relationships ──
    investor: Optional["Investor"] = Relationship(back_populates="subscriptions")
    allocation: Optional["TokenAllocation"] = Relationship(
        back_populates="subscription",
        sa_relationship_kwargs={"uselist": False},
    )

    def __repr__(self) -> str:
        return (
            f"<Subscription id={self.id} code={self.subscription_id} "
            f"investor={self.investor_id} {self.fiat_amount} {self.currency.value} "
            f"status={self.status.value}>"
        )
