"""
Token allocation model.

At most one allocation exists per subscription (unique FK).  Distribution
stamps ``distributed``, ``distribution_date`` and the transaction hash on
this row.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import CheckConstraint, DateTime
from sqlmodel import Field, Relationship, SQLModel

from captable.models.enums import TokenType

if TYPE_CHECKING:
    from captable.models.subscription import Subscription

TOKEN_AMOUNT_DIGITS = 30
TOKEN_AMOUNT_PLACES = 8


class TokenAllocation(SQLModel, table=True):
    """SQLModel table definition for ``token_allocations``."""

    __tablename__ = "token_allocations"  # type: ignore[assignment]

    __table_args__ = (
        CheckConstraint("token_amount > 0", name="ck_token_allocations_amount_positive"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    subscription_id: uuid.UUID = Field(
        foreign_key="subscriptions.id",
        unique=True,
        index=True,
        ondelete="CASCADE",
    )
    token_type: TokenType
    token_amount: Decimal = Field(
        max_digits=TOKEN_AMOUNT_DIGITS, decimal_places=TOKEN_AMOUNT_PLACES
    )
    distributed: bool = Field(default=False)
    distribution_date: Optional[datetime] = Field(
        default=None,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )
    distribution_tx_hash: Optional[str] = Field(default=None, max_length=66)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )

    subscription: Optional["Subscription"] = Relationship(back_populates="allocation")

    def __repr__(self) -> str:
        return (
            f"<TokenAllocation id={self.id} subscription={self.subscription_id} "
            f"{self.token_amount} {self.token_type.value} distributed={self.distributed}>"
        )
