"""
Investor domain model.

Represents an investor persisted in the ``investors`` table.  Besides the
UUID row id every investor carries an external ``investor_id`` string
(shown to users and used in CSV files).
"""

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import CheckConstraint, DateTime
from sqlmodel import Field, Relationship, SQLModel

from captable.models.enums import AccreditationStatus, InvestorType, KycStatus

if TYPE_CHECKING:
    from captable.models.subscription import Subscription


class Investor(SQLModel, table=True):
    """
    SQLModel / SQLAlchemy table definition for investors.

    Constraints:
    - ``email`` and ``investor_id`` have unique indexes; duplicates are
      rejected at DB level and surfaced by the service as 409.
    - ``name`` is indexed for search and for matching subscription imports.
    """

    __tablename__ = "investors"  # type: ignore[assignment]

    __table_args__ = (
        CheckConstraint("length(name) > 0", name="ck_investors_name_not_empty"),
        CheckConstraint("length(email) > 0", name="ck_investors_email_not_empty"),
        CheckConstraint("length(wallet) = 42", name="ck_investors_wallet_length"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    investor_id: str = Field(unique=True, index=True, max_length=64)
    name: str = Field(index=True, max_length=255)
    email: str = Field(unique=True, index=True, max_length=320)
    investor_type: InvestorType
    kyc_status: KycStatus = Field(default=KycStatus.PENDING)
    wallet: str = Field(max_length=42)
    kyc_expiry_date: Optional[datetime] = Field(
        default=None,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
        index=True,  # scanned by the KYC expiry sweep
    )
    country: Optional[str] = Field(default=None, max_length=100)
    accreditation_status: Optional[AccreditationStatus] = None
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
        index=True,
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )

    # ── Relationships ──
    # Never lazy-loaded: listing queries use selectinload explicitly.
    subscriptions: List["Subscription"] = Relationship(back_populates="investor")

    def __repr__(self) -> str:
        return f"<Investor id={self.id} name='{self.name}' type={self.investor_type.value}>"
