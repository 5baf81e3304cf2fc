"""
Cap table and cap table membership models.

A cap table belongs to one project.  Investors join cap tables through the
``cap_table_investors`` link table; removing a link never touches the
investor or its subscriptions.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Index
from sqlmodel import Field, SQLModel


class CapTable(SQLModel, table=True):
    """SQLModel table definition for ``cap_tables``."""

    __tablename__ = "cap_tables"  # type: ignore[assignment]

    # Covers: WHERE project_id = ? ORDER BY created_at
    __table_args__ = (
        Index("ix_cap_tables_project_created", "project_id", "created_at"),
        CheckConstraint("length(name) > 0", name="ck_cap_tables_name_not_empty"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    project_id: uuid.UUID = Field(
        foreign_key="projects.id",
        index=True,
        ondelete="CASCADE",
    )
    name: str = Field(max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
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

    def __repr__(self) -> str:
        return f"<CapTable id={self.id} project={self.project_id} name='{self.name}'>"


class CapTableInvestor(SQLModel, table=True):
    """Membership of an investor in a cap table (composite primary key)."""

    __tablename__ = "cap_table_investors"  # type: ignore[assignment]

    cap_table_id: uuid.UUID = Field(
        foreign_key="cap_tables.id",
        primary_key=True,
        ondelete="CASCADE",
    )
    investor_id: uuid.UUID = Field(
        foreign_key="investors.id",
        primary_key=True,
        index=True,
        ondelete="CASCADE",
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )
