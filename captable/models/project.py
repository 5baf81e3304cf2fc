"""
Project domain model.

A project groups one or more cap tables.  At least one project always
exists; the bootstrap creates a default one on an empty database.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime
from sqlmodel import Field, SQLModel


class Project(SQLModel, table=True):
    """SQLModel table definition for ``projects``."""

    __tablename__ = "projects"  # type: ignore[assignment]

    __table_args__ = (
        CheckConstraint("length(name) > 0", name="ck_projects_name_not_empty"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    name: str = Field(index=True, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
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

    def __repr__(self) -> str:
        return f"<Project id={self.id} name='{self.name}'>"
