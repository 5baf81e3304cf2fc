"""
Pydantic schemas for projects, cap tables and cap table membership.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _strip_name(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    if not v.strip():
        raise ValueError("name must not be blank")
    return v.strip()


class _NamedBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("name")
    @classmethod
    def validate_name_not_blank(cls, v: str) -> str:
        return _strip_name(v)


class _NamedUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("name")
    @classmethod
    def validate_name_not_blank(cls, v: Optional[str]) -> Optional[str]:
        return _strip_name(v)


# ── Projects ──


class ProjectCreate(_NamedBase):
    """Schema for ``POST /projects``.  A default cap table is created with it."""


class ProjectUpdate(_NamedUpdate):
    """Schema for ``PUT /projects/{project_id}``."""


class ProjectResponse(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ProjectDeleted(BaseModel):
    """Returned after a project is deleted: the project a client should select next."""

    deleted_id: UUID
    selected_project_id: UUID


# ── Cap tables ──


class CapTableCreate(_NamedBase):
    """Schema for ``POST /projects/{project_id}/cap-tables``."""


class CapTableUpdate(_NamedUpdate):
    """Schema for ``PUT /cap-tables/{cap_table_id}``."""


class CapTableResponse(BaseModel):
    id: UUID
    project_id: UUID
    name: str
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CapTableDeleted(BaseModel):
    """Returned after a cap table is deleted: the cap table a client should select next."""

    deleted_id: UUID
    selected_cap_table_id: UUID


class CapTableMemberAdd(BaseModel):
    """Schema for ``POST /cap-tables/{cap_table_id}/investors``."""

    investor_id: UUID = Field(..., description="Row id of the investor to add")
