"""
Pydantic schemas for CSV import results.
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class RowError(BaseModel):
    """A rejected CSV row.  ``row`` is the 1-based line number in the file."""

    row: int
    field: Optional[str] = None
    message: str


class ImportResult(BaseModel):
    """
    Outcome of a bulk import.  Imports are sequential and not atomic: rows
    listed under ``created`` stay created even when later rows fail.
    """

    total_rows: int = Field(..., ge=0)
    created: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    errors: List[RowError] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
