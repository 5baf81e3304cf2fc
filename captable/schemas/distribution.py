"""
Pydantic schemas for batch token distribution.
"""

from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

# Per-item outcome values
DISTRIBUTED = "distributed"
SKIPPED = "skipped"
FAILED = "failed"


class DistributionRequest(BaseModel):
    """Schema for ``POST /distributions``."""

    allocation_ids: List[UUID] = Field(..., description="Allocations to distribute, in order")


class DistributionItemResult(BaseModel):
    """
    Outcome for one allocation.

    ``status`` is ``distributed``, ``skipped`` (already distributed; counts
    as success) or ``failed`` (``error`` says why).
    """

    allocation_id: UUID
    subscription_id: Optional[UUID] = None
    tx_hash: Optional[str] = None
    success: bool
    status: str
    error: Optional[str] = None


class DistributionBatch(BaseModel):
    """
    Aggregate result.  ``distributed`` counts items newly distributed by
    this call; ``success`` is true when no item failed.
    """

    success: bool
    distributed: int = Field(..., ge=0)
    results: List[DistributionItemResult]
