"""
Common / shared Pydantic schemas used across multiple endpoints.

Declares the error envelopes so the OpenAPI document describes the error
contract as well as the happy path.
"""

from typing import List

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error envelope returned by all non-validation error handlers."""

    error: bool = Field(default=True, description="Always ``true`` for errors")
    message: str = Field(
        ...,
        description="Human-readable error description",
        examples=["Investor with id '3f2b…' not found"],
    )


class ValidationErrorDetail(BaseModel):
    """Single field-level validation failure."""

    field: str = Field(
        ...,
        description="Path to the invalid field",
        examples=["body -> wallet"],
    )
    message: str = Field(
        ...,
        description="Explanation of the validation failure",
        examples=["wallet must be 0x followed by 40 hex characters"],
    )


class ValidationErrorResponse(BaseModel):
    """
    Response body for 422 Unprocessable Entity.

    ``details`` lets a client show each message next to its form field.
    """

    error: bool = Field(default=True, description="Always ``true`` for errors")
    message: str = Field(default="Validation failed", description="Summary message")
    details: List[ValidationErrorDetail] = Field(..., description="Per-field validation failures")


class UnavailableResponse(ErrorResponse):
    """503 body; the ``Retry-After`` header is set when a wait time is known."""


class CountResponse(BaseModel):
    """Result of a sweep-style operation."""

    count: int = Field(..., ge=0)
    message: str
