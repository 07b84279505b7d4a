"""
Base schemas shared by request and response models.
"""

from datetime import datetime
from typing import Annotated, Generic, List, TypeVar

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from ..core.time_utils import ensure_utc

T = TypeVar("T")


class StandardizedModel(BaseModel):
    """Base model with standardized JSON encoding"""

    model_config = ConfigDict(use_enum_values=True, populate_by_name=True, from_attributes=True)


class StrictRequestModel(BaseModel):
    """Request body base: unknown fields are rejected."""

    model_config = ConfigDict(extra="forbid", validate_default=True)


class PaginatedResponse(BaseModel, Generic[T]):
    """Standard paginated response for list endpoints."""

    items: List[T] = Field(description="List of items")
    total: int = Field(description="Total number of items")
    limit: int = Field(ge=1, le=500)
    offset: int = Field(ge=0)


# Naive datetimes are read as UTC; aware ones are converted to UTC
UTCDateTime = Annotated[datetime, AfterValidator(ensure_utc)]
