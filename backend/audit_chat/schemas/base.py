"""
Shared pydantic configuration for request and response payloads.
"""

from datetime import datetime
from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    # ORM rows validate directly; unknown keys are dropped; text is trimmed
    model_config = ConfigDict(
        from_attributes=True,
        extra="ignore",
        str_strip_whitespace=True,
        validate_assignment=True,
    )


class BaseResponseSchema(BaseSchema):
    """A stored row as returned by the API."""

    id: int
    created_at: datetime
    updated_at: datetime
