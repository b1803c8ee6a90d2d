"""
Core schemas - shared Pydantic models for API responses.
"""

from pydantic import BaseModel, Field, JsonValue

# Opaque entity snapshot: ordered field name -> JSON value (string, number,
# bool, null, nested object/array). The sync engine never inspects the schema.
Snapshot = dict[str, JsonValue]


class ErrorResponse(BaseModel):
    """Standard error response format."""

    detail: str = Field(..., description="Human-readable error message")

    model_config = {
        "json_schema_extra": {"example": {"detail": "Only FAILED items can be retried."}}
    }
