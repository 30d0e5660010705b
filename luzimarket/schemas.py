"""
schemas.py: Cross-cutting Pydantic v2 contracts.

Defines:
  - CamelModel  (base for every JSON contract; the storefront speaks camelCase)
  - ErrorDetail, ErrorBody, ErrorResponse  (error envelope used by main.py handlers)
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Serializes as camelCase, accepts either camelCase or snake_case on input."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Error response models; used by main.py exception handlers
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    """Single field-level validation or business-rule error."""
    model_config = ConfigDict(extra="forbid")

    field: Optional[str] = None   # Dot-notation field path, e.g. "deliveryZoneId"
    issue: str


class ErrorBody(BaseModel):
    model_config = ConfigDict(extra="forbid")

    code: str                                      # UNAUTHORIZED, INVALID_SELECTION, etc.
    message: str
    details: List[ErrorDetail] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """
    Standard error response format for all Luzimarket endpoints.

    Structure: {"error": {"code": "...", "message": "...", "details": [...]}}
    """
    model_config = ConfigDict(extra="forbid")

    error: ErrorBody
