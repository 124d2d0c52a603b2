"""
Strict Base Models for API Request/Response Validation

Request bodies reject unknown fields so client typos fail fast with a 422;
response bodies tolerate extra attributes coming from service objects.

Usage:
    class ItemCreate(StrictRequest):
        name: str

    class ItemResponse(StrictResponse):
        id: str
        name: str

Architecture:
    API Request → StrictRequest (extra="forbid") → Route Handler
    Service dataclass → StrictResponse (extra="ignore") → API Response
"""

from pydantic import BaseModel, ConfigDict


class StrictRequest(BaseModel):
    """
    Base model for API request bodies with strict validation.

    Features:
        - extra="forbid": Unknown fields raise 422 Unprocessable Entity
        - validate_default=True: Validates default values
        - str_strip_whitespace=True: Trims whitespace from strings
        - from_attributes=True: Allows conversion from objects
    """

    model_config = ConfigDict(
        extra="forbid",
        validate_default=True,
        str_strip_whitespace=True,
        from_attributes=True,
    )


class StrictResponse(BaseModel):
    """
    Base model for API response bodies.

    Features:
        - extra="ignore": Silently ignores extra attributes
        - validate_default=True: Validates default values
        - from_attributes=True: Allows dataclass/ORM conversion
    """

    model_config = ConfigDict(
        extra="ignore",
        validate_default=True,
        from_attributes=True,
    )

