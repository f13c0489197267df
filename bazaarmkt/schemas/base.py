"""
Base schema classes.

RULE: response schemas that read from ORM models inherit from
BaseResponseSchema. Decimal amounts serialize as strings.
"""
from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """Base class for response schemas built from ORM objects."""
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class BaseUpdateSchema(BaseModel):
    """
    Base class for update/patch schemas.

    All fields are optional; only fields the client sent are applied.
    """
    model_config = ConfigDict(
        extra='forbid',
    )
