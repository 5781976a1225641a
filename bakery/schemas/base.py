"""
Base Schema Classes for Pydantic Models

RULE: All response schemas that read from ORM models inherit from
BaseResponseSchema; all request bodies inherit from BaseCreateSchema.
"""

from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """
    Base class for response schemas that read from ORM models.

    Usage:
        class OrderResponse(BaseResponseSchema):
            id: UUID
            order_number: str
    """
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """
    Base class for request bodies.

    The mobile client sends loosely typed JSON ("3" for 3, "cash" for
    CASH); these schemas coerce it into strict records before any service
    sees it. Unknown fields are ignored for forward compatibility.
    """
    model_config = ConfigDict(
        extra='ignore',
        str_strip_whitespace=True,
    )
