"""
Schema base classes.

Records read from ORM rows inherit BaseResponseSchema. Services map rows
into records before handing them to the calculator or returning them, so
nothing outside a service holds a live ORM instance.

Input schemas strip surrounding whitespace from strings; SKUs, categories
and ref codes are matched exactly after that.
"""

from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """
    Base for records and responses built from ORM models.

    Usage:
        tier = TierRecord.model_validate(orm_tier)
    """
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """Base for create payloads; unknown fields are ignored."""
    model_config = ConfigDict(
        extra='ignore',
        str_strip_whitespace=True,
    )


class BaseUpdateSchema(BaseModel):
    """Base for partial updates; only fields that were sent are applied."""
    model_config = ConfigDict(
        extra='ignore',
        str_strip_whitespace=True,
    )
