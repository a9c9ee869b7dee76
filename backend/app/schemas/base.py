"""Base schema utilities."""

from datetime import datetime
from typing import Annotated, ClassVar, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        str_strip_whitespace=True,
        validate_assignment=True,
    )


class UpdateSchema(BaseSchema):
    """Partial update payload.

    Every field may be omitted, but fields named in ``not_null`` back
    NOT NULL columns and may not be sent as an explicit ``null``.
    """

    not_null: ClassVar[frozenset[str]] = frozenset()

    @model_validator(mode="after")
    def reject_cleared_required_fields(self):
        cleared = sorted(
            name for name in self.not_null
            if name in self.model_fields_set and getattr(self, name) is None
        )
        if cleared:
            raise ValueError(f"{', '.join(cleared)} cannot be null")
        return self


class TimestampMixin(BaseModel):
    """Mixin for created_at/updated_at timestamps."""

    created_at: datetime
    updated_at: Optional[datetime] = None


class IDMixin(BaseModel):
    """Mixin for UUID id field."""

    id: UUID


# E.164, e.g. +15551234567
PhoneE164 = Annotated[str, Field(pattern=r"^\+[1-9]\d{1,14}$", max_length=16)]
