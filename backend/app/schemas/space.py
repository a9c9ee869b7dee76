"""Space schemas.

A space is a tagged variant: a unit carries a unit number, a common area
carries its kind. The request payload is discriminated on ``space_type`` and
extra keys are rejected, so a unit with a ``common_area_type`` (or the
reverse) never reaches the service.
"""

from decimal import Decimal
from typing import Annotated, Literal, Optional, Union
from uuid import UUID

from pydantic import ConfigDict, Discriminator, Field

from app.models.enums import CommonAreaType, SpaceType
from app.schemas.base import BaseSchema, IDMixin, TimestampMixin, UpdateSchema


class _SpaceBase(BaseSchema):
    model_config = ConfigDict(
        from_attributes=True,
        str_strip_whitespace=True,
        extra="forbid",
    )

    floor: Optional[int] = Field(None, ge=-10, le=300)


class UnitSpaceCreate(_SpaceBase):
    space_type: Literal["unit"]
    unit_number: str = Field(..., min_length=1, max_length=20)
    bedrooms: Optional[int] = Field(None, ge=0, le=50)
    bathrooms: Optional[Decimal] = Field(None, ge=0, le=50, decimal_places=1)


class CommonAreaSpaceCreate(_SpaceBase):
    space_type: Literal["common_area"]
    common_area_type: CommonAreaType


SpaceCreate = Annotated[
    Union[UnitSpaceCreate, CommonAreaSpaceCreate],
    Discriminator("space_type"),
]


class SpaceUpdate(UpdateSchema):
    """Partial update; the merged row must still satisfy the discriminator."""

    model_config = ConfigDict(from_attributes=True, str_strip_whitespace=True, extra="forbid")

    not_null = frozenset({"space_type"})

    space_type: Optional[SpaceType] = None
    unit_number: Optional[str] = Field(None, min_length=1, max_length=20)
    common_area_type: Optional[CommonAreaType] = None
    floor: Optional[int] = Field(None, ge=-10, le=300)
    bedrooms: Optional[int] = Field(None, ge=0, le=50)
    bathrooms: Optional[Decimal] = Field(None, ge=0, le=50, decimal_places=1)


class SpaceResponse(BaseSchema, IDMixin, TimestampMixin):
    building_id: UUID
    space_type: SpaceType
    unit_number: Optional[str] = None
    common_area_type: Optional[CommonAreaType] = None
    floor: Optional[int] = None
    bedrooms: Optional[int] = None
    bathrooms: Optional[Decimal] = None
