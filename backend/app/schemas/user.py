"""User schemas."""

from typing import Optional
from uuid import UUID

from pydantic import Field

from app.models.enums import UserRole
from app.schemas.base import BaseSchema, IDMixin, PhoneE164, TimestampMixin, UpdateSchema


class UserResponse(BaseSchema, IDMixin, TimestampMixin):
    email: str
    full_name: str
    phone: Optional[str] = None
    role: UserRole
    company_id: Optional[UUID] = None
    is_active: bool


class MeResponse(UserResponse):
    """Current user plus the facts authorization is based on."""

    entitled_building_ids: list[UUID] = []
    resident_space_ids: list[UUID] = []


class UserUpdate(UpdateSchema):
    """Update a user. Self-service updates may only touch name and phone."""

    not_null = frozenset({"full_name", "role", "is_active"})

    full_name: Optional[str] = Field(None, min_length=1, max_length=255)
    phone: Optional[PhoneE164] = None
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None
