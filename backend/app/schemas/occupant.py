"""Occupant schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import EmailStr, Field

from app.models.enums import OccupantType
from app.schemas.base import BaseSchema, IDMixin, PhoneE164, TimestampMixin, UpdateSchema
from app.schemas.user import UserResponse


class OccupantCreate(BaseSchema):
    """Add an occupant to a unit; a claim link is emailed to them."""

    occupant_type: OccupantType
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    phone: Optional[PhoneE164] = None


class OccupantUpdate(UpdateSchema):
    """Update an occupant.

    Changing the email of an unclaimed occupant, or setting
    ``resend_invite``, rotates the claim token and sends a new link.
    """

    not_null = frozenset({"occupant_type", "name", "email"})

    occupant_type: Optional[OccupantType] = None
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[PhoneE164] = None
    resend_invite: bool = False


class OccupantResponse(BaseSchema, IDMixin, TimestampMixin):
    space_id: UUID
    user_id: Optional[UUID] = None
    occupant_type: OccupantType
    name: str
    email: str
    phone: Optional[str] = None
    invite_sent_at: Optional[datetime] = None
    claimed_at: Optional[datetime] = None


class ClaimAccountRequest(BaseSchema):
    token: str = Field(..., min_length=16, max_length=256)


class ClaimAccountResponse(BaseSchema):
    occupant: OccupantResponse
    user: UserResponse
