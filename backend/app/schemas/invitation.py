"""Invitation schemas."""

from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import EmailStr, Field, computed_field

from app.models.enums import InvitationRole
from app.schemas.base import BaseSchema, IDMixin, TimestampMixin
from app.schemas.user import UserResponse


class InvitationCreate(BaseSchema):
    """Invite someone into a company. company_id defaults to the caller's company."""

    company_id: Optional[UUID] = None
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=255)
    role: InvitationRole


class InvitationResend(BaseSchema):
    """Rotate the invitation link, optionally correcting the invitee."""

    email: Optional[EmailStr] = None
    name: Optional[str] = Field(None, min_length=1, max_length=255)


class InvitationResponse(BaseSchema, IDMixin, TimestampMixin):
    company_id: UUID
    email: str
    name: str
    role: InvitationRole
    invited_by_user_id: Optional[UUID] = None
    expires_at: datetime
    accepted_at: Optional[datetime] = None

    @computed_field
    @property
    def status(self) -> Literal["pending", "accepted", "expired"]:
        if self.accepted_at is not None:
            return "accepted"
        if self.expires_at <= datetime.utcnow():
            return "expired"
        return "pending"


class AcceptInvitationRequest(BaseSchema):
    token: str = Field(..., min_length=16, max_length=256)


class AcceptInvitationResponse(BaseSchema):
    user: UserResponse
    invitation: InvitationResponse
