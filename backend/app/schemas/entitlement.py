"""Building entitlement schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from app.schemas.base import BaseSchema, IDMixin


class EntitlementCreate(BaseSchema):
    user_id: UUID
    building_id: UUID


class EntitlementResponse(BaseSchema, IDMixin):
    user_id: UUID
    building_id: UUID
    granted_by_user_id: Optional[UUID] = None
    created_at: datetime


class RevokeResponse(BaseSchema):
    entitlement_id: UUID
    deleted: bool
