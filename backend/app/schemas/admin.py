"""Platform administration schemas: audit log and notification jobs."""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from app.models.enums import AuditAction, JobStatus
from app.schemas.base import BaseSchema, IDMixin


class AuditLogResponse(BaseSchema, IDMixin):
    company_id: Optional[UUID] = None
    user_id: Optional[UUID] = None
    action: AuditAction
    resource_type: str
    resource_id: UUID
    details: Optional[dict[str, Any]] = None
    created_at: datetime


class NotificationJobResponse(BaseSchema, IDMixin):
    type: str
    status: JobStatus
    attempts: int
    max_attempts: int
    last_error: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class DispatchSweepResponse(BaseSchema):
    """Jobs swept by status reached."""

    dispatched: int
    by_status: dict[JobStatus, int]
