"""Audit logging service."""

from typing import Any, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit import AuditLog
from app.models.enums import AuditAction


class AuditService:
    """Service for creating audit log entries."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        action: AuditAction,
        resource_type: str,
        resource_id: UUID,
        company_id: Optional[UUID] = None,
        user_id: Optional[UUID] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> AuditLog:
        """Create an audit log entry."""
        entry = AuditLog(
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            company_id=company_id,
            user_id=user_id,
            details=details or {},
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def log_invitation(
        self,
        action: AuditAction,
        invitation_id: UUID,
        company_id: UUID,
        user_id: Optional[UUID],
        email: str,
        **extra: Any,
    ) -> AuditLog:
        """Log an invitation lifecycle event."""
        return await self.log(
            action=action,
            resource_type="invitation",
            resource_id=invitation_id,
            company_id=company_id,
            user_id=user_id,
            details={"email": email, **extra},
        )

    async def log_claim(
        self,
        action: AuditAction,
        occupant_id: UUID,
        company_id: UUID,
        user_id: Optional[UUID],
        email: str,
    ) -> AuditLog:
        """Log an occupant claim lifecycle event."""
        return await self.log(
            action=action,
            resource_type="occupant",
            resource_id=occupant_id,
            company_id=company_id,
            user_id=user_id,
            details={"email": email},
        )

    async def list_entries(
        self,
        company_id: Optional[UUID] = None,
        action: Optional[AuditAction] = None,
        limit: int = 100,
    ) -> list[AuditLog]:
        """Most recent entries first."""
        query = select(AuditLog)
        if company_id:
            query = query.where(AuditLog.company_id == company_id)
        if action:
            query = query.where(AuditLog.action == action)
        query = query.order_by(AuditLog.created_at.desc()).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())
