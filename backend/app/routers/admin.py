"""Platform administration router: audit log and notification jobs."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.errors import Conflict, NotFound
from app.core.security import get_caller_context
from app.models.enums import AuditAction, JobStatus
from app.schemas.admin import AuditLogResponse, DispatchSweepResponse, NotificationJobResponse
from app.schemas.envelope import ApiResponse, ok
from app.services.access import require
from app.services.audit import AuditService
from app.services.identity import CallerContext
from app.services.jobs import JobsService, has_secrets
from app.services.notifications import TOKEN_JOB_TYPES, NotificationDispatcher, get_dispatcher
from app.services.policy import Action, Resource, ResourceType

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/audit-log", response_model=ApiResponse[List[AuditLogResponse]])
async def list_audit_log(
    company_id: Optional[UUID] = None,
    action: Optional[AuditAction] = None,
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    """Most recent audit entries (platform administrators only)."""
    require(ctx, Action.READ, Resource(type=ResourceType.AUDIT_LOG, company_id=company_id))
    entries = await AuditService(db).list_entries(company_id=company_id, action=action, limit=limit)
    return ok([AuditLogResponse.model_validate(e) for e in entries])


@router.get("/notification-jobs", response_model=ApiResponse[List[NotificationJobResponse]])
async def list_notification_jobs(
    status: Optional[JobStatus] = None,
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    require(ctx, Action.READ, Resource(type=ResourceType.NOTIFICATION_JOB))
    jobs = await JobsService(db).list_jobs(status=status, limit=limit)
    return ok([NotificationJobResponse.model_validate(j) for j in jobs])


@router.post("/notification-jobs/{job_id}/retry", response_model=ApiResponse[NotificationJobResponse])
async def retry_notification_job(
    job_id: UUID,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Reset a job's attempts and deliver it now.

    Fails with DELIVERY_FAILED (502) when every attempt fails. Dead invite
    and claim jobs no longer hold their link and must be resent instead.
    """
    require(ctx, Action.UPDATE, Resource(type=ResourceType.NOTIFICATION_JOB, id=job_id))
    jobs = JobsService(db)
    job = await jobs.get(job_id)
    if job is None:
        raise NotFound("Notification job not found")
    if job.status in (JobStatus.COMPLETED, JobStatus.PROCESSING):
        raise Conflict(f"Job is {job.status.value} and cannot be retried")
    if job.type in TOKEN_JOB_TYPES and not has_secrets(job.payload):
        raise Conflict("The link in this job was discarded; resend the invitation or claim instead")

    await jobs.reset_for_retry(job_id)
    await AuditService(db).log(
        action=AuditAction.NOTIFICATION_RETRIED,
        resource_type="notification_job",
        resource_id=job_id,
        user_id=ctx.user_id,
        details={"type": job.type, "previous_status": job.status.value},
    )
    await db.commit()

    await dispatcher.dispatch(job_id, raise_on_failure=True)
    job = await jobs.get(job_id)
    return ok(NotificationJobResponse.model_validate(job))


@router.post("/notification-jobs/dispatch-due", response_model=ApiResponse[DispatchSweepResponse])
async def dispatch_due_notification_jobs(
    limit: int = Query(50, ge=1, le=500),
    ctx: CallerContext = Depends(get_caller_context),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Deliver pending jobs that were never handed to a background task."""
    require(ctx, Action.UPDATE, Resource(type=ResourceType.NOTIFICATION_JOB))
    outcome = await dispatcher.dispatch_due(limit=limit)
    return ok(DispatchSweepResponse(dispatched=sum(outcome.values()), by_status=outcome))
