"""Invitations router."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.security import get_caller_context
from app.schemas.envelope import ApiResponse, DeletedResponse, ok
from app.schemas.invitation import InvitationCreate, InvitationResend, InvitationResponse
from app.services.identity import CallerContext
from app.services.invitations import InvitationService
from app.services.notifications import NotificationDispatcher, get_dispatcher, schedule_dispatch

router = APIRouter(prefix="/invitations", tags=["invitations"])


@router.post("", response_model=ApiResponse[InvitationResponse], status_code=status.HTTP_201_CREATED)
async def send_invitation(
    data: InvitationCreate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Invite someone to join a company as administrator or staff."""
    invitation = await InvitationService(db).send(ctx, data)
    await db.commit()
    schedule_dispatch(background_tasks, db, dispatcher)
    return ok(InvitationResponse.model_validate(invitation))


@router.get("", response_model=ApiResponse[List[InvitationResponse]])
async def list_invitations(
    company_id: Optional[UUID] = None,
    include_accepted: bool = True,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    invitations = await InvitationService(db).list_invitations(
        ctx, company_id=company_id, include_accepted=include_accepted
    )
    return ok([InvitationResponse.model_validate(i) for i in invitations])


@router.post("/{invitation_id}/resend", response_model=ApiResponse[InvitationResponse])
async def resend_invitation(
    invitation_id: UUID,
    background_tasks: BackgroundTasks,
    data: Optional[InvitationResend] = None,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Send a fresh link, optionally correcting the invitee's name or email.

    The previous link stops working immediately.
    """
    invitation = await InvitationService(db).resend(ctx, invitation_id, data or InvitationResend())
    await db.commit()
    schedule_dispatch(background_tasks, db, dispatcher)
    return ok(InvitationResponse.model_validate(invitation))


@router.delete("/{invitation_id}", response_model=ApiResponse[DeletedResponse])
async def delete_invitation(
    invitation_id: UUID,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    """Withdraw a pending invitation."""
    await InvitationService(db).delete(ctx, invitation_id)
    await db.commit()
    return ok(DeletedResponse(id=invitation_id))
