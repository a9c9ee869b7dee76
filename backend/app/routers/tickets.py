"""Tickets router: work orders, status transitions, history and comments."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.security import get_caller_context
from app.models.building import Building
from app.models.enums import TicketSeverity, TicketStatus
from app.schemas.envelope import ApiResponse, ok
from app.schemas.ticket import (
    AllowedTransitionsResponse,
    CommentCreate,
    CommentResponse,
    StatusLogResponse,
    TicketCreate,
    TicketCreatedResponse,
    TicketResponse,
    TicketUpdate,
    TransitionRequest,
    TransitionResponse,
)
from app.services.access import ticket_resource
from app.services.identity import CallerContext
from app.services.notifications import NotificationDispatcher, get_dispatcher, schedule_dispatch
from app.services.policy import Action, decide
from app.services.tickets import TicketService
from app.services.workflow import WorkflowService, allowed_transitions, is_terminal

router = APIRouter(prefix="/tickets", tags=["tickets"])


@router.post("", response_model=ApiResponse[TicketCreatedResponse], status_code=status.HTTP_201_CREATED)
async def create_ticket(
    data: TicketCreate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Raise a ticket.

    Severity is raised to the issue type's default or to emergency when the
    description mentions a leak, flooding, sewage or gas.
    """
    ticket, escalated = await TicketService(db).create(ctx, data)
    await db.commit()
    schedule_dispatch(background_tasks, db, dispatcher)
    return ok(
        TicketCreatedResponse(
            ticket=TicketResponse.model_validate(ticket),
            severity_escalated=escalated,
        )
    )


@router.get("", response_model=ApiResponse[List[TicketResponse]])
async def list_tickets(
    building_id: Optional[UUID] = None,
    status: Optional[TicketStatus] = None,
    severity: Optional[TicketSeverity] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    """List tickets visible to the caller. Staff without entitlements get an empty list."""
    tickets = await TicketService(db).list_tickets(
        ctx,
        building_id=building_id,
        status=status,
        severity=severity,
        limit=limit,
        offset=offset,
    )
    return ok([TicketResponse.model_validate(t) for t in tickets])


@router.get("/{ticket_id}", response_model=ApiResponse[TicketResponse])
async def get_ticket(
    ticket_id: UUID,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    ticket = await TicketService(db).get(ctx, ticket_id)
    return ok(TicketResponse.model_validate(ticket))


@router.patch("/{ticket_id}", response_model=ApiResponse[TicketResponse])
async def update_ticket(
    ticket_id: UUID,
    data: TicketUpdate,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    """Edit ticket details. Use the transitions endpoint to change status."""
    ticket = await TicketService(db).update(ctx, ticket_id, data)
    await db.commit()
    return ok(TicketResponse.model_validate(ticket))


@router.get("/{ticket_id}/transitions", response_model=ApiResponse[AllowedTransitionsResponse])
async def get_allowed_transitions(
    ticket_id: UUID,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    """Statuses the caller may move this ticket to next."""
    ticket = await TicketService(db).get(ctx, ticket_id)
    building = await db.get(Building, ticket.building_id)

    allowed: list[TicketStatus] = []
    if decide(ctx, Action.UPDATE, ticket_resource(ticket, building.company_id)):
        allowed = sorted(allowed_transitions(ticket.status, ctx.role), key=lambda s: s.value)

    return ok(
        AllowedTransitionsResponse(
            ticket_id=ticket.id,
            current_status=ticket.status,
            allowed=allowed,
            is_terminal=is_terminal(ticket.status),
        )
    )


@router.post("/{ticket_id}/transitions", response_model=ApiResponse[TransitionResponse])
async def transition_ticket(
    ticket_id: UUID,
    data: TransitionRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Move a ticket to a new status and append to its history.

    Platform administrators may set ``override`` (with notes) to leave the
    normal workflow.
    """
    result = await WorkflowService(db).apply_transition(
        ctx,
        ticket_id,
        data.status,
        notes=data.notes,
        override=data.override,
    )
    await db.commit()
    schedule_dispatch(background_tasks, db, dispatcher)
    return ok(
        TransitionResponse(
            ticket=TicketResponse.model_validate(result.ticket),
            log_entry=StatusLogResponse.model_validate(result.log_entry),
        )
    )


@router.get("/{ticket_id}/status-log", response_model=ApiResponse[List[StatusLogResponse]])
async def get_status_log(
    ticket_id: UUID,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    """Status history, oldest first."""
    entries = await TicketService(db).status_log(ctx, ticket_id)
    return ok([StatusLogResponse.model_validate(e) for e in entries])


@router.get("/{ticket_id}/comments", response_model=ApiResponse[List[CommentResponse]])
async def list_comments(
    ticket_id: UUID,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    comments = await TicketService(db).list_comments(ctx, ticket_id)
    return ok([CommentResponse.model_validate(c) for c in comments])


@router.post(
    "/{ticket_id}/comments",
    response_model=ApiResponse[CommentResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_comment(
    ticket_id: UUID,
    data: CommentCreate,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    """Comment on a ticket. Internal comments are for platform administrators only."""
    comment = await TicketService(db).create_comment(ctx, ticket_id, data)
    await db.commit()
    return ok(CommentResponse.model_validate(comment))
