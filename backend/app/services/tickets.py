"""Ticket service: creation, scoped listing, detail edits and comments.

Status changes do not go through here; see ``app.services.workflow``.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import Conflict, Forbidden, ValidationError
from app.models.building import Building
from app.models.enums import IssueType, TicketSeverity, TicketStatus, UserRole
from app.models.ticket import Ticket, TicketComment, TicketStatusLog
from app.schemas.ticket import CommentCreate, TicketCreate, TicketUpdate
from app.services.access import (
    can_read,
    load_space,
    load_ticket,
    require,
    require_visible,
    ticket_resource,
)
from app.services.identity import CallerContext
from app.services.notifications import NotificationOutbox
from app.services.policy import Action, Resource, ResourceType
from app.services.workflow import WorkflowService

logger = logging.getLogger(__name__)

DEFAULT_SEVERITY: dict[IssueType, TicketSeverity] = {
    IssueType.ACTIVE_LEAK: TicketSeverity.EMERGENCY,
    IssueType.SEWER_BACKUP: TicketSeverity.EMERGENCY,
    IssueType.GAS_SMELL: TicketSeverity.EMERGENCY,
    IssueType.WATER_HEATER: TicketSeverity.URGENT,
    IssueType.DRAIN_CLOG: TicketSeverity.STANDARD,
    IssueType.TOILET_FAUCET_SHOWER: TicketSeverity.STANDARD,
    IssueType.OTHER_PLUMBING: TicketSeverity.STANDARD,
}

EMERGENCY_KEYWORDS = (
    "leak", "flood", "flooding", "water damage", "burst", "dripping",
    "sewage", "sewer", "backup", "overflow", "raw sewage",
    "gas", "gas smell", "rotten egg", "gas leak",
)

# Lower is more severe
SEVERITY_RANK = {
    TicketSeverity.EMERGENCY: 0,
    TicketSeverity.URGENT: 1,
    TicketSeverity.STANDARD: 2,
}

DISPATCH_FIELDS = frozenset({"assigned_technician", "scheduled_date", "scheduled_time_window"})
BILLING_FIELDS = frozenset({"quote_amount", "invoice_number"})

_DISPATCH_ROLES = frozenset({UserRole.PLATFORM_ADMIN, UserRole.COMPANY_ADMIN})


def has_emergency_keyword(description: Optional[str]) -> bool:
    if not description:
        return False
    lower = description.lower()
    return any(keyword in lower for keyword in EMERGENCY_KEYWORDS)


def resolve_severity(
    issue_type: IssueType,
    requested: Optional[TicketSeverity],
    description: Optional[str],
) -> tuple[TicketSeverity, bool]:
    """Most severe of the requested severity, the issue default and the keyword check.

    Returns the final severity and whether it was raised above what was asked
    for (``standard`` when nothing was asked for).
    """
    asked = requested or TicketSeverity.STANDARD
    final = min(asked, DEFAULT_SEVERITY.get(issue_type, TicketSeverity.STANDARD), key=SEVERITY_RANK.get)
    if has_emergency_keyword(description):
        final = TicketSeverity.EMERGENCY
    return final, SEVERITY_RANK[final] < SEVERITY_RANK[asked]


class TicketService:
    """Service for ticket CRUD and comments."""

    MAX_NUMBER_ATTEMPTS = 5

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, ctx: CallerContext, data: TicketCreate) -> tuple[Ticket, bool]:
        """Create a ticket in ``new`` and record the creation log row."""
        space, company_id = await load_space(self.db, data.space_id)
        require(
            ctx,
            Action.CREATE,
            Resource(
                type=ResourceType.TICKET,
                company_id=company_id,
                building_id=space.building_id,
                space_id=space.id,
                created_by_user_id=ctx.user_id,
            ),
        )
        if space.building_id != data.building_id:
            raise ValidationError("Space does not belong to the given building")

        severity, escalated = resolve_severity(data.issue_type, data.severity, data.description)
        ticket = Ticket(
            building_id=space.building_id,
            space_id=space.id,
            created_by_user_id=ctx.user_id,
            issue_type=data.issue_type,
            severity=severity,
            status=TicketStatus.NEW,
            description=data.description,
            access_instructions=data.access_instructions,
            scheduling_preference=data.scheduling_preference,
        )
        await self._insert_numbered(ticket)
        await WorkflowService(self.db).record_creation(ticket, ctx.user_id)
        await NotificationOutbox(self.db).new_ticket(ticket)

        logger.info(
            f"[TICKETS] created #{ticket.ticket_number} severity={severity.value}"
            f"{' (escalated)' if escalated else ''} by user={ctx.user_id}"
        )
        return ticket, escalated

    async def _insert_numbered(self, ticket: Ticket) -> None:
        """Allocate ``max + 1`` and insert, retrying when another insert took the number."""
        for attempt in range(1, self.MAX_NUMBER_ATTEMPTS + 1):
            result = await self.db.execute(select(func.max(Ticket.ticket_number)))
            ticket.ticket_number = (result.scalar() or 0) + 1
            try:
                async with self.db.begin_nested():
                    self.db.add(ticket)
                    await self.db.flush()
                return
            except IntegrityError:
                logger.warning(
                    f"[TICKETS] ticket number {ticket.ticket_number} taken, retrying (attempt {attempt})"
                )
        raise Conflict("Could not allocate a ticket number; please retry")

    async def list_tickets(
        self,
        ctx: CallerContext,
        building_id: Optional[uuid.UUID] = None,
        status: Optional[TicketStatus] = None,
        severity: Optional[TicketSeverity] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Ticket]:
        """Tickets visible to the caller, newest first.

        Staff without entitlements and residents without spaces or tickets get
        an empty list.
        """
        query = select(Ticket, Building.company_id).join(Building, Building.id == Ticket.building_id)

        if ctx.role == UserRole.COMPANY_ADMIN:
            query = query.where(Building.company_id == ctx.company_id)
        elif ctx.role == UserRole.COMPANY_STAFF:
            if not ctx.entitled_building_ids:
                return []
            query = query.where(
                Building.company_id == ctx.company_id,
                Ticket.building_id.in_(ctx.entitled_building_ids),
            )
        elif ctx.role == UserRole.RESIDENT:
            conditions = [Ticket.created_by_user_id == ctx.user_id]
            if ctx.resident_space_ids:
                conditions.append(Ticket.space_id.in_(ctx.resident_space_ids))
            query = query.where(or_(*conditions))

        if building_id:
            query = query.where(Ticket.building_id == building_id)
        if status:
            query = query.where(Ticket.status == status)
        if severity:
            query = query.where(Ticket.severity == severity)

        query = query.order_by(Ticket.created_at.desc(), Ticket.ticket_number.desc())
        query = query.limit(limit).offset(offset)
        result = await self.db.execute(query)

        return [
            ticket
            for ticket, company_id in result.all()
            if can_read(ctx, ticket_resource(ticket, company_id))
        ]

    async def get(self, ctx: CallerContext, ticket_id: uuid.UUID) -> Ticket:
        ticket, company_id = await load_ticket(self.db, ticket_id)
        require_visible(ctx, Action.READ, ticket_resource(ticket, company_id), "Ticket")
        return ticket

    async def update(self, ctx: CallerContext, ticket_id: uuid.UUID, data: TicketUpdate) -> Ticket:
        """Edit ticket details. Dispatch and billing fields are role-restricted."""
        ticket, company_id = await load_ticket(self.db, ticket_id)
        require_visible(ctx, Action.UPDATE, ticket_resource(ticket, company_id), "Ticket")

        changes = data.model_dump(exclude_unset=True)
        touched = set(changes)
        if touched & DISPATCH_FIELDS and ctx.role not in _DISPATCH_ROLES:
            raise Forbidden("Only administrators can change technician and scheduling details")
        if touched & BILLING_FIELDS and ctx.role != UserRole.PLATFORM_ADMIN:
            raise Forbidden("Only platform administrators can change billing details")

        for field, value in changes.items():
            setattr(ticket, field, value)
        await self.db.flush()
        await self.db.refresh(ticket)
        return ticket

    async def status_log(self, ctx: CallerContext, ticket_id: uuid.UUID) -> list[TicketStatusLog]:
        ticket, company_id = await load_ticket(self.db, ticket_id)
        require_visible(ctx, Action.READ, ticket_resource(ticket, company_id), "Ticket")
        require(ctx, Action.READ, ticket_resource(ticket, company_id, ResourceType.TICKET_STATUS_LOG))

        result = await self.db.execute(
            select(TicketStatusLog)
            .where(TicketStatusLog.ticket_id == ticket_id)
            .order_by(TicketStatusLog.sequence)
        )
        return list(result.scalars().all())

    async def list_comments(self, ctx: CallerContext, ticket_id: uuid.UUID) -> list[TicketComment]:
        ticket, company_id = await load_ticket(self.db, ticket_id)
        require_visible(ctx, Action.READ, ticket_resource(ticket, company_id), "Ticket")

        result = await self.db.execute(
            select(TicketComment)
            .where(TicketComment.ticket_id == ticket_id)
            .order_by(TicketComment.created_at)
        )
        return [
            comment
            for comment in result.scalars().all()
            if can_read(
                ctx,
                ticket_resource(ticket, company_id, ResourceType.TICKET_COMMENT, comment.is_internal),
            )
        ]

    async def create_comment(
        self,
        ctx: CallerContext,
        ticket_id: uuid.UUID,
        data: CommentCreate,
    ) -> TicketComment:
        ticket, company_id = await load_ticket(self.db, ticket_id)
        require_visible(ctx, Action.READ, ticket_resource(ticket, company_id), "Ticket")
        require(
            ctx,
            Action.CREATE,
            ticket_resource(ticket, company_id, ResourceType.TICKET_COMMENT, data.is_internal),
        )

        comment = TicketComment(
            ticket_id=ticket.id,
            user_id=ctx.user_id,
            comment_text=data.comment_text,
            is_internal=data.is_internal,
        )
        self.db.add(comment)
        await self.db.flush()
        await self.db.refresh(comment)
        return comment
