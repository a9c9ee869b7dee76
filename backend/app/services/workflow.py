"""Ticket workflow engine.

The transition graph is a declarative table keyed by role then from-status.
A status not listed for a role has no outgoing transitions for that role.
``allowed_transitions`` and ``evaluate_transition`` are pure and safe to
import from reporting code; ``WorkflowService`` applies a transition inside
the caller's transaction.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Mapping, Optional, Protocol

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import Conflict, IllegalTransition, ValidationError
from app.models.enums import AuditAction, TicketStatus, UserRole
from app.models.ticket import Ticket, TicketStatusLog
from app.services.access import load_ticket, require_visible, ticket_resource
from app.services.audit import AuditService
from app.services.identity import CallerContext
from app.services.notifications import NotificationOutbox
from app.services.policy import Action

logger = logging.getLogger(__name__)

S = TicketStatus

TRANSITIONS: Mapping[UserRole, Mapping[TicketStatus, frozenset[TicketStatus]]] = {
    UserRole.PLATFORM_ADMIN: {
        S.NEW: frozenset({S.NEEDS_INFO, S.SCHEDULED, S.CANCELLED}),
        S.NEEDS_INFO: frozenset({S.NEW, S.SCHEDULED, S.CANCELLED}),
        S.SCHEDULED: frozenset({S.DISPATCHED, S.NEEDS_INFO, S.CANCELLED}),
        S.DISPATCHED: frozenset({S.ON_SITE, S.SCHEDULED, S.CANCELLED}),
        S.ON_SITE: frozenset({S.IN_PROGRESS, S.CANCELLED}),
        S.IN_PROGRESS: frozenset({S.WAITING_APPROVAL, S.COMPLETED, S.CANCELLED}),
        S.WAITING_APPROVAL: frozenset({S.SCHEDULED, S.IN_PROGRESS, S.CANCELLED}),
        S.COMPLETED: frozenset({S.INVOICED}),
    },
    UserRole.COMPANY_ADMIN: {
        S.NEW: frozenset({S.NEEDS_INFO, S.SCHEDULED}),
        S.NEEDS_INFO: frozenset({S.NEW, S.SCHEDULED}),
        S.SCHEDULED: frozenset({S.NEEDS_INFO}),
        S.WAITING_APPROVAL: frozenset({S.SCHEDULED}),
    },
    UserRole.COMPANY_STAFF: {
        S.WAITING_APPROVAL: frozenset({S.SCHEDULED}),
    },
    UserRole.RESIDENT: {},
}

INITIAL_STATUS = S.NEW
TERMINAL_STATUSES = frozenset({S.COMPLETED, S.INVOICED, S.CANCELLED})

# Union of every role's edges; the normal workflow graph
WORKFLOW_EDGES: frozenset[tuple[TicketStatus, TicketStatus]] = frozenset(
    (src, dst)
    for table in TRANSITIONS.values()
    for src, targets in table.items()
    for dst in targets
)


def allowed_transitions(current: TicketStatus, role: UserRole) -> frozenset[TicketStatus]:
    """Statuses ``role`` may move a ticket to from ``current``."""
    return TRANSITIONS.get(role, {}).get(current, frozenset())


def is_terminal(status: TicketStatus) -> bool:
    return status in TERMINAL_STATUSES


@dataclass(frozen=True)
class TransitionCheck:
    allowed: bool
    reason: str = ""
    override: bool = False


def evaluate_transition(
    role: UserRole,
    current: TicketStatus,
    target: TicketStatus,
    override: bool = False,
) -> TransitionCheck:
    """Decide whether ``role`` may move a ticket from ``current`` to ``target``."""
    if role == UserRole.RESIDENT:
        return TransitionCheck(False, "Residents cannot change ticket status")
    if target == current:
        return TransitionCheck(False, f"Ticket is already {current.value}")
    if override:
        if role != UserRole.PLATFORM_ADMIN:
            return TransitionCheck(False, "Only platform administrators can override the workflow")
        return TransitionCheck(True, override=True)
    if target in allowed_transitions(current, role):
        return TransitionCheck(True)
    if is_terminal(current) and role != UserRole.PLATFORM_ADMIN:
        return TransitionCheck(False, f"Ticket is {current.value}; no further status changes are allowed")
    return TransitionCheck(
        False,
        f"Cannot move a ticket from {current.value} to {target.value} as {role.value}",
    )


class StatusLogEntry(Protocol):
    old_status: Optional[TicketStatus]
    new_status: TicketStatus
    is_override: bool


def is_valid_history(entries: Iterable[StatusLogEntry]) -> bool:
    """True if ordered log rows form a path through the workflow graph.

    The first row must be the creation entry (no old status, new status
    ``new``). Override rows may take any edge.
    """
    previous: Optional[TicketStatus] = None
    for index, entry in enumerate(entries):
        if index == 0:
            if entry.old_status is not None or entry.new_status != INITIAL_STATUS:
                return False
        else:
            if entry.old_status != previous:
                return False
            if not entry.is_override and (entry.old_status, entry.new_status) not in WORKFLOW_EDGES:
                return False
        previous = entry.new_status
    return previous is not None


@dataclass
class TransitionResult:
    ticket: Ticket
    log_entry: TicketStatusLog


class WorkflowService:
    """Applies status transitions and keeps the status log."""

    MAX_CAS_ATTEMPTS = 3

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record_creation(self, ticket: Ticket, actor_id: uuid.UUID) -> TicketStatusLog:
        """Append the initial log row for a freshly inserted ticket."""
        entry = TicketStatusLog(
            ticket_id=ticket.id,
            sequence=1,
            old_status=None,
            new_status=ticket.status,
            changed_by_user_id=actor_id,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def apply_transition(
        self,
        ctx: CallerContext,
        ticket_id: uuid.UUID,
        new_status: TicketStatus,
        notes: Optional[str] = None,
        override: bool = False,
    ) -> TransitionResult:
        """Move a ticket to ``new_status`` and append exactly one log row.

        The status write is a compare-and-set on the current status under a
        row lock, so of two concurrent callers exactly one wins; the loser
        re-reads and is re-evaluated against the new state.
        """
        if override and not (notes and notes.strip()):
            raise ValidationError("Notes are required when overriding the workflow")

        for attempt in range(1, self.MAX_CAS_ATTEMPTS + 1):
            ticket, company_id = await load_ticket(self.db, ticket_id, for_update=True)
            require_visible(ctx, Action.UPDATE, ticket_resource(ticket, company_id), "Ticket")

            current = ticket.status
            check = evaluate_transition(ctx.role, current, new_status, override=override)
            if not check.allowed:
                logger.info(
                    f"[WORKFLOW] rejected ticket={ticket.ticket_number} "
                    f"{current.value}->{new_status.value} by {ctx.role.value}: {check.reason}"
                )
                raise IllegalTransition(check.reason)

            now = datetime.utcnow()
            values = {"status": new_status, "updated_at": now}
            if new_status == S.COMPLETED:
                values["completed_at"] = now

            result = await self.db.execute(
                update(Ticket)
                .where(Ticket.id == ticket_id, Ticket.status == current)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                break
            logger.warning(
                f"[WORKFLOW] ticket={ticket_id} changed concurrently, retrying (attempt {attempt})"
            )
        else:
            raise Conflict("Ticket is being updated by someone else; please retry")

        entry = await self._append_log(
            ticket_id=ticket_id,
            old_status=current,
            new_status=new_status,
            actor_id=ctx.user_id,
            notes=notes,
            is_override=check.override,
        )
        await self.db.refresh(ticket)

        if check.override:
            await AuditService(self.db).log(
                action=AuditAction.STATUS_OVERRIDE,
                resource_type="ticket",
                resource_id=ticket.id,
                company_id=company_id,
                user_id=ctx.user_id,
                details={
                    "from": current.value,
                    "to": new_status.value,
                    "notes": notes,
                },
            )

        await NotificationOutbox(self.db).status_changed(
            ticket=ticket,
            company_id=company_id,
            old_status=current,
            new_status=new_status,
            actor=ctx,
            sequence=entry.sequence,
        )

        logger.info(
            f"[WORKFLOW] ticket={ticket.ticket_number} {current.value}->{new_status.value} "
            f"by user={ctx.user_id}{' (override)' if check.override else ''}"
        )
        return TransitionResult(ticket=ticket, log_entry=entry)

    async def _append_log(
        self,
        ticket_id: uuid.UUID,
        old_status: TicketStatus,
        new_status: TicketStatus,
        actor_id: uuid.UUID,
        notes: Optional[str],
        is_override: bool,
    ) -> TicketStatusLog:
        result = await self.db.execute(
            select(func.max(TicketStatusLog.sequence)).where(TicketStatusLog.ticket_id == ticket_id)
        )
        last = result.scalar() or 0
        entry = TicketStatusLog(
            ticket_id=ticket_id,
            sequence=last + 1,
            old_status=old_status,
            new_status=new_status,
            changed_by_user_id=actor_id,
            notes=notes,
            is_override=is_override,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry
