"""Ticket, status log and comment schemas."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import Field

from app.models.enums import IssueType, TicketSeverity, TicketStatus
from app.schemas.base import BaseSchema, IDMixin, TimestampMixin, UpdateSchema


class TicketCreate(BaseSchema):
    """Raise a ticket. Severity may be escalated from the issue type and description."""

    building_id: UUID
    space_id: UUID
    issue_type: IssueType
    severity: Optional[TicketSeverity] = None
    description: Optional[str] = Field(None, max_length=5000)
    access_instructions: Optional[str] = Field(None, max_length=2000)
    scheduling_preference: Optional[dict[str, Any]] = None


class TicketUpdate(UpdateSchema):
    """Update ticket details. Status changes go through the transitions endpoint."""

    not_null = frozenset({"issue_type", "severity"})

    issue_type: Optional[IssueType] = None
    severity: Optional[TicketSeverity] = None
    description: Optional[str] = Field(None, max_length=5000)
    access_instructions: Optional[str] = Field(None, max_length=2000)
    scheduling_preference: Optional[dict[str, Any]] = None
    # Dispatch
    assigned_technician: Optional[str] = Field(None, max_length=255)
    scheduled_date: Optional[date] = None
    scheduled_time_window: Optional[str] = Field(None, max_length=50)
    # Billing
    quote_amount: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    invoice_number: Optional[str] = Field(None, max_length=50)


class TicketResponse(BaseSchema, IDMixin, TimestampMixin):
    ticket_number: int
    building_id: UUID
    space_id: UUID
    created_by_user_id: UUID
    issue_type: IssueType
    severity: TicketSeverity
    status: TicketStatus
    description: Optional[str] = None
    access_instructions: Optional[str] = None
    scheduling_preference: Optional[dict[str, Any]] = None
    assigned_technician: Optional[str] = None
    scheduled_date: Optional[date] = None
    scheduled_time_window: Optional[str] = None
    quote_amount: Optional[Decimal] = None
    invoice_number: Optional[str] = None
    completed_at: Optional[datetime] = None


class TicketCreatedResponse(BaseSchema):
    ticket: TicketResponse
    severity_escalated: bool


class TransitionRequest(BaseSchema):
    status: TicketStatus
    notes: Optional[str] = Field(None, max_length=2000)
    # Platform administrators only; requires notes
    override: bool = False


class StatusLogResponse(BaseSchema, IDMixin):
    ticket_id: UUID
    sequence: int
    old_status: Optional[TicketStatus] = None
    new_status: TicketStatus
    changed_by_user_id: Optional[UUID] = None
    notes: Optional[str] = None
    is_override: bool
    created_at: datetime


class TransitionResponse(BaseSchema):
    ticket: TicketResponse
    log_entry: StatusLogResponse


class AllowedTransitionsResponse(BaseSchema):
    ticket_id: UUID
    current_status: TicketStatus
    allowed: list[TicketStatus]
    is_terminal: bool


class CommentCreate(BaseSchema):
    comment_text: str = Field(..., min_length=1, max_length=10000)
    is_internal: bool = False


class CommentResponse(BaseSchema, IDMixin):
    ticket_id: UUID
    user_id: UUID
    comment_text: str
    is_internal: bool
    created_at: datetime
