"""Ticket, TicketStatusLog and TicketComment models."""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Any

from sqlalchemy import (
    String, DateTime, Date, ForeignKey, Integer, Numeric, Text, Boolean, Index,
    UniqueConstraint, Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base, JSONType
from app.models.enums import IssueType, TicketSeverity, TicketStatus, db_enum


class Ticket(Base):
    """A plumbing work order raised against a space."""

    __tablename__ = "tickets"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    # Allocated max+1 under the unique constraint; gaps allowed
    ticket_number: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)

    building_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("buildings.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    space_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("spaces.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    created_by_user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    issue_type: Mapped[IssueType] = mapped_column(db_enum(IssueType, "issue_type"), nullable=False)
    severity: Mapped[TicketSeverity] = mapped_column(
        db_enum(TicketSeverity, "ticket_severity"),
        default=TicketSeverity.STANDARD,
        nullable=False,
    )
    status: Mapped[TicketStatus] = mapped_column(
        db_enum(TicketStatus, "ticket_status"),
        default=TicketStatus.NEW,
        nullable=False,
        index=True,
    )

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    access_instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    scheduling_preference: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType, nullable=True)

    # Dispatch fields (restricted)
    assigned_technician: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    scheduled_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    scheduled_time_window: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Billing fields (platform only)
    quote_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    invoice_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        Index("ix_tickets_building_status", "building_id", "status"),
    )


class TicketStatusLog(Base):
    """Append-only history of status changes. Never updated or deleted."""

    __tablename__ = "ticket_status_log"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("tickets.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    # 1 for the creation entry, then +1 per transition
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    old_status: Mapped[Optional[TicketStatus]] = mapped_column(
        db_enum(TicketStatus, "ticket_status"), nullable=True
    )
    new_status: Mapped[TicketStatus] = mapped_column(
        db_enum(TicketStatus, "ticket_status"), nullable=False
    )
    changed_by_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_override: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("ticket_id", "sequence", name="uq_ticket_status_log_sequence"),
    )


class TicketComment(Base):
    """Comment on a ticket. Internal comments are platform-only."""

    __tablename__ = "ticket_comments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("tickets.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    comment_text: Mapped[str] = mapped_column(Text, nullable=False)
    is_internal: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
