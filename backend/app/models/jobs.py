"""Jobs outbox model for async side effects with unique_scope de-duplication."""

import uuid
from datetime import datetime
from typing import Optional, Any

from sqlalchemy import String, DateTime, Text, Integer, Index, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base, JSONType
from app.models.enums import JobStatus, db_enum


class JobsOutbox(Base):
    """Async job queue with idempotency via unique_scope.

    Notifications are written here inside the domain transaction and
    dispatched after commit. unique_scope ensures de-duplication
    (e.g., "status_change:ticket:{id}:3").
    """

    __tablename__ = "jobs_outbox"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # Job type (e.g., "send_invite", "notify_status_change")
    type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)

    status: Mapped[JobStatus] = mapped_column(
        db_enum(JobStatus, "job_status"),
        default=JobStatus.PENDING,
        nullable=False,
        index=True,
    )

    # UNIQUE constraint prevents duplicate jobs for same scope
    unique_scope: Mapped[str] = mapped_column(String(500), nullable=False, unique=True)

    # Retry tracking
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Scheduling
    run_after: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index(
            "ix_jobs_outbox_pending",
            "status",
            "run_after",
            postgresql_where=text("status = 'pending'"),
        ),
    )
