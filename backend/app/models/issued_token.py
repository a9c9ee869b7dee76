"""IssuedToken model: one row per bearer token ever handed out."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey, Index, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base
from app.models.enums import TokenPurpose, TokenState, db_enum


class IssuedToken(Base):
    """Hashed bearer token for an invitation or an occupant claim.

    The raw token is only ever returned to the delivery channel; this table
    stores its SHA-256 hash. ``state`` moves issued -> redeemed or
    issued -> superseded exactly once. Expiry is derived from ``expires_at``.
    """

    __tablename__ = "issued_tokens"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    purpose: Mapped[TokenPurpose] = mapped_column(
        db_enum(TokenPurpose, "token_purpose"), nullable=False
    )
    # invitations.id or occupants.id depending on purpose
    subject_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    state: Mapped[TokenState] = mapped_column(
        db_enum(TokenState, "token_state"),
        default=TokenState.ISSUED,
        nullable=False,
    )
    issued_by_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    issued_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    redeemed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    superseded_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)


# At most one live token per subject
Index(
    "uq_issued_tokens_live_subject",
    IssuedToken.purpose,
    IssuedToken.subject_id,
    unique=True,
    postgresql_where=text("state = 'issued'"),
    sqlite_where=text("state = 'issued'"),
)
