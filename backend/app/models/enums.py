"""Enumeration types for the work-order domain model."""

from enum import Enum
from typing import Type

from sqlalchemy import Enum as SQLEnum


class UserRole(str, Enum):
    """Platform role of a user."""
    PLATFORM_ADMIN = "platform_admin"
    COMPANY_ADMIN = "company_admin"
    COMPANY_STAFF = "company_staff"
    RESIDENT = "resident"


class InvitationRole(str, Enum):
    """Roles a company invitation may grant."""
    COMPANY_ADMIN = "company_admin"
    COMPANY_STAFF = "company_staff"


class SpaceType(str, Enum):
    """Discriminator for spaces."""
    UNIT = "unit"
    COMMON_AREA = "common_area"


class CommonAreaType(str, Enum):
    """Kind of shared space in a building."""
    BOILER_ROOM = "boiler_room"
    POOL = "pool"
    GARAGE = "garage"
    ROOF = "roof"
    CRAWLSPACE = "crawlspace"
    LAUNDRY = "laundry"
    WATER_ROOM = "water_room"
    OTHER = "other"


class OccupantType(str, Enum):
    """How an occupant holds a unit."""
    HOMEOWNER = "homeowner"
    TENANT = "tenant"


class IssueType(str, Enum):
    """Plumbing issue categories."""
    ACTIVE_LEAK = "active_leak"
    SEWER_BACKUP = "sewer_backup"
    DRAIN_CLOG = "drain_clog"
    WATER_HEATER = "water_heater"
    GAS_SMELL = "gas_smell"
    TOILET_FAUCET_SHOWER = "toilet_faucet_shower"
    OTHER_PLUMBING = "other_plumbing"


class TicketSeverity(str, Enum):
    """Urgency of a ticket."""
    EMERGENCY = "emergency"
    URGENT = "urgent"
    STANDARD = "standard"


class TicketStatus(str, Enum):
    """Work-order status."""
    NEW = "new"
    NEEDS_INFO = "needs_info"
    SCHEDULED = "scheduled"
    DISPATCHED = "dispatched"
    ON_SITE = "on_site"
    IN_PROGRESS = "in_progress"
    WAITING_APPROVAL = "waiting_approval"
    COMPLETED = "completed"
    INVOICED = "invoiced"
    CANCELLED = "cancelled"


class TokenPurpose(str, Enum):
    """Which flow a bearer token belongs to."""
    INVITATION = "invitation"
    OCCUPANT_CLAIM = "occupant_claim"


class TokenState(str, Enum):
    """Token lifecycle. EXPIRED is derived from expires_at, never stored."""
    ISSUED = "issued"
    REDEEMED = "redeemed"
    SUPERSEDED = "superseded"
    EXPIRED = "expired"


class JobStatus(str, Enum):
    """Status of async job in outbox."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    DEAD_LETTER = "dead_letter"


class NotificationChannel(str, Enum):
    """Delivery channel of a notification attempt."""
    EMAIL = "email"
    LOG = "log"


class DeliveryStatus(str, Enum):
    """Outcome of one delivery attempt."""
    SENT = "sent"
    FAILED = "failed"


class AuditAction(str, Enum):
    """Actions tracked in audit log."""
    INVITATION_SENT = "invitation_sent"
    INVITATION_RESENT = "invitation_resent"
    INVITATION_ACCEPTED = "invitation_accepted"
    INVITATION_DELETED = "invitation_deleted"
    CLAIM_ISSUED = "claim_issued"
    CLAIM_RESENT = "claim_resent"
    CLAIM_REDEEMED = "claim_redeemed"
    ENTITLEMENT_GRANTED = "entitlement_granted"
    ENTITLEMENT_REVOKED = "entitlement_revoked"
    STATUS_OVERRIDE = "status_override"
    NOTIFICATION_RETRIED = "notification_retried"


def db_enum(enum_cls: Type[Enum], name: str) -> SQLEnum:
    """Column type that stores enum values (not member names)."""
    return SQLEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
    )
