"""SQLAlchemy models for the work-order platform."""

from app.models.company import Company
from app.models.user import User
from app.models.building import Building, Space
from app.models.occupant import Occupant
from app.models.entitlement import BuildingEntitlement
from app.models.invitation import Invitation
from app.models.issued_token import IssuedToken
from app.models.ticket import Ticket, TicketStatusLog, TicketComment
from app.models.jobs import JobsOutbox
from app.models.audit import AuditLog, NotificationLog

__all__ = [
    "Company",
    "User",
    "Building",
    "Space",
    "Occupant",
    "BuildingEntitlement",
    "Invitation",
    "IssuedToken",
    "Ticket",
    "TicketStatusLog",
    "TicketComment",
    "JobsOutbox",
    "AuditLog",
    "NotificationLog",
]
