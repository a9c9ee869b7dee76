"""Services for the work-order platform."""

from app.services.audit import AuditService
from app.services.jobs import JobsService
from app.services.workflow import WorkflowService
from app.services.tokens import TokenManager
from app.services.tickets import TicketService
from app.services.invitations import InvitationService
from app.services.occupants import OccupantService
from app.services.buildings import BuildingService, SpaceService
from app.services.companies import CompanyService, UserService
from app.services.entitlements import EntitlementService

__all__ = [
    "AuditService",
    "JobsService",
    "WorkflowService",
    "TokenManager",
    "TicketService",
    "InvitationService",
    "OccupantService",
    "BuildingService",
    "SpaceService",
    "CompanyService",
    "UserService",
    "EntitlementService",
]
