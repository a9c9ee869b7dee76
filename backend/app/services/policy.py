"""Authorization engine.

``decide`` is a pure function of (caller context, action, resource). It does
no I/O and never raises for a denial; callers turn a denied ``Decision`` into
``NotFound`` or ``Forbidden``. Anything not matched by a rule is denied.

Scoping terms used below:

* own company: ``resource.company_id == ctx.company_id``
* entitled: ``resource.building_id in ctx.entitled_building_ids`` and the
  building belongs to the caller's company
* own space: ``resource.space_id in ctx.resident_space_ids``
"""

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from app.models.enums import UserRole
from app.services.identity import CallerContext


class Action(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"


class ResourceType(str, Enum):
    COMPANY = "company"
    USER = "user"
    BUILDING = "building"
    SPACE = "space"
    OCCUPANT = "occupant"
    BUILDING_ENTITLEMENT = "building_entitlement"
    INVITATION = "invitation"
    TICKET = "ticket"
    TICKET_STATUS_LOG = "ticket_status_log"
    TICKET_COMMENT = "ticket_comment"
    AUDIT_LOG = "audit_log"
    NOTIFICATION_JOB = "notification_job"


@dataclass(frozen=True)
class Resource:
    """Pre-resolved attributes of the thing being acted on.

    ``company_id`` is always the owning company (a building's company for
    spaces, occupants, tickets and entitlements). ``user_id`` is the subject
    user: the user row itself, the occupant's bound user, or the entitlement
    grantee. ``subject_company_id`` is the grantee's company for entitlements.
    """

    type: ResourceType
    id: Optional[uuid.UUID] = None
    company_id: Optional[uuid.UUID] = None
    building_id: Optional[uuid.UUID] = None
    space_id: Optional[uuid.UUID] = None
    user_id: Optional[uuid.UUID] = None
    created_by_user_id: Optional[uuid.UUID] = None
    subject_company_id: Optional[uuid.UUID] = None
    target_role: Optional[UserRole] = None
    is_internal: bool = False


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)


def deny(reason: str) -> Decision:
    return Decision(False, reason)


def _own_company(ctx: CallerContext, res: Resource) -> bool:
    return ctx.company_id is not None and res.company_id == ctx.company_id


def _entitled(ctx: CallerContext, res: Resource) -> bool:
    return (
        _own_company(ctx, res)
        and res.building_id is not None
        and res.building_id in ctx.entitled_building_ids
    )


def _own_space(ctx: CallerContext, res: Resource) -> bool:
    return res.space_id is not None and res.space_id in ctx.resident_space_ids


def _resident_ticket(ctx: CallerContext, res: Resource) -> bool:
    """Ticket on one of the resident's spaces, or one they raised."""
    return _own_space(ctx, res) or (
        res.created_by_user_id is not None and res.created_by_user_id == ctx.user_id
    )


def _is_self(ctx: CallerContext, res: Resource) -> bool:
    return res.user_id is not None and res.user_id == ctx.user_id


# ---------------------------------------------------------------------------
# Per-role rules
# ---------------------------------------------------------------------------

def _platform_admin(ctx: CallerContext, action: Action, res: Resource) -> Decision:
    return ALLOW


def _company_admin(ctx: CallerContext, action: Action, res: Resource) -> Decision:
    t = res.type

    if t == ResourceType.COMPANY:
        if action != Action.READ:
            return deny("Only platform administrators can manage companies")
        if _own_company(ctx, res):
            return ALLOW
        return deny("Company is outside your organization")

    if t == ResourceType.USER and _is_self(ctx, res) and action in (Action.READ, Action.UPDATE):
        return ALLOW

    if t == ResourceType.AUDIT_LOG:
        return deny("Audit log is restricted to platform administrators")

    if t == ResourceType.NOTIFICATION_JOB:
        return deny("Notification jobs are restricted to platform administrators")

    if not _own_company(ctx, res):
        return deny("Resource belongs to another company")

    if t == ResourceType.USER:
        if action in (Action.CREATE, Action.UPDATE) and res.target_role == UserRole.PLATFORM_ADMIN:
            return deny("Company administrators cannot assign the platform_admin role")
        return ALLOW

    if t == ResourceType.BUILDING_ENTITLEMENT:
        if action == Action.CREATE and res.subject_company_id != ctx.company_id:
            return deny("Entitlements can only be granted to users of your own company")
        return ALLOW

    if t in (
        ResourceType.BUILDING,
        ResourceType.SPACE,
        ResourceType.OCCUPANT,
        ResourceType.INVITATION,
        ResourceType.TICKET,
    ):
        return ALLOW

    if t == ResourceType.TICKET_STATUS_LOG:
        if action == Action.READ:
            return ALLOW
        return deny("Status history is append-only")

    if t == ResourceType.TICKET_COMMENT:
        if res.is_internal:
            return deny("Internal comments are restricted to platform administrators")
        if action in (Action.READ, Action.CREATE):
            return ALLOW
        return deny("Comments cannot be changed once posted")

    return deny("No rule grants this action")


def _company_staff(ctx: CallerContext, action: Action, res: Resource) -> Decision:
    t = res.type

    if t == ResourceType.COMPANY:
        if action == Action.READ and _own_company(ctx, res):
            return ALLOW
        return deny("Staff can only view their own company")

    if t == ResourceType.USER:
        if _is_self(ctx, res) and action in (Action.READ, Action.UPDATE):
            return ALLOW
        if action == Action.READ and _own_company(ctx, res):
            return ALLOW
        return deny("Staff can only view users of their own company")

    if t == ResourceType.BUILDING_ENTITLEMENT:
        if action == Action.READ and _is_self(ctx, res):
            return ALLOW
        return deny("Staff can only view their own building grants")

    if t in (ResourceType.INVITATION, ResourceType.AUDIT_LOG, ResourceType.NOTIFICATION_JOB):
        return deny("Staff cannot access this resource")

    if not _entitled(ctx, res):
        return deny("You are not entitled to this building")

    if t in (ResourceType.BUILDING, ResourceType.SPACE, ResourceType.OCCUPANT):
        if action == Action.READ:
            return ALLOW
        return deny("Staff have read-only access to buildings, spaces and occupants")

    if t == ResourceType.TICKET:
        return ALLOW

    if t == ResourceType.TICKET_STATUS_LOG:
        if action == Action.READ:
            return ALLOW
        return deny("Status history is append-only")

    if t == ResourceType.TICKET_COMMENT:
        if res.is_internal:
            return deny("Internal comments are restricted to platform administrators")
        if action in (Action.READ, Action.CREATE):
            return ALLOW
        return deny("Comments cannot be changed once posted")

    return deny("No rule grants this action")


def _resident(ctx: CallerContext, action: Action, res: Resource) -> Decision:
    t = res.type

    if t == ResourceType.COMPANY:
        if action == Action.READ and _own_company(ctx, res):
            return ALLOW
        return deny("Residents can only view their own company")

    if t == ResourceType.USER:
        if _is_self(ctx, res) and action in (Action.READ, Action.UPDATE):
            return ALLOW
        return deny("Residents can only access their own profile")

    if t == ResourceType.BUILDING:
        if action == Action.READ and res.building_id in ctx.resident_building_ids:
            return ALLOW
        return deny("Residents can only view buildings they live in")

    if t == ResourceType.SPACE:
        if action == Action.READ and _own_space(ctx, res):
            return ALLOW
        return deny("Residents can only view their own space")

    if t == ResourceType.OCCUPANT:
        if _is_self(ctx, res) and action in (Action.READ, Action.UPDATE):
            return ALLOW
        return deny("Residents can only access their own occupant record")

    if t == ResourceType.TICKET:
        if action == Action.CREATE:
            if not _own_space(ctx, res):
                return deny("Residents can only create tickets for a space they occupy")
            if res.created_by_user_id != ctx.user_id:
                return deny("Residents can only create tickets as themselves")
            return ALLOW
        if action == Action.READ and _resident_ticket(ctx, res):
            return ALLOW
        if action == Action.READ:
            return deny("Residents can only view their own tickets")
        return deny("Residents cannot modify tickets")

    if t == ResourceType.TICKET_STATUS_LOG:
        if action == Action.READ and _resident_ticket(ctx, res):
            return ALLOW
        return deny("Residents can only view the history of their own tickets")

    if t == ResourceType.TICKET_COMMENT:
        if res.is_internal:
            return deny("Internal comments are restricted to platform administrators")
        if action in (Action.READ, Action.CREATE) and _resident_ticket(ctx, res):
            return ALLOW
        return deny("Residents can only comment on their own tickets")

    return deny("Residents cannot access this resource")


_RULES = {
    UserRole.PLATFORM_ADMIN: _platform_admin,
    UserRole.COMPANY_ADMIN: _company_admin,
    UserRole.COMPANY_STAFF: _company_staff,
    UserRole.RESIDENT: _resident,
}

# Rows nobody may change through the API
_APPEND_ONLY = {
    ResourceType.TICKET_STATUS_LOG: "Status history is append-only",
    ResourceType.AUDIT_LOG: "Audit log is append-only",
}


def decide(ctx: CallerContext, action: Action, resource: Resource) -> Decision:
    """Return ``Allow`` or ``Deny(reason)`` for ``ctx`` doing ``action`` on ``resource``."""
    if resource.type in _APPEND_ONLY and action != Action.READ:
        return deny(_APPEND_ONLY[resource.type])
    rule = _RULES.get(ctx.role)
    if rule is None:
        return deny("Unknown role")
    return rule(ctx, action, resource)
