"""Glue between persisted rows and the authorization engine.

Builds ``Resource`` descriptors from ORM rows and turns denied decisions into
domain errors. Rows the caller cannot read are reported as ``NotFound`` so
their existence does not leak.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import Forbidden, NotFound
from app.models.building import Building, Space
from app.models.company import Company
from app.models.entitlement import BuildingEntitlement
from app.models.invitation import Invitation
from app.models.occupant import Occupant
from app.models.ticket import Ticket
from app.models.user import User
from app.services.identity import CallerContext
from app.services.policy import Action, Decision, Resource, ResourceType, decide

logger = logging.getLogger(__name__)


def require(ctx: CallerContext, action: Action, resource: Resource) -> Decision:
    """Raise ``Forbidden`` unless ``decide`` allows the action."""
    decision = decide(ctx, action, resource)
    if not decision:
        logger.info(
            f"[AUTHZ] deny user={ctx.user_id} role={ctx.role.value} "
            f"action={action.value} resource={resource.type.value}:{resource.id} "
            f"reason={decision.reason}"
        )
        raise Forbidden(decision.reason)
    return decision


def require_visible(
    ctx: CallerContext,
    action: Action,
    resource: Resource,
    label: str,
) -> None:
    """Check an action on an existing row.

    Unreadable rows raise ``NotFound``; readable rows the caller may not
    change raise ``Forbidden`` with the reason.
    """
    if not decide(ctx, Action.READ, resource):
        raise NotFound(f"{label} not found")
    if action != Action.READ:
        require(ctx, action, resource)


def can_read(ctx: CallerContext, resource: Resource) -> bool:
    return decide(ctx, Action.READ, resource).allowed


# ---------------------------------------------------------------------------
# Resource builders
# ---------------------------------------------------------------------------

def company_resource(company: Company) -> Resource:
    return Resource(type=ResourceType.COMPANY, id=company.id, company_id=company.id)


def user_resource(user: User) -> Resource:
    return Resource(
        type=ResourceType.USER,
        id=user.id,
        company_id=user.company_id,
        user_id=user.id,
        target_role=user.role,
    )


def building_resource(building: Building) -> Resource:
    return Resource(
        type=ResourceType.BUILDING,
        id=building.id,
        company_id=building.company_id,
        building_id=building.id,
    )


def space_resource(space: Space, company_id: uuid.UUID) -> Resource:
    return Resource(
        type=ResourceType.SPACE,
        id=space.id,
        company_id=company_id,
        building_id=space.building_id,
        space_id=space.id,
    )


def occupant_resource(occupant: Occupant, space: Space, company_id: uuid.UUID) -> Resource:
    return Resource(
        type=ResourceType.OCCUPANT,
        id=occupant.id,
        company_id=company_id,
        building_id=space.building_id,
        space_id=space.id,
        user_id=occupant.user_id,
    )


def entitlement_resource(
    entitlement: BuildingEntitlement,
    building_company_id: uuid.UUID,
    grantee: Optional[User] = None,
) -> Resource:
    return Resource(
        type=ResourceType.BUILDING_ENTITLEMENT,
        id=entitlement.id,
        company_id=building_company_id,
        building_id=entitlement.building_id,
        user_id=entitlement.user_id,
        subject_company_id=grantee.company_id if grantee else None,
        target_role=grantee.role if grantee else None,
    )


def invitation_resource(invitation: Invitation) -> Resource:
    return Resource(
        type=ResourceType.INVITATION,
        id=invitation.id,
        company_id=invitation.company_id,
    )


def ticket_resource(
    ticket: Ticket,
    company_id: uuid.UUID,
    resource_type: ResourceType = ResourceType.TICKET,
    is_internal: bool = False,
) -> Resource:
    """Ticket attributes; also used for its status log and comments."""
    return Resource(
        type=resource_type,
        id=ticket.id,
        company_id=company_id,
        building_id=ticket.building_id,
        space_id=ticket.space_id,
        created_by_user_id=ticket.created_by_user_id,
        is_internal=is_internal,
    )


# ---------------------------------------------------------------------------
# Loaders
# ---------------------------------------------------------------------------

async def load_company(db: AsyncSession, company_id: uuid.UUID) -> Company:
    company = await db.get(Company, company_id)
    if not company:
        raise NotFound("Company not found")
    return company


async def load_user(db: AsyncSession, user_id: uuid.UUID) -> User:
    user = await db.get(User, user_id)
    if not user:
        raise NotFound("User not found")
    return user


async def load_building(db: AsyncSession, building_id: uuid.UUID) -> Building:
    building = await db.get(Building, building_id)
    if not building:
        raise NotFound("Building not found")
    return building


async def load_space(db: AsyncSession, space_id: uuid.UUID) -> tuple[Space, uuid.UUID]:
    """Space plus the company that owns its building."""
    result = await db.execute(
        select(Space, Building.company_id)
        .join(Building, Building.id == Space.building_id)
        .where(Space.id == space_id)
    )
    row = result.one_or_none()
    if not row:
        raise NotFound("Space not found")
    return row[0], row[1]


async def load_occupant(
    db: AsyncSession, occupant_id: uuid.UUID
) -> tuple[Occupant, Space, uuid.UUID]:
    result = await db.execute(
        select(Occupant, Space, Building.company_id)
        .join(Space, Space.id == Occupant.space_id)
        .join(Building, Building.id == Space.building_id)
        .where(Occupant.id == occupant_id)
    )
    row = result.one_or_none()
    if not row:
        raise NotFound("Occupant not found")
    return row[0], row[1], row[2]


async def load_ticket(
    db: AsyncSession,
    ticket_id: uuid.UUID,
    for_update: bool = False,
) -> tuple[Ticket, uuid.UUID]:
    """Ticket plus its building's company; optionally row-locked."""
    query = (
        select(Ticket, Building.company_id)
        .join(Building, Building.id == Ticket.building_id)
        .where(Ticket.id == ticket_id)
    )
    if for_update:
        query = query.with_for_update(of=Ticket).execution_options(populate_existing=True)
    result = await db.execute(query)
    row = result.one_or_none()
    if not row:
        raise NotFound("Ticket not found")
    return row[0], row[1]
