"""Identity context resolution.

Turns a platform ``User`` row into the immutable ``CallerContext`` every
authorization decision is made against.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.building import Building, Space
from app.models.entitlement import BuildingEntitlement
from app.models.enums import UserRole
from app.models.occupant import Occupant
from app.models.user import User

logger = logging.getLogger(__name__)


class AuthenticatedUser:
    """Represents an authenticated identity from a Firebase JWT."""

    def __init__(
        self,
        uid: str,
        email: Optional[str] = None,
        email_verified: bool = False,
        claims: Optional[dict[str, Any]] = None,
    ):
        self.uid = uid
        self.email = email.strip().lower() if email else None
        self.email_verified = email_verified
        self.claims = claims or {}

    @property
    def display_name(self) -> Optional[str]:
        return self.claims.get("name")


@dataclass(frozen=True)
class CallerContext:
    """Resolved facts about the requester."""

    user_id: uuid.UUID
    role: UserRole
    company_id: Optional[uuid.UUID] = None
    entitled_building_ids: frozenset[uuid.UUID] = field(default_factory=frozenset)
    resident_space_ids: frozenset[uuid.UUID] = field(default_factory=frozenset)
    # Buildings containing the resident's spaces
    resident_building_ids: frozenset[uuid.UUID] = field(default_factory=frozenset)
    email: Optional[str] = None

    @property
    def is_platform_admin(self) -> bool:
        return self.role == UserRole.PLATFORM_ADMIN


async def resolve_caller_context(db: AsyncSession, user: User) -> CallerContext:
    """Load entitlements and residency for ``user``.

    Entitlements only count for company_staff and only for buildings of the
    user's own company.
    """
    entitled: frozenset[uuid.UUID] = frozenset()
    spaces: frozenset[uuid.UUID] = frozenset()
    resident_buildings: frozenset[uuid.UUID] = frozenset()

    if user.role == UserRole.COMPANY_STAFF and user.company_id is not None:
        result = await db.execute(
            select(BuildingEntitlement.building_id)
            .join(Building, Building.id == BuildingEntitlement.building_id)
            .where(
                BuildingEntitlement.user_id == user.id,
                Building.company_id == user.company_id,
            )
        )
        entitled = frozenset(result.scalars().all())

    if user.role == UserRole.RESIDENT:
        result = await db.execute(
            select(Space.id, Space.building_id)
            .join(Occupant, Occupant.space_id == Space.id)
            .where(Occupant.user_id == user.id)
        )
        rows = result.all()
        spaces = frozenset(r.id for r in rows)
        resident_buildings = frozenset(r.building_id for r in rows)

    ctx = CallerContext(
        user_id=user.id,
        role=user.role,
        company_id=user.company_id,
        entitled_building_ids=entitled,
        resident_space_ids=spaces,
        resident_building_ids=resident_buildings,
        email=user.email,
    )
    logger.debug(
        f"[IDENTITY] user={user.id} role={user.role.value} "
        f"entitled={len(entitled)} spaces={len(spaces)}"
    )
    return ctx
