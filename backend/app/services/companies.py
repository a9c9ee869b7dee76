"""Company administration and user management."""

import logging
import uuid
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import Conflict, DependencyExists, Forbidden, ValidationError
from app.models.building import Building
from app.models.company import Company
from app.models.entitlement import BuildingEntitlement
from app.models.enums import UserRole
from app.models.occupant import Occupant
from app.models.ticket import Ticket, TicketComment
from app.models.user import User
from app.schemas.company import CompanyCreate, CompanyUpdate
from app.schemas.user import UserUpdate
from app.services.access import (
    can_read,
    company_resource,
    load_company,
    load_user,
    require,
    require_visible,
    user_resource,
)
from app.services.identity import CallerContext
from app.services.policy import Action, Resource, ResourceType

logger = logging.getLogger(__name__)

SELF_EDITABLE = frozenset({"full_name", "phone"})
COMPANY_ASSIGNABLE_ROLES = frozenset({UserRole.COMPANY_ADMIN, UserRole.COMPANY_STAFF})


class CompanyService:
    """Service for companies. Only platform administrators change them."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _ensure_slug_free(self, slug: str) -> None:
        result = await self.db.execute(select(Company.id).where(Company.slug == slug))
        if result.first():
            raise Conflict(f"Company slug '{slug}' is already taken")

    async def create(self, ctx: CallerContext, data: CompanyCreate) -> Company:
        require(ctx, Action.CREATE, Resource(type=ResourceType.COMPANY))
        await self._ensure_slug_free(data.slug)

        company = Company(name=data.name, slug=data.slug, settings=data.settings)
        self.db.add(company)
        await self.db.flush()
        await self.db.refresh(company)
        logger.info(f"[COMPANIES] created company={company.id} slug={company.slug}")
        return company

    async def list_companies(self, ctx: CallerContext) -> list[Company]:
        query = select(Company).order_by(Company.name)
        if not ctx.is_platform_admin:
            if ctx.company_id is None:
                return []
            query = query.where(Company.id == ctx.company_id)
        result = await self.db.execute(query)
        return [c for c in result.scalars().all() if can_read(ctx, company_resource(c))]

    async def get(self, ctx: CallerContext, company_id: uuid.UUID) -> Company:
        company = await load_company(self.db, company_id)
        require_visible(ctx, Action.READ, company_resource(company), "Company")
        return company

    async def update(self, ctx: CallerContext, company_id: uuid.UUID, data: CompanyUpdate) -> Company:
        company = await load_company(self.db, company_id)
        require_visible(ctx, Action.UPDATE, company_resource(company), "Company")

        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(company, field, value)
        await self.db.flush()
        await self.db.refresh(company)
        return company

    async def delete(self, ctx: CallerContext, company_id: uuid.UUID) -> None:
        company = await load_company(self.db, company_id)
        require_visible(ctx, Action.DELETE, company_resource(company), "Company")

        buildings = await self.db.execute(select(func.count(Building.id)).where(Building.company_id == company.id))
        if buildings.scalar():
            raise DependencyExists("Company still has buildings")
        users = await self.db.execute(select(func.count(User.id)).where(User.company_id == company.id))
        if users.scalar():
            raise DependencyExists("Company still has users")

        await self.db.delete(company)
        await self.db.flush()
        logger.info(f"[COMPANIES] deleted company={company_id}")


class UserService:
    """Service for platform users."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_users(
        self,
        ctx: CallerContext,
        company_id: Optional[uuid.UUID] = None,
        role: Optional[UserRole] = None,
    ) -> list[User]:
        query = select(User)
        if ctx.role == UserRole.RESIDENT:
            query = query.where(User.id == ctx.user_id)
        elif not ctx.is_platform_admin:
            query = query.where(User.company_id == ctx.company_id)

        if company_id:
            query = query.where(User.company_id == company_id)
        if role:
            query = query.where(User.role == role)

        result = await self.db.execute(query.order_by(User.full_name))
        return [u for u in result.scalars().all() if can_read(ctx, user_resource(u))]

    async def get(self, ctx: CallerContext, user_id: uuid.UUID) -> User:
        user = await load_user(self.db, user_id)
        require_visible(ctx, Action.READ, user_resource(user), "User")
        return user

    async def update(self, ctx: CallerContext, user_id: uuid.UUID, data: UserUpdate) -> User:
        """Update a user.

        Non-platform callers editing themselves may only touch name and
        phone. Company administrators may move users of their own company
        between company_admin and company_staff. Leaving company_staff drops
        the user's building entitlements.
        """
        user = await load_user(self.db, user_id)
        require_visible(ctx, Action.UPDATE, user_resource(user), "User")

        changes = data.model_dump(exclude_unset=True)
        is_self = user.id == ctx.user_id

        if not ctx.is_platform_admin:
            if is_self and set(changes) - SELF_EDITABLE:
                raise Forbidden("You can only change your own name and phone")
            if "role" in changes and (
                changes["role"] not in COMPANY_ASSIGNABLE_ROLES
                or user.role not in COMPANY_ASSIGNABLE_ROLES
            ):
                raise Forbidden("Company administrators can only switch users between admin and staff")

        new_role = changes.get("role")
        if new_role is not None:
            require(ctx, Action.UPDATE, Resource(
                type=ResourceType.USER,
                id=user.id,
                company_id=user.company_id,
                user_id=user.id,
                target_role=new_role,
            ))
            if new_role != UserRole.PLATFORM_ADMIN and user.company_id is None:
                raise ValidationError("Users outside a company must stay platform administrators")

        previous_role = user.role
        for field, value in changes.items():
            setattr(user, field, value)

        if previous_role == UserRole.COMPANY_STAFF and user.role != UserRole.COMPANY_STAFF:
            await self.db.execute(delete(BuildingEntitlement).where(BuildingEntitlement.user_id == user.id))
            logger.info(f"[USERS] user={user.id} left company_staff; entitlements removed")

        await self.db.flush()
        await self.db.refresh(user)
        return user

    async def delete(self, ctx: CallerContext, user_id: uuid.UUID) -> None:
        user = await load_user(self.db, user_id)
        require_visible(ctx, Action.DELETE, user_resource(user), "User")
        if user.id == ctx.user_id:
            raise ValidationError("You cannot delete your own account")

        tickets = await self.db.execute(select(func.count(Ticket.id)).where(Ticket.created_by_user_id == user.id))
        if tickets.scalar():
            raise DependencyExists("User has created tickets; deactivate the account instead")
        occupants = await self.db.execute(select(func.count(Occupant.id)).where(Occupant.user_id == user.id))
        if occupants.scalar():
            raise DependencyExists("User is linked to an occupant record")
        comments = await self.db.execute(select(func.count(TicketComment.id)).where(TicketComment.user_id == user.id))
        if comments.scalar():
            raise DependencyExists("User has commented on tickets; deactivate the account instead")

        await self.db.execute(delete(BuildingEntitlement).where(BuildingEntitlement.user_id == user.id))
        await self.db.delete(user)
        await self.db.flush()
        logger.info(f"[USERS] deleted user={user_id}")
