"""Building entitlements: the only way company staff see a building."""

import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import Conflict, Forbidden, NotFound, ValidationError
from app.models.building import Building
from app.models.entitlement import BuildingEntitlement
from app.models.enums import AuditAction, UserRole
from app.models.user import User
from app.services.access import (
    building_resource,
    can_read,
    entitlement_resource,
    load_building,
    load_user,
    require,
    require_visible,
)
from app.services.audit import AuditService
from app.services.identity import CallerContext
from app.services.policy import Action, Resource, ResourceType

logger = logging.getLogger(__name__)


class EntitlementService:
    """Grant, revoke and list building entitlements."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    async def grant(
        self,
        ctx: CallerContext,
        user_id: uuid.UUID,
        building_id: uuid.UUID,
    ) -> BuildingEntitlement:
        """Give a company_staff user access to one building of their company."""
        building = await load_building(self.db, building_id)
        require_visible(ctx, Action.READ, building_resource(building), "Building")
        grantee = await load_user(self.db, user_id)

        require(
            ctx,
            Action.CREATE,
            Resource(
                type=ResourceType.BUILDING_ENTITLEMENT,
                company_id=building.company_id,
                building_id=building.id,
                user_id=grantee.id,
                subject_company_id=grantee.company_id,
                target_role=grantee.role,
            ),
        )
        if grantee.company_id != building.company_id:
            raise Forbidden("User and building belong to different companies")
        if grantee.role != UserRole.COMPANY_STAFF:
            raise ValidationError("Entitlements can only be granted to company staff")

        existing = await self.db.execute(
            select(BuildingEntitlement.id).where(
                BuildingEntitlement.user_id == grantee.id,
                BuildingEntitlement.building_id == building.id,
            )
        )
        if existing.first():
            raise Conflict("User already has access to this building")

        entitlement = BuildingEntitlement(
            user_id=grantee.id,
            building_id=building.id,
            granted_by_user_id=ctx.user_id,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(entitlement)
                await self.db.flush()
        except IntegrityError:
            raise Conflict("User already has access to this building")

        await self.audit.log(
            action=AuditAction.ENTITLEMENT_GRANTED,
            resource_type="building_entitlement",
            resource_id=entitlement.id,
            company_id=building.company_id,
            user_id=ctx.user_id,
            details={"grantee_id": str(grantee.id), "building_id": str(building.id)},
        )
        await self.db.refresh(entitlement)
        logger.info(f"[ENTITLEMENTS] granted user={grantee.id} building={building.id} by user={ctx.user_id}")
        return entitlement

    async def revoke(self, ctx: CallerContext, entitlement_id: uuid.UUID) -> bool:
        """Remove an entitlement. Returns False when it was already gone."""
        entitlement = await self.db.get(BuildingEntitlement, entitlement_id)
        if entitlement is None:
            return False

        building = await self.db.get(Building, entitlement.building_id)
        grantee = await self.db.get(User, entitlement.user_id)
        require_visible(
            ctx,
            Action.DELETE,
            entitlement_resource(entitlement, building.company_id, grantee),
            "Entitlement",
        )

        await self.audit.log(
            action=AuditAction.ENTITLEMENT_REVOKED,
            resource_type="building_entitlement",
            resource_id=entitlement.id,
            company_id=building.company_id,
            user_id=ctx.user_id,
            details={"grantee_id": str(entitlement.user_id), "building_id": str(entitlement.building_id)},
        )
        await self.db.delete(entitlement)
        await self.db.flush()
        logger.info(f"[ENTITLEMENTS] revoked entitlement={entitlement_id} by user={ctx.user_id}")
        return True

    async def list_entitlements(
        self,
        ctx: CallerContext,
        building_id: Optional[uuid.UUID] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> list[BuildingEntitlement]:
        if ctx.role == UserRole.RESIDENT:
            raise Forbidden("Residents cannot view building entitlements")

        query = select(BuildingEntitlement, Building.company_id, User).join(
            Building, Building.id == BuildingEntitlement.building_id
        ).join(User, User.id == BuildingEntitlement.user_id)

        if ctx.role == UserRole.COMPANY_ADMIN:
            query = query.where(Building.company_id == ctx.company_id)
        elif ctx.role == UserRole.COMPANY_STAFF:
            query = query.where(BuildingEntitlement.user_id == ctx.user_id)

        if building_id:
            if ctx.role != UserRole.COMPANY_STAFF:
                building = await load_building(self.db, building_id)
                require_visible(ctx, Action.READ, building_resource(building), "Building")
            query = query.where(BuildingEntitlement.building_id == building_id)
        if user_id:
            query = query.where(BuildingEntitlement.user_id == user_id)

        result = await self.db.execute(query.order_by(BuildingEntitlement.created_at))
        return [
            entitlement
            for entitlement, company_id, grantee in result.all()
            if can_read(ctx, entitlement_resource(entitlement, company_id, grantee))
        ]

    async def get(self, ctx: CallerContext, entitlement_id: uuid.UUID) -> BuildingEntitlement:
        entitlement = await self.db.get(BuildingEntitlement, entitlement_id)
        if entitlement is None:
            raise NotFound("Entitlement not found")
        building = await self.db.get(Building, entitlement.building_id)
        grantee = await self.db.get(User, entitlement.user_id)
        require_visible(
            ctx,
            Action.READ,
            entitlement_resource(entitlement, building.company_id, grantee),
            "Entitlement",
        )
        return entitlement
