"""Building and space administration."""

import logging
import uuid
from typing import Optional, Union

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import Conflict, DependencyExists, ValidationError
from app.models.building import Building, Space
from app.models.enums import SpaceType, UserRole
from app.models.occupant import Occupant
from app.models.ticket import Ticket
from app.schemas.building import BuildingCreate, BuildingUpdate
from app.schemas.space import CommonAreaSpaceCreate, SpaceUpdate, UnitSpaceCreate
from app.services.access import (
    building_resource,
    can_read,
    load_building,
    load_company,
    load_space,
    require,
    require_visible,
    space_resource,
)
from app.services.identity import CallerContext
from app.services.policy import Action, Resource, ResourceType

logger = logging.getLogger(__name__)


def validate_space_shape(space: Space) -> None:
    """A unit has a unit number and no area kind; a common area the reverse."""
    if space.space_type == SpaceType.UNIT:
        if not space.unit_number:
            raise ValidationError("A unit requires a unit_number")
        if space.common_area_type is not None:
            raise ValidationError("A unit cannot have a common_area_type")
    elif space.space_type == SpaceType.COMMON_AREA:
        if space.common_area_type is None:
            raise ValidationError("A common area requires a common_area_type")
        if space.unit_number is not None:
            raise ValidationError("A common area cannot have a unit_number")
        if space.bedrooms is not None or space.bathrooms is not None:
            raise ValidationError("A common area cannot have bedrooms or bathrooms")


async def _count(db: AsyncSession, column, *where) -> int:
    result = await db.execute(select(func.count(column)).where(*where))
    return result.scalar() or 0


class BuildingService:
    """Service for buildings."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, ctx: CallerContext, data: BuildingCreate) -> Building:
        company_id = data.company_id
        if company_id is None:
            if ctx.is_platform_admin:
                raise ValidationError("company_id is required")
            company_id = ctx.company_id

        require(ctx, Action.CREATE, Resource(type=ResourceType.BUILDING, company_id=company_id))
        await load_company(self.db, company_id)

        building = Building(**data.model_dump(exclude={"company_id"}), company_id=company_id)
        self.db.add(building)
        await self.db.flush()
        await self.db.refresh(building)
        logger.info(f"[BUILDINGS] created building={building.id} company={company_id}")
        return building

    async def list_buildings(
        self,
        ctx: CallerContext,
        company_id: Optional[uuid.UUID] = None,
    ) -> list[Building]:
        query = select(Building)
        if ctx.role == UserRole.COMPANY_ADMIN:
            query = query.where(Building.company_id == ctx.company_id)
        elif ctx.role == UserRole.COMPANY_STAFF:
            if not ctx.entitled_building_ids:
                return []
            query = query.where(Building.id.in_(ctx.entitled_building_ids))
        elif ctx.role == UserRole.RESIDENT:
            if not ctx.resident_building_ids:
                return []
            query = query.where(Building.id.in_(ctx.resident_building_ids))

        if company_id:
            query = query.where(Building.company_id == company_id)

        result = await self.db.execute(query.order_by(Building.name, Building.address_line1))
        return [b for b in result.scalars().all() if can_read(ctx, building_resource(b))]

    async def get(self, ctx: CallerContext, building_id: uuid.UUID) -> Building:
        building = await load_building(self.db, building_id)
        require_visible(ctx, Action.READ, building_resource(building), "Building")
        return building

    async def update(self, ctx: CallerContext, building_id: uuid.UUID, data: BuildingUpdate) -> Building:
        building = await load_building(self.db, building_id)
        require_visible(ctx, Action.UPDATE, building_resource(building), "Building")

        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(building, field, value)
        await self.db.flush()
        await self.db.refresh(building)
        return building

    async def delete(self, ctx: CallerContext, building_id: uuid.UUID) -> None:
        building = await load_building(self.db, building_id)
        require_visible(ctx, Action.DELETE, building_resource(building), "Building")

        if await _count(self.db, Ticket.id, Ticket.building_id == building.id):
            raise DependencyExists("Building has tickets")
        if await _count(self.db, Space.id, Space.building_id == building.id):
            raise DependencyExists("Building has spaces; delete them first")

        await self.db.delete(building)
        await self.db.flush()
        logger.info(f"[BUILDINGS] deleted building={building_id}")


class SpaceService:
    """Service for units and common areas."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _ensure_unit_free(
        self,
        building_id: uuid.UUID,
        unit_number: str,
        exclude_space_id: Optional[uuid.UUID] = None,
    ) -> None:
        query = select(Space.id).where(
            Space.building_id == building_id,
            func.lower(Space.unit_number) == unit_number.lower(),
        )
        if exclude_space_id:
            query = query.where(Space.id != exclude_space_id)
        result = await self.db.execute(query)
        if result.first():
            raise Conflict(f"Unit {unit_number} already exists in this building")

    async def _flush_space(self, space: Space) -> None:
        try:
            async with self.db.begin_nested():
                await self.db.flush()
        except IntegrityError:
            raise Conflict(f"Unit {space.unit_number} already exists in this building")

    async def create(
        self,
        ctx: CallerContext,
        building_id: uuid.UUID,
        data: Union[UnitSpaceCreate, CommonAreaSpaceCreate],
    ) -> Space:
        building = await load_building(self.db, building_id)
        require_visible(ctx, Action.READ, building_resource(building), "Building")
        require(
            ctx,
            Action.CREATE,
            Resource(type=ResourceType.SPACE, company_id=building.company_id, building_id=building.id),
        )

        space = Space(
            building_id=building.id,
            space_type=SpaceType(data.space_type),
            **data.model_dump(exclude={"space_type"}),
        )
        validate_space_shape(space)
        if space.unit_number:
            await self._ensure_unit_free(building.id, space.unit_number)

        self.db.add(space)
        await self._flush_space(space)
        await self.db.refresh(space)
        return space

    async def list_for_building(self, ctx: CallerContext, building_id: uuid.UUID) -> list[Space]:
        building = await load_building(self.db, building_id)
        require_visible(ctx, Action.READ, building_resource(building), "Building")

        result = await self.db.execute(
            select(Space)
            .where(Space.building_id == building.id)
            .order_by(Space.space_type, Space.unit_number)
        )
        return [
            space
            for space in result.scalars().all()
            if can_read(ctx, space_resource(space, building.company_id))
        ]

    async def get(self, ctx: CallerContext, space_id: uuid.UUID) -> Space:
        space, company_id = await load_space(self.db, space_id)
        require_visible(ctx, Action.READ, space_resource(space, company_id), "Space")
        return space

    async def update(self, ctx: CallerContext, space_id: uuid.UUID, data: SpaceUpdate) -> Space:
        """Merge the changes and re-check the unit/common-area shape."""
        space, company_id = await load_space(self.db, space_id)
        require_visible(ctx, Action.UPDATE, space_resource(space, company_id), "Space")

        changes = data.model_dump(exclude_unset=True)
        new_type = changes.get("space_type", space.space_type)
        if new_type != space.space_type:
            # Switching kind drops the other variant's fields unless re-sent
            if new_type == SpaceType.COMMON_AREA:
                if await _count(self.db, Occupant.id, Occupant.space_id == space.id):
                    raise DependencyExists("Unit has occupants; remove them before making it a common area")
                changes.setdefault("unit_number", None)
                changes.setdefault("bedrooms", None)
                changes.setdefault("bathrooms", None)
            else:
                changes.setdefault("common_area_type", None)

        for field, value in changes.items():
            setattr(space, field, value)
        validate_space_shape(space)
        if space.unit_number and "unit_number" in changes:
            await self._ensure_unit_free(space.building_id, space.unit_number, exclude_space_id=space.id)

        await self._flush_space(space)
        await self.db.refresh(space)
        return space

    async def delete(self, ctx: CallerContext, space_id: uuid.UUID) -> None:
        space, company_id = await load_space(self.db, space_id)
        require_visible(ctx, Action.DELETE, space_resource(space, company_id), "Space")

        if await _count(self.db, Ticket.id, Ticket.space_id == space.id):
            raise DependencyExists("Space has tickets")
        if await _count(self.db, Occupant.id, Occupant.space_id == space.id):
            raise DependencyExists("Space has occupants; remove them first")

        await self.db.delete(space)
        await self.db.flush()
