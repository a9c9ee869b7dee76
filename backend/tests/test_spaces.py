"""Buildings and the unit / common-area space variants."""

import pytest
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from app.core.errors import Conflict, DependencyExists, Forbidden, NotFound, ValidationError
from app.models.enums import CommonAreaType, IssueType, SpaceType
from app.schemas.building import BuildingCreate
from app.schemas.space import CommonAreaSpaceCreate, SpaceCreate, SpaceUpdate, UnitSpaceCreate
from app.schemas.ticket import TicketCreate
from app.services.buildings import BuildingService, SpaceService
from app.services.tickets import TicketService

space_adapter = TypeAdapter(SpaceCreate)


@pytest.mark.unit
class TestSpacePayloads:
    def test_discriminator_picks_variant(self):
        unit = space_adapter.validate_python({"space_type": "unit", "unit_number": "4B", "bedrooms": 2})
        area = space_adapter.validate_python({"space_type": "common_area", "common_area_type": "pool"})
        assert isinstance(unit, UnitSpaceCreate)
        assert isinstance(area, CommonAreaSpaceCreate)
        assert area.common_area_type == CommonAreaType.POOL

    def test_unit_with_common_area_type_rejected(self):
        with pytest.raises(PydanticValidationError):
            space_adapter.validate_python(
                {"space_type": "unit", "unit_number": "4B", "common_area_type": "pool"}
            )

    def test_common_area_with_unit_number_rejected(self):
        with pytest.raises(PydanticValidationError):
            space_adapter.validate_python(
                {"space_type": "common_area", "common_area_type": "roof", "unit_number": "R"}
            )

    def test_unit_requires_number(self):
        with pytest.raises(PydanticValidationError):
            space_adapter.validate_python({"space_type": "unit"})

    def test_update_cannot_clear_space_type(self):
        with pytest.raises(PydanticValidationError, match="space_type cannot be null"):
            SpaceUpdate.model_validate({"space_type": None})

    def test_update_may_clear_optional_fields(self):
        update = SpaceUpdate.model_validate({"floor": None, "bedrooms": None})
        assert update.model_dump(exclude_unset=True) == {"floor": None, "bedrooms": None}


@pytest.mark.integration
class TestSpaceService:
    async def test_admin_adds_unit(self, db, world, context_for):
        admin = await context_for(world.acme_admin)
        space = await SpaceService(db).create(
            admin, world.annex.id, UnitSpaceCreate(space_type="unit", unit_number="2C", floor=2)
        )
        assert space.space_type == SpaceType.UNIT
        assert space.common_area_type is None

    async def test_duplicate_unit_number_conflicts_case_insensitively(self, db, world, context_for):
        admin = await context_for(world.acme_admin)
        service = SpaceService(db)
        await service.create(admin, world.annex.id, UnitSpaceCreate(space_type="unit", unit_number="3a"))

        with pytest.raises(Conflict):
            await service.create(admin, world.annex.id, UnitSpaceCreate(space_type="unit", unit_number="3A"))

    async def test_same_unit_number_in_other_building_is_fine(self, db, world, context_for):
        admin = await context_for(world.acme_admin)
        space = await SpaceService(db).create(
            admin, world.annex.id, UnitSpaceCreate(space_type="unit", unit_number="101")
        )
        assert space.building_id == world.annex.id

    async def test_update_into_invalid_shape_rejected(self, db, world, context_for):
        admin = await context_for(world.acme_admin)
        with pytest.raises(ValidationError):
            await SpaceService(db).update(
                admin, world.unit_102.id, SpaceUpdate(common_area_type=CommonAreaType.ROOF)
            )

    async def test_switching_kind_clears_unit_fields(self, db, world, context_for):
        admin = await context_for(world.acme_admin)
        space = await SpaceService(db).update(
            admin,
            world.unit_102.id,
            SpaceUpdate(space_type=SpaceType.COMMON_AREA, common_area_type=CommonAreaType.LAUNDRY),
        )
        assert space.unit_number is None
        assert space.bedrooms is None
        assert space.common_area_type == CommonAreaType.LAUNDRY

    async def test_rename_onto_existing_unit_conflicts(self, db, world, context_for):
        admin = await context_for(world.acme_admin)
        with pytest.raises(Conflict):
            await SpaceService(db).update(admin, world.unit_102.id, SpaceUpdate(unit_number="101"))

    async def test_staff_read_only(self, db, world, context_for):
        staff = await context_for(world.acme_staff)
        spaces = await SpaceService(db).list_for_building(staff, world.tower.id)
        assert {s.id for s in spaces} == {world.unit_101.id, world.unit_102.id, world.boiler_room.id}

        with pytest.raises(Forbidden):
            await SpaceService(db).create(
                staff, world.tower.id, UnitSpaceCreate(space_type="unit", unit_number="103")
            )

    async def test_resident_sees_only_own_space(self, db, world, context_for):
        resident = await context_for(world.acme_resident)
        spaces = await SpaceService(db).list_for_building(resident, world.tower.id)
        assert [s.id for s in spaces] == [world.unit_101.id]

        with pytest.raises(NotFound):
            await SpaceService(db).get(resident, world.unit_102.id)

    async def test_delete_blocked_by_occupants(self, db, world, context_for):
        admin = await context_for(world.acme_admin)
        with pytest.raises(DependencyExists):
            await SpaceService(db).delete(admin, world.unit_101.id)

        await SpaceService(db).delete(admin, world.unit_102.id)


@pytest.mark.integration
class TestBuildingService:
    async def test_company_admin_creates_in_own_company(self, db, world, context_for):
        admin = await context_for(world.acme_admin)
        building = await BuildingService(db).create(
            admin,
            BuildingCreate(address_line1="9 Elm St", city="Springfield", state="IL", zip="62702"),
        )
        assert building.company_id == world.acme.id

    async def test_platform_admin_must_name_company(self, db, world, context_for):
        platform = await context_for(world.platform_admin)
        with pytest.raises(ValidationError):
            await BuildingService(db).create(
                platform,
                BuildingCreate(address_line1="9 Elm St", city="Springfield", state="IL", zip="62702"),
            )

    async def test_admin_cannot_create_for_other_company(self, db, world, context_for):
        admin = await context_for(world.acme_admin)
        with pytest.raises(Forbidden):
            await BuildingService(db).create(
                admin,
                BuildingCreate(
                    company_id=world.brightwater.id,
                    address_line1="9 Elm St",
                    city="Springfield",
                    state="IL",
                    zip="62702",
                ),
            )

    async def test_listing_is_scoped(self, db, world, context_for):
        admin = await context_for(world.acme_admin)
        staff = await context_for(world.acme_staff)
        unentitled = await context_for(world.acme_staff_unentitled)

        assert {b.id for b in await BuildingService(db).list_buildings(admin)} == {world.tower.id, world.annex.id}
        assert [b.id for b in await BuildingService(db).list_buildings(staff)] == [world.tower.id]
        assert await BuildingService(db).list_buildings(unentitled) == []

    async def test_delete_blocked_by_spaces(self, db, world, context_for):
        admin = await context_for(world.acme_admin)
        with pytest.raises(DependencyExists):
            await BuildingService(db).delete(admin, world.tower.id)
        await BuildingService(db).delete(admin, world.annex.id)

    async def test_delete_blocked_by_tickets(self, db, world, context_for):
        admin = await context_for(world.acme_admin)
        await _raise_ticket(db, admin, world.annex, await _annex_unit(db, admin, world))

        with pytest.raises(DependencyExists, match="tickets"):
            await BuildingService(db).delete(admin, world.annex.id)


async def _annex_unit(db, ctx, world):
    space = await SpaceService(db).create(ctx, world.annex.id, UnitSpaceCreate(space_type="unit", unit_number="7"))
    await db.commit()
    return space


async def _raise_ticket(db, ctx, building, space):
    ticket, _ = await TicketService(db).create(
        ctx,
        TicketCreate(building_id=building.id, space_id=space.id, issue_type=IssueType.DRAIN_CLOG),
    )
    await db.commit()
    return ticket


@pytest.mark.integration
class TestSpaceGuards:
    async def test_delete_blocked_by_tickets(self, db, world, context_for):
        admin = await context_for(world.acme_admin)
        await _raise_ticket(db, admin, world.tower, world.unit_102)

        with pytest.raises(DependencyExists, match="tickets"):
            await SpaceService(db).delete(admin, world.unit_102.id)

    async def test_occupied_unit_cannot_become_common_area(self, db, world, context_for):
        admin = await context_for(world.acme_admin)
        with pytest.raises(DependencyExists):
            await SpaceService(db).update(
                admin,
                world.unit_101.id,
                SpaceUpdate(space_type=SpaceType.COMMON_AREA, common_area_type=CommonAreaType.LAUNDRY),
            )
        await db.rollback()

        space = await SpaceService(db).get(admin, world.unit_101.id)
        assert space.space_type == SpaceType.UNIT
        assert space.unit_number == "101"
