"""Building entitlement administration."""

import pytest
from sqlalchemy import select

from app.core.errors import Conflict, Forbidden, NotFound, ValidationError
from app.models.entitlement import BuildingEntitlement
from app.models.enums import UserRole
from app.schemas.user import UserUpdate
from app.services.buildings import BuildingService
from app.services.companies import UserService
from app.services.entitlements import EntitlementService

pytestmark = pytest.mark.integration


class TestGrant:
    async def test_admin_grants_own_staff(self, db, world, context_for):
        admin = await context_for(world.acme_admin)
        entitlement = await EntitlementService(db).grant(admin, world.acme_staff_unentitled.id, world.annex.id)
        await db.commit()

        assert entitlement.granted_by_user_id == world.acme_admin.id
        staff = await context_for(world.acme_staff_unentitled)
        assert world.annex.id in staff.entitled_building_ids

    async def test_cross_company_grant_is_forbidden(self, db, world, context_for):
        admin = await context_for(world.acme_admin)
        with pytest.raises(Forbidden):
            await EntitlementService(db).grant(admin, world.brightwater_staff.id, world.tower.id)

    async def test_building_of_other_company_is_not_found(self, db, world, context_for):
        admin = await context_for(world.acme_admin)
        with pytest.raises(NotFound):
            await EntitlementService(db).grant(admin, world.acme_staff.id, world.harbor.id)

    async def test_platform_admin_still_cannot_mix_companies(self, db, world, context_for):
        platform = await context_for(world.platform_admin)
        with pytest.raises(Forbidden):
            await EntitlementService(db).grant(platform, world.brightwater_staff.id, world.tower.id)

    async def test_duplicate_grant_conflicts(self, db, world, context_for):
        admin = await context_for(world.acme_admin)
        with pytest.raises(Conflict):
            await EntitlementService(db).grant(admin, world.acme_staff.id, world.tower.id)

    async def test_only_staff_receive_entitlements(self, db, world, context_for):
        admin = await context_for(world.acme_admin)
        with pytest.raises(ValidationError):
            await EntitlementService(db).grant(admin, world.acme_admin.id, world.tower.id)

    async def test_staff_cannot_grant(self, db, world, context_for):
        staff = await context_for(world.acme_staff)
        with pytest.raises(Forbidden):
            await EntitlementService(db).grant(staff, world.acme_staff_unentitled.id, world.tower.id)


class TestRevokeAndList:
    async def _existing(self, db, world):
        result = await db.execute(
            select(BuildingEntitlement).where(BuildingEntitlement.user_id == world.acme_staff.id)
        )
        return result.scalar_one()

    async def test_revoke_removes_visibility(self, db, world, context_for):
        admin = await context_for(world.acme_admin)
        entitlement = await self._existing(db, world)

        assert await EntitlementService(db).revoke(admin, entitlement.id) is True
        await db.commit()

        staff = await context_for(world.acme_staff)
        assert staff.entitled_building_ids == frozenset()
        assert await BuildingService(db).list_buildings(staff) == []

    async def test_revoke_missing_returns_false(self, db, world, context_for):
        admin = await context_for(world.acme_admin)
        entitlement = await self._existing(db, world)
        await EntitlementService(db).revoke(admin, entitlement.id)
        assert await EntitlementService(db).revoke(admin, entitlement.id) is False

    async def test_other_company_cannot_revoke(self, db, world, context_for):
        outsider = await context_for(world.brightwater_admin)
        entitlement = await self._existing(db, world)
        with pytest.raises(NotFound):
            await EntitlementService(db).revoke(outsider, entitlement.id)

    async def test_staff_list_only_their_own(self, db, world, context_for):
        staff = await context_for(world.acme_staff)
        entitlements = await EntitlementService(db).list_entitlements(staff)
        assert [e.user_id for e in entitlements] == [world.acme_staff.id]

    async def test_residents_cannot_list(self, db, world, context_for):
        resident = await context_for(world.acme_resident)
        with pytest.raises(Forbidden):
            await EntitlementService(db).list_entitlements(resident)

    async def test_leaving_staff_role_drops_entitlements(self, db, world, context_for):
        admin = await context_for(world.acme_admin)
        await UserService(db).update(admin, world.acme_staff.id, UserUpdate(role=UserRole.COMPANY_ADMIN))
        await db.commit()

        remaining = await db.execute(
            select(BuildingEntitlement).where(BuildingEntitlement.user_id == world.acme_staff.id)
        )
        assert remaining.scalars().all() == []
