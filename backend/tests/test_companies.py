"""Company administration and user deletion guards."""

import pytest
from sqlalchemy import select

from app.core.errors import Conflict, DependencyExists, Forbidden, NotFound, ValidationError
from app.models.entitlement import BuildingEntitlement
from app.models.enums import IssueType, UserRole
from app.models.user import User
from app.schemas.company import CompanyCreate, CompanyUpdate
from app.schemas.ticket import CommentCreate, TicketCreate
from app.services.companies import CompanyService, UserService
from app.services.tickets import TicketService

pytestmark = pytest.mark.integration


class TestCompanyService:
    async def test_platform_admin_creates_company(self, db, world, context_for):
        platform = await context_for(world.platform_admin)
        company = await CompanyService(db).create(platform, CompanyCreate(name="Northside Lofts", slug="northside"))
        assert company.slug == "northside"
        assert company.settings == {}

    async def test_duplicate_slug_conflicts(self, db, world, context_for):
        platform = await context_for(world.platform_admin)
        with pytest.raises(Conflict, match="acme"):
            await CompanyService(db).create(platform, CompanyCreate(name="Acme Again", slug="acme"))

    async def test_company_admin_cannot_create_or_rename(self, db, world, context_for):
        admin = await context_for(world.acme_admin)
        with pytest.raises(Forbidden):
            await CompanyService(db).create(admin, CompanyCreate(name="Side Business", slug="side-business"))
        with pytest.raises(Forbidden):
            await CompanyService(db).update(admin, world.acme.id, CompanyUpdate(name="Acme Holdings"))

    async def test_admins_see_only_their_company(self, db, world, context_for):
        admin = await context_for(world.acme_admin)
        platform = await context_for(world.platform_admin)
        assert [c.id for c in await CompanyService(db).list_companies(admin)] == [world.acme.id]
        assert len(await CompanyService(db).list_companies(platform)) == 2

    async def test_delete_blocked_by_buildings(self, db, world, context_for):
        platform = await context_for(world.platform_admin)
        with pytest.raises(DependencyExists, match="buildings"):
            await CompanyService(db).delete(platform, world.acme.id)

    async def test_delete_blocked_by_users(self, db, world, context_for):
        platform = await context_for(world.platform_admin)
        company = await CompanyService(db).create(platform, CompanyCreate(name="Quiet Co", slug="quiet-co"))
        db.add(User(
            firebase_uid="uid-quinn",
            email="quinn@quiet.com",
            full_name="Quinn",
            role=UserRole.COMPANY_ADMIN,
            company_id=company.id,
        ))
        await db.commit()

        with pytest.raises(DependencyExists, match="users"):
            await CompanyService(db).delete(platform, company.id)

    async def test_empty_company_can_be_deleted(self, db, world, context_for):
        platform = await context_for(world.platform_admin)
        company = await CompanyService(db).create(platform, CompanyCreate(name="Short Lived", slug="short-lived"))
        await db.commit()

        await CompanyService(db).delete(platform, company.id)
        await db.commit()
        assert company.id not in {c.id for c in await CompanyService(db).list_companies(platform)}


class TestUserDeletion:
    async def test_cannot_delete_self(self, db, world, context_for):
        admin = await context_for(world.acme_admin)
        with pytest.raises(ValidationError):
            await UserService(db).delete(admin, world.acme_admin.id)

    async def test_blocked_by_created_tickets(self, db, world, context_for):
        staff = await context_for(world.acme_staff)
        await TicketService(db).create(
            staff,
            TicketCreate(building_id=world.tower.id, space_id=world.unit_102.id, issue_type=IssueType.DRAIN_CLOG),
        )
        await db.commit()

        admin = await context_for(world.acme_admin)
        with pytest.raises(DependencyExists, match="created tickets"):
            await UserService(db).delete(admin, world.acme_staff.id)

    async def test_blocked_by_occupant_link(self, db, world, context_for):
        admin = await context_for(world.acme_admin)
        with pytest.raises(DependencyExists, match="occupant"):
            await UserService(db).delete(admin, world.acme_resident.id)

    async def test_blocked_by_comments(self, db, world, context_for):
        resident = await context_for(world.acme_resident)
        ticket, _ = await TicketService(db).create(
            resident,
            TicketCreate(building_id=world.tower.id, space_id=world.unit_101.id, issue_type=IssueType.DRAIN_CLOG),
        )
        await db.commit()
        staff = await context_for(world.acme_staff)
        await TicketService(db).create_comment(staff, ticket.id, CommentCreate(comment_text="Bringing a snake"))
        await db.commit()

        admin = await context_for(world.acme_admin)
        with pytest.raises(DependencyExists, match="commented"):
            await UserService(db).delete(admin, world.acme_staff.id)

    async def test_delete_drops_entitlements(self, db, world, context_for):
        admin = await context_for(world.acme_admin)
        await UserService(db).delete(admin, world.acme_staff.id)
        await db.commit()

        grants = await db.execute(
            select(BuildingEntitlement).where(BuildingEntitlement.user_id == world.acme_staff.id)
        )
        assert grants.scalars().all() == []
        assert await db.get(User, world.acme_staff.id) is None

    async def test_other_company_sees_not_found(self, db, world, context_for):
        outsider = await context_for(world.brightwater_admin)
        with pytest.raises(NotFound):
            await UserService(db).delete(outsider, world.acme_staff.id)
