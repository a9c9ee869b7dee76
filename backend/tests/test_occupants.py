"""Occupant records and the resident account claim flow."""

import pytest
from sqlalchemy import select

from app.core.errors import (
    Conflict,
    DependencyExists,
    Forbidden,
    TokenAlreadyUsed,
    TokenExpired,
    ValidationError,
)
from app.models.enums import IssueType, OccupantType, TokenPurpose, TokenState, UserRole
from app.models.user import User
from app.schemas.occupant import OccupantCreate, OccupantUpdate
from app.schemas.ticket import TicketCreate
from app.services.identity import AuthenticatedUser
from app.services.jobs import pop_enqueued_jobs
from app.services.occupants import OccupantService
from app.services.tickets import TicketService
from app.services.tokens import TokenManager

pytestmark = pytest.mark.integration

TENANT_EMAIL = "terry.tenant@example.com"


def verified(uid, email):
    return AuthenticatedUser(uid=uid, email=email, email_verified=True)


async def _add_occupant(db, dispatcher, notifier, ctx, space, email=TENANT_EMAIL):
    occupant = await OccupantService(db).create(
        ctx,
        space.id,
        OccupantCreate(occupant_type=OccupantType.TENANT, name="Terry Tenant", email=email),
    )
    await db.commit()
    await dispatcher.dispatch_many(pop_enqueued_jobs(db))
    return occupant, notifier.tokens_for("claim", email)[-1]


class TestOccupantAdministration:
    async def test_create_sends_claim(self, db, world, context_for, dispatcher, notifier):
        admin = await context_for(world.acme_admin)
        occupant, raw = await _add_occupant(db, dispatcher, notifier, admin, world.unit_102)

        assert occupant.invite_sent_at is not None
        assert occupant.user_id is None
        kind, to, meta = notifier.sent[-1]
        assert (kind, to) == ("claim", TENANT_EMAIL)
        assert meta["space_label"] == "Unit 102, Tower"

    async def test_common_areas_have_no_occupants(self, db, world, context_for):
        admin = await context_for(world.acme_admin)
        with pytest.raises(ValidationError):
            await OccupantService(db).create(
                admin,
                world.boiler_room.id,
                OccupantCreate(occupant_type=OccupantType.TENANT, name="Nobody", email="n@example.com"),
            )

    async def test_staff_cannot_add_occupants(self, db, world, context_for):
        staff = await context_for(world.acme_staff)
        with pytest.raises(Forbidden):
            await OccupantService(db).create(
                staff,
                world.unit_102.id,
                OccupantCreate(occupant_type=OccupantType.HOMEOWNER, name="Owner", email="o@example.com"),
            )

    async def test_email_change_rotates_claim(self, db, world, context_for, dispatcher, notifier):
        admin = await context_for(world.acme_admin)
        occupant, old_raw = await _add_occupant(db, dispatcher, notifier, admin, world.unit_102)

        await OccupantService(db).update(admin, occupant.id, OccupantUpdate(email="terry.new@example.com"))
        await db.commit()
        await dispatcher.dispatch_many(pop_enqueued_jobs(db))

        old = await TokenManager(db).lookup(TokenPurpose.OCCUPANT_CLAIM, old_raw)
        assert old.state == TokenState.SUPERSEDED
        assert notifier.tokens_for("claim", "terry.new@example.com")

    async def test_resident_limited_to_name_and_phone(self, db, world, context_for):
        resident = await context_for(world.acme_resident)
        occupant = await OccupantService(db).update(
            resident, world.resident_occupant.id, OccupantUpdate(phone="+15555550123")
        )
        assert occupant.phone == "+15555550123"

        with pytest.raises(Forbidden):
            await OccupantService(db).update(
                resident,
                world.resident_occupant.id,
                OccupantUpdate(occupant_type=OccupantType.HOMEOWNER),
            )

    async def test_claimed_occupant_cannot_be_resent(self, db, world, context_for):
        admin = await context_for(world.acme_admin)
        with pytest.raises(TokenAlreadyUsed):
            await OccupantService(db).resend(admin, world.resident_occupant.id)

    async def test_delete_blocked_by_open_tickets(self, db, world, context_for):
        admin = await context_for(world.acme_admin)
        resident = await context_for(world.acme_resident)
        await TicketService(db).create(
            resident,
            TicketCreate(
                building_id=world.tower.id,
                space_id=world.unit_101.id,
                issue_type=IssueType.DRAIN_CLOG,
            ),
        )
        with pytest.raises(DependencyExists):
            await OccupantService(db).delete(admin, world.resident_occupant.id)


class TestClaim:
    async def test_claim_creates_resident(self, db, world, context_for, dispatcher, notifier):
        admin = await context_for(world.acme_admin)
        occupant, raw = await _add_occupant(db, dispatcher, notifier, admin, world.unit_102)

        identity = verified("uid-terry", TENANT_EMAIL)
        claimed, user = await OccupantService(db).claim(identity, raw)
        await db.commit()

        assert user.role == UserRole.RESIDENT
        assert user.company_id == world.acme.id
        assert claimed.user_id == user.id
        assert claimed.claimed_at is not None

        resident = await context_for(user)
        assert resident.resident_space_ids == frozenset({world.unit_102.id})

        with pytest.raises(TokenAlreadyUsed):
            await OccupantService(db).claim(identity, raw)

    async def test_existing_resident_links_second_home(self, db, world, context_for, dispatcher, notifier):
        admin = await context_for(world.acme_admin)
        occupant, raw = await _add_occupant(
            db, dispatcher, notifier, admin, world.unit_102, email=world.acme_resident.email
        )

        identity = verified(world.acme_resident.firebase_uid, world.acme_resident.email)
        _, user = await OccupantService(db).claim(identity, raw)
        await db.commit()

        assert user.id == world.acme_resident.id
        resident = await context_for(user)
        assert resident.resident_space_ids == frozenset({world.unit_101.id, world.unit_102.id})

    async def test_staff_identity_cannot_claim(self, db, world, context_for, dispatcher, notifier):
        admin = await context_for(world.acme_admin)
        _, raw = await _add_occupant(db, dispatcher, notifier, admin, world.unit_102, email=world.acme_staff.email)

        identity = verified(world.acme_staff.firebase_uid, world.acme_staff.email)
        with pytest.raises(Conflict):
            await OccupantService(db).claim(identity, raw)

    async def test_superseded_claim_link_rejected(self, db, world, context_for, dispatcher, notifier):
        admin = await context_for(world.acme_admin)
        occupant, old_raw = await _add_occupant(db, dispatcher, notifier, admin, world.unit_102)
        await OccupantService(db).resend(admin, occupant.id)
        await db.commit()

        with pytest.raises(TokenExpired):
            await OccupantService(db).claim(verified("uid-terry", TENANT_EMAIL), old_raw)
        await db.rollback()

        users = await db.execute(select(User).where(User.email == TENANT_EMAIL))
        assert users.scalar_one_or_none() is None

    async def test_unverified_email_cannot_claim(self, db, world, context_for, dispatcher, notifier):
        admin = await context_for(world.acme_admin)
        occupant, raw = await _add_occupant(db, dispatcher, notifier, admin, world.unit_102)

        with pytest.raises(Forbidden, match="Verify"):
            await OccupantService(db).claim(AuthenticatedUser(uid="uid-terry", email=TENANT_EMAIL), raw)
        await db.rollback()

        pending = await OccupantService(db).get(admin, occupant.id)
        assert pending.claimed_at is None
