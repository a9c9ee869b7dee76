"""Shared fixtures: in-memory database, seeded tenants and a recording notifier."""

import os

# Settings are read once at import time; configure before importing the app
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ.setdefault("FIREBASE_PROJECT_ID", "plumbline-test")
os.environ.setdefault("ALLOWED_ORIGINS", "http://localhost:3000")
os.environ["DEBUG"] = "true"
os.environ.pop("RESEND_API_KEY", None)

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.database import Base
from app.models import (
    Building,
    BuildingEntitlement,
    Company,
    Occupant,
    Space,
    User,
)
from app.models.enums import CommonAreaType, NotificationChannel, OccupantType, SpaceType, UserRole
from app.services.identity import CallerContext, resolve_caller_context
from app.services.notifications import DeliveryReceipt, NotificationDispatcher


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------

@dataclass
class World:
    """Two companies with admins, staff, residents, buildings and spaces."""

    acme: Company
    brightwater: Company
    platform_admin: User
    acme_admin: User
    acme_staff: User
    acme_staff_unentitled: User
    acme_resident: User
    brightwater_admin: User
    brightwater_staff: User
    tower: Building
    annex: Building
    harbor: Building
    unit_101: Space
    unit_102: Space
    boiler_room: Space
    harbor_unit: Space
    resident_occupant: Occupant
    extra: dict[str, Any] = field(default_factory=dict)


def make_user(
    email: str,
    role: UserRole,
    company: Optional[Company] = None,
    full_name: Optional[str] = None,
) -> User:
    return User(
        firebase_uid=f"uid-{email.split('@')[0]}",
        email=email,
        full_name=full_name or email.split("@")[0].replace(".", " ").title(),
        role=role,
        company_id=company.id if company else None,
        is_active=True,
    )


def make_building(company: Company, name: str) -> Building:
    return Building(
        company_id=company.id,
        name=name,
        address_line1=f"1 {name} Way",
        city="Springfield",
        state="IL",
        zip="62701",
    )


def make_unit(building: Building, unit_number: str) -> Space:
    return Space(
        building_id=building.id,
        space_type=SpaceType.UNIT,
        unit_number=unit_number,
        bedrooms=2,
        bathrooms=Decimal("1.5"),
    )


@pytest.fixture
async def world(db) -> World:
    acme = Company(name="Acme Property Management", slug="acme", settings={})
    brightwater = Company(name="Brightwater Realty", slug="brightwater", settings={})
    db.add_all([acme, brightwater])
    await db.flush()

    platform_admin = make_user("dispatch@plumbline.com", UserRole.PLATFORM_ADMIN)
    acme_admin = make_user("alice.admin@acme.com", UserRole.COMPANY_ADMIN, acme)
    acme_staff = make_user("sam.staff@acme.com", UserRole.COMPANY_STAFF, acme)
    acme_staff_unentitled = make_user("nora.new@acme.com", UserRole.COMPANY_STAFF, acme)
    acme_resident = make_user("rita.resident@example.com", UserRole.RESIDENT, acme)
    brightwater_admin = make_user("bob.admin@brightwater.com", UserRole.COMPANY_ADMIN, brightwater)
    brightwater_staff = make_user("carl.staff@brightwater.com", UserRole.COMPANY_STAFF, brightwater)
    db.add_all([
        platform_admin,
        acme_admin,
        acme_staff,
        acme_staff_unentitled,
        acme_resident,
        brightwater_admin,
        brightwater_staff,
    ])
    await db.flush()

    tower = make_building(acme, "Tower")
    annex = make_building(acme, "Annex")
    harbor = make_building(brightwater, "Harbor")
    db.add_all([tower, annex, harbor])
    await db.flush()

    unit_101 = make_unit(tower, "101")
    unit_102 = make_unit(tower, "102")
    boiler_room = Space(
        building_id=tower.id,
        space_type=SpaceType.COMMON_AREA,
        common_area_type=CommonAreaType.BOILER_ROOM,
    )
    harbor_unit = make_unit(harbor, "1A")
    db.add_all([unit_101, unit_102, boiler_room, harbor_unit])
    await db.flush()

    resident_occupant = Occupant(
        space_id=unit_101.id,
        user_id=acme_resident.id,
        occupant_type=OccupantType.TENANT,
        name=acme_resident.full_name,
        email=acme_resident.email,
        claimed_at=datetime.utcnow(),
    )
    db.add(resident_occupant)
    db.add(BuildingEntitlement(user_id=acme_staff.id, building_id=tower.id, granted_by_user_id=acme_admin.id))
    await db.commit()

    return World(
        acme=acme,
        brightwater=brightwater,
        platform_admin=platform_admin,
        acme_admin=acme_admin,
        acme_staff=acme_staff,
        acme_staff_unentitled=acme_staff_unentitled,
        acme_resident=acme_resident,
        brightwater_admin=brightwater_admin,
        brightwater_staff=brightwater_staff,
        tower=tower,
        annex=annex,
        harbor=harbor,
        unit_101=unit_101,
        unit_102=unit_102,
        boiler_room=boiler_room,
        harbor_unit=harbor_unit,
        resident_occupant=resident_occupant,
    )


@pytest.fixture
def context_for(db):
    """Resolve a fresh CallerContext for a seeded user."""

    async def _resolve(user: User) -> CallerContext:
        return await resolve_caller_context(db, user)

    return _resolve


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

class RecordingNotifier:
    """NotificationPort double that records every call.

    ``fail_for`` lists recipients whose delivery should fail.
    """

    def __init__(self):
        self.sent: list[tuple[str, str, Any]] = []
        self.fail_for: set[str] = set()

    def _receipt(self, kind: str, to: str, payload: Any) -> DeliveryReceipt:
        self.sent.append((kind, to, payload))
        if to in self.fail_for:
            return DeliveryReceipt(to, NotificationChannel.EMAIL, kind, ok=False, error="mailbox unavailable")
        return DeliveryReceipt(to, NotificationChannel.EMAIL, kind, ok=True)

    async def send_invite(self, email, token, meta):
        return [self._receipt("invite", email, {"token": token, **meta})]

    async def send_claim(self, email, token, meta):
        return [self._receipt("claim", email, {"token": token, **meta})]

    async def notify_status_change(self, recipients, ticket, old_status, new_status):
        return [
            self._receipt("status_change", to, {"ticket": ticket, "old": old_status, "new": new_status})
            for to in recipients
        ]

    async def notify_new_ticket(self, recipients, ticket):
        return [self._receipt("new_ticket", to, {"ticket": ticket}) for to in recipients]

    def tokens_for(self, kind: str, email: str) -> list[str]:
        return [payload["token"] for k, to, payload in self.sent if k == kind and to == email]


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def dispatcher(notifier, session_factory) -> NotificationDispatcher:
    return NotificationDispatcher(port=notifier, session_factory=session_factory, backoff_seconds=0)
