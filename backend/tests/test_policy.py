"""Authorization engine tests.

``decide`` is pure, so these run without a database. The property tests
compare it against a small reference table of scoping predicates.
"""

import uuid

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from app.models.enums import UserRole
from app.services.identity import CallerContext
from app.services.policy import Action, Resource, ResourceType, decide

pytestmark = pytest.mark.unit

# Small id pools so generated contexts and resources actually overlap
COMPANIES = [uuid.UUID(int=i) for i in range(1, 4)]
BUILDINGS = [uuid.UUID(int=i) for i in range(100, 104)]
SPACES = [uuid.UUID(int=i) for i in range(200, 204)]
USERS = [uuid.UUID(int=i) for i in range(300, 304)]


def ids(pool):
    return st.sampled_from(pool)


@st.composite
def caller_contexts(draw, role=None):
    role = role or draw(st.sampled_from(list(UserRole)))
    company_id = None if role == UserRole.PLATFORM_ADMIN else draw(ids(COMPANIES))
    return CallerContext(
        user_id=draw(ids(USERS)),
        role=role,
        company_id=company_id,
        entitled_building_ids=frozenset(draw(st.sets(ids(BUILDINGS), max_size=3))),
        resident_space_ids=frozenset(draw(st.sets(ids(SPACES), max_size=2))),
        resident_building_ids=frozenset(draw(st.sets(ids(BUILDINGS), max_size=2))),
    )


@st.composite
def scoped_resources(draw, resource_type):
    return Resource(
        type=resource_type,
        id=uuid.uuid4(),
        company_id=draw(ids(COMPANIES)),
        building_id=draw(ids(BUILDINGS)),
        space_id=draw(ids(SPACES)),
        created_by_user_id=draw(ids(USERS)),
    )


def reference_can_read(ctx: CallerContext, res: Resource) -> bool:
    """Expected READ outcome for buildings, spaces and tickets."""
    own_company = ctx.company_id is not None and res.company_id == ctx.company_id

    if ctx.role == UserRole.PLATFORM_ADMIN:
        return True
    if ctx.role == UserRole.COMPANY_ADMIN:
        return own_company
    if ctx.role == UserRole.COMPANY_STAFF:
        return own_company and res.building_id in ctx.entitled_building_ids

    if res.type == ResourceType.BUILDING:
        return res.building_id in ctx.resident_building_ids
    if res.type == ResourceType.SPACE:
        return res.space_id in ctx.resident_space_ids
    return res.space_id in ctx.resident_space_ids or res.created_by_user_id == ctx.user_id


SCOPED_TYPES = [ResourceType.BUILDING, ResourceType.SPACE, ResourceType.TICKET]


class TestDecideProperties:
    """Generated contexts and resources against the reference table."""

    @settings(max_examples=300)
    @given(data=st.data(), resource_type=st.sampled_from(SCOPED_TYPES))
    def test_read_matches_reference(self, data, resource_type):
        ctx = data.draw(caller_contexts())
        res = data.draw(scoped_resources(resource_type))
        assert decide(ctx, Action.READ, res).allowed == reference_can_read(ctx, res)

    @settings(max_examples=200)
    @given(data=st.data(), resource_type=st.sampled_from(list(ResourceType)), action=st.sampled_from(list(Action)))
    def test_denials_always_carry_a_reason(self, data, resource_type, action):
        ctx = data.draw(caller_contexts())
        res = data.draw(scoped_resources(resource_type))
        decision = decide(ctx, action, res)
        if not decision.allowed:
            assert decision.reason

    @settings(max_examples=200)
    @given(data=st.data(), resource_type=st.sampled_from(list(ResourceType)), action=st.sampled_from(list(Action)))
    def test_non_platform_roles_never_reach_another_company(self, data, resource_type, action):
        role = data.draw(st.sampled_from([UserRole.COMPANY_ADMIN, UserRole.COMPANY_STAFF]))
        ctx = data.draw(caller_contexts(role=role))
        res = data.draw(scoped_resources(resource_type))
        # Subject user is someone else so the self-service rules do not apply
        res = Resource(
            type=res.type,
            company_id=next(c for c in COMPANIES if c != ctx.company_id),
            building_id=res.building_id,
            space_id=res.space_id,
            user_id=uuid.uuid4(),
            subject_company_id=res.company_id,
        )
        assert not decide(ctx, action, res).allowed

    @settings(max_examples=100)
    @given(data=st.data(), action=st.sampled_from([Action.CREATE, Action.UPDATE, Action.DELETE]))
    def test_status_log_is_append_only_for_everyone(self, data, action):
        ctx = data.draw(caller_contexts())
        res = data.draw(scoped_resources(ResourceType.TICKET_STATUS_LOG))
        decision = decide(ctx, action, res)
        assert not decision.allowed
        assert "append-only" in decision.reason


def _ctx(role, company=COMPANIES[0], **kwargs):
    return CallerContext(
        user_id=kwargs.pop("user_id", USERS[0]),
        role=role,
        company_id=None if role == UserRole.PLATFORM_ADMIN else company,
        **kwargs,
    )


class TestCompanyAdmin:
    def test_manages_own_buildings(self):
        ctx = _ctx(UserRole.COMPANY_ADMIN)
        res = Resource(type=ResourceType.BUILDING, company_id=COMPANIES[0], building_id=BUILDINGS[0])
        for action in Action:
            assert decide(ctx, action, res).allowed

    def test_cannot_create_companies(self):
        decision = decide(_ctx(UserRole.COMPANY_ADMIN), Action.CREATE, Resource(type=ResourceType.COMPANY))
        assert not decision.allowed
        assert "platform administrators" in decision.reason

    def test_cannot_grant_entitlement_to_other_company_user(self):
        res = Resource(
            type=ResourceType.BUILDING_ENTITLEMENT,
            company_id=COMPANIES[0],
            building_id=BUILDINGS[0],
            user_id=USERS[1],
            subject_company_id=COMPANIES[1],
        )
        decision = decide(_ctx(UserRole.COMPANY_ADMIN), Action.CREATE, res)
        assert not decision.allowed
        assert "own company" in decision.reason

    def test_cannot_promote_to_platform_admin(self):
        res = Resource(
            type=ResourceType.USER,
            company_id=COMPANIES[0],
            user_id=USERS[1],
            target_role=UserRole.PLATFORM_ADMIN,
        )
        assert not decide(_ctx(UserRole.COMPANY_ADMIN), Action.UPDATE, res).allowed

    def test_internal_comments_are_hidden(self):
        res = Resource(
            type=ResourceType.TICKET_COMMENT,
            company_id=COMPANIES[0],
            building_id=BUILDINGS[0],
            is_internal=True,
        )
        assert not decide(_ctx(UserRole.COMPANY_ADMIN), Action.READ, res).allowed

    def test_audit_log_is_platform_only(self):
        res = Resource(type=ResourceType.AUDIT_LOG, company_id=COMPANIES[0])
        assert not decide(_ctx(UserRole.COMPANY_ADMIN), Action.READ, res).allowed
        assert decide(_ctx(UserRole.PLATFORM_ADMIN), Action.READ, res).allowed


class TestCompanyStaff:
    def test_read_only_on_entitled_building(self):
        ctx = _ctx(UserRole.COMPANY_STAFF, entitled_building_ids=frozenset({BUILDINGS[0]}))
        res = Resource(type=ResourceType.SPACE, company_id=COMPANIES[0], building_id=BUILDINGS[0])
        assert decide(ctx, Action.READ, res).allowed
        decision = decide(ctx, Action.UPDATE, res)
        assert not decision.allowed
        assert "read-only" in decision.reason

    def test_full_ticket_access_on_entitled_building(self):
        ctx = _ctx(UserRole.COMPANY_STAFF, entitled_building_ids=frozenset({BUILDINGS[0]}))
        res = Resource(type=ResourceType.TICKET, company_id=COMPANIES[0], building_id=BUILDINGS[0])
        assert decide(ctx, Action.CREATE, res).allowed
        assert decide(ctx, Action.UPDATE, res).allowed

    def test_entitlement_outside_own_company_does_not_count(self):
        ctx = _ctx(UserRole.COMPANY_STAFF, entitled_building_ids=frozenset({BUILDINGS[0]}))
        res = Resource(type=ResourceType.TICKET, company_id=COMPANIES[1], building_id=BUILDINGS[0])
        assert not decide(ctx, Action.READ, res).allowed

    def test_no_entitlements_means_no_buildings(self):
        ctx = _ctx(UserRole.COMPANY_STAFF)
        res = Resource(type=ResourceType.BUILDING, company_id=COMPANIES[0], building_id=BUILDINGS[0])
        assert not decide(ctx, Action.READ, res).allowed

    def test_cannot_manage_invitations(self):
        res = Resource(type=ResourceType.INVITATION, company_id=COMPANIES[0])
        assert not decide(_ctx(UserRole.COMPANY_STAFF), Action.CREATE, res).allowed


class TestResident:
    def test_creates_ticket_only_for_own_space_as_self(self):
        ctx = _ctx(UserRole.RESIDENT, resident_space_ids=frozenset({SPACES[0]}))
        own = Resource(type=ResourceType.TICKET, company_id=COMPANIES[0], space_id=SPACES[0], created_by_user_id=USERS[0])
        other = Resource(type=ResourceType.TICKET, company_id=COMPANIES[0], space_id=SPACES[1], created_by_user_id=USERS[0])
        impersonated = Resource(type=ResourceType.TICKET, company_id=COMPANIES[0], space_id=SPACES[0], created_by_user_id=USERS[1])

        assert decide(ctx, Action.CREATE, own).allowed
        assert "space they occupy" in decide(ctx, Action.CREATE, other).reason
        assert not decide(ctx, Action.CREATE, impersonated).allowed

    def test_sees_ticket_they_raised_after_moving_out(self):
        ctx = _ctx(UserRole.RESIDENT)
        res = Resource(type=ResourceType.TICKET, company_id=COMPANIES[0], space_id=SPACES[0], created_by_user_id=USERS[0])
        assert decide(ctx, Action.READ, res).allowed
        assert not decide(ctx, Action.UPDATE, res).allowed

    def test_edits_only_own_occupant_record(self):
        ctx = _ctx(UserRole.RESIDENT, resident_space_ids=frozenset({SPACES[0]}))
        mine = Resource(type=ResourceType.OCCUPANT, company_id=COMPANIES[0], space_id=SPACES[0], user_id=USERS[0])
        roommate = Resource(type=ResourceType.OCCUPANT, company_id=COMPANIES[0], space_id=SPACES[0], user_id=USERS[1])
        assert decide(ctx, Action.UPDATE, mine).allowed
        assert not decide(ctx, Action.READ, roommate).allowed
        assert not decide(ctx, Action.DELETE, mine).allowed

    def test_profile_of_other_users_hidden(self):
        ctx = _ctx(UserRole.RESIDENT)
        res = Resource(type=ResourceType.USER, company_id=COMPANIES[0], user_id=USERS[1])
        assert not decide(ctx, Action.READ, res).allowed


def test_platform_admin_allowed_everything_but_history_rewrites():
    ctx = _ctx(UserRole.PLATFORM_ADMIN)
    for resource_type in ResourceType:
        for action in Action:
            decision = decide(ctx, action, Resource(type=resource_type, company_id=COMPANIES[2]))
            if resource_type in (ResourceType.TICKET_STATUS_LOG, ResourceType.AUDIT_LOG) and action != Action.READ:
                assert not decision.allowed
            else:
                assert decision.allowed
