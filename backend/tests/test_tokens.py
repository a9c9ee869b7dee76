"""Token lifecycle and the invitation flow built on it."""

import uuid
from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select, update

from app.core.errors import (
    Conflict,
    Forbidden,
    TokenAlreadyUsed,
    TokenExpired,
    TokenNotFound,
    ValidationError,
)
from app.models.enums import InvitationRole, TokenPurpose, TokenState, UserRole
from app.models.issued_token import IssuedToken
from app.models.user import User
from app.schemas.invitation import InvitationCreate, InvitationResend
from app.services.identity import AuthenticatedUser
from app.services.invitations import InvitationService
from app.services.jobs import pop_enqueued_jobs
from app.services.tokens import TokenManager, effective_state, ensure_redeemable, hash_token

pytestmark = pytest.mark.integration

NEW_HIRE = "new.hire@acme.com"


def verified(uid, email):
    return AuthenticatedUser(uid=uid, email=email, email_verified=True)


class TestTokenManager:
    async def test_only_hash_is_stored(self, db):
        token, raw = await TokenManager(db).issue(TokenPurpose.INVITATION, uuid.uuid4())
        assert token.token_hash == hash_token(raw)
        assert raw not in token.token_hash

    async def test_reissue_supersedes_live_token(self, db):
        tokens = TokenManager(db)
        subject = uuid.uuid4()
        _, first = await tokens.issue(TokenPurpose.OCCUPANT_CLAIM, subject)
        _, second = await tokens.issue(TokenPurpose.OCCUPANT_CLAIM, subject)

        old = await tokens.lookup(TokenPurpose.OCCUPANT_CLAIM, first)
        assert old.state == TokenState.SUPERSEDED
        with pytest.raises(TokenExpired, match="replaced"):
            ensure_redeemable(old)

        live = await tokens.live_token(TokenPurpose.OCCUPANT_CLAIM, subject)
        assert live.token_hash == hash_token(second)

    async def test_expiry_is_derived(self, db):
        token, _ = await TokenManager(db).issue(
            TokenPurpose.INVITATION, uuid.uuid4(), ttl=timedelta(days=7)
        )
        assert token.state == TokenState.ISSUED
        assert effective_state(token) == TokenState.ISSUED
        assert effective_state(token, now=token.expires_at + timedelta(seconds=1)) == TokenState.EXPIRED

    async def test_redeem_is_exactly_once(self, db):
        tokens = TokenManager(db)
        _, raw = await tokens.issue(TokenPurpose.INVITATION, uuid.uuid4(), ttl=timedelta(days=1))

        first = await tokens.validate(TokenPurpose.INVITATION, raw)
        second = await tokens.lookup(TokenPurpose.INVITATION, raw)
        await tokens.redeem(first)
        with pytest.raises(TokenAlreadyUsed):
            await tokens.redeem(second)

        stored = await tokens.lookup(TokenPurpose.INVITATION, raw)
        assert stored.state == TokenState.REDEEMED
        assert stored.redeemed_at is not None

    async def test_purpose_is_part_of_lookup(self, db):
        tokens = TokenManager(db)
        _, raw = await tokens.issue(TokenPurpose.INVITATION, uuid.uuid4())
        assert await tokens.lookup(TokenPurpose.OCCUPANT_CLAIM, raw) is None
        with pytest.raises(TokenNotFound):
            await tokens.validate(TokenPurpose.OCCUPANT_CLAIM, raw)


async def _invite(db, dispatcher, notifier, ctx, email=NEW_HIRE, role=InvitationRole.COMPANY_STAFF):
    invitation = await InvitationService(db).send(
        ctx, InvitationCreate(email=email, name="New Hire", role=role)
    )
    await db.commit()
    await dispatcher.dispatch_many(pop_enqueued_jobs(db))
    return invitation, notifier.tokens_for("invite", email)[-1]


async def _user_count(db, email):
    result = await db.execute(select(func.count(User.id)).where(User.email == email))
    return result.scalar()


class TestInvitations:
    async def test_accept_creates_company_user(self, db, world, context_for, dispatcher, notifier):
        admin = await context_for(world.acme_admin)
        invitation, raw = await _invite(db, dispatcher, notifier, admin)

        identity = verified("uid-new-hire", "New.Hire@acme.com")
        user, accepted = await InvitationService(db).accept(identity, raw)
        await db.commit()

        assert user.role == UserRole.COMPANY_STAFF
        assert user.company_id == world.acme.id
        assert accepted.accepted_user_id == user.id

        with pytest.raises(TokenAlreadyUsed):
            await InvitationService(db).accept(identity, raw)

    async def test_expired_token_creates_no_user(self, db, world, context_for, dispatcher, notifier):
        admin = await context_for(world.acme_admin)
        invitation, raw = await _invite(db, dispatcher, notifier, admin)
        await db.execute(
            update(IssuedToken)
            .where(IssuedToken.subject_id == invitation.id)
            .values(expires_at=datetime.utcnow() - timedelta(minutes=1))
        )
        await db.commit()

        with pytest.raises(TokenExpired):
            await InvitationService(db).accept(verified("uid-late", NEW_HIRE), raw)
        await db.rollback()
        assert await _user_count(db, NEW_HIRE) == 0

    async def test_resend_rotates_token(self, db, world, context_for, dispatcher, notifier):
        admin = await context_for(world.acme_admin)
        invitation, old_raw = await _invite(db, dispatcher, notifier, admin)

        await InvitationService(db).resend(admin, invitation.id, InvitationResend())
        await db.commit()
        await dispatcher.dispatch_many(pop_enqueued_jobs(db))
        new_raw = notifier.tokens_for("invite", NEW_HIRE)[-1]
        assert new_raw != old_raw

        identity = verified("uid-new-hire", NEW_HIRE)
        with pytest.raises(TokenExpired, match="replaced"):
            await InvitationService(db).accept(identity, old_raw)
        user, _ = await InvitationService(db).accept(identity, new_raw)
        assert user.email == NEW_HIRE

    async def test_email_must_match(self, db, world, context_for, dispatcher, notifier):
        admin = await context_for(world.acme_admin)
        _, raw = await _invite(db, dispatcher, notifier, admin)

        with pytest.raises(ValidationError):
            await InvitationService(db).accept(verified("uid-x", "someone@else.com"), raw)

    async def test_unverified_email_is_rejected(self, db, world, context_for, dispatcher, notifier):
        admin = await context_for(world.acme_admin)
        _, raw = await _invite(db, dispatcher, notifier, admin)

        with pytest.raises(Forbidden, match="Verify"):
            await InvitationService(db).accept(AuthenticatedUser(uid="uid-new-hire", email=NEW_HIRE), raw)
        await db.rollback()
        assert await _user_count(db, NEW_HIRE) == 0

    async def test_inviter_losing_admin_role_blocks_acceptance(self, db, world, context_for, dispatcher, notifier):
        admin = await context_for(world.acme_admin)
        _, raw = await _invite(db, dispatcher, notifier, admin)

        world.acme_admin.role = UserRole.COMPANY_STAFF
        await db.commit()

        with pytest.raises(Forbidden):
            await InvitationService(db).accept(verified("uid-new-hire", NEW_HIRE), raw)

    async def test_duplicate_pending_invitation_conflicts(self, db, world, context_for, dispatcher, notifier):
        admin = await context_for(world.acme_admin)
        await _invite(db, dispatcher, notifier, admin)

        with pytest.raises(Conflict):
            await InvitationService(db).send(
                admin, InvitationCreate(email=NEW_HIRE, name="Again", role=InvitationRole.COMPANY_STAFF)
            )

    async def test_existing_user_cannot_be_invited(self, db, world, context_for):
        admin = await context_for(world.acme_admin)
        with pytest.raises(Conflict):
            await InvitationService(db).send(
                admin,
                InvitationCreate(email=world.acme_staff.email, name="Sam", role=InvitationRole.COMPANY_ADMIN),
            )

    async def test_admin_cannot_invite_into_other_company(self, db, world, context_for):
        admin = await context_for(world.acme_admin)
        with pytest.raises(Forbidden):
            await InvitationService(db).send(
                admin,
                InvitationCreate(
                    company_id=world.brightwater.id,
                    email="spy@acme.com",
                    name="Spy",
                    role=InvitationRole.COMPANY_STAFF,
                ),
            )

    async def test_delete_kills_token(self, db, world, context_for, dispatcher, notifier):
        admin = await context_for(world.acme_admin)
        invitation, raw = await _invite(db, dispatcher, notifier, admin)

        await InvitationService(db).delete(admin, invitation.id)
        await db.commit()

        token = await TokenManager(db).lookup(TokenPurpose.INVITATION, raw)
        assert token.state == TokenState.SUPERSEDED
        with pytest.raises(TokenNotFound):
            await InvitationService(db).accept(verified("uid-new-hire", NEW_HIRE), raw)
