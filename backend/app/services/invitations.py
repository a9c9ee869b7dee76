"""Company invitations: send, list, rotate, delete and accept."""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.errors import (
    Conflict,
    Forbidden,
    NotFound,
    TokenAlreadyUsed,
    TokenNotFound,
    ValidationError,
)
from app.models.company import Company
from app.models.enums import AuditAction, TokenPurpose, UserRole
from app.models.invitation import Invitation
from app.models.user import User
from app.schemas.invitation import InvitationCreate, InvitationResend
from app.services.access import invitation_resource, load_company, require, require_visible
from app.services.audit import AuditService
from app.services.identity import AuthenticatedUser, CallerContext, resolve_caller_context
from app.services.notifications import NotificationOutbox
from app.services.policy import Action, Resource, ResourceType, decide
from app.services.tokens import TokenManager, ensure_redeemable

logger = logging.getLogger(__name__)


class InvitationService:
    """Invites company administrators and staff.

    Every invitation owns at most one live token in ``issued_tokens``;
    ``expires_at`` on the invitation mirrors it for listing.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.tokens = TokenManager(db)
        self.audit = AuditService(db)
        self.settings = get_settings()

    @property
    def ttl(self) -> timedelta:
        return timedelta(days=self.settings.invitation_ttl_days)

    async def _ensure_email_free(
        self,
        email: str,
        company_id: uuid.UUID,
        exclude_invitation_id: Optional[uuid.UUID] = None,
    ) -> None:
        existing_user = await self.db.execute(select(User.id).where(func.lower(User.email) == email))
        if existing_user.scalar_one_or_none():
            raise Conflict("A user with this email already exists")

        query = select(Invitation.id).where(
            Invitation.company_id == company_id,
            func.lower(Invitation.email) == email,
            Invitation.accepted_at.is_(None),
            Invitation.expires_at > datetime.utcnow(),
        )
        if exclude_invitation_id:
            query = query.where(Invitation.id != exclude_invitation_id)
        pending = await self.db.execute(query)
        if pending.first():
            raise Conflict("A pending invitation for this email already exists")

    async def _load(self, invitation_id: uuid.UUID) -> Invitation:
        invitation = await self.db.get(Invitation, invitation_id)
        if not invitation:
            raise NotFound("Invitation not found")
        return invitation

    async def _issue_and_enqueue(
        self,
        ctx: CallerContext,
        invitation: Invitation,
        company: Company,
    ) -> None:
        token, raw = await self.tokens.issue(
            TokenPurpose.INVITATION,
            invitation.id,
            issued_by=ctx.user_id,
            ttl=self.ttl,
        )
        invitation.expires_at = token.expires_at
        inviter = await self.db.get(User, ctx.user_id)
        await NotificationOutbox(self.db).invite(
            token_id=token.id,
            raw_token=raw,
            email=invitation.email,
            name=invitation.name,
            role=invitation.role.value,
            company_name=company.name,
            invited_by_name=inviter.full_name if inviter else None,
            expires_at=token.expires_at.isoformat(),
            invitation_id=invitation.id,
        )

    async def send(self, ctx: CallerContext, data: InvitationCreate) -> Invitation:
        company_id = data.company_id or ctx.company_id
        if company_id is None:
            raise ValidationError("company_id is required")

        require(ctx, Action.CREATE, Resource(type=ResourceType.INVITATION, company_id=company_id))
        company = await load_company(self.db, company_id)

        email = data.email.lower()
        await self._ensure_email_free(email, company.id)

        invitation = Invitation(
            company_id=company.id,
            email=email,
            name=data.name,
            role=data.role,
            invited_by_user_id=ctx.user_id,
            expires_at=datetime.utcnow() + self.ttl,
        )
        self.db.add(invitation)
        await self.db.flush()

        await self._issue_and_enqueue(ctx, invitation, company)
        await self.audit.log_invitation(
            AuditAction.INVITATION_SENT,
            invitation.id,
            company.id,
            ctx.user_id,
            email,
            role=data.role.value,
        )
        await self.db.flush()
        await self.db.refresh(invitation)

        logger.info(f"[INVITES] sent invitation={invitation.id} company={company.id} role={data.role.value}")
        return invitation

    async def list_invitations(
        self,
        ctx: CallerContext,
        company_id: Optional[uuid.UUID] = None,
        include_accepted: bool = True,
    ) -> list[Invitation]:
        if ctx.role == UserRole.COMPANY_ADMIN:
            if company_id and company_id != ctx.company_id:
                raise Forbidden("Invitations of another company are not visible")
            company_id = ctx.company_id
        elif ctx.role != UserRole.PLATFORM_ADMIN:
            raise Forbidden("Only administrators can view invitations")

        query = select(Invitation)
        if company_id:
            query = query.where(Invitation.company_id == company_id)
        if not include_accepted:
            query = query.where(Invitation.accepted_at.is_(None))
        query = query.order_by(Invitation.created_at.desc())
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def resend(
        self,
        ctx: CallerContext,
        invitation_id: uuid.UUID,
        data: InvitationResend,
    ) -> Invitation:
        """Rotate the token, optionally changing the invitee, and send a fresh link."""
        invitation = await self._load(invitation_id)
        require_visible(ctx, Action.UPDATE, invitation_resource(invitation), "Invitation")
        if invitation.accepted_at is not None:
            raise TokenAlreadyUsed("This invitation has already been accepted")

        new_email = data.email.lower() if data.email else invitation.email
        await self._ensure_email_free(new_email, invitation.company_id, exclude_invitation_id=invitation.id)

        previous_email = invitation.email
        invitation.email = new_email
        if data.name:
            invitation.name = data.name

        company = await load_company(self.db, invitation.company_id)
        await self._issue_and_enqueue(ctx, invitation, company)

        extra = {"previous_email": previous_email} if previous_email != new_email else {}
        await self.audit.log_invitation(
            AuditAction.INVITATION_RESENT,
            invitation.id,
            invitation.company_id,
            ctx.user_id,
            new_email,
            **extra,
        )
        await self.db.flush()
        await self.db.refresh(invitation)
        return invitation

    async def delete(self, ctx: CallerContext, invitation_id: uuid.UUID) -> None:
        invitation = await self._load(invitation_id)
        require_visible(ctx, Action.DELETE, invitation_resource(invitation), "Invitation")
        if invitation.accepted_at is not None:
            raise Conflict("Accepted invitations cannot be deleted")

        await self.tokens.supersede(TokenPurpose.INVITATION, invitation.id)
        await self.audit.log_invitation(
            AuditAction.INVITATION_DELETED,
            invitation.id,
            invitation.company_id,
            ctx.user_id,
            invitation.email,
        )
        await self.db.delete(invitation)
        await self.db.flush()

    async def accept(self, identity: AuthenticatedUser, raw_token: str) -> tuple[User, Invitation]:
        """Redeem an invitation token and create the invited user.

        Nothing is written unless every check passes, so an expired or
        superseded token never produces a user row.
        """
        token = await self.tokens.lookup(TokenPurpose.INVITATION, raw_token)
        if token is None:
            raise TokenNotFound()
        invitation = await self.db.get(Invitation, token.subject_id)
        if invitation is None:
            raise TokenNotFound()
        if invitation.accepted_at is not None:
            raise TokenAlreadyUsed()
        ensure_redeemable(token)

        if not identity.email_verified:
            raise Forbidden("Verify your email address before accepting the invitation")
        if not identity.email or identity.email != invitation.email.lower():
            raise ValidationError("Signed-in email does not match the invited email")

        await self._ensure_inviter_still_permitted(invitation)

        existing = await self.db.execute(
            select(User.id).where(
                or_(User.firebase_uid == identity.uid, func.lower(User.email) == identity.email)
            )
        )
        if existing.first():
            raise Conflict("An account already exists for this identity")

        await self.tokens.redeem(token)

        user = User(
            firebase_uid=identity.uid,
            email=invitation.email,
            full_name=invitation.name,
            role=UserRole(invitation.role.value),
            company_id=invitation.company_id,
            is_active=True,
        )
        self.db.add(user)
        await self.db.flush()

        invitation.accepted_at = datetime.utcnow()
        invitation.accepted_user_id = user.id
        await self.audit.log_invitation(
            AuditAction.INVITATION_ACCEPTED,
            invitation.id,
            invitation.company_id,
            user.id,
            invitation.email,
        )
        await self.db.flush()
        await self.db.refresh(user)
        await self.db.refresh(invitation)

        logger.info(f"[INVITES] accepted invitation={invitation.id} user={user.id}")
        return user, invitation

    async def _ensure_inviter_still_permitted(self, invitation: Invitation) -> None:
        """The inviter must still be allowed to invite into this company."""
        inviter = (
            await self.db.get(User, invitation.invited_by_user_id)
            if invitation.invited_by_user_id
            else None
        )
        if inviter is None or not inviter.is_active:
            raise Forbidden("The person who invited you can no longer grant access")

        inviter_ctx = await resolve_caller_context(self.db, inviter)
        decision = decide(
            inviter_ctx,
            Action.CREATE,
            Resource(type=ResourceType.INVITATION, company_id=invitation.company_id),
        )
        if not decision:
            raise Forbidden(f"The person who invited you can no longer grant access: {decision.reason}")
