"""Occupants of units and the resident account claim flow."""

import logging
import uuid
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import (
    Conflict,
    DependencyExists,
    Forbidden,
    TokenAlreadyUsed,
    TokenNotFound,
    ValidationError,
)
from app.models.building import Building, Space
from app.models.enums import AuditAction, SpaceType, TokenPurpose, UserRole
from app.models.occupant import Occupant
from app.models.ticket import Ticket
from app.models.user import User
from app.schemas.occupant import OccupantCreate, OccupantUpdate
from app.services.access import (
    can_read,
    load_occupant,
    load_space,
    occupant_resource,
    require,
    require_visible,
    space_resource,
)
from app.services.audit import AuditService
from app.services.identity import AuthenticatedUser, CallerContext
from app.services.notifications import NotificationOutbox
from app.services.policy import Action, Resource, ResourceType
from app.services.tokens import TokenManager, ensure_redeemable
from app.services.workflow import TERMINAL_STATUSES

logger = logging.getLogger(__name__)

# Fields a resident may change on their own occupant record
RESIDENT_EDITABLE = frozenset({"name", "phone"})


def space_label(space: Space, building: Building) -> str:
    place = building.name or building.address_line1
    if space.space_type == SpaceType.UNIT:
        return f"Unit {space.unit_number}, {place}"
    return f"{space.common_area_type.value.replace('_', ' ').title()}, {place}"


class OccupantService:
    """Service for occupant records and their claim tokens."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.tokens = TokenManager(db)
        self.audit = AuditService(db)

    async def _send_claim(
        self,
        ctx: CallerContext,
        occupant: Occupant,
        space: Space,
        company_id: uuid.UUID,
        action: AuditAction,
    ) -> None:
        """Issue a fresh claim token (superseding any live one) and enqueue the email."""
        token, raw = await self.tokens.issue(
            TokenPurpose.OCCUPANT_CLAIM,
            occupant.id,
            issued_by=ctx.user_id,
        )
        occupant.invite_sent_at = token.issued_at

        building = await self.db.get(Building, space.building_id)
        await NotificationOutbox(self.db).claim(
            token_id=token.id,
            raw_token=raw,
            email=occupant.email,
            name=occupant.name,
            space_label=space_label(space, building),
            occupant_id=occupant.id,
        )
        await self.audit.log_claim(action, occupant.id, company_id, ctx.user_id, occupant.email)

    async def create(self, ctx: CallerContext, space_id: uuid.UUID, data: OccupantCreate) -> Occupant:
        space, company_id = await load_space(self.db, space_id)
        require_visible(ctx, Action.READ, space_resource(space, company_id), "Space")
        if space.space_type != SpaceType.UNIT:
            raise ValidationError("Occupants can only be added to units")
        require(
            ctx,
            Action.CREATE,
            Resource(
                type=ResourceType.OCCUPANT,
                company_id=company_id,
                building_id=space.building_id,
                space_id=space.id,
            ),
        )

        occupant = Occupant(
            space_id=space.id,
            occupant_type=data.occupant_type,
            name=data.name,
            email=data.email.lower(),
            phone=data.phone,
        )
        self.db.add(occupant)
        await self.db.flush()

        await self._send_claim(ctx, occupant, space, company_id, AuditAction.CLAIM_ISSUED)
        await self.db.flush()
        await self.db.refresh(occupant)

        logger.info(f"[OCCUPANTS] added occupant={occupant.id} to space={space.id}")
        return occupant

    async def list_for_space(self, ctx: CallerContext, space_id: uuid.UUID) -> list[Occupant]:
        space, company_id = await load_space(self.db, space_id)
        require_visible(ctx, Action.READ, space_resource(space, company_id), "Space")

        result = await self.db.execute(
            select(Occupant).where(Occupant.space_id == space.id).order_by(Occupant.created_at)
        )
        return [
            occupant
            for occupant in result.scalars().all()
            if can_read(ctx, occupant_resource(occupant, space, company_id))
        ]

    async def get(self, ctx: CallerContext, occupant_id: uuid.UUID) -> Occupant:
        occupant, space, company_id = await load_occupant(self.db, occupant_id)
        require_visible(ctx, Action.READ, occupant_resource(occupant, space, company_id), "Occupant")
        return occupant

    async def update(self, ctx: CallerContext, occupant_id: uuid.UUID, data: OccupantUpdate) -> Occupant:
        """Update an occupant.

        A new email on an unclaimed occupant rotates the claim token; once
        claimed the email is fixed.
        """
        occupant, space, company_id = await load_occupant(self.db, occupant_id)
        require_visible(ctx, Action.UPDATE, occupant_resource(occupant, space, company_id), "Occupant")

        changes = data.model_dump(exclude_unset=True, exclude={"resend_invite"})
        if ctx.role == UserRole.RESIDENT and set(changes) - RESIDENT_EDITABLE:
            raise Forbidden("Residents can only change their name and phone")

        new_email = changes.pop("email", None)
        email_changed = new_email is not None and new_email.lower() != occupant.email
        if email_changed and occupant.claimed_at is not None:
            raise ValidationError("Email cannot be changed after the account has been claimed")
        if data.resend_invite and occupant.claimed_at is not None:
            raise TokenAlreadyUsed("This occupant has already claimed their account")

        for field, value in changes.items():
            setattr(occupant, field, value)
        if email_changed:
            occupant.email = new_email.lower()

        if email_changed or data.resend_invite:
            await self._send_claim(ctx, occupant, space, company_id, AuditAction.CLAIM_RESENT)

        await self.db.flush()
        await self.db.refresh(occupant)
        return occupant

    async def resend(self, ctx: CallerContext, occupant_id: uuid.UUID) -> Occupant:
        occupant, space, company_id = await load_occupant(self.db, occupant_id)
        require_visible(ctx, Action.UPDATE, occupant_resource(occupant, space, company_id), "Occupant")
        if ctx.role == UserRole.RESIDENT:
            raise Forbidden("Residents cannot resend claim links")
        if occupant.claimed_at is not None:
            raise TokenAlreadyUsed("This occupant has already claimed their account")

        await self._send_claim(ctx, occupant, space, company_id, AuditAction.CLAIM_RESENT)
        await self.db.flush()
        await self.db.refresh(occupant)
        return occupant

    async def delete(self, ctx: CallerContext, occupant_id: uuid.UUID) -> None:
        occupant, space, company_id = await load_occupant(self.db, occupant_id)
        require_visible(ctx, Action.DELETE, occupant_resource(occupant, space, company_id), "Occupant")

        if occupant.user_id is not None:
            result = await self.db.execute(
                select(func.count(Ticket.id)).where(
                    Ticket.created_by_user_id == occupant.user_id,
                    Ticket.space_id == space.id,
                    Ticket.status.notin_(TERMINAL_STATUSES),
                )
            )
            if result.scalar():
                raise DependencyExists("Occupant has open tickets for this space")

        await self.tokens.supersede(TokenPurpose.OCCUPANT_CLAIM, occupant.id)
        await self.db.delete(occupant)
        await self.db.flush()
        logger.info(f"[OCCUPANTS] removed occupant={occupant_id} from space={space.id}")

    async def claim(self, identity: AuthenticatedUser, raw_token: str) -> tuple[Occupant, User]:
        """Redeem a claim token and bind the occupant to a resident account.

        An identity that already has a resident account in the same company
        is linked instead of getting a second user.
        """
        token = await self.tokens.lookup(TokenPurpose.OCCUPANT_CLAIM, raw_token)
        if token is None:
            raise TokenNotFound()
        occupant = await self.db.get(Occupant, token.subject_id)
        if occupant is None:
            raise TokenNotFound()
        if occupant.claimed_at is not None:
            raise TokenAlreadyUsed()
        ensure_redeemable(token)

        if not identity.email_verified:
            raise Forbidden("Verify your email address before claiming the residence")
        if not identity.email or identity.email != occupant.email.lower():
            raise ValidationError("Signed-in email does not match the occupant email")

        space, company_id = await load_space(self.db, occupant.space_id)

        result = await self.db.execute(select(User).where(User.firebase_uid == identity.uid))
        user = result.scalar_one_or_none()
        if user is not None:
            if user.role != UserRole.RESIDENT or user.company_id != company_id:
                raise Conflict("This account cannot be linked to a residence")
        else:
            taken = await self.db.execute(select(User.id).where(func.lower(User.email) == identity.email))
            if taken.first():
                raise Conflict("A user with this email already exists")

        await self.tokens.redeem(token)

        if user is None:
            user = User(
                firebase_uid=identity.uid,
                email=occupant.email,
                full_name=occupant.name,
                phone=occupant.phone,
                role=UserRole.RESIDENT,
                company_id=company_id,
                is_active=True,
            )
            self.db.add(user)
            await self.db.flush()

        occupant.user_id = user.id
        occupant.claimed_at = datetime.utcnow()
        await self.audit.log_claim(AuditAction.CLAIM_REDEEMED, occupant.id, company_id, user.id, occupant.email)
        await self.db.flush()
        await self.db.refresh(occupant)
        await self.db.refresh(user)

        logger.info(f"[OCCUPANTS] occupant={occupant.id} claimed by user={user.id}")
        return occupant, user
