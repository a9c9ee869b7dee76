"""Auth router - current user and the token redemption endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.security import get_caller_context, get_current_user, verify_firebase_token
from app.models.user import User
from app.schemas.envelope import ApiResponse, ok
from app.schemas.invitation import (
    AcceptInvitationRequest,
    AcceptInvitationResponse,
    InvitationResponse,
)
from app.schemas.occupant import ClaimAccountRequest, ClaimAccountResponse, OccupantResponse
from app.schemas.user import MeResponse, UserResponse
from app.services.identity import AuthenticatedUser, CallerContext
from app.services.invitations import InvitationService
from app.services.occupants import OccupantService

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/me", response_model=ApiResponse[MeResponse])
async def get_me(
    user: User = Depends(get_current_user),
    ctx: CallerContext = Depends(get_caller_context),
):
    """Current user with the entitlements and spaces their access is based on."""
    me = MeResponse.model_validate(user)
    me.entitled_building_ids = sorted(ctx.entitled_building_ids, key=str)
    me.resident_space_ids = sorted(ctx.resident_space_ids, key=str)
    return ok(me)


@router.post("/accept-invitation", response_model=ApiResponse[AcceptInvitationResponse])
async def accept_invitation(
    data: AcceptInvitationRequest,
    db: AsyncSession = Depends(get_db),
    identity: AuthenticatedUser = Depends(verify_firebase_token),
):
    """Redeem an invitation link.

    Only a verified identity is required; the token is the credential. The
    signed-in email must match the invited email.
    """
    user, invitation = await InvitationService(db).accept(identity, data.token)
    await db.commit()
    return ok(
        AcceptInvitationResponse(
            user=UserResponse.model_validate(user),
            invitation=InvitationResponse.model_validate(invitation),
        )
    )


@router.post("/claim-account", response_model=ApiResponse[ClaimAccountResponse])
async def claim_account(
    data: ClaimAccountRequest,
    db: AsyncSession = Depends(get_db),
    identity: AuthenticatedUser = Depends(verify_firebase_token),
):
    """Redeem an occupant claim link and bind the occupant to a resident account."""
    occupant, user = await OccupantService(db).claim(identity, data.token)
    await db.commit()
    return ok(
        ClaimAccountResponse(
            occupant=OccupantResponse.model_validate(occupant),
            user=UserResponse.model_validate(user),
        )
    )
