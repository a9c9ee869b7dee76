"""Building entitlements router."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.security import get_caller_context
from app.schemas.entitlement import EntitlementCreate, EntitlementResponse, RevokeResponse
from app.schemas.envelope import ApiResponse, ok
from app.services.entitlements import EntitlementService
from app.services.identity import CallerContext

router = APIRouter(prefix="/entitlements", tags=["entitlements"])


@router.post("", response_model=ApiResponse[EntitlementResponse], status_code=status.HTTP_201_CREATED)
async def grant_entitlement(
    data: EntitlementCreate,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    """Grant a staff user access to a building of their own company."""
    entitlement = await EntitlementService(db).grant(ctx, data.user_id, data.building_id)
    await db.commit()
    return ok(EntitlementResponse.model_validate(entitlement))


@router.get("", response_model=ApiResponse[List[EntitlementResponse]])
async def list_entitlements(
    building_id: Optional[UUID] = None,
    user_id: Optional[UUID] = None,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    entitlements = await EntitlementService(db).list_entitlements(
        ctx, building_id=building_id, user_id=user_id
    )
    return ok([EntitlementResponse.model_validate(e) for e in entitlements])


@router.get("/{entitlement_id}", response_model=ApiResponse[EntitlementResponse])
async def get_entitlement(
    entitlement_id: UUID,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    entitlement = await EntitlementService(db).get(ctx, entitlement_id)
    return ok(EntitlementResponse.model_validate(entitlement))


@router.delete("/{entitlement_id}", response_model=ApiResponse[RevokeResponse])
async def revoke_entitlement(
    entitlement_id: UUID,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    """Revoke an entitlement. Revoking one that is already gone succeeds with deleted=false."""
    deleted = await EntitlementService(db).revoke(ctx, entitlement_id)
    await db.commit()
    return ok(RevokeResponse(entitlement_id=entitlement_id, deleted=deleted))
