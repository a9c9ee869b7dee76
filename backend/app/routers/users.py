"""Users router."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.security import get_caller_context
from app.models.enums import UserRole
from app.schemas.envelope import ApiResponse, DeletedResponse, ok
from app.schemas.user import UserResponse, UserUpdate
from app.services.companies import UserService
from app.services.identity import CallerContext

router = APIRouter(prefix="/users", tags=["users"])


@router.get("", response_model=ApiResponse[List[UserResponse]])
async def list_users(
    company_id: Optional[UUID] = None,
    role: Optional[UserRole] = None,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    """List users visible to the caller."""
    users = await UserService(db).list_users(ctx, company_id=company_id, role=role)
    return ok([UserResponse.model_validate(u) for u in users])


@router.get("/{user_id}", response_model=ApiResponse[UserResponse])
async def get_user(
    user_id: UUID,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    user = await UserService(db).get(ctx, user_id)
    return ok(UserResponse.model_validate(user))


@router.patch("/{user_id}", response_model=ApiResponse[UserResponse])
async def update_user(
    user_id: UUID,
    data: UserUpdate,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    user = await UserService(db).update(ctx, user_id, data)
    await db.commit()
    return ok(UserResponse.model_validate(user))


@router.delete("/{user_id}", response_model=ApiResponse[DeletedResponse])
async def delete_user(
    user_id: UUID,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    await UserService(db).delete(ctx, user_id)
    await db.commit()
    return ok(DeletedResponse(id=user_id))
