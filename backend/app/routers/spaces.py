"""Spaces router, including the occupants of a unit."""

from typing import List
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.security import get_caller_context
from app.schemas.envelope import ApiResponse, DeletedResponse, ok
from app.schemas.occupant import OccupantCreate, OccupantResponse
from app.schemas.space import SpaceResponse, SpaceUpdate
from app.services.buildings import SpaceService
from app.services.identity import CallerContext
from app.services.notifications import NotificationDispatcher, get_dispatcher, schedule_dispatch
from app.services.occupants import OccupantService

router = APIRouter(prefix="/spaces", tags=["spaces"])


@router.get("/{space_id}", response_model=ApiResponse[SpaceResponse])
async def get_space(
    space_id: UUID,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    space = await SpaceService(db).get(ctx, space_id)
    return ok(SpaceResponse.model_validate(space))


@router.patch("/{space_id}", response_model=ApiResponse[SpaceResponse])
async def update_space(
    space_id: UUID,
    data: SpaceUpdate,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    """Update a space. The merged result must still be a valid unit or common area."""
    space = await SpaceService(db).update(ctx, space_id, data)
    await db.commit()
    return ok(SpaceResponse.model_validate(space))


@router.delete("/{space_id}", response_model=ApiResponse[DeletedResponse])
async def delete_space(
    space_id: UUID,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    await SpaceService(db).delete(ctx, space_id)
    await db.commit()
    return ok(DeletedResponse(id=space_id))


@router.post(
    "/{space_id}/occupants",
    response_model=ApiResponse[OccupantResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_occupant(
    space_id: UUID,
    data: OccupantCreate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Add an occupant to a unit and email them a claim link."""
    occupant = await OccupantService(db).create(ctx, space_id, data)
    await db.commit()
    schedule_dispatch(background_tasks, db, dispatcher)
    return ok(OccupantResponse.model_validate(occupant))


@router.get("/{space_id}/occupants", response_model=ApiResponse[List[OccupantResponse]])
async def list_occupants(
    space_id: UUID,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    occupants = await OccupantService(db).list_for_space(ctx, space_id)
    return ok([OccupantResponse.model_validate(o) for o in occupants])
