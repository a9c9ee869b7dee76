"""Occupants router."""

from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.security import get_caller_context
from app.schemas.envelope import ApiResponse, DeletedResponse, ok
from app.schemas.occupant import OccupantResponse, OccupantUpdate
from app.services.identity import CallerContext
from app.services.notifications import NotificationDispatcher, get_dispatcher, schedule_dispatch
from app.services.occupants import OccupantService

router = APIRouter(prefix="/occupants", tags=["occupants"])


@router.get("/{occupant_id}", response_model=ApiResponse[OccupantResponse])
async def get_occupant(
    occupant_id: UUID,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    occupant = await OccupantService(db).get(ctx, occupant_id)
    return ok(OccupantResponse.model_validate(occupant))


@router.patch("/{occupant_id}", response_model=ApiResponse[OccupantResponse])
async def update_occupant(
    occupant_id: UUID,
    data: OccupantUpdate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Update an occupant; a changed email on an unclaimed occupant sends a new link."""
    occupant = await OccupantService(db).update(ctx, occupant_id, data)
    await db.commit()
    schedule_dispatch(background_tasks, db, dispatcher)
    return ok(OccupantResponse.model_validate(occupant))


@router.post("/{occupant_id}/resend-claim", response_model=ApiResponse[OccupantResponse])
async def resend_claim(
    occupant_id: UUID,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Rotate the claim token and resend the link. The previous link stops working."""
    occupant = await OccupantService(db).resend(ctx, occupant_id)
    await db.commit()
    schedule_dispatch(background_tasks, db, dispatcher)
    return ok(OccupantResponse.model_validate(occupant))


@router.delete("/{occupant_id}", response_model=ApiResponse[DeletedResponse])
async def delete_occupant(
    occupant_id: UUID,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    await OccupantService(db).delete(ctx, occupant_id)
    await db.commit()
    return ok(DeletedResponse(id=occupant_id))
