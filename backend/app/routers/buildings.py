"""Buildings router, including the spaces of a building."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.security import get_caller_context
from app.schemas.building import BuildingCreate, BuildingResponse, BuildingUpdate
from app.schemas.envelope import ApiResponse, DeletedResponse, ok
from app.schemas.space import SpaceCreate, SpaceResponse
from app.services.buildings import BuildingService, SpaceService
from app.services.identity import CallerContext

router = APIRouter(prefix="/buildings", tags=["buildings"])


@router.post("", response_model=ApiResponse[BuildingResponse], status_code=status.HTTP_201_CREATED)
async def create_building(
    data: BuildingCreate,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    """Create a building. Platform administrators must name the company."""
    building = await BuildingService(db).create(ctx, data)
    await db.commit()
    return ok(BuildingResponse.model_validate(building))


@router.get("", response_model=ApiResponse[List[BuildingResponse]])
async def list_buildings(
    company_id: Optional[UUID] = None,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    """List buildings visible to the caller."""
    buildings = await BuildingService(db).list_buildings(ctx, company_id=company_id)
    return ok([BuildingResponse.model_validate(b) for b in buildings])


@router.get("/{building_id}", response_model=ApiResponse[BuildingResponse])
async def get_building(
    building_id: UUID,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    building = await BuildingService(db).get(ctx, building_id)
    return ok(BuildingResponse.model_validate(building))


@router.patch("/{building_id}", response_model=ApiResponse[BuildingResponse])
async def update_building(
    building_id: UUID,
    data: BuildingUpdate,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    building = await BuildingService(db).update(ctx, building_id, data)
    await db.commit()
    return ok(BuildingResponse.model_validate(building))


@router.delete("/{building_id}", response_model=ApiResponse[DeletedResponse])
async def delete_building(
    building_id: UUID,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    """Delete a building with no spaces or tickets."""
    await BuildingService(db).delete(ctx, building_id)
    await db.commit()
    return ok(DeletedResponse(id=building_id))


@router.post(
    "/{building_id}/spaces",
    response_model=ApiResponse[SpaceResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_space(
    building_id: UUID,
    data: SpaceCreate,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    """Add a unit or common area. The payload is discriminated on space_type."""
    space = await SpaceService(db).create(ctx, building_id, data)
    await db.commit()
    return ok(SpaceResponse.model_validate(space))


@router.get("/{building_id}/spaces", response_model=ApiResponse[List[SpaceResponse]])
async def list_spaces(
    building_id: UUID,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    spaces = await SpaceService(db).list_for_building(ctx, building_id)
    return ok([SpaceResponse.model_validate(s) for s in spaces])
