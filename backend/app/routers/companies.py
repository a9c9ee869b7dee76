"""Companies router."""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.security import get_caller_context
from app.schemas.company import CompanyCreate, CompanyResponse, CompanyUpdate
from app.schemas.envelope import ApiResponse, DeletedResponse, ok
from app.services.companies import CompanyService
from app.services.identity import CallerContext

router = APIRouter(prefix="/companies", tags=["companies"])


@router.post("", response_model=ApiResponse[CompanyResponse], status_code=status.HTTP_201_CREATED)
async def create_company(
    data: CompanyCreate,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    """Create a company (platform administrators only)."""
    company = await CompanyService(db).create(ctx, data)
    await db.commit()
    return ok(CompanyResponse.model_validate(company))


@router.get("", response_model=ApiResponse[List[CompanyResponse]])
async def list_companies(
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    companies = await CompanyService(db).list_companies(ctx)
    return ok([CompanyResponse.model_validate(c) for c in companies])


@router.get("/{company_id}", response_model=ApiResponse[CompanyResponse])
async def get_company(
    company_id: UUID,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    company = await CompanyService(db).get(ctx, company_id)
    return ok(CompanyResponse.model_validate(company))


@router.patch("/{company_id}", response_model=ApiResponse[CompanyResponse])
async def update_company(
    company_id: UUID,
    data: CompanyUpdate,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    company = await CompanyService(db).update(ctx, company_id, data)
    await db.commit()
    return ok(CompanyResponse.model_validate(company))


@router.delete("/{company_id}", response_model=ApiResponse[DeletedResponse])
async def delete_company(
    company_id: UUID,
    db: AsyncSession = Depends(get_db),
    ctx: CallerContext = Depends(get_caller_context),
):
    """Delete a company with no buildings or users left."""
    await CompanyService(db).delete(ctx, company_id)
    await db.commit()
    return ok(DeletedResponse(id=company_id))
