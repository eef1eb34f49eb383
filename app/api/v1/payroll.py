"""Endpoints REST para la planilla de pagos del personal (solo admin)."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import require_role
from app.database import get_db
from app.models.user import User, UserRole
from app.schemas.common import ApiResponse, PaginatedResponse
from app.schemas.payroll import (
    FullSheetResponse,
    MonthSheetResponse,
    PayrollBulkRequest,
    PayrollBulkResult,
    PayrollEntryInput,
    PayrollEntryResponse,
    PayrollEntryUpdate,
    PayrollStatisticsResponse,
    PayrollUpsertResult,
)
from app.services import payroll_service

router = APIRouter()

_ADMIN_ROLES = (UserRole.ADMIN,)


@router.post("/", response_model=ApiResponse[PayrollUpsertResult])
async def upsert_entry(
    data: PayrollEntryInput,
    user: User = Depends(require_role(*_ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Crea o actualiza el registro del día."""
    result = await payroll_service.upsert_entry(db, data, user.id)
    return ApiResponse(
        message=(
            "Registro de pago creado exitosamente"
            if result.was_created
            else "Registro de pago actualizado exitosamente"
        ),
        data=result,
    )


@router.post("/bulk", response_model=ApiResponse[PayrollBulkResult])
async def bulk_upsert(
    data: PayrollBulkRequest,
    user: User = Depends(require_role(*_ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Importa varios registros de la planilla."""
    result = await payroll_service.bulk_upsert(db, data, user.id)
    return ApiResponse(message="Planilla procesada", data=result)


@router.get("/", response_model=ApiResponse[PaginatedResponse[PayrollEntryResponse]])
async def list_entries(
    year: int | None = Query(None, ge=2000),
    month: int | None = Query(None, ge=1, le=12),
    week: int | None = Query(None, ge=1, le=5),
    status: str | None = Query(None),
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(require_role(*_ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Lista registros con filtros y paginación."""
    result = await payroll_service.list_entries(
        db,
        year=year, month=month, week_of_month=week, status=status,
        date_from=date_from, date_to=date_to, page=page, limit=limit,
    )
    return ApiResponse(data=result)


@router.get("/sheet", response_model=ApiResponse[MonthSheetResponse])
async def get_month_sheet(
    year: int = Query(..., ge=2000),
    month: int = Query(..., ge=1, le=12),
    user: User = Depends(require_role(*_ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Planilla de un mes agrupada por semana."""
    return ApiResponse(data=await payroll_service.get_month_sheet(db, year, month))


@router.get("/sheet/all", response_model=ApiResponse[FullSheetResponse])
async def get_full_sheet(
    user: User = Depends(require_role(*_ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Planillas de todos los meses con registros."""
    return ApiResponse(data=await payroll_service.get_full_sheet(db))


@router.get("/statistics", response_model=ApiResponse[PayrollStatisticsResponse])
async def get_statistics(
    year: int | None = Query(None, ge=2000),
    month: int | None = Query(None, ge=1, le=12),
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    user: User = Depends(require_role(*_ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    result = await payroll_service.get_statistics(
        db, year=year, month=month, date_from=date_from, date_to=date_to
    )
    return ApiResponse(data=result)


@router.get("/{entry_id}", response_model=ApiResponse[PayrollEntryResponse])
async def get_entry(
    entry_id: UUID,
    user: User = Depends(require_role(*_ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    return ApiResponse(data=await payroll_service.get_entry(db, entry_id))


@router.patch("/{entry_id}", response_model=ApiResponse[PayrollEntryResponse])
async def update_entry(
    entry_id: UUID,
    data: PayrollEntryUpdate,
    user: User = Depends(require_role(*_ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Corrige un registro existente."""
    result = await payroll_service.update_entry(db, entry_id, data, user.id)
    return ApiResponse(message="Registro actualizado exitosamente", data=result)


@router.delete("/{entry_id}", response_model=ApiResponse[dict])
async def delete_entry(
    entry_id: UUID,
    user: User = Depends(require_role(*_ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Elimina físicamente un registro."""
    await payroll_service.delete_entry(db, entry_id, user.id)
    return ApiResponse(message="Registro eliminado exitosamente")
