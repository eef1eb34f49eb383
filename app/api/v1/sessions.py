"""Endpoints REST para sesiones de kinesiología."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import require_role
from app.database import get_db
from app.models.therapy_session import SessionStatus
from app.models.user import User, UserRole
from app.schemas.common import ApiResponse, PaginatedResponse
from app.schemas.therapy_session import (
    DaySheetResponse,
    PatientHistoryResponse,
    PaymentRegistration,
    PendingPaymentsResponse,
    SessionCancel,
    SessionCancelResult,
    SessionStatisticsResponse,
    TherapySessionCreate,
    TherapySessionResponse,
    TherapySessionUpdate,
)
from app.services import therapy_session_service

router = APIRouter()

_STAFF_ROLES = (
    UserRole.ADMIN,
    UserRole.EMPLOYEE,
    UserRole.USER,
)


# ── Registro y consultas ─────────────────


@router.post("/", response_model=ApiResponse[TherapySessionResponse], status_code=201)
async def register_session(
    data: TherapySessionCreate,
    user: User = Depends(require_role(*_STAFF_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Registra una sesión asignando orden diario y número de sesión."""
    result = await therapy_session_service.register_session(db, data, user.id)
    return ApiResponse(message="Sesión registrada exitosamente", data=result)


@router.get("/", response_model=ApiResponse[PaginatedResponse[TherapySessionResponse]])
async def list_sessions(
    patient_id: UUID | None = Query(None),
    day: date | None = Query(None),
    status: SessionStatus | None = Query(None),
    is_paid: bool | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(require_role(*_STAFF_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    result = await therapy_session_service.list_sessions(
        db,
        patient_id=patient_id, day=day, status=status, is_paid=is_paid,
        page=page, limit=limit,
    )
    return ApiResponse(data=result)


@router.get("/day-sheet", response_model=ApiResponse[DaySheetResponse])
async def get_day_sheet(
    day: date | None = Query(None, description="Por defecto, hoy (UTC)"),
    user: User = Depends(require_role(*_STAFF_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Planilla diaria de sesiones."""
    return ApiResponse(data=await therapy_session_service.get_day_sheet(db, day))


@router.get("/pending-payments", response_model=ApiResponse[PendingPaymentsResponse])
async def get_pending_payments(
    patient_id: UUID | None = Query(None),
    limit: int | None = Query(None, ge=1, le=500),
    user: User = Depends(require_role(*_STAFF_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Sesiones impagas, las más recientes primero."""
    result = await therapy_session_service.get_pending_payments(
        db, patient_id=patient_id, limit=limit
    )
    return ApiResponse(data=result)


@router.get("/statistics", response_model=ApiResponse[SessionStatisticsResponse])
async def get_statistics(
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    user: User = Depends(require_role(*_STAFF_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    result = await therapy_session_service.get_session_statistics(
        db, date_from=date_from, date_to=date_to
    )
    return ApiResponse(data=result)


@router.get("/patient/{patient_id}", response_model=ApiResponse[PatientHistoryResponse])
async def get_patient_history(
    patient_id: UUID,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(require_role(*_STAFF_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Historial de sesiones y estadísticas del paciente."""
    result = await therapy_session_service.get_patient_history(
        db, patient_id, page=page, limit=limit
    )
    return ApiResponse(data=result)


@router.get("/{session_id}", response_model=ApiResponse[TherapySessionResponse])
async def get_session(
    session_id: UUID,
    user: User = Depends(require_role(*_STAFF_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    return ApiResponse(data=await therapy_session_service.get_session(db, session_id))


# ── Escrituras ───────────────────────────


@router.patch("/{session_id}", response_model=ApiResponse[TherapySessionResponse])
async def update_session(
    session_id: UUID,
    data: TherapySessionUpdate,
    user: User = Depends(require_role(*_STAFF_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    result = await therapy_session_service.update_session(db, session_id, data, user.id)
    return ApiResponse(message="Sesión actualizada exitosamente", data=result)


@router.put("/{session_id}/payment", response_model=ApiResponse[TherapySessionResponse])
async def register_payment(
    session_id: UUID,
    data: PaymentRegistration,
    user: User = Depends(require_role(*_STAFF_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Registra el cobro de la sesión."""
    result = await therapy_session_service.register_session_payment(
        db, session_id, data, user.id
    )
    return ApiResponse(message="Pago registrado exitosamente", data=result)


@router.put("/{session_id}/cancel", response_model=ApiResponse[SessionCancelResult])
async def cancel_session(
    session_id: UUID,
    data: SessionCancel,
    user: User = Depends(require_role(*_STAFF_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Cancela la sesión y, si se indica nueva fecha, la reprograma."""
    result = await therapy_session_service.cancel_session(db, session_id, data, user.id)
    message = (
        "Sesión cancelada y reprogramada"
        if result.rescheduled_session
        else "Sesión cancelada exitosamente"
    )
    return ApiResponse(message=message, data=result)
