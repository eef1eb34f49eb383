"""
Schemas para TherapySession: sesiones, pagos, planilla diaria y
pagos pendientes.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from app.core.periods import clock_minutes, to_utc_datetime
from app.models.therapy_session import PaymentMethod, SessionStatus, SessionType
from app.schemas.common import PaginationMeta
from app.schemas.patient import PatientSummary

TIME_PATTERN = r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$"

INITIAL_STATUSES = {
    SessionStatus.SCHEDULED,
    SessionStatus.COMPLETED,
    SessionStatus.NO_SHOW,
}


def _normalize_date(value):
    if value is None or isinstance(value, datetime):
        return value
    return to_utc_datetime(value)


# ── Sub-registros clínicos ───────────────────────────

class TreatmentDetails(BaseModel):
    description: str | None = None
    techniques: list[str] = []
    areas: list[str] = Field(default_factory=list, description="Zonas tratadas")
    intensity: Literal["mild", "moderate", "intense"] = "moderate"


class Evolution(BaseModel):
    general_state: Literal["improved", "stable", "worsened"] | None = None
    pain: int | None = Field(None, ge=0, le=10, description="Escala 0-10")
    mobility: Literal["limited", "partial", "full"] | None = None
    notes: str | None = None


class Receipt(BaseModel):
    number: str | None = None
    type: Literal["invoice", "receipt", "other"] | None = None
    url: str | None = None


# ── Pago ─────────────────────────────────────────────

class PaymentInput(BaseModel):
    amount: Decimal = Field(Decimal("0"), ge=0)
    method: PaymentMethod = PaymentMethod.PENDING
    is_paid: bool = False
    receipt: Receipt | None = None


class PaymentUpdate(BaseModel):
    amount: Decimal | None = Field(None, ge=0)
    method: PaymentMethod | None = None
    is_paid: bool | None = None
    receipt: Receipt | None = None


class PaymentRegistration(BaseModel):
    """Registro de cobro de una sesión."""
    amount: Decimal = Field(..., gt=0)
    method: PaymentMethod
    receipt: Receipt | None = None

    @field_validator("method")
    @classmethod
    def method_is_real(cls, v: PaymentMethod) -> PaymentMethod:
        if v == PaymentMethod.PENDING:
            raise ValueError("El método de pago no puede ser 'pending'")
        return v


# ── Alta / edición ───────────────────────────────────

class TherapySessionCreate(BaseModel):
    patient_id: UUID
    session_date: datetime | None = Field(
        None, description="Por defecto, el momento del registro"
    )
    session_type: SessionType = SessionType.IN_PERSON
    entry_time: str | None = Field(None, pattern=TIME_PATTERN)
    exit_time: str | None = Field(None, pattern=TIME_PATTERN)
    daily_order_number: int | None = Field(None, ge=1)
    session_number: int | None = Field(None, ge=1)
    treatment: TreatmentDetails | None = None
    evolution: Evolution | None = None
    payment: PaymentInput | None = None
    status: SessionStatus = SessionStatus.SCHEDULED
    notes: str | None = Field(None, max_length=1000)
    indications: str | None = Field(None, max_length=500)

    @field_validator("session_date", mode="before")
    @classmethod
    def normalize_session_date(cls, v):
        return _normalize_date(v)

    @field_validator("status")
    @classmethod
    def initial_status(cls, v: SessionStatus) -> SessionStatus:
        if v not in INITIAL_STATUSES:
            raise ValueError(
                "Una sesión nueva solo puede estar scheduled, completed o no_show"
            )
        return v

    @model_validator(mode="after")
    def exit_after_entry(self):
        if self.entry_time and self.exit_time:
            if clock_minutes(self.exit_time) < clock_minutes(self.entry_time):
                raise ValueError("exit_time debe ser posterior a entry_time")
        return self


class TherapySessionUpdate(BaseModel):
    session_date: datetime | None = None
    session_type: SessionType | None = None
    entry_time: str | None = Field(None, pattern=TIME_PATTERN)
    exit_time: str | None = Field(None, pattern=TIME_PATTERN)
    daily_order_number: int | None = Field(None, ge=1)
    treatment: TreatmentDetails | None = None
    evolution: Evolution | None = None
    payment: PaymentUpdate | None = None
    status: SessionStatus | None = None
    cancellation_reason: str | None = Field(None, max_length=500)
    notes: str | None = Field(None, max_length=1000)
    indications: str | None = Field(None, max_length=500)

    @field_validator("session_date", mode="before")
    @classmethod
    def normalize_session_date(cls, v):
        return _normalize_date(v)


class SessionCancel(BaseModel):
    reason: str = Field(..., max_length=500)
    new_date: datetime | None = Field(
        None, description="Si se indica, se crea la sesión reprogramada"
    )

    @field_validator("new_date", mode="before")
    @classmethod
    def normalize_new_date(cls, v):
        return _normalize_date(v)

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("El motivo de cancelación es obligatorio")
        return v.strip()


# ── Respuestas ───────────────────────────────────────

class PaymentResponse(BaseModel):
    amount: float
    method: PaymentMethod
    is_paid: bool
    paid_at: datetime | None = None
    receipt: dict | None = None


class RescheduleLink(BaseModel):
    date: datetime | None = None
    session_id: UUID


class TherapySessionResponse(BaseModel):
    id: UUID
    patient_id: UUID
    professional_id: UUID
    session_date: datetime
    session_type: SessionType
    entry_time: str | None = None
    exit_time: str | None = None
    duration_minutes: int = 0
    daily_order_number: int
    session_number: int
    treatment: dict | None = None
    evolution: dict | None = None
    payment: PaymentResponse
    status: SessionStatus
    cancellation_reason: str | None = None
    rescheduled_to: RescheduleLink | None = None
    notes: str | None = None
    indications: str | None = None

    # Datos de relaciones
    patient_name: str | None = None
    insurance_name: str | None = None
    professional_name: str | None = None

    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class SessionCancelResult(BaseModel):
    session: TherapySessionResponse
    rescheduled_session: TherapySessionResponse | None = None


# ── Planilla diaria ──────────────────────────────────

class DaySheetRow(BaseModel):
    id: UUID
    daily_order_number: int
    patient_id: UUID
    patient_name: str | None = None
    insurance_name: str | None = None
    entry_time: str | None = None
    exit_time: str | None = None
    duration_minutes: int = 0
    amount: float
    is_paid: bool
    payment_method: PaymentMethod
    status: SessionStatus
    notes: str | None = None
    session_date: datetime
    session_number: int
    session_label: str | None = None


class DaySheetTotals(BaseModel):
    total_sessions: int = 0
    collected: float = 0.0
    pending: float = 0.0
    cancelled: int = 0
    no_show: int = 0


class DaySheetResponse(BaseModel):
    day: date
    sessions: list[DaySheetRow]
    totals: DaySheetTotals


# ── Pagos pendientes ─────────────────────────────────

class BreakdownItem(BaseModel):
    count: int = 0
    amount: float = 0.0


class PendingPaymentsResponse(BaseModel):
    """
    Las sumas y desgloses se calculan sobre las sesiones devueltas
    (acotadas por `limit`), no sobre todo el universo pendiente.
    """
    sessions: list[TherapySessionResponse]
    total_pending: float
    count: int
    limit: int
    breakdown_by_status: dict[str, BreakdownItem]
    breakdown_by_method: dict[str, BreakdownItem]


# ── Historial y estadísticas ─────────────────────────

class PatientHistoryStats(BaseModel):
    total_sessions: int = 0
    completed: int = 0
    no_show: int = 0
    total_paid: float = 0.0
    total_pending: float = 0.0


class PatientHistoryResponse(BaseModel):
    patient: PatientSummary
    sessions: list[TherapySessionResponse]
    statistics: PatientHistoryStats
    pagination: PaginationMeta


class SessionTotals(BaseModel):
    total_sessions: int = 0
    completed: int = 0
    cancelled: int = 0
    no_show: int = 0
    collected: float = 0.0
    pending: float = 0.0


class WeekdayCount(BaseModel):
    weekday: str
    count: int


class SessionStatisticsResponse(BaseModel):
    totals: SessionTotals
    by_weekday: list[WeekdayCount]
