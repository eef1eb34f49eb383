"""
Schemas Pydantic v2 para la planilla de pagos del personal.

Los datos de entrada son deliberadamente laxos (fecha como texto,
día/estado como string): la normalización y validación de negocio ocurre
en el servicio para poder reportar errores fila por fila en la
importación masiva.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from app.models.payroll_entry import PayrollStatus, Weekday


# ── Entrada ──────────────────────────────


class DistributionInput(BaseModel):
    share_a: Decimal | None = Field(None, ge=0)
    share_b: Decimal | None = Field(None, ge=0)
    share_c: Decimal | None = Field(None, ge=0)


class PayrollEntryInput(BaseModel):
    entry_date: date | str = Field(..., description="Fecha del día (YYYY-MM-DD)")
    amount: Decimal | None = None
    year: int | None = None
    month: int | None = None
    week_of_month: int | None = None
    weekday: str | None = None
    distribution: DistributionInput | None = None
    notes: str | None = None
    status: str | None = None


class PayrollEntryUpdate(BaseModel):
    entry_date: date | str | None = None
    amount: Decimal | None = None
    year: int | None = None
    month: int | None = None
    week_of_month: int | None = None
    weekday: str | None = None
    distribution: DistributionInput | None = None
    notes: str | None = None
    status: str | None = None


class PayrollBulkRequest(BaseModel):
    entries: list[PayrollEntryInput] = Field(..., min_length=1)
    stop_on_error: bool = Field(
        False, description="Cortar en la primera fila inválida en vez de reportarla"
    )


# ── Salida ───────────────────────────────


class DistributionResponse(BaseModel):
    share_a: float = 0.0
    share_b: float = 0.0
    share_c: float = 0.0


class Collaborator(BaseModel):
    id: UUID
    first_name: str
    last_name: str
    full_name: str


class PayrollEntryResponse(BaseModel):
    id: UUID
    year: int
    month: int
    week_of_month: int
    weekday: Weekday
    entry_date: date
    amount: float
    distribution: DistributionResponse
    total_distribution: float
    notes: str | None = None
    status: PayrollStatus
    created_by: UUID
    modified_by: UUID | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class PayrollUpsertResult(BaseModel):
    entry: PayrollEntryResponse
    was_created: bool


class PayrollBulkError(BaseModel):
    index: int
    entry_date: str | None = None
    detail: str


class PayrollBulkResult(BaseModel):
    created: int = 0
    updated: int = 0
    failed: int = 0
    total: int = 0
    entries: list[PayrollEntryResponse] = []
    errors: list[PayrollBulkError] = []


# ── Planilla mensual ─────────────────────


class PayrollDay(BaseModel):
    entry_id: UUID
    entry_date: date
    amount: float
    distribution: DistributionResponse
    notes: str | None = None
    status: PayrollStatus
    collaborator: Collaborator | None = None


class PayrollWeek(BaseModel):
    week: int
    days: dict[str, PayrollDay] = {}
    subtotal: float = 0.0
    distribution: DistributionResponse = DistributionResponse()


class MonthSheetTotals(BaseModel):
    total: float = 0.0
    distribution: DistributionResponse = DistributionResponse()


class MonthSheetResponse(BaseModel):
    year: int
    month: int
    weeks: dict[int, PayrollWeek]
    totals: MonthSheetTotals


class FullSheetResponse(BaseModel):
    sheets: list[MonthSheetResponse]


# ── Estadísticas ─────────────────────────


class PayrollSummary(BaseModel):
    total_entries: int = 0
    total_amount: float = 0.0
    distribution: DistributionResponse = DistributionResponse()


class PayrollStatusBreakdown(BaseModel):
    status: PayrollStatus
    count: int
    amount: float


class PayrollStatisticsResponse(BaseModel):
    summary: PayrollSummary
    by_status: list[PayrollStatusBreakdown]
