"""
Schemas para la vista del paciente y sus estadísticas derivadas.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel


class PatientStatistics(BaseModel):
    """Proyección de las sesiones del paciente."""
    total_sessions: int = 0
    total_paid: float = 0.0
    pending_balance: float = 0.0
    last_session_date: datetime | None = None


class PatientSummary(BaseModel):
    id: UUID
    dni: str
    first_name: str
    last_name: str
    full_name: str
    phone: str | None = None
    insurance_name: str | None = None
    planned_sessions: int | None = None
    statistics: PatientStatistics
