"""
Modelo Patient: Pacientes del consultorio.
Las estadísticas (total de sesiones, abonado, saldo, última sesión) son
una proyección derivada de therapy_sessions; nunca se editan a mano.
"""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Integer, Numeric, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class Patient(Base):
    __tablename__ = "patients"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )

    # ── Datos de identidad ───────────────────────────
    dni: Mapped[str] = mapped_column(
        String(15), nullable=False, unique=True, index=True
    )
    first_name: Mapped[str] = mapped_column(String(50), nullable=False)
    last_name: Mapped[str] = mapped_column(String(50), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(30))

    # ── Cobertura y tratamiento ──────────────────────
    insurance_name: Mapped[str | None] = mapped_column(
        String(100), default="Particular", comment="Obra social / cobertura"
    )
    planned_sessions: Mapped[int | None] = mapped_column(
        Integer, comment="Sesiones indicadas en el plan de tratamiento"
    )

    # ── Estado ───────────────────────────────────────
    is_active: Mapped[bool] = mapped_column(default=True)

    # ── Estadísticas derivadas (proyector de sesiones) ──
    total_sessions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_paid: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0"), nullable=False
    )
    pending_balance: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0"), nullable=False
    )
    last_session_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    @property
    def full_name(self) -> str:
        return f"{self.last_name}, {self.first_name}"

    def __repr__(self) -> str:
        return f"<Patient {self.first_name} {self.last_name}>"
