"""
Modelo TherapySession: Sesiones de kinesiología con state machine.

Estados válidos y transiciones:
    scheduled → completed | cancelled | no_show | rescheduled
    rescheduled → completed | cancelled | no_show
    completed, cancelled, no_show: terminales

Cancelar con nueva fecha deja la original en `cancelled` con el enlace
`rescheduled_to_id` y crea una sesión nueva en estado `rescheduled`
que conserva el número de sesión del paciente.
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


class SessionStatus(str, enum.Enum):
    """Estados de una sesión."""
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    RESCHEDULED = "rescheduled"


class SessionType(str, enum.Enum):
    """Modalidad de atención."""
    IN_PERSON = "in_person"
    HOME_VISIT = "home_visit"
    VIRTUAL = "virtual"
    EVALUATION = "evaluation"
    FOLLOW_UP = "follow_up"


class PaymentMethod(str, enum.Enum):
    """Método de pago de la sesión."""
    CASH = "cash"
    TRANSFER = "transfer"
    CARD = "card"
    INSURANCE = "insurance"
    PENDING = "pending"


# ── Transiciones válidas de la state machine ─────────
VALID_TRANSITIONS: dict[SessionStatus, list[SessionStatus]] = {
    SessionStatus.SCHEDULED: [
        SessionStatus.COMPLETED,
        SessionStatus.CANCELLED,
        SessionStatus.NO_SHOW,
        SessionStatus.RESCHEDULED,
    ],
    SessionStatus.RESCHEDULED: [
        SessionStatus.COMPLETED,
        SessionStatus.CANCELLED,
        SessionStatus.NO_SHOW,
    ],
    # Estados terminales
    SessionStatus.COMPLETED: [],
    SessionStatus.CANCELLED: [],
    SessionStatus.NO_SHOW: [],
}


def is_valid_transition(current: SessionStatus, new: SessionStatus) -> bool:
    """Verifica si una transición de estado es válida."""
    return new in VALID_TRANSITIONS.get(current, [])


class TherapySession(Base):
    __tablename__ = "therapy_sessions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("patients.id"), nullable=False
    )
    professional_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )

    # ── Datos de la sesión ───────────────────────────
    session_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    session_type: Mapped[SessionType] = mapped_column(
        Enum(SessionType, values_callable=lambda e: [x.value for x in e]),
        nullable=False,
        default=SessionType.IN_PERSON,
    )
    entry_time: Mapped[str | None] = mapped_column(String(5), comment="HH:MM")
    exit_time: Mapped[str | None] = mapped_column(String(5), comment="HH:MM")
    duration_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    daily_order_number: Mapped[int] = mapped_column(
        Integer, nullable=False, comment="Orden de atención dentro del día"
    )
    session_number: Mapped[int] = mapped_column(
        Integer, nullable=False, comment="N-ésima sesión del paciente"
    )

    # ── Registro clínico ─────────────────────────────
    treatment: Mapped[dict | None] = mapped_column(
        JSONType, comment='{"description", "techniques": [], "areas": [], "intensity"}'
    )
    evolution: Mapped[dict | None] = mapped_column(
        JSONType, comment='{"general_state", "pain", "mobility", "notes"}'
    )
    notes: Mapped[str | None] = mapped_column(String(1000))
    indications: Mapped[str | None] = mapped_column(String(500))

    # ── Pago ─────────────────────────────────────────
    payment_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    payment_method: Mapped[PaymentMethod] = mapped_column(
        Enum(PaymentMethod, values_callable=lambda e: [x.value for x in e]),
        nullable=False,
        default=PaymentMethod.PENDING,
    )
    is_paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    receipt: Mapped[dict | None] = mapped_column(
        JSONType, comment='{"number", "type", "url"}'
    )

    # ── Estado ───────────────────────────────────────
    status: Mapped[SessionStatus] = mapped_column(
        Enum(SessionStatus, values_callable=lambda e: [x.value for x in e]),
        nullable=False,
        default=SessionStatus.SCHEDULED,
    )
    cancellation_reason: Mapped[str | None] = mapped_column(String(500))
    rescheduled_to_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    rescheduled_to_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("therapy_sessions.id")
    )

    modified_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id")
    )

    # ── Timestamps ───────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # ── Relaciones ───────────────────────────────────
    patient: Mapped["Patient"] = relationship("Patient")  # noqa: F821
    professional: Mapped["User"] = relationship(  # noqa: F821
        "User", foreign_keys=[professional_id]
    )

    # ── Índices para consultas frecuentes ────────────
    __table_args__ = (
        Index("idx_session_patient_date", "patient_id", "session_date"),
        Index("idx_session_date_order", "session_date", "daily_order_number"),
        Index("idx_session_status_date", "status", "session_date"),
        Index("idx_session_paid", "is_paid"),
        Index("idx_session_professional_date", "professional_id", "session_date"),
    )

    def __repr__(self) -> str:
        return f"<TherapySession {self.id} [{self.status.value}] {self.session_date}>"
