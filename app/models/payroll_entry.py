"""
Modelo PayrollEntry: Planilla de pagos del personal.

Un registro por día: ingreso total de la clínica y su reparto en tres
categorías (A 30%, B 20%, C 50%). La clave natural es
(year, month, week_of_month, entry_date) y la respalda un índice único,
de modo que el upsert converge ante escrituras concurrentes.
"""

import enum
import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    SmallInteger,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.distribution import Distribution
from app.database import Base


class Weekday(str, enum.Enum):
    """Día de la semana (índice 0 = domingo)."""
    DOMINGO = "domingo"
    LUNES = "lunes"
    MARTES = "martes"
    MIERCOLES = "miercoles"
    JUEVES = "jueves"
    VIERNES = "viernes"
    SABADO = "sabado"


class PayrollStatus(str, enum.Enum):
    """Estado de un registro de la planilla."""
    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    CANCELLED = "cancelled"


class PayrollEntry(Base):
    __tablename__ = "payroll_entries"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )

    # ── Período ──────────────────────────────────────
    year: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    month: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    week_of_month: Mapped[int] = mapped_column(
        SmallInteger, nullable=False,
        comment="Bucket fijo de 7 días desde el 1 del mes (1-5)"
    )
    weekday: Mapped[Weekday] = mapped_column(
        Enum(Weekday, values_callable=lambda e: [x.value for x in e]),
        nullable=False,
    )
    entry_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    # ── Montos ───────────────────────────────────────
    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    share_a: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0"), comment="30% del total"
    )
    share_b: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0"), comment="20% del total"
    )
    share_c: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0"),
        comment="50% del total, absorbe el remanente del redondeo"
    )

    notes: Mapped[str | None] = mapped_column(String(500))
    status: Mapped[PayrollStatus] = mapped_column(
        Enum(PayrollStatus, values_callable=lambda e: [x.value for x in e]),
        nullable=False,
        default=PayrollStatus.PENDING,
    )

    # ── Auditoría ────────────────────────────────────
    created_by: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    modified_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id")
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # ── Relaciones ───────────────────────────────────
    creator: Mapped["User"] = relationship("User", foreign_keys=[created_by])  # noqa: F821
    modifier: Mapped["User | None"] = relationship("User", foreign_keys=[modified_by])  # noqa: F821

    __table_args__ = (
        UniqueConstraint(
            "year", "month", "week_of_month", "entry_date",
            name="uq_payroll_entry_period_date",
        ),
        Index("idx_payroll_entry_year_month", "year", "month"),
        Index("idx_payroll_entry_status_date", "status", "entry_date"),
    )

    @property
    def distribution(self) -> Distribution:
        return Distribution(
            share_a=self.share_a or Decimal("0"),
            share_b=self.share_b or Decimal("0"),
            share_c=self.share_c or Decimal("0"),
        )

    def apply_distribution(self, distribution: Distribution) -> None:
        self.share_a = distribution.share_a
        self.share_b = distribution.share_b
        self.share_c = distribution.share_c

    def __repr__(self) -> str:
        return f"<PayrollEntry {self.entry_date} amount={self.amount} [{self.status.value}]>"
