"""
Modelo SessionCounter: Fila de bloqueo por clave para numerar sesiones.

Una fila por día (`daily_order`, "2025-07-01") y por paciente
(`patient_sequence`, "<uuid>"). Se toma con SELECT FOR UPDATE antes de
calcular el número de orden o de sesión, así dos registros concurrentes
sobre la misma clave se serializan.
"""

import uuid

from sqlalchemy import Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class SessionCounter(Base):
    __tablename__ = "session_counters"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    scope: Mapped[str] = mapped_column(
        String(20), nullable=False,
        comment="daily_order o patient_sequence"
    )
    key: Mapped[str] = mapped_column(String(36), nullable=False)
    last_number: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint("scope", "key", name="uq_session_counter_scope_key"),
    )

    def __repr__(self) -> str:
        return f"<SessionCounter {self.scope}:{self.key} #{self.last_number}>"
