"""
Proyector de estadísticas del paciente.

Recalcula desde cero los contadores del paciente a partir de todas sus
sesiones (cualquier estado) y los persiste en la fila del paciente.
Es idempotente: dos ejecuciones seguidas sin escrituras intermedias
producen el mismo resultado.
"""

import logging
from decimal import Decimal
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.distribution import round_money
from app.core.exceptions import NotFoundException
from app.core.periods import to_utc_datetime
from app.models.patient import Patient
from app.models.therapy_session import TherapySession
from app.schemas.patient import PatientStatistics

logger = logging.getLogger(__name__)


def statistics_to_response(patient: Patient) -> PatientStatistics:
    return PatientStatistics(
        total_sessions=patient.total_sessions or 0,
        total_paid=float(round_money(patient.total_paid)),
        pending_balance=float(round_money(patient.pending_balance)),
        last_session_date=(
            to_utc_datetime(patient.last_session_date)
            if patient.last_session_date else None
        ),
    )


async def aggregate_patient_sessions(db: AsyncSession, patient_id: UUID) -> dict:
    """Agregación directa sobre therapy_sessions, sin persistir nada."""
    result = await db.execute(
        select(
            func.count(TherapySession.id).label("total_sessions"),
            func.sum(
                case(
                    (TherapySession.is_paid.is_(True), TherapySession.payment_amount),
                    else_=Decimal("0"),
                )
            ).label("total_paid"),
            func.sum(
                case(
                    (TherapySession.is_paid.is_(False), TherapySession.payment_amount),
                    else_=Decimal("0"),
                )
            ).label("pending_balance"),
            func.max(TherapySession.session_date).label("last_session_date"),
        ).where(TherapySession.patient_id == patient_id)
    )
    row = result.one()
    total = row.total_sessions or 0

    # Sin sesiones: contadores en cero
    if total == 0:
        return {
            "total_sessions": 0,
            "total_paid": Decimal("0.00"),
            "pending_balance": Decimal("0.00"),
            "last_session_date": None,
        }

    return {
        "total_sessions": total,
        "total_paid": round_money(row.total_paid),
        "pending_balance": round_money(row.pending_balance),
        "last_session_date": (
            to_utc_datetime(row.last_session_date)
            if row.last_session_date else None
        ),
    }


async def refresh_patient_statistics(
    db: AsyncSession,
    patient_id: UUID,
) -> PatientStatistics:
    """Recalcula y persiste (flush) las estadísticas del paciente."""
    patient = await db.get(Patient, patient_id)
    if not patient:
        raise NotFoundException("Paciente")

    stats = await aggregate_patient_sessions(db, patient_id)
    for key, value in stats.items():
        setattr(patient, key, value)
    await db.flush()

    return PatientStatistics(
        total_sessions=stats["total_sessions"],
        total_paid=float(stats["total_paid"]),
        pending_balance=float(stats["pending_balance"]),
        last_session_date=stats["last_session_date"],
    )


async def refresh_statistics_safely(
    db: AsyncSession,
    patient_id: UUID,
) -> PatientStatistics | None:
    """
    Ejecuta el proyector en su propia transacción. Un fallo se loguea y se
    descarta: la escritura de la sesión que lo disparó ya está confirmada
    y el próximo recálculo corrige cualquier desfase.
    """
    try:
        stats = await refresh_patient_statistics(db, patient_id)
        await db.commit()
    except Exception:
        await db.rollback()
        logger.exception(
            "No se pudieron recalcular las estadísticas del paciente %s", patient_id
        )
        return None
    return stats
