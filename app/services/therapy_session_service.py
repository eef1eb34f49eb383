"""
Servicio de sesiones: registro con numeración diaria y por paciente,
cobro, cancelación con reprogramación, planilla diaria, pagos
pendientes, historial del paciente y estadísticas.

Después de cada escritura confirmada se recalculan las estadísticas del
paciente y se registra la auditoría; ninguno de esos pasos puede revertir
la escritura principal.
"""

import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.config import get_settings
from app.core.distribution import round_money
from app.core.exceptions import (
    ConflictException,
    NotFoundException,
    ValidationException,
)
from app.core.payments import PaymentInfo, merge_payment, register_payment
from app.core.periods import (
    WEEKDAY_NAMES,
    clock_minutes,
    parse_calendar_date,
    to_utc_datetime,
    utc_day_bounds,
    weekday_name,
)
from app.models.patient import Patient
from app.models.session_counter import SessionCounter
from app.models.therapy_session import (
    VALID_TRANSITIONS,
    PaymentMethod,
    SessionStatus,
    TherapySession,
    is_valid_transition,
)
from app.schemas.common import PaginatedResponse, PaginationMeta
from app.schemas.patient import PatientSummary
from app.schemas.therapy_session import (
    BreakdownItem,
    DaySheetResponse,
    DaySheetRow,
    DaySheetTotals,
    PatientHistoryResponse,
    PatientHistoryStats,
    PaymentRegistration,
    PaymentResponse,
    PendingPaymentsResponse,
    RescheduleLink,
    SessionCancel,
    SessionCancelResult,
    SessionStatisticsResponse,
    SessionTotals,
    TherapySessionCreate,
    TherapySessionResponse,
    TherapySessionUpdate,
    WeekdayCount,
)
from app.services.audit_service import record_event
from app.services.patient_stats_service import (
    refresh_statistics_safely,
    statistics_to_response,
)

logger = logging.getLogger(__name__)

ENTITY = "therapy_session"

DAILY_ORDER_SCOPE = "daily_order"
PATIENT_SEQUENCE_SCOPE = "patient_sequence"


# ── Helpers ──────────────────────────────────────────

def _duration(entry_time: str | None, exit_time: str | None) -> int:
    """Minutos entre entrada y salida; 0 si falta alguna."""
    if not entry_time or not exit_time:
        return 0
    return max(0, clock_minutes(exit_time) - clock_minutes(entry_time))


def _aware(value: datetime | None) -> datetime | None:
    return to_utc_datetime(value) if value is not None else None


def _session_label(session_number: int, planned: int | None) -> str:
    if planned:
        return f"Sesión {session_number} de {planned}"
    return f"Sesión {session_number}"


def _session_to_response(s: TherapySession) -> TherapySessionResponse:
    """Convierte un modelo TherapySession a su schema de respuesta."""
    rescheduled_to = None
    if s.rescheduled_to_id:
        rescheduled_to = RescheduleLink(
            date=_aware(s.rescheduled_to_date),
            session_id=s.rescheduled_to_id,
        )

    return TherapySessionResponse(
        id=s.id,
        patient_id=s.patient_id,
        professional_id=s.professional_id,
        session_date=_aware(s.session_date),
        session_type=s.session_type,
        entry_time=s.entry_time,
        exit_time=s.exit_time,
        duration_minutes=s.duration_minutes or 0,
        daily_order_number=s.daily_order_number,
        session_number=s.session_number,
        treatment=s.treatment,
        evolution=s.evolution,
        payment=PaymentResponse(
            amount=float(round_money(s.payment_amount)),
            method=s.payment_method,
            is_paid=s.is_paid,
            paid_at=_aware(s.paid_at),
            receipt=s.receipt,
        ),
        status=s.status,
        cancellation_reason=s.cancellation_reason,
        rescheduled_to=rescheduled_to,
        notes=s.notes,
        indications=s.indications,
        patient_name=s.patient.full_name if s.patient else None,
        insurance_name=s.patient.insurance_name if s.patient else None,
        professional_name=s.professional.full_name if s.professional else None,
        created_at=s.created_at,
        updated_at=s.updated_at,
    )


def _snapshot(s: TherapySession) -> dict:
    """Datos relevantes para la auditoría."""
    return {
        "patient_id": s.patient_id,
        "session_date": s.session_date,
        "status": s.status,
        "daily_order_number": s.daily_order_number,
        "session_number": s.session_number,
        "payment_amount": s.payment_amount,
        "payment_method": s.payment_method,
        "is_paid": s.is_paid,
        "cancellation_reason": s.cancellation_reason,
        "rescheduled_to_id": s.rescheduled_to_id,
    }


def _with_relations(query):
    return query.options(
        selectinload(TherapySession.patient),
        selectinload(TherapySession.professional),
    )


async def _load_session(db: AsyncSession, session_id: UUID) -> TherapySession:
    """Lee la sesión con sus relaciones; refresca la instancia en memoria."""
    result = await db.execute(
        _with_relations(select(TherapySession))
        .where(TherapySession.id == session_id)
        .execution_options(populate_existing=True)
    )
    session = result.scalar_one_or_none()
    if not session:
        raise NotFoundException("Sesión")
    return session


# ── Numeración ───────────────────────────────────────

async def _find_counter(db: AsyncSession, scope: str, key: str) -> SessionCounter | None:
    result = await db.execute(
        select(SessionCounter)
        .where(SessionCounter.scope == scope, SessionCounter.key == key)
        .with_for_update()
    )
    return result.scalar_one_or_none()


async def _lock_counter(db: AsyncSession, scope: str, key: str) -> SessionCounter:
    """
    Toma la fila de bloqueo (scope, key) con SELECT FOR UPDATE, creándola
    si no existe. Mientras la transacción siga abierta, otro registro
    sobre la misma clave espera.

    La fila nueva se inserta dentro de un SAVEPOINT: si otro registro la
    creó en paralelo, se descarta solo el INSERT y se vuelve a leer con
    bloqueo, de modo que ambos registros convergen sobre la misma fila.
    """
    counter = await _find_counter(db, scope, key)
    if counter:
        return counter

    try:
        async with db.begin_nested():
            db.add(SessionCounter(scope=scope, key=key, last_number=0))
    except IntegrityError:
        logger.warning("Contador %s:%s creado en paralelo, reintentando lectura", scope, key)

    counter = await _find_counter(db, scope, key)
    if not counter:
        raise ConflictException(
            "Registro simultáneo para el mismo día o paciente, reintente"
        )
    return counter


async def _next_daily_order(
    db: AsyncSession,
    session_date: datetime,
    exclude_id: UUID | None = None,
) -> int:
    """Máximo número de orden del día UTC + 1 (1 si el día está vacío)."""
    start, end = utc_day_bounds(session_date)
    counter = await _lock_counter(db, DAILY_ORDER_SCOPE, start.date().isoformat())

    query = select(func.max(TherapySession.daily_order_number)).where(
        TherapySession.session_date >= start,
        TherapySession.session_date < end,
    )
    if exclude_id:
        query = query.where(TherapySession.id != exclude_id)
    current = (await db.execute(query)).scalar() or 0

    number = current + 1
    counter.last_number = max(counter.last_number or 0, number)
    return number


async def _next_session_number(db: AsyncSession, patient_id: UUID) -> int:
    """Cantidad de sesiones del paciente (cualquier estado) + 1."""
    counter = await _lock_counter(db, PATIENT_SEQUENCE_SCOPE, str(patient_id))

    count = (
        await db.execute(
            select(func.count(TherapySession.id)).where(
                TherapySession.patient_id == patient_id
            )
        )
    ).scalar() or 0

    number = count + 1
    counter.last_number = max(counter.last_number or 0, number)
    return number


async def _after_write(
    db: AsyncSession,
    *,
    patient_id: UUID,
    user_id: UUID | None,
    entity_id: UUID,
    action: str,
    old_data: dict | None = None,
    new_data: dict | None = None,
) -> None:
    """Efectos posteriores al commit: estadísticas y auditoría."""
    await refresh_statistics_safely(db, patient_id)
    await record_event(
        db,
        user_id=user_id,
        entity=ENTITY,
        entity_id=str(entity_id),
        action=action,
        old_data=old_data,
        new_data=new_data,
    )


# ── Registro ─────────────────────────────────────────

async def register_session(
    db: AsyncSession,
    data: TherapySessionCreate,
    professional_id: UUID,
) -> TherapySessionResponse:
    """
    Registra una sesión. Si no se indican, asigna el número de orden del
    día y el número de sesión del paciente.
    """
    patient = await db.get(Patient, data.patient_id)
    if not patient:
        raise NotFoundException("Paciente")

    session_date = data.session_date or datetime.now(timezone.utc)

    daily_order = data.daily_order_number or await _next_daily_order(db, session_date)
    session_number = data.session_number or await _next_session_number(db, patient.id)

    payment = merge_payment(
        PaymentInfo(),
        data.payment.model_dump() if data.payment else {},
    )

    session = TherapySession(
        patient_id=patient.id,
        professional_id=professional_id,
        session_date=session_date,
        session_type=data.session_type,
        entry_time=data.entry_time,
        exit_time=data.exit_time,
        duration_minutes=_duration(data.entry_time, data.exit_time),
        daily_order_number=daily_order,
        session_number=session_number,
        treatment=data.treatment.model_dump() if data.treatment else None,
        evolution=data.evolution.model_dump() if data.evolution else None,
        status=data.status,
        notes=data.notes,
        indications=data.indications,
    )
    payment.apply_to(session)
    db.add(session)
    await db.commit()
    new_id = session.id

    logger.info(
        "Sesión registrada: paciente=%s fecha=%s orden=%s sesión=%s",
        patient.id, session_date.date(), daily_order, session_number,
    )

    await _after_write(
        db,
        patient_id=patient.id,
        user_id=professional_id,
        entity_id=session.id,
        action="create",
        new_data=_snapshot(session),
    )
    return _session_to_response(await _load_session(db, new_id))


# ── Consultas ────────────────────────────────────────

async def get_session(db: AsyncSession, session_id: UUID) -> TherapySessionResponse:
    return _session_to_response(await _load_session(db, session_id))


async def list_sessions(
    db: AsyncSession,
    *,
    patient_id: UUID | None = None,
    day: date | None = None,
    status: SessionStatus | None = None,
    is_paid: bool | None = None,
    page: int = 1,
    limit: int = 20,
) -> PaginatedResponse[TherapySessionResponse]:
    """Lista sesiones con filtros, de la más reciente a la más antigua."""
    query = select(TherapySession)

    if patient_id:
        query = query.where(TherapySession.patient_id == patient_id)
    if day:
        start, end = utc_day_bounds(day)
        query = query.where(
            TherapySession.session_date >= start,
            TherapySession.session_date < end,
        )
    if status:
        query = query.where(TherapySession.status == status)
    if is_paid is not None:
        query = query.where(TherapySession.is_paid.is_(is_paid))

    count_q = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_q)).scalar() or 0

    query = (
        _with_relations(query)
        .order_by(
            TherapySession.session_date.desc(),
            TherapySession.daily_order_number.asc(),
        )
        .offset((page - 1) * limit)
        .limit(limit)
    )
    result = await db.execute(query)
    sessions = result.scalars().all()

    return PaginatedResponse[TherapySessionResponse](
        items=[_session_to_response(s) for s in sessions],
        pagination=PaginationMeta.build(page, limit, total),
    )


async def get_day_sheet(db: AsyncSession, day: Any = None) -> DaySheetResponse:
    """
    Planilla diaria: sesiones del día UTC ordenadas por número de orden y
    hora de entrada. El total de sesiones, lo cobrado y lo pendiente se
    suman solo sobre sesiones realizadas.
    """
    start, end = utc_day_bounds(day or datetime.now(timezone.utc))

    result = await db.execute(
        select(TherapySession)
        .where(
            TherapySession.session_date >= start,
            TherapySession.session_date < end,
        )
        .options(selectinload(TherapySession.patient))
        .order_by(
            TherapySession.daily_order_number.asc(),
            TherapySession.entry_time.asc(),
        )
    )
    sessions = result.scalars().all()

    completed = 0
    collected = Decimal("0")
    pending = Decimal("0")
    cancelled = 0
    no_show = 0
    rows = []

    for s in sessions:
        if s.status == SessionStatus.COMPLETED:
            completed += 1
            if s.is_paid:
                collected += s.payment_amount or Decimal("0")
            else:
                pending += s.payment_amount or Decimal("0")
        elif s.status == SessionStatus.CANCELLED:
            cancelled += 1
        elif s.status == SessionStatus.NO_SHOW:
            no_show += 1

        planned = s.patient.planned_sessions if s.patient else None
        rows.append(DaySheetRow(
            id=s.id,
            daily_order_number=s.daily_order_number,
            patient_id=s.patient_id,
            patient_name=s.patient.full_name if s.patient else None,
            insurance_name=s.patient.insurance_name if s.patient else None,
            entry_time=s.entry_time,
            exit_time=s.exit_time,
            duration_minutes=s.duration_minutes or 0,
            amount=float(round_money(s.payment_amount)),
            is_paid=s.is_paid,
            payment_method=s.payment_method,
            status=s.status,
            notes=s.notes,
            session_date=_aware(s.session_date),
            session_number=s.session_number,
            session_label=_session_label(s.session_number, planned),
        ))

    return DaySheetResponse(
        day=start.date(),
        sessions=rows,
        totals=DaySheetTotals(
            total_sessions=completed,
            collected=float(round_money(collected)),
            pending=float(round_money(pending)),
            cancelled=cancelled,
            no_show=no_show,
        ),
    )


async def get_pending_payments(
    db: AsyncSession,
    *,
    patient_id: UUID | None = None,
    limit: int | None = None,
) -> PendingPaymentsResponse:
    """
    Sesiones impagas (cualquier estado), más recientes primero, hasta
    `limit`. Total y desgloses se calculan sobre la página devuelta.
    """
    limit = limit or get_settings().PENDING_PAYMENTS_DEFAULT_LIMIT

    query = select(TherapySession).where(TherapySession.is_paid.is_(False))
    if patient_id:
        query = query.where(TherapySession.patient_id == patient_id)

    result = await db.execute(
        _with_relations(query)
        .order_by(TherapySession.session_date.desc())
        .limit(limit)
    )
    sessions = result.scalars().all()

    total = Decimal("0")
    by_status: dict[str, dict] = {}
    by_method: dict[str, dict] = {}

    for s in sessions:
        amount = s.payment_amount or Decimal("0")
        total += amount
        for bucket, key in ((by_status, s.status.value), (by_method, s.payment_method.value)):
            item = bucket.setdefault(key, {"count": 0, "amount": Decimal("0")})
            item["count"] += 1
            item["amount"] += amount

    def _breakdown(bucket: dict[str, dict]) -> dict[str, BreakdownItem]:
        return {
            key: BreakdownItem(count=item["count"], amount=float(round_money(item["amount"])))
            for key, item in bucket.items()
        }

    return PendingPaymentsResponse(
        sessions=[_session_to_response(s) for s in sessions],
        total_pending=float(round_money(total)),
        count=len(sessions),
        limit=limit,
        breakdown_by_status=_breakdown(by_status),
        breakdown_by_method=_breakdown(by_method),
    )


async def get_patient_history(
    db: AsyncSession,
    patient_id: UUID,
    page: int = 1,
    limit: int = 20,
) -> PatientHistoryResponse:
    """Historial del paciente. Recalcula sus estadísticas antes de leerlas."""
    patient = await db.get(Patient, patient_id)
    if not patient:
        raise NotFoundException("Paciente")

    await refresh_statistics_safely(db, patient_id)

    result = await db.execute(
        select(Patient)
        .where(Patient.id == patient_id)
        .execution_options(populate_existing=True)
    )
    patient = result.scalar_one()

    base = select(TherapySession).where(TherapySession.patient_id == patient_id)
    total = (
        await db.execute(select(func.count()).select_from(base.subquery()))
    ).scalar() or 0

    result = await db.execute(
        _with_relations(base)
        .order_by(TherapySession.session_date.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    sessions = result.scalars().all()

    agg = (
        await db.execute(
            select(
                func.count(TherapySession.id).label("total"),
                func.sum(
                    case((TherapySession.status == SessionStatus.COMPLETED, 1), else_=0)
                ).label("completed"),
                func.sum(
                    case((TherapySession.status == SessionStatus.NO_SHOW, 1), else_=0)
                ).label("no_show"),
                func.sum(
                    case(
                        (TherapySession.is_paid.is_(True), TherapySession.payment_amount),
                        else_=Decimal("0"),
                    )
                ).label("paid"),
                func.sum(
                    case(
                        (TherapySession.is_paid.is_(False), TherapySession.payment_amount),
                        else_=Decimal("0"),
                    )
                ).label("pending"),
            ).where(TherapySession.patient_id == patient_id)
        )
    ).one()

    return PatientHistoryResponse(
        patient=PatientSummary(
            id=patient.id,
            dni=patient.dni,
            first_name=patient.first_name,
            last_name=patient.last_name,
            full_name=patient.full_name,
            phone=patient.phone,
            insurance_name=patient.insurance_name,
            planned_sessions=patient.planned_sessions,
            statistics=statistics_to_response(patient),
        ),
        sessions=[_session_to_response(s) for s in sessions],
        statistics=PatientHistoryStats(
            total_sessions=agg.total or 0,
            completed=agg.completed or 0,
            no_show=agg.no_show or 0,
            total_paid=float(round_money(agg.paid)),
            total_pending=float(round_money(agg.pending)),
        ),
        pagination=PaginationMeta.build(page, limit, total),
    )


# ── Edición ──────────────────────────────────────────

async def update_session(
    db: AsyncSession,
    session_id: UUID,
    data: TherapySessionUpdate,
    user_id: UUID,
) -> TherapySessionResponse:
    """Actualiza campos permitidos de la sesión validando la state machine."""
    session = await _load_session(db, session_id)
    old_data = _snapshot(session)
    changes = data.model_dump(exclude_unset=True)

    entry_time = changes.get("entry_time", session.entry_time)
    exit_time = changes.get("exit_time", session.exit_time)
    if entry_time and exit_time and clock_minutes(exit_time) < clock_minutes(entry_time):
        raise ValidationException("exit_time debe ser posterior a entry_time")

    new_status = changes.pop("status", None)
    if new_status is not None and new_status != session.status:
        if not is_valid_transition(session.status, new_status):
            valid = VALID_TRANSITIONS.get(session.status, [])
            raise ValidationException(
                f"No se puede cambiar de '{session.status.value}' a '{new_status.value}'. "
                f"Transiciones válidas: {', '.join(s.value for s in valid) or 'ninguna'}"
            )
        if new_status == SessionStatus.CANCELLED and not (
            changes.get("cancellation_reason") or session.cancellation_reason
        ):
            raise ValidationException("El motivo de cancelación es obligatorio")
        session.status = new_status

    # Cambio de día sin número de orden explícito: se renumera en el día nuevo
    new_date = changes.pop("session_date", None)
    explicit_order = changes.pop("daily_order_number", None)
    if new_date is not None:
        moved = parse_calendar_date(new_date) != parse_calendar_date(session.session_date)
        if moved and explicit_order is None:
            explicit_order = await _next_daily_order(db, new_date, exclude_id=session.id)
        session.session_date = new_date
    if explicit_order is not None:
        session.daily_order_number = explicit_order

    payment_changes = changes.pop("payment", None)
    if payment_changes is not None:
        payment = merge_payment(
            PaymentInfo.from_session(session),
            {k: v for k, v in payment_changes.items() if v is not None},
        )
        payment.apply_to(session)

    for key, value in changes.items():
        setattr(session, key, value)

    session.duration_minutes = _duration(session.entry_time, session.exit_time)
    session.modified_by = user_id
    await db.commit()

    logger.info("Sesión actualizada: %s [%s]", session.id, session.status.value)

    await _after_write(
        db,
        patient_id=session.patient_id,
        user_id=user_id,
        entity_id=session.id,
        action="update",
        old_data=old_data,
        new_data=_snapshot(session),
    )
    return _session_to_response(await _load_session(db, session_id))


async def register_session_payment(
    db: AsyncSession,
    session_id: UUID,
    data: PaymentRegistration,
    user_id: UUID,
) -> TherapySessionResponse:
    """Registra el cobro: marca la sesión como pagada y fija `paid_at`."""
    session = await _load_session(db, session_id)
    old_data = _snapshot(session)

    payment = register_payment(
        PaymentInfo.from_session(session),
        data.model_dump(exclude_none=True),
    )
    payment.apply_to(session)
    session.modified_by = user_id
    await db.commit()

    logger.info(
        "Pago registrado: sesión=%s monto=%s método=%s",
        session.id, payment.amount, payment.method.value,
    )

    await _after_write(
        db,
        patient_id=session.patient_id,
        user_id=user_id,
        entity_id=session.id,
        action="payment",
        old_data=old_data,
        new_data=_snapshot(session),
    )
    return _session_to_response(await _load_session(db, session_id))


async def cancel_session(
    db: AsyncSession,
    session_id: UUID,
    data: SessionCancel,
    user_id: UUID,
    professional_id: UUID | None = None,
) -> SessionCancelResult:
    """
    Cancela la sesión. Con `new_date` crea además la sesión reprogramada
    (estado `rescheduled`, mismo número de sesión, pago reiniciado) y la
    enlaza desde la original. Ambas escrituras van en la misma transacción.
    """
    session = await _load_session(db, session_id)

    reason = (data.reason or "").strip()
    if not reason:
        raise ValidationException("El motivo de cancelación es obligatorio")
    if not is_valid_transition(session.status, SessionStatus.CANCELLED):
        raise ValidationException(
            f"No se puede cancelar una sesión en estado '{session.status.value}'"
        )

    old_data = _snapshot(session)
    rescheduled: TherapySession | None = None

    if data.new_date is not None:
        new_date = to_utc_datetime(data.new_date)
        original_date = to_utc_datetime(session.session_date)
        daily_order = await _next_daily_order(db, new_date)

        rescheduled = TherapySession(
            id=uuid.uuid4(),
            patient_id=session.patient_id,
            professional_id=professional_id or session.professional_id,
            session_date=new_date,
            session_type=session.session_type,
            entry_time=session.entry_time,
            exit_time=session.exit_time,
            duration_minutes=_duration(session.entry_time, session.exit_time),
            daily_order_number=daily_order,
            session_number=session.session_number,
            status=SessionStatus.RESCHEDULED,
            notes=(
                f"Reprogramada desde la sesión del {original_date:%d/%m/%Y}. "
                f"Motivo: {reason}"
            )[:1000],
        )
        PaymentInfo(
            amount=session.payment_amount or Decimal("0.00"),
            method=session.payment_method or PaymentMethod.PENDING,
        ).apply_to(rescheduled)
        db.add(rescheduled)
        # La fila nueva debe existir antes del UPDATE que la referencia
        await db.flush()

        session.rescheduled_to_id = rescheduled.id
        session.rescheduled_to_date = new_date

    session.status = SessionStatus.CANCELLED
    session.cancellation_reason = reason
    session.modified_by = user_id
    await db.commit()
    rescheduled_id = rescheduled.id if rescheduled is not None else None

    if rescheduled is not None:
        logger.info(
            "Sesión %s cancelada y reprogramada como %s para %s",
            session.id, rescheduled.id, rescheduled.session_date.date(),
        )
    else:
        logger.info("Sesión %s cancelada: %s", session.id, reason)

    await _after_write(
        db,
        patient_id=session.patient_id,
        user_id=user_id,
        entity_id=session.id,
        action="reschedule" if rescheduled is not None else "cancel",
        old_data=old_data,
        new_data=_snapshot(session),
    )

    rescheduled_response = None
    if rescheduled is not None:
        rescheduled_response = _session_to_response(
            await _load_session(db, rescheduled_id)
        )

    return SessionCancelResult(
        session=_session_to_response(await _load_session(db, session_id)),
        rescheduled_session=rescheduled_response,
    )


# ── Estadísticas ─────────────────────────────────────

async def get_session_statistics(
    db: AsyncSession,
    date_from: date | None = None,
    date_to: date | None = None,
) -> SessionStatisticsResponse:
    """Totales por estado y cobro, y sesiones realizadas por día de la semana."""
    filters = []
    if date_from:
        filters.append(TherapySession.session_date >= utc_day_bounds(date_from)[0])
    if date_to:
        filters.append(TherapySession.session_date < utc_day_bounds(date_to)[1])

    row = (
        await db.execute(
            select(
                func.count(TherapySession.id).label("total"),
                func.sum(
                    case((TherapySession.status == SessionStatus.COMPLETED, 1), else_=0)
                ).label("completed"),
                func.sum(
                    case((TherapySession.status == SessionStatus.CANCELLED, 1), else_=0)
                ).label("cancelled"),
                func.sum(
                    case((TherapySession.status == SessionStatus.NO_SHOW, 1), else_=0)
                ).label("no_show"),
                func.sum(
                    case(
                        (TherapySession.is_paid.is_(True), TherapySession.payment_amount),
                        else_=Decimal("0"),
                    )
                ).label("collected"),
                func.sum(
                    case(
                        (TherapySession.is_paid.is_(False), TherapySession.payment_amount),
                        else_=Decimal("0"),
                    )
                ).label("pending"),
            ).where(*filters)
        )
    ).one()

    # Día de la semana calculado en Python para no depender del dialecto SQL
    dates = (
        await db.execute(
            select(TherapySession.session_date).where(
                TherapySession.status == SessionStatus.COMPLETED, *filters
            )
        )
    ).scalars().all()
    counts = dict.fromkeys(WEEKDAY_NAMES, 0)
    for value in dates:
        counts[weekday_name(to_utc_datetime(value).date())] += 1

    return SessionStatisticsResponse(
        totals=SessionTotals(
            total_sessions=row.total or 0,
            completed=row.completed or 0,
            cancelled=row.cancelled or 0,
            no_show=row.no_show or 0,
            collected=float(round_money(row.collected)),
            pending=float(round_money(row.pending)),
        ),
        by_weekday=[
            WeekdayCount(weekday=name, count=counts[name]) for name in WEEKDAY_NAMES
        ],
    )
