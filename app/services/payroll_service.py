"""
Lógica de negocio para la planilla de pagos del personal.
Upsert por clave natural, importación masiva, planilla mensual,
listado, edición y estadísticas.
"""

import logging
from collections.abc import Mapping
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from fastapi import HTTPException
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.config import get_settings
from app.core.distribution import Distribution, compute_distribution, round_money, to_decimal
from app.core.exceptions import ConflictException, NotFoundException, ValidationException
from app.core.periods import WEEKDAY_NAMES, parse_calendar_date, resolve_period
from app.models.payroll_entry import PayrollEntry, PayrollStatus, Weekday
from app.models.user import User
from app.schemas.common import PaginatedResponse, PaginationMeta
from app.schemas.payroll import (
    Collaborator,
    DistributionResponse,
    FullSheetResponse,
    MonthSheetResponse,
    MonthSheetTotals,
    PayrollBulkError,
    PayrollBulkRequest,
    PayrollBulkResult,
    PayrollDay,
    PayrollEntryInput,
    PayrollEntryResponse,
    PayrollEntryUpdate,
    PayrollStatisticsResponse,
    PayrollStatusBreakdown,
    PayrollSummary,
    PayrollUpsertResult,
    PayrollWeek,
)
from app.services.audit_service import record_event

logger = logging.getLogger(__name__)

ENTITY = "payroll_entry"


# ── Helpers ──────────────────────────────


def _distribution_kwargs() -> dict:
    settings = get_settings()
    return {
        "ratio_a": settings.PAYROLL_SHARE_A_RATIO,
        "ratio_b": settings.PAYROLL_SHARE_B_RATIO,
        "tolerance": settings.DISTRIBUTION_TOLERANCE,
    }


def _distribution_response(distribution: Distribution) -> DistributionResponse:
    return DistributionResponse(**distribution.as_floats())


def _entry_to_response(entry: PayrollEntry) -> PayrollEntryResponse:
    distribution = entry.distribution
    return PayrollEntryResponse(
        id=entry.id,
        year=entry.year,
        month=entry.month,
        week_of_month=entry.week_of_month,
        weekday=entry.weekday,
        entry_date=entry.entry_date,
        amount=float(round_money(entry.amount)),
        distribution=_distribution_response(distribution),
        total_distribution=float(round_money(distribution.total)),
        notes=entry.notes,
        status=entry.status,
        created_by=entry.created_by,
        modified_by=entry.modified_by,
        created_at=entry.created_at,
        updated_at=entry.updated_at,
    )


def _snapshot(entry: PayrollEntry) -> dict:
    return {
        "year": entry.year,
        "month": entry.month,
        "week_of_month": entry.week_of_month,
        "entry_date": entry.entry_date,
        "amount": entry.amount,
        "share_a": entry.share_a,
        "share_b": entry.share_b,
        "share_c": entry.share_c,
        "status": entry.status,
    }


def _parse_date(value: Any) -> date:
    try:
        return parse_calendar_date(value)
    except (TypeError, ValueError) as exc:
        raise ValidationException("Debe proporcionar una fecha válida") from exc


def _parse_amount(value: Any) -> Decimal:
    try:
        amount = to_decimal(value)
    except (TypeError, ValueError) as exc:
        raise ValidationException("El monto debe ser un número positivo") from exc
    if not amount.is_finite() or amount < 0:
        raise ValidationException("El monto debe ser un número positivo")
    return round_money(amount)


def _parse_weekday(value: str) -> Weekday:
    if value not in WEEKDAY_NAMES:
        raise ValidationException("Día de la semana no válido")
    return Weekday(value)


def _parse_status(value: str | PayrollStatus) -> PayrollStatus:
    try:
        return PayrollStatus(value)
    except ValueError as exc:
        raise ValidationException("Estado de registro no válido") from exc


def _check_period(year: int, month: int, week_of_month: int) -> None:
    if year < 2000:
        raise ValidationException("El año debe ser 2000 o posterior")
    if not 1 <= month <= 12:
        raise ValidationException("El mes debe estar entre 1 y 12")
    if not 1 <= week_of_month <= 5:
        raise ValidationException("La semana del mes debe estar entre 1 y 5")


def _normalize_input(data: PayrollEntryInput) -> dict:
    """
    Valida y completa los datos de un registro: período derivado de la
    fecha cuando no viene explícito y distribución recalculada.
    """
    entry_date = _parse_date(data.entry_date)
    amount = _parse_amount(data.amount)
    period = resolve_period(entry_date)

    year = data.year if data.year is not None else period.year
    month = data.month if data.month is not None else period.month
    week = data.week_of_month if data.week_of_month is not None else period.week_of_month
    _check_period(year, month, week)

    existing = data.distribution.model_dump() if data.distribution else None
    distribution = compute_distribution(amount, existing, **_distribution_kwargs())

    return {
        "year": year,
        "month": month,
        "week_of_month": week,
        "weekday": _parse_weekday(data.weekday or period.weekday),
        "entry_date": entry_date,
        "amount": amount,
        "distribution": distribution,
        "notes": (data.notes or "").strip()[:500] or None,
        "status": _parse_status(data.status or PayrollStatus.PENDING),
    }


async def _find_by_natural_key(db: AsyncSession, values: Mapping) -> PayrollEntry | None:
    result = await db.execute(
        select(PayrollEntry).where(
            PayrollEntry.year == values["year"],
            PayrollEntry.month == values["month"],
            PayrollEntry.week_of_month == values["week_of_month"],
            PayrollEntry.entry_date == values["entry_date"],
        )
    )
    return result.scalar_one_or_none()


def _apply_values(entry: PayrollEntry, values: Mapping) -> None:
    for key, value in values.items():
        if key == "distribution":
            entry.apply_distribution(value)
        else:
            setattr(entry, key, value)


async def _get_or_404(db: AsyncSession, entry_id: UUID) -> PayrollEntry:
    result = await db.execute(
        select(PayrollEntry)
        .where(PayrollEntry.id == entry_id)
        .execution_options(populate_existing=True)
    )
    entry = result.scalar_one_or_none()
    if not entry:
        raise NotFoundException("Registro")
    return entry


# ── Upsert ───────────────────────────────


async def _upsert(
    db: AsyncSession,
    data: PayrollEntryInput,
    user_id: UUID,
) -> tuple[PayrollEntry, bool, dict | None]:
    """Find-or-create por clave natural; un choque del índice único se reintenta como update."""
    values = _normalize_input(data)

    entry = await _find_by_natural_key(db, values)
    old_data = _snapshot(entry) if entry else None

    if entry:
        _apply_values(entry, values)
        entry.modified_by = user_id
        await db.commit()
        return entry, False, old_data

    entry = PayrollEntry(created_by=user_id)
    _apply_values(entry, values)
    db.add(entry)
    try:
        await db.commit()
        return entry, True, None
    except IntegrityError:
        await db.rollback()
        logger.warning(
            "Conflicto de clave natural en planilla %s, reintentando como actualización",
            values["entry_date"],
        )

    entry = await _find_by_natural_key(db, values)
    if not entry:
        raise ConflictException("No se pudo resolver el registro duplicado de la planilla")
    old_data = _snapshot(entry)
    _apply_values(entry, values)
    entry.modified_by = user_id
    await db.commit()
    return entry, False, old_data


async def upsert_entry(
    db: AsyncSession,
    data: PayrollEntryInput,
    user_id: UUID,
) -> PayrollUpsertResult:
    """Crea o actualiza el registro del día (clave: año, mes, semana, fecha)."""
    entry, created, old_data = await _upsert(db, data, user_id)
    entry_id = entry.id
    new_data = _snapshot(entry)

    logger.info(
        "Registro de planilla %s: %s monto=%s",
        "creado" if created else "actualizado", new_data["entry_date"], new_data["amount"],
    )
    await record_event(
        db,
        user_id=user_id,
        entity=ENTITY,
        entity_id=str(entry_id),
        action="create" if created else "update",
        old_data=old_data,
        new_data=new_data,
    )

    return PayrollUpsertResult(
        entry=_entry_to_response(await _get_or_404(db, entry_id)),
        was_created=created,
    )


async def bulk_upsert(
    db: AsyncSession,
    data: PayrollBulkRequest,
    user_id: UUID,
) -> PayrollBulkResult:
    """
    Importa una planilla fila por fila. Cada fila se confirma por separado;
    las filas inválidas se reportan con su índice y el proceso continúa,
    salvo `stop_on_error`, que propaga el primer error.
    """
    result = PayrollBulkResult(total=len(data.entries))

    for index, item in enumerate(data.entries):
        try:
            upserted = await upsert_entry(db, item, user_id)
        except HTTPException as exc:
            if data.stop_on_error:
                raise
            logger.warning("Fila %s de la planilla rechazada: %s", index, exc.detail)
            result.errors.append(PayrollBulkError(
                index=index,
                entry_date=str(item.entry_date),
                detail=str(exc.detail),
            ))
            result.failed += 1
            continue

        if upserted.was_created:
            result.created += 1
        else:
            result.updated += 1
        result.entries.append(upserted.entry)

    logger.info(
        "Planilla importada: %s creados, %s actualizados, %s con error",
        result.created, result.updated, result.failed,
    )
    return result


# ── Consultas ────────────────────────────


async def list_entries(
    db: AsyncSession,
    *,
    year: int | None = None,
    month: int | None = None,
    week_of_month: int | None = None,
    status: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    page: int = 1,
    limit: int = 50,
) -> PaginatedResponse[PayrollEntryResponse]:
    """Lista registros con filtros, del más reciente al más antiguo."""
    query = select(PayrollEntry)

    if year:
        query = query.where(PayrollEntry.year == year)
    if month:
        query = query.where(PayrollEntry.month == month)
    if week_of_month:
        query = query.where(PayrollEntry.week_of_month == week_of_month)
    if status:
        query = query.where(PayrollEntry.status == _parse_status(status))
    if date_from:
        query = query.where(PayrollEntry.entry_date >= date_from)
    if date_to:
        query = query.where(PayrollEntry.entry_date <= date_to)

    count_q = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_q)).scalar() or 0

    query = (
        query
        .order_by(PayrollEntry.entry_date.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    result = await db.execute(query)
    entries = result.scalars().all()

    return PaginatedResponse[PayrollEntryResponse](
        items=[_entry_to_response(e) for e in entries],
        pagination=PaginationMeta.build(page, limit, total),
    )


async def get_entry(db: AsyncSession, entry_id: UUID) -> PayrollEntryResponse:
    return _entry_to_response(await _get_or_404(db, entry_id))


async def update_entry(
    db: AsyncSession,
    entry_id: UUID,
    data: PayrollEntryUpdate,
    user_id: UUID,
) -> PayrollEntryResponse:
    """
    Actualiza un registro. Si cambia la fecha se derivan de nuevo año, mes,
    semana y día salvo que vengan explícitos; si cambia el monto o la
    distribución se recalcula el reparto.
    """
    entry = await _get_or_404(db, entry_id)
    old_data = _snapshot(entry)
    changes = data.model_dump(exclude_unset=True)

    if changes.get("entry_date") is not None:
        new_date = _parse_date(changes["entry_date"])
        period = resolve_period(new_date)
        entry.entry_date = new_date
        entry.year = period.year
        entry.month = period.month
        entry.week_of_month = period.week_of_month
        entry.weekday = Weekday(period.weekday)

    if changes.get("year") is not None:
        entry.year = changes["year"]
    if changes.get("month") is not None:
        entry.month = changes["month"]
    if changes.get("week_of_month") is not None:
        entry.week_of_month = changes["week_of_month"]
    if changes.get("weekday"):
        entry.weekday = _parse_weekday(changes["weekday"])
    _check_period(entry.year, entry.month, entry.week_of_month)

    amount_changed = changes.get("amount") is not None
    if amount_changed:
        entry.amount = _parse_amount(changes["amount"])

    if amount_changed or changes.get("distribution") is not None:
        existing = changes.get("distribution")
        if existing is None:
            existing = entry.distribution
        entry.apply_distribution(
            compute_distribution(entry.amount, existing, **_distribution_kwargs())
        )

    if "notes" in changes:
        entry.notes = (changes["notes"] or "").strip()[:500] or None
    if changes.get("status"):
        entry.status = _parse_status(changes["status"])

    entry.modified_by = user_id
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictException(
            "Ya existe un registro para ese período y fecha"
        ) from exc

    logger.info("Registro de planilla actualizado: %s", entry_id)
    await record_event(
        db,
        user_id=user_id,
        entity=ENTITY,
        entity_id=str(entry_id),
        action="update",
        old_data=old_data,
        new_data=_snapshot(entry),
    )
    return _entry_to_response(await _get_or_404(db, entry_id))


async def delete_entry(db: AsyncSession, entry_id: UUID, user_id: UUID) -> None:
    """Eliminación física: es una corrección administrativa."""
    entry = await _get_or_404(db, entry_id)
    old_data = _snapshot(entry)

    await db.delete(entry)
    await db.commit()

    logger.info("Registro de planilla eliminado: %s", entry_id)
    await record_event(
        db,
        user_id=user_id,
        entity=ENTITY,
        entity_id=str(entry_id),
        action="delete",
        old_data=old_data,
    )


# ── Planilla mensual ─────────────────────


async def get_month_sheet(db: AsyncSession, year: int, month: int) -> MonthSheetResponse:
    """
    Agrupa los registros del mes por semana y día de la semana, con
    subtotales por semana y totales del mes. Los montos se acumulan en
    Decimal y se redondean solo al emitirlos.
    """
    result = await db.execute(
        select(PayrollEntry)
        .where(PayrollEntry.year == year, PayrollEntry.month == month)
        .options(selectinload(PayrollEntry.creator))
        .order_by(PayrollEntry.week_of_month.asc(), PayrollEntry.entry_date.asc())
    )
    entries = result.scalars().all()

    weeks: dict[int, dict] = {}
    grand_total = Decimal("0")
    grand = {"share_a": Decimal("0"), "share_b": Decimal("0"), "share_c": Decimal("0")}

    for entry in entries:
        week = weeks.setdefault(entry.week_of_month, {
            "days": {},
            "subtotal": Decimal("0"),
            "shares": {"share_a": Decimal("0"), "share_b": Decimal("0"), "share_c": Decimal("0")},
        })
        amount = entry.amount or Decimal("0")
        distribution = entry.distribution

        creator: User | None = entry.creator
        week["days"][entry.weekday.value] = PayrollDay(
            entry_id=entry.id,
            entry_date=entry.entry_date,
            amount=float(round_money(amount)),
            distribution=_distribution_response(distribution),
            notes=entry.notes,
            status=entry.status,
            collaborator=Collaborator(
                id=creator.id,
                first_name=creator.first_name,
                last_name=creator.last_name,
                full_name=creator.full_name,
            ) if creator else None,
        )
        week["subtotal"] += amount
        grand_total += amount
        for name in grand:
            share = getattr(distribution, name)
            week["shares"][name] += share
            grand[name] += share

    return MonthSheetResponse(
        year=year,
        month=month,
        weeks={
            number: PayrollWeek(
                week=number,
                days=week["days"],
                subtotal=float(round_money(week["subtotal"])),
                distribution=_distribution_response(Distribution(**week["shares"])),
            )
            for number, week in weeks.items()
        },
        totals=MonthSheetTotals(
            total=float(round_money(grand_total)),
            distribution=_distribution_response(Distribution(**grand)),
        ),
    )


async def get_full_sheet(db: AsyncSession) -> FullSheetResponse:
    """Planilla de todos los meses con registros, en orden ascendente."""
    result = await db.execute(
        select(PayrollEntry.year, PayrollEntry.month)
        .distinct()
        .order_by(PayrollEntry.year.asc(), PayrollEntry.month.asc())
    )
    periods = result.all()

    sheets = []
    for row in periods:
        sheets.append(await get_month_sheet(db, row.year, row.month))
    return FullSheetResponse(sheets=sheets)


# ── Estadísticas ─────────────────────────


async def get_statistics(
    db: AsyncSession,
    *,
    year: int | None = None,
    month: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> PayrollStatisticsResponse:
    """Resumen global (cantidad, monto y reparto) y desglose por estado."""
    filters = []
    if year:
        filters.append(PayrollEntry.year == year)
    if month:
        filters.append(PayrollEntry.month == month)
    if date_from:
        filters.append(PayrollEntry.entry_date >= date_from)
    if date_to:
        filters.append(PayrollEntry.entry_date <= date_to)

    summary = (
        await db.execute(
            select(
                func.count(PayrollEntry.id).label("total_entries"),
                func.sum(PayrollEntry.amount).label("total_amount"),
                func.sum(PayrollEntry.share_a).label("share_a"),
                func.sum(PayrollEntry.share_b).label("share_b"),
                func.sum(PayrollEntry.share_c).label("share_c"),
            ).where(*filters)
        )
    ).one()

    by_status = (
        await db.execute(
            select(
                PayrollEntry.status,
                func.count(PayrollEntry.id).label("entries"),
                func.sum(PayrollEntry.amount).label("amount"),
            )
            .where(*filters)
            .group_by(PayrollEntry.status)
            .order_by(PayrollEntry.status)
        )
    ).all()

    return PayrollStatisticsResponse(
        summary=PayrollSummary(
            total_entries=summary.total_entries or 0,
            total_amount=float(round_money(summary.total_amount)),
            distribution=DistributionResponse(
                share_a=float(round_money(summary.share_a)),
                share_b=float(round_money(summary.share_b)),
                share_c=float(round_money(summary.share_c)),
            ),
        ),
        by_status=[
            PayrollStatusBreakdown(
                status=row.status,
                count=row.entries,
                amount=float(round_money(row.amount)),
            )
            for row in by_status
        ],
    )
