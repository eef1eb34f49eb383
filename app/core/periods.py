"""
Resolución de períodos de la planilla a partir de una fecha.

Toda fecha se interpreta en UTC. Las cadenas `YYYY-MM-DD` se leen
componente a componente para no desplazar el día por zona horaria.
La semana del mes es un bucket fijo de 7 días desde el día 1
(1-7 → 1, 8-14 → 2, ..., 29-31 → 5); no sigue la semana ISO.
"""

import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, NamedTuple

# Índice 0 = domingo, igual que el día de la semana UTC de la planilla
WEEKDAY_NAMES: tuple[str, ...] = (
    "domingo",
    "lunes",
    "martes",
    "miercoles",
    "jueves",
    "viernes",
    "sabado",
)

_DATE_ONLY = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")


class Period(NamedTuple):
    year: int
    month: int
    week_of_month: int
    weekday: str


def to_utc_datetime(value: Any) -> datetime:
    """Normaliza date/datetime/str a un datetime con tz UTC."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        match = _DATE_ONLY.match(text)
        if match:
            year, month, day = (int(part) for part in match.groups())
            return datetime(year, month, day, tzinfo=timezone.utc)
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValueError(f"Fecha inválida: {value!r}") from exc
        return to_utc_datetime(parsed)
    raise ValueError(f"Fecha inválida: {value!r}")


def parse_calendar_date(value: Any) -> date:
    """Fecha calendario UTC de un date/datetime/str."""
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    return to_utc_datetime(value).date()


def clock_minutes(value: str) -> int:
    """Minutos desde la medianoche de una hora `HH:MM`."""
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def week_of_month(day_of_month: int) -> int:
    return min(5, (day_of_month + 6) // 7)


def weekday_name(day: date) -> str:
    # isoweekday: lunes=1 ... domingo=7
    return WEEKDAY_NAMES[day.isoweekday() % 7]


def resolve_period(value: Any) -> Period:
    """(año, mes, semana del mes, día de la semana) de una fecha."""
    day = parse_calendar_date(value)
    return Period(
        year=day.year,
        month=day.month,
        week_of_month=week_of_month(day.day),
        weekday=weekday_name(day),
    )


def utc_day_bounds(value: Any) -> tuple[datetime, datetime]:
    """Intervalo semiabierto [inicio, fin) del día UTC de `value`."""
    day = parse_calendar_date(value)
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)
