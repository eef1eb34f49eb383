"""
Cálculo de la distribución de la planilla del personal.

Reparto fijo 30% / 20% / 50% del monto diario entre tres categorías,
redondeado a centavos con ROUND_HALF_UP. La categoría C (la de mayor
proporción) absorbe el remanente, de modo que la suma de las tres
partes es siempre igual al monto.

Funciones puras: sin acceso a base de datos ni efectos secundarios.
"""

from collections.abc import Mapping
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, ConfigDict

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

SHARE_A_RATIO = Decimal("0.30")
SHARE_B_RATIO = Decimal("0.20")
TOLERANCE = Decimal("0.5")


class Distribution(BaseModel):
    """Reparto inmutable de un monto en las categorías A, B y C."""

    model_config = ConfigDict(frozen=True)

    share_a: Decimal = ZERO
    share_b: Decimal = ZERO
    share_c: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.share_a + self.share_b + self.share_c

    def as_floats(self) -> dict[str, float]:
        return {
            "share_a": float(round_money(self.share_a)),
            "share_b": float(round_money(self.share_b)),
            "share_c": float(round_money(self.share_c)),
        }


def to_decimal(value: Any) -> Decimal:
    """Convierte a Decimal; None o vacío se interpretan como 0."""
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Monto inválido: {value!r}") from exc


def round_money(value: Any) -> Decimal:
    """Redondea a 2 decimales con ROUND_HALF_UP."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _share(existing: Any, name: str) -> Decimal:
    if existing is None:
        return ZERO
    if isinstance(existing, Mapping):
        raw = existing.get(name)
    else:
        raw = getattr(existing, name, None)
    return round_money(raw)


def split_amount(
    amount: Any,
    *,
    ratio_a: Decimal = SHARE_A_RATIO,
    ratio_b: Decimal = SHARE_B_RATIO,
) -> Distribution:
    """Reparto por proporciones fijas; C = monto − A − B."""
    total = round_money(amount)
    share_a = round_money(total * ratio_a)
    share_b = round_money(total * ratio_b)
    return Distribution(
        share_a=share_a,
        share_b=share_b,
        share_c=total - share_a - share_b,
    )


def compute_distribution(
    amount: Any,
    existing: Any = None,
    *,
    ratio_a: Decimal = SHARE_A_RATIO,
    ratio_b: Decimal = SHARE_B_RATIO,
    tolerance: Decimal = TOLERANCE,
) -> Distribution:
    """
    Calcula la distribución de `amount`.

    Se recalcula por proporciones cuando no hay distribución previa, cuando
    sus tres partes son cero o cuando su suma se desvía del monto en más
    de `tolerance`. Una distribución manual que suma exactamente el monto
    se respeta tal cual; si la diferencia está dentro de la tolerancia,
    la categoría C absorbe los centavos faltantes o sobrantes.
    """
    total = round_money(amount)

    if existing is None:
        return split_amount(total, ratio_a=ratio_a, ratio_b=ratio_b)

    current = Distribution(
        share_a=_share(existing, "share_a"),
        share_b=_share(existing, "share_b"),
        share_c=_share(existing, "share_c"),
    )

    if current.total == 0 or abs(current.total - total) > tolerance:
        return split_amount(total, ratio_a=ratio_a, ratio_b=ratio_b)

    difference = total - current.total
    if difference == 0:
        return current

    share_c = current.share_c + difference
    if share_c < 0:
        return split_amount(total, ratio_a=ratio_a, ratio_b=ratio_b)
    return current.model_copy(update={"share_c": share_c})
