"""
Valor inmutable del pago de una sesión y sus funciones de merge.

El pago se reconstruye en cada cambio en lugar de mutarse en sitio;
`paid_at` queda definido si y solo si `is_paid` es verdadero.
"""

from collections.abc import Mapping
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict

from app.core.distribution import round_money
from app.models.therapy_session import PaymentMethod, TherapySession


class PaymentInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    amount: Decimal = Decimal("0.00")
    method: PaymentMethod = PaymentMethod.PENDING
    is_paid: bool = False
    paid_at: datetime | None = None
    receipt: dict | None = None

    @classmethod
    def from_session(cls, session: TherapySession) -> "PaymentInfo":
        return cls(
            amount=session.payment_amount if session.payment_amount is not None else Decimal("0.00"),
            method=session.payment_method or PaymentMethod.PENDING,
            is_paid=bool(session.is_paid),
            paid_at=session.paid_at,
            receipt=dict(session.receipt) if session.receipt else None,
        )

    def apply_to(self, session: TherapySession) -> None:
        session.payment_amount = self.amount
        session.payment_method = self.method
        session.is_paid = self.is_paid
        session.paid_at = self.paid_at
        session.receipt = dict(self.receipt) if self.receipt else None


_PAYMENT_FIELDS = ("amount", "method", "is_paid", "receipt")


def merge_payment(
    current: PaymentInfo,
    changes: Mapping[str, Any],
    now: datetime | None = None,
) -> PaymentInfo:
    """Aplica `changes` sobre `current` y normaliza `paid_at`."""
    update = {key: changes[key] for key in _PAYMENT_FIELDS if key in changes}
    if "amount" in update:
        update["amount"] = round_money(update["amount"])
    if update.get("receipt") is not None and not isinstance(update["receipt"], dict):
        update["receipt"] = dict(update["receipt"])

    merged = current.model_copy(update=update)

    if merged.is_paid and merged.paid_at is None:
        return merged.model_copy(
            update={"paid_at": now or datetime.now(timezone.utc)}
        )
    if not merged.is_paid and merged.paid_at is not None:
        return merged.model_copy(update={"paid_at": None})
    return merged


def register_payment(
    current: PaymentInfo,
    changes: Mapping[str, Any],
    now: datetime | None = None,
) -> PaymentInfo:
    """Merge que fuerza `is_paid`; conserva `paid_at` si ya estaba."""
    return merge_payment(current, {**changes, "is_paid": True}, now=now)
