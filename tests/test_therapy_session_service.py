"""
Tests del servicio de sesiones: numeración, cobro, cancelación con
reprogramación, planilla diaria, pagos pendientes y estadísticas.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
import pytest_asyncio
from pydantic import ValidationError
from sqlalchemy import select

from app.core.exceptions import ConflictException, NotFoundException, ValidationException
from app.models.audit_log import AuditLog
from app.models.patient import Patient
from app.models.session_counter import SessionCounter
from app.models.therapy_session import PaymentMethod, SessionStatus
from app.schemas.therapy_session import (
    PaymentInput,
    PaymentRegistration,
    SessionCancel,
    TherapySessionCreate,
    TherapySessionUpdate,
)
from app.services import audit_service, patient_stats_service
from app.services import therapy_session_service as service
from app.services.patient_stats_service import (
    aggregate_patient_sessions,
    refresh_patient_statistics,
)


async def _register(db, patient, user, when="2025-07-01T10:00:00Z", **kwargs):
    data = TherapySessionCreate(patient_id=patient.id, session_date=when, **kwargs)
    return await service.register_session(db, data, user.id)


@pytest_asyncio.fixture
async def other_patient(db_session):
    patient = Patient(id=uuid4(), dni="28999888", first_name="Luis", last_name="Pérez")
    db_session.add(patient)
    await db_session.commit()
    return patient


class TestNumbering:
    async def test_daily_order_increments_within_day(
        self, db_session, test_user, test_patient, other_patient
    ):
        first = await _register(db_session, test_patient, test_user, "2025-07-01T09:00:00Z")
        second = await _register(db_session, other_patient, test_user, "2025-07-01T11:00:00Z")
        third = await _register(db_session, test_patient, test_user, "2025-07-01T18:30:00Z")
        next_day = await _register(db_session, test_patient, test_user, "2025-07-02T09:00:00Z")

        assert [first.daily_order_number, second.daily_order_number, third.daily_order_number] == [1, 2, 3]
        assert next_day.daily_order_number == 1

    async def test_session_number_is_per_patient(
        self, db_session, test_user, test_patient, other_patient
    ):
        a1 = await _register(db_session, test_patient, test_user)
        b1 = await _register(db_session, other_patient, test_user)
        a2 = await _register(db_session, test_patient, test_user, "2025-07-03T10:00:00Z")

        assert (a1.session_number, a2.session_number) == (1, 2)
        assert b1.session_number == 1

    async def test_explicit_numbers_are_kept(self, db_session, test_user, test_patient):
        result = await _register(
            db_session, test_patient, test_user, daily_order_number=7, session_number=4
        )
        assert result.daily_order_number == 7
        assert result.session_number == 4

    async def test_duration_and_relations(self, db_session, test_user, test_patient):
        result = await _register(
            db_session, test_patient, test_user, entry_time="09:15", exit_time="10:00"
        )
        assert result.duration_minutes == 45
        assert result.patient_name == "Gómez, Ana"
        assert result.insurance_name == "OSDE"
        assert result.professional_name == test_user.full_name
        assert result.session_date.tzinfo is not None

    async def test_counter_created_concurrently_is_reused(
        self, db_session, test_user, test_patient, monkeypatch
    ):
        # Otro registro ya creó la fila del día entre la lectura y el INSERT
        db_session.add(SessionCounter(scope=service.DAILY_ORDER_SCOPE, key="2025-07-01"))
        await db_session.commit()

        real_find = service._find_counter
        calls = []

        async def racing_find(db, scope, key):
            calls.append(scope)
            if scope == service.DAILY_ORDER_SCOPE and len(calls) == 1:
                return None
            return await real_find(db, scope, key)

        monkeypatch.setattr(service, "_find_counter", racing_find)

        result = await _register(db_session, test_patient, test_user, "2025-07-01T09:00:00Z")

        assert result.daily_order_number == 1
        counters = (
            await db_session.execute(
                select(SessionCounter).where(
                    SessionCounter.scope == service.DAILY_ORDER_SCOPE
                )
            )
        ).scalars().all()
        assert len(counters) == 1
        assert counters[0].last_number == 1

    async def test_counter_still_missing_raises_conflict(
        self, db_session, test_user, test_patient, monkeypatch
    ):
        db_session.add(SessionCounter(scope=service.DAILY_ORDER_SCOPE, key="2025-07-01"))
        await db_session.commit()

        async def never_found(db, scope, key):
            return None

        monkeypatch.setattr(service, "_find_counter", never_found)

        with pytest.raises(ConflictException):
            await _register(db_session, test_patient, test_user, "2025-07-01T09:00:00Z")

    async def test_unknown_patient(self, db_session, test_user):
        data = TherapySessionCreate(patient_id=uuid4())
        with pytest.raises(NotFoundException):
            await service.register_session(db_session, data, test_user.id)

    def test_exit_before_entry_rejected(self):
        with pytest.raises(ValidationError):
            TherapySessionCreate(patient_id=uuid4(), entry_time="10:00", exit_time="09:00")

    def test_cancelled_is_not_an_initial_status(self):
        with pytest.raises(ValidationError):
            TherapySessionCreate(patient_id=uuid4(), status=SessionStatus.CANCELLED)


class TestPayment:
    async def test_register_payment_sets_paid_at(self, db_session, test_user, test_patient):
        created = await _register(db_session, test_patient, test_user)
        assert created.payment.is_paid is False
        assert created.payment.paid_at is None

        paid = await service.register_session_payment(
            db_session,
            created.id,
            PaymentRegistration(amount=Decimal("4500"), method=PaymentMethod.CASH),
            test_user.id,
        )

        assert paid.payment.is_paid is True
        assert paid.payment.amount == 4500.0
        assert paid.payment.method == PaymentMethod.CASH
        assert paid.payment.paid_at is not None

    def test_pending_method_rejected(self):
        with pytest.raises(ValidationError):
            PaymentRegistration(amount=Decimal("10"), method=PaymentMethod.PENDING)

    async def test_payment_refreshes_patient_statistics(
        self, db_session, test_user, test_patient
    ):
        created = await _register(
            db_session, test_patient, test_user, payment=PaymentInput(amount=Decimal("2000"))
        )
        await db_session.refresh(test_patient)
        assert test_patient.pending_balance == Decimal("2000.00")

        await service.register_session_payment(
            db_session,
            created.id,
            PaymentRegistration(amount=Decimal("2000"), method=PaymentMethod.TRANSFER),
            test_user.id,
        )
        await db_session.refresh(test_patient)
        assert test_patient.total_paid == Decimal("2000.00")
        assert test_patient.pending_balance == Decimal("0.00")


class TestCancel:
    async def test_cancel_without_new_date(self, db_session, test_user, test_patient):
        created = await _register(db_session, test_patient, test_user)

        result = await service.cancel_session(
            db_session, created.id, SessionCancel(reason="Paciente enfermo"), test_user.id
        )

        assert result.session.status == SessionStatus.CANCELLED
        assert result.session.cancellation_reason == "Paciente enfermo"
        assert result.session.rescheduled_to is None
        assert result.rescheduled_session is None

    async def test_reschedule_links_both_sessions(self, db_session, test_user, test_patient):
        created = await _register(
            db_session,
            test_patient,
            test_user,
            payment=PaymentInput(amount=Decimal("3000"), method=PaymentMethod.INSURANCE),
        )

        result = await service.cancel_session(
            db_session,
            created.id,
            SessionCancel(reason="Feriado", new_date="2025-07-08T10:00:00Z"),
            test_user.id,
        )

        original, new = result.session, result.rescheduled_session
        assert original.status == SessionStatus.CANCELLED
        assert new.status == SessionStatus.RESCHEDULED
        assert original.rescheduled_to.session_id == new.id
        assert original.rescheduled_to.date.date() == date(2025, 7, 8)
        assert new.session_number == created.session_number
        assert new.daily_order_number == 1
        assert new.payment.amount == 3000.0
        assert new.payment.method == PaymentMethod.INSURANCE
        assert new.payment.is_paid is False
        assert new.notes == "Reprogramada desde la sesión del 01/07/2025. Motivo: Feriado"
        assert new.professional_id == test_user.id

        actions = (
            await db_session.execute(
                select(AuditLog.action).where(AuditLog.entity_id == str(created.id))
            )
        ).scalars().all()
        assert "reschedule" in actions

    async def test_reschedule_with_other_professional(
        self, db_session, test_user, test_employee, test_patient
    ):
        created = await _register(db_session, test_patient, test_user)
        result = await service.cancel_session(
            db_session,
            created.id,
            SessionCancel(reason="Cambio de turno", new_date="2025-07-04"),
            test_user.id,
            professional_id=test_employee.id,
        )
        assert result.rescheduled_session.professional_id == test_employee.id

    async def test_cannot_cancel_completed(self, db_session, test_user, test_patient):
        created = await _register(
            db_session, test_patient, test_user, status=SessionStatus.COMPLETED
        )
        with pytest.raises(ValidationException):
            await service.cancel_session(
                db_session, created.id, SessionCancel(reason="Tarde"), test_user.id
            )

    def test_blank_reason_rejected(self):
        with pytest.raises(ValidationError):
            SessionCancel(reason="   ")

    async def test_cancel_missing_session(self, db_session, test_user):
        with pytest.raises(NotFoundException):
            await service.cancel_session(
                db_session, uuid4(), SessionCancel(reason="x"), test_user.id
            )


class TestUpdate:
    async def test_invalid_transition(self, db_session, test_user, test_patient):
        created = await _register(
            db_session, test_patient, test_user, status=SessionStatus.COMPLETED
        )
        with pytest.raises(ValidationException):
            await service.update_session(
                db_session,
                created.id,
                TherapySessionUpdate(status=SessionStatus.SCHEDULED),
                test_user.id,
            )

    async def test_cancel_via_update_requires_reason(self, db_session, test_user, test_patient):
        created = await _register(db_session, test_patient, test_user)
        with pytest.raises(ValidationException):
            await service.update_session(
                db_session,
                created.id,
                TherapySessionUpdate(status=SessionStatus.CANCELLED),
                test_user.id,
            )

    async def test_complete_and_edit_times(self, db_session, test_user, test_patient):
        created = await _register(db_session, test_patient, test_user, entry_time="10:00")
        updated = await service.update_session(
            db_session,
            created.id,
            TherapySessionUpdate(
                status=SessionStatus.COMPLETED,
                exit_time="10:40",
                notes="Buena evolución",
            ),
            test_user.id,
        )
        assert updated.status == SessionStatus.COMPLETED
        assert updated.duration_minutes == 40
        assert updated.notes == "Buena evolución"

    async def test_exit_before_existing_entry(self, db_session, test_user, test_patient):
        created = await _register(db_session, test_patient, test_user, entry_time="10:00")
        with pytest.raises(ValidationException):
            await service.update_session(
                db_session, created.id, TherapySessionUpdate(exit_time="09:00"), test_user.id
            )

    async def test_moving_day_renumbers(self, db_session, test_user, test_patient):
        await _register(db_session, test_patient, test_user, "2025-07-01T09:00:00Z")
        second = await _register(db_session, test_patient, test_user, "2025-07-01T10:00:00Z")
        assert second.daily_order_number == 2

        moved = await service.update_session(
            db_session,
            second.id,
            TherapySessionUpdate(session_date="2025-07-05T10:00:00Z"),
            test_user.id,
        )
        assert moved.daily_order_number == 1
        assert moved.session_date.date() == date(2025, 7, 5)

    async def test_payment_merge_marks_paid(self, db_session, test_user, test_patient):
        created = await _register(
            db_session, test_patient, test_user, payment=PaymentInput(amount=Decimal("900"))
        )
        updated = await service.update_session(
            db_session,
            created.id,
            TherapySessionUpdate(payment={"is_paid": True, "method": "cash"}),
            test_user.id,
        )
        assert updated.payment.is_paid is True
        assert updated.payment.amount == 900.0
        assert updated.payment.paid_at is not None


class TestDaySheet:
    async def test_totals_and_labels(self, db_session, test_user, test_patient, other_patient):
        await _register(
            db_session, test_patient, test_user, "2025-07-01T09:00:00Z",
            status=SessionStatus.COMPLETED,
            payment=PaymentInput(amount=Decimal("3000"), method=PaymentMethod.CASH, is_paid=True),
        )
        await _register(
            db_session, other_patient, test_user, "2025-07-01T10:00:00Z",
            status=SessionStatus.COMPLETED,
            payment=PaymentInput(amount=Decimal("2000")),
        )
        await _register(
            db_session, test_patient, test_user, "2025-07-01T11:00:00Z",
            status=SessionStatus.NO_SHOW,
            payment=PaymentInput(amount=Decimal("1500")),
        )
        to_cancel = await _register(
            db_session, other_patient, test_user, "2025-07-01T12:00:00Z",
            payment=PaymentInput(amount=Decimal("1000")),
        )
        await service.cancel_session(
            db_session, to_cancel.id, SessionCancel(reason="Lluvia"), test_user.id
        )
        await _register(db_session, test_patient, test_user, "2025-07-02T09:00:00Z")

        sheet = await service.get_day_sheet(db_session, date(2025, 7, 1))

        assert sheet.day == date(2025, 7, 1)
        assert [row.daily_order_number for row in sheet.sessions] == [1, 2, 3, 4]
        assert sheet.totals.total_sessions == 2
        assert sheet.totals.collected == 3000.0
        assert sheet.totals.pending == 2000.0
        assert sheet.totals.cancelled == 1
        assert sheet.totals.no_show == 1
        assert sheet.sessions[0].session_label == "Sesión 1 de 10"
        assert sheet.sessions[1].session_label == "Sesión 1"

    async def test_total_counts_only_completed(self, db_session, test_user, test_patient):
        await _register(
            db_session, test_patient, test_user, "2025-07-01T09:00:00Z",
            status=SessionStatus.COMPLETED,
            payment=PaymentInput(amount=Decimal("100")),
        )
        await _register(
            db_session, test_patient, test_user, "2025-07-01T10:00:00Z",
            status=SessionStatus.NO_SHOW,
        )
        await _register(db_session, test_patient, test_user, "2025-07-01T11:00:00Z")

        sheet = await service.get_day_sheet(db_session, date(2025, 7, 1))

        assert len(sheet.sessions) == 3
        assert sheet.totals.total_sessions == 1
        assert sheet.totals.pending == 100.0
        assert sheet.totals.no_show == 1

    async def test_empty_day(self, db_session):
        sheet = await service.get_day_sheet(db_session, "2025-01-01")
        assert sheet.sessions == []
        assert sheet.totals.total_sessions == 0


class TestPendingPayments:
    async def test_total_matches_unpaid_sessions(
        self, db_session, test_user, test_patient, other_patient
    ):
        await _register(
            db_session, test_patient, test_user, "2025-07-01T09:00:00Z",
            payment=PaymentInput(amount=Decimal("1000")),
        )
        await _register(
            db_session, other_patient, test_user, "2025-07-02T09:00:00Z",
            status=SessionStatus.COMPLETED,
            payment=PaymentInput(amount=Decimal("2500"), method=PaymentMethod.TRANSFER),
        )
        await _register(
            db_session, test_patient, test_user, "2025-07-03T09:00:00Z",
            payment=PaymentInput(amount=Decimal("800"), method=PaymentMethod.CASH, is_paid=True),
        )

        result = await service.get_pending_payments(db_session)

        assert result.count == 2
        assert result.total_pending == 3500.0
        assert result.total_pending == pytest.approx(
            sum(s.payment.amount for s in result.sessions)
        )
        assert result.limit == 50
        assert result.breakdown_by_status["scheduled"].amount == 1000.0
        assert result.breakdown_by_status["completed"].count == 1
        assert result.breakdown_by_method["transfer"].amount == 2500.0
        # Más reciente primero
        assert result.sessions[0].session_date.date() == date(2025, 7, 2)

    async def test_limit_and_patient_filter(
        self, db_session, test_user, test_patient, other_patient
    ):
        for day in ("2025-07-01", "2025-07-02", "2025-07-03"):
            await _register(db_session, test_patient, test_user, f"{day}T09:00:00Z")
        await _register(db_session, other_patient, test_user, "2025-07-04T09:00:00Z")

        limited = await service.get_pending_payments(db_session, limit=2)
        assert limited.count == 2
        assert limited.limit == 2

        filtered = await service.get_pending_payments(db_session, patient_id=test_patient.id)
        assert filtered.count == 3
        assert {s.patient_id for s in filtered.sessions} == {test_patient.id}


class TestStatistics:
    async def test_projection_is_idempotent_and_matches_aggregate(
        self, db_session, test_user, test_patient
    ):
        await _register(
            db_session, test_patient, test_user, "2025-07-01T09:00:00Z",
            payment=PaymentInput(amount=Decimal("1000"), method=PaymentMethod.CASH, is_paid=True),
        )
        await _register(
            db_session, test_patient, test_user, "2025-07-03T09:00:00Z",
            payment=PaymentInput(amount=Decimal("1500")),
        )

        first = await refresh_patient_statistics(db_session, test_patient.id)
        await db_session.commit()
        second = await refresh_patient_statistics(db_session, test_patient.id)
        await db_session.commit()
        direct = await aggregate_patient_sessions(db_session, test_patient.id)

        assert first == second
        assert second.total_sessions == direct["total_sessions"] == 2
        assert second.total_paid == float(direct["total_paid"]) == 1000.0
        assert second.pending_balance == float(direct["pending_balance"]) == 1500.0
        assert second.last_session_date.date() == date(2025, 7, 3)

    async def test_no_sessions_gives_zeros(self, db_session, test_patient):
        stats = await refresh_patient_statistics(db_session, test_patient.id)
        assert stats.total_sessions == 0
        assert stats.total_paid == 0.0
        assert stats.last_session_date is None

    async def test_patient_history(self, db_session, test_user, test_patient):
        await _register(
            db_session, test_patient, test_user, "2025-07-01T09:00:00Z",
            status=SessionStatus.COMPLETED,
            payment=PaymentInput(amount=Decimal("1000"), method=PaymentMethod.CASH, is_paid=True),
        )
        await _register(
            db_session, test_patient, test_user, "2025-07-02T09:00:00Z",
            status=SessionStatus.NO_SHOW,
        )

        history = await service.get_patient_history(db_session, test_patient.id)

        assert history.patient.statistics.total_sessions == 2
        assert history.statistics.completed == 1
        assert history.statistics.no_show == 1
        assert history.statistics.total_paid == 1000.0
        assert history.pagination.total == 2
        assert history.sessions[0].session_date.date() == date(2025, 7, 2)

    async def test_history_unknown_patient(self, db_session):
        with pytest.raises(NotFoundException):
            await service.get_patient_history(db_session, uuid4())

    async def test_session_statistics_by_weekday(self, db_session, test_user, test_patient):
        # 2025-07-01 es martes
        for hour in ("09", "10"):
            await _register(
                db_session, test_patient, test_user, f"2025-07-01T{hour}:00:00Z",
                status=SessionStatus.COMPLETED,
            )
        await _register(
            db_session, test_patient, test_user, "2025-07-02T09:00:00Z",
            status=SessionStatus.NO_SHOW,
        )

        stats = await service.get_session_statistics(
            db_session, date_from=date(2025, 7, 1), date_to=date(2025, 7, 31)
        )

        assert stats.totals.total_sessions == 3
        assert stats.totals.completed == 2
        assert stats.totals.no_show == 1
        by_day = {item.weekday: item.count for item in stats.by_weekday}
        assert by_day["martes"] == 2
        assert by_day["miercoles"] == 0


class TestSideEffectFailures:
    async def test_statistics_failure_keeps_session(
        self, db_session, test_user, test_patient, monkeypatch, caplog
    ):
        async def broken_refresh(db, patient_id):
            raise RuntimeError("proyector caído")

        monkeypatch.setattr(
            patient_stats_service, "refresh_patient_statistics", broken_refresh
        )

        result = await _register(db_session, test_patient, test_user)

        assert result.session_number == 1
        stored = await service.get_session(db_session, result.id)
        assert stored.id == result.id
        assert "No se pudieron recalcular las estadísticas" in caplog.text

    async def test_audit_failure_keeps_session(
        self, db_session, test_user, test_patient, monkeypatch
    ):
        async def broken_log(db, **kwargs):
            raise RuntimeError("auditoría caída")

        monkeypatch.setattr(audit_service, "log_action", broken_log)

        result = await _register(db_session, test_patient, test_user)

        stored = await service.get_session(db_session, result.id)
        assert stored.daily_order_number == 1
        logs = (await db_session.execute(select(AuditLog))).scalars().all()
        assert logs == []
