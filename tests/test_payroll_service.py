"""
Tests del servicio de planilla de pagos del personal.
"""

from datetime import date

import pytest
from sqlalchemy import func, select

from app.core.exceptions import NotFoundException, ValidationException
from app.models.audit_log import AuditLog
from app.models.payroll_entry import PayrollEntry, PayrollStatus, Weekday
from app.schemas.payroll import (
    DistributionInput,
    PayrollBulkRequest,
    PayrollEntryInput,
    PayrollEntryUpdate,
)
from app.services import payroll_service


class TestUpsert:
    async def test_creates_with_derived_period_and_split(self, db_session, test_user):
        result = await payroll_service.upsert_entry(
            db_session,
            PayrollEntryInput(entry_date="2025-07-01", amount="110000"),
            test_user.id,
        )

        assert result.was_created is True
        entry = result.entry
        assert (entry.year, entry.month, entry.week_of_month) == (2025, 7, 1)
        assert entry.weekday == Weekday.MARTES
        assert entry.amount == 110000.0
        assert entry.distribution.share_a == 33000.0
        assert entry.distribution.share_b == 22000.0
        assert entry.distribution.share_c == 55000.0
        assert entry.total_distribution == 110000.0
        assert entry.status == PayrollStatus.PENDING
        assert entry.created_by == test_user.id

    async def test_second_upsert_updates_same_row(self, db_session, test_user):
        first = await payroll_service.upsert_entry(
            db_session,
            PayrollEntryInput(entry_date="2025-07-29", amount="1000"),
            test_user.id,
        )
        second = await payroll_service.upsert_entry(
            db_session,
            PayrollEntryInput(entry_date="2025-07-29", amount="2000", notes="corregido"),
            test_user.id,
        )

        assert second.was_created is False
        assert second.entry.id == first.entry.id
        assert second.entry.week_of_month == 5
        assert second.entry.amount == 2000.0
        assert second.entry.notes == "corregido"
        assert second.entry.modified_by == test_user.id

        total = (await db_session.execute(select(func.count(PayrollEntry.id)))).scalar()
        assert total == 1

    async def test_natural_key_conflict_retried_as_update(
        self, db_session, test_user, monkeypatch
    ):
        user_id = test_user.id
        first = await payroll_service.upsert_entry(
            db_session,
            PayrollEntryInput(entry_date="2025-07-01", amount="100"),
            user_id,
        )

        # La primera búsqueda no ve la fila, como si otro request la hubiera creado en paralelo
        real_find = payroll_service._find_by_natural_key
        calls = []

        async def racing_find(db, values):
            calls.append(values["entry_date"])
            if len(calls) == 1:
                return None
            return await real_find(db, values)

        monkeypatch.setattr(payroll_service, "_find_by_natural_key", racing_find)

        second = await payroll_service.upsert_entry(
            db_session,
            PayrollEntryInput(entry_date="2025-07-01", amount="200"),
            user_id,
        )

        assert len(calls) == 2
        assert second.was_created is False
        assert second.entry.id == first.entry.id
        assert second.entry.amount == 200.0
        assert second.entry.distribution.share_c == 100.0
        total = (await db_session.execute(select(func.count(PayrollEntry.id)))).scalar()
        assert total == 1

    async def test_manual_distribution_respected(self, db_session, test_user):
        result = await payroll_service.upsert_entry(
            db_session,
            PayrollEntryInput(
                entry_date="2025-07-02",
                amount="1000",
                distribution=DistributionInput(share_a="400", share_b="100", share_c="500"),
            ),
            test_user.id,
        )
        assert result.entry.distribution.share_a == 400.0
        assert result.entry.distribution.share_b == 100.0

    async def test_negative_amount_rejected(self, db_session, test_user):
        with pytest.raises(ValidationException):
            await payroll_service.upsert_entry(
                db_session,
                PayrollEntryInput(entry_date="2025-07-01", amount="-5"),
                test_user.id,
            )

    async def test_invalid_date_rejected(self, db_session, test_user):
        with pytest.raises(ValidationException):
            await payroll_service.upsert_entry(
                db_session,
                PayrollEntryInput(entry_date="no-es-fecha", amount="5"),
                test_user.id,
            )

    async def test_invalid_week_rejected(self, db_session, test_user):
        with pytest.raises(ValidationException):
            await payroll_service.upsert_entry(
                db_session,
                PayrollEntryInput(entry_date="2025-07-01", amount="5", week_of_month=6),
                test_user.id,
            )

    async def test_audit_recorded(self, db_session, test_user):
        result = await payroll_service.upsert_entry(
            db_session,
            PayrollEntryInput(entry_date="2025-07-01", amount="100"),
            test_user.id,
        )
        logs = (
            await db_session.execute(
                select(AuditLog).where(AuditLog.entity_id == str(result.entry.id))
            )
        ).scalars().all()
        assert [log.action for log in logs] == ["create"]
        assert logs[0].new_data["amount"] == 100.0


class TestBulk:
    async def test_reports_invalid_rows_and_continues(self, db_session, test_user):
        request = PayrollBulkRequest(entries=[
            PayrollEntryInput(entry_date="2025-07-01", amount="100"),
            PayrollEntryInput(entry_date="2025-07-02", amount="-1"),
            PayrollEntryInput(entry_date="2025-07-03", amount="300"),
            PayrollEntryInput(entry_date="2025-07-01", amount="150"),
        ])

        result = await payroll_service.bulk_upsert(db_session, request, test_user.id)

        assert result.total == 4
        assert result.created == 2
        assert result.updated == 1
        assert result.failed == 1
        assert result.errors[0].index == 1
        assert result.errors[0].entry_date == "2025-07-02"
        assert len(result.entries) == 3

    async def test_stop_on_error_propagates(self, db_session, test_user):
        request = PayrollBulkRequest(
            entries=[
                PayrollEntryInput(entry_date="2025-07-01", amount="100"),
                PayrollEntryInput(entry_date="2025-07-02", weekday="funday", amount="1"),
                PayrollEntryInput(entry_date="2025-07-03", amount="300"),
            ],
            stop_on_error=True,
        )

        with pytest.raises(ValidationException):
            await payroll_service.bulk_upsert(db_session, request, test_user.id)

        # La primera fila ya quedó confirmada
        total = (await db_session.execute(select(func.count(PayrollEntry.id)))).scalar()
        assert total == 1


class TestUpdateDelete:
    async def test_date_change_rederives_period(self, db_session, test_user):
        created = await payroll_service.upsert_entry(
            db_session,
            PayrollEntryInput(entry_date="2025-07-01", amount="1000"),
            test_user.id,
        )

        updated = await payroll_service.update_entry(
            db_session,
            created.entry.id,
            PayrollEntryUpdate(entry_date="2025-08-15", amount="2000"),
            test_user.id,
        )

        assert (updated.year, updated.month, updated.week_of_month) == (2025, 8, 3)
        assert updated.weekday == Weekday.VIERNES
        assert updated.entry_date == date(2025, 8, 15)
        assert updated.distribution.share_a == 600.0
        assert updated.total_distribution == 2000.0

    async def test_status_update(self, db_session, test_user):
        created = await payroll_service.upsert_entry(
            db_session,
            PayrollEntryInput(entry_date="2025-07-01", amount="1000"),
            test_user.id,
        )
        updated = await payroll_service.update_entry(
            db_session, created.entry.id, PayrollEntryUpdate(status="paid"), test_user.id
        )
        assert updated.status == PayrollStatus.PAID
        assert updated.amount == 1000.0

    async def test_delete(self, db_session, test_user):
        created = await payroll_service.upsert_entry(
            db_session,
            PayrollEntryInput(entry_date="2025-07-01", amount="1000"),
            test_user.id,
        )
        await payroll_service.delete_entry(db_session, created.entry.id, test_user.id)

        with pytest.raises(NotFoundException):
            await payroll_service.get_entry(db_session, created.entry.id)


class TestSheetAndStatistics:
    async def _seed(self, db_session, user_id):
        for entry_date, amount in (
            ("2025-07-01", "1000"),
            ("2025-07-02", "2000.01"),
            ("2025-07-09", "500"),
            ("2025-08-01", "700"),
        ):
            await payroll_service.upsert_entry(
                db_session,
                PayrollEntryInput(entry_date=entry_date, amount=amount),
                user_id,
            )

    async def test_month_sheet_totals(self, db_session, test_user):
        await self._seed(db_session, test_user.id)

        sheet = await payroll_service.get_month_sheet(db_session, 2025, 7)

        assert set(sheet.weeks) == {1, 2}
        week_one = sheet.weeks[1]
        assert set(week_one.days) == {"martes", "miercoles"}
        assert week_one.subtotal == 3000.01
        assert week_one.days["martes"].collaborator.id == test_user.id
        assert sheet.totals.total == 3500.01
        assert sheet.totals.total == pytest.approx(
            sum(week.subtotal for week in sheet.weeks.values())
        )
        shares = sheet.totals.distribution
        assert shares.share_a + shares.share_b + shares.share_c == pytest.approx(3500.01)

    async def test_month_sheet_empty(self, db_session):
        sheet = await payroll_service.get_month_sheet(db_session, 2024, 1)
        assert sheet.weeks == {}
        assert sheet.totals.total == 0.0

    async def test_full_sheet_in_order(self, db_session, test_user):
        await self._seed(db_session, test_user.id)
        full = await payroll_service.get_full_sheet(db_session)
        assert [(s.year, s.month) for s in full.sheets] == [(2025, 7), (2025, 8)]

    async def test_statistics(self, db_session, test_user):
        await self._seed(db_session, test_user.id)

        stats = await payroll_service.get_statistics(db_session, year=2025, month=7)

        assert stats.summary.total_entries == 3
        assert stats.summary.total_amount == 3500.01
        assert len(stats.by_status) == 1
        assert stats.by_status[0].status == PayrollStatus.PENDING
        assert stats.by_status[0].count == 3

    async def test_list_filters_by_week(self, db_session, test_user):
        await self._seed(db_session, test_user.id)
        page = await payroll_service.list_entries(
            db_session, year=2025, month=7, week_of_month=1
        )
        assert page.pagination.total == 2
        assert [e.entry_date for e in page.items] == [date(2025, 7, 2), date(2025, 7, 1)]
