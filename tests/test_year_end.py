"""Year-end processing tests — carry-forward, re-run safety, archival."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import select

from backend.common.constants import LeaveStatus, LeaveType
from backend.common.pagination import PaginationParams
from backend.leave.models import LeaveRequest
from tests.conftest import (
    TestSessionFactory,
    make_balance,
    make_config,
    make_employee,
    read_balance,
)


async def _make_request(employee_id, *, status: LeaveStatus, start: date, end: date) -> LeaveRequest:
    request = LeaveRequest(
        employee_id=employee_id,
        leave_type=LeaveType.annual,
        start_date=start,
        end_date=end,
        duration=Decimal("1"),
        status=status,
        created_at=datetime(start.year, start.month, start.day, tzinfo=timezone.utc),
    )
    async with TestSessionFactory() as db:
        db.add(request)
        await db.commit()
    return request


class TestCarryForward:
    async def test_carries_unused_days_and_recomputes_entitlement(self, services):
        # Six years of service on 1 Jan 2031: the fallback grants 16 for that year
        emp = await make_employee(date_of_joining=date(2025, 1, 1))
        await make_balance(emp.id, year=2030, entitlement=Decimal("12"), used=Decimal("9"))

        result = await services.year_end.run(2030, today=date(2030, 12, 31))

        assert result.carry_forward["annual"].succeeded == 1
        row = await read_balance(emp.id, LeaveType.annual, 2031)
        assert row.carried_forward == Decimal("3")
        assert row.entitlement == Decimal("16")
        assert row.used == Decimal("0")

    async def test_capped_at_maximum(self, services):
        emp = await make_employee()
        await make_balance(emp.id, year=2030, entitlement=Decimal("16"), used=Decimal("2"))

        await services.year_end.run(2030, today=date(2030, 12, 31))

        row = await read_balance(emp.id, LeaveType.annual, 2031)
        assert row.carried_forward == Decimal("5")

    async def test_config_cap_overrides_default(self, services):
        await make_config(
            LeaveType.annual,
            is_balance_bearing=True,
            allow_carry_forward=True,
            max_carry_forward=Decimal("2"),
        )
        emp = await make_employee()
        await make_balance(emp.id, year=2030, entitlement=Decimal("12"), used=Decimal("0"))

        await services.year_end.run(2030, today=date(2030, 12, 31))

        row = await read_balance(emp.id, LeaveType.annual, 2031)
        assert row.carried_forward == Decimal("2")
        assert row.entitlement == Decimal("12")

    async def test_prior_carry_forward_does_not_compound(self, services):
        emp = await make_employee()
        await make_balance(
            emp.id,
            year=2030,
            entitlement=Decimal("12"),
            used=Decimal("11"),
            carried_forward=Decimal("5"),
        )

        await services.year_end.run(2030, today=date(2030, 12, 31))

        row = await read_balance(emp.id, LeaveType.annual, 2031)
        assert row.carried_forward == Decimal("1")

    async def test_nothing_to_carry(self, services):
        emp = await make_employee()
        await make_balance(emp.id, year=2030, entitlement=Decimal("12"), used=Decimal("12"))

        result = await services.year_end.run(2030, today=date(2030, 12, 31))

        assert result.carry_forward["annual"].skipped == 1
        assert await read_balance(emp.id, LeaveType.annual, 2031) is None

    async def test_only_carry_forward_types(self, services):
        emp = await make_employee()
        await make_balance(
            emp.id, leave_type=LeaveType.sick, year=2030,
            entitlement=Decimal("14"), used=Decimal("0"),
        )

        result = await services.year_end.run(2030, today=date(2030, 12, 31))

        assert set(result.carry_forward) == {"annual"}
        assert await read_balance(emp.id, LeaveType.sick, 2031) is None

    async def test_rerun_does_not_double_credit(self, services):
        emp = await make_employee()
        await make_balance(emp.id, year=2030, entitlement=Decimal("12"), used=Decimal("9"))

        await services.year_end.run(2030, today=date(2030, 12, 31))
        second = await services.year_end.run(2030, today=date(2030, 12, 31))

        assert second.carry_forward["annual"].succeeded == 0
        assert second.carry_forward["annual"].skipped == 1
        row = await read_balance(emp.id, LeaveType.annual, 2031)
        assert row.carried_forward == Decimal("3")

    async def test_manual_override_entitlement_is_kept(self, services, hr_admin):
        emp = await make_employee()
        await make_balance(emp.id, year=2030, entitlement=Decimal("12"), used=Decimal("10"))
        await services.ledger.override(
            emp.id, LeaveType.annual, 2031, Decimal("30"), Decimal("0"), "Sabbatical return",
            actor_id=hr_admin.id,
        )

        await services.year_end.run(2030, today=date(2030, 12, 31))

        row = await read_balance(emp.id, LeaveType.annual, 2031)
        assert row.entitlement == Decimal("30")
        assert row.carried_forward == Decimal("2")

    async def test_each_employee_processed(self, services):
        employees = [await make_employee() for _ in range(3)]
        for emp in employees:
            await make_balance(emp.id, year=2030, entitlement=Decimal("12"), used=Decimal("10"))

        result = await services.year_end.run(2030, today=date(2030, 12, 31))

        assert result.carry_forward["annual"].examined == 3
        assert result.carry_forward["annual"].succeeded == 3


class TestArchival:
    async def test_archives_old_terminal_requests(self, services):
        emp = await make_employee()
        old = await _make_request(
            emp.id, status=LeaveStatus.approved, start=date(2020, 5, 4), end=date(2020, 5, 5),
        )
        old_pending = await _make_request(
            emp.id, status=LeaveStatus.pending, start=date(2020, 6, 1), end=date(2020, 6, 1),
        )
        recent = await _make_request(
            emp.id, status=LeaveStatus.rejected, start=date(2029, 5, 4), end=date(2029, 5, 4),
        )

        archived = await services.year_end.archive_old_records(today=date(2030, 12, 31))

        assert archived == 1
        async with TestSessionFactory() as db:
            flags = dict(
                (await db.execute(select(LeaveRequest.id, LeaveRequest.is_archived))).all()
            )
        assert flags[old.id] is True
        assert flags[old_pending.id] is False
        assert flags[recent.id] is False

    async def test_archived_requests_hidden_from_hr_list(self, services):
        emp = await make_employee()
        await _make_request(
            emp.id, status=LeaveStatus.cancelled, start=date(2021, 5, 4), end=date(2021, 5, 4),
        )
        await services.year_end.archive_old_records(today=date(2030, 12, 31))

        params = PaginationParams(page=1, page_size=50, sort=None)
        assert (await services.lifecycle.list_all(params)).meta.total == 0
        assert (await services.lifecycle.list_all(params, include_archived=True)).meta.total == 1
