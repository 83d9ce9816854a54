"""Payroll export — read-only projection of approved leave over a period."""

from __future__ import annotations

import calendar
import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.common.constants import LeaveStatus, LeaveType
from backend.common.exceptions import LeavePolicyViolation
from backend.config import settings
from backend.core_hr.models import Employee
from backend.leave.calculator import HALF_DAY, EntitlementCalculator
from backend.leave.models import LeaveRequest
from backend.reports.schemas import (
    PayrollEmployeeSummary,
    PayrollLeaveLine,
    PayrollReport,
)

logger = logging.getLogger(__name__)

UNPAID_TYPES = frozenset({LeaveType.unpaid})


def reporting_period(year: int, month: Optional[int] = None) -> tuple[date, date]:
    if month is None:
        return date(year, 1, 1), date(year, 12, 31)
    if not 1 <= month <= 12:
        raise LeavePolicyViolation("month", "Month must be between 1 and 12.")
    return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])


class PayrollExport:
    """Approved leave per employee for a month or a whole year.

    Requests straddling the period boundary are clipped, and only the days
    inside the period are counted.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        calculator: EntitlementCalculator,
    ) -> None:
        self._session_factory = session_factory
        self.calculator = calculator

    async def export(self, year: int, month: Optional[int] = None) -> PayrollReport:
        period_start, period_end = reporting_period(year, month)

        async with self._session_factory() as db:
            result = await db.execute(
                select(LeaveRequest, Employee)
                .join(Employee, Employee.id == LeaveRequest.employee_id)
                .where(
                    LeaveRequest.status == LeaveStatus.approved,
                    LeaveRequest.start_date <= period_end,
                    LeaveRequest.end_date >= period_start,
                )
                .order_by(Employee.employee_code, LeaveRequest.start_date)
            )

            summaries: dict = {}
            for request, employee in result.all():
                start = max(request.start_date, period_start)
                end = min(request.end_date, period_end)
                if request.half_day:
                    days = HALF_DAY
                else:
                    days = await self.calculator.chargeable_duration(
                        db,
                        start,
                        end,
                        request.leave_type,
                        region=employee.region or settings.HOLIDAY_REGION,
                    )
                if days <= 0:
                    continue

                summary = summaries.get(employee.id)
                if summary is None:
                    summary = PayrollEmployeeSummary(
                        employee_id=employee.id,
                        employee_code=employee.employee_code,
                        full_name=employee.full_name,
                    )
                    summaries[employee.id] = summary

                is_paid = request.leave_type not in UNPAID_TYPES
                summary.lines.append(
                    PayrollLeaveLine(
                        request_id=request.id,
                        leave_type=request.leave_type,
                        start_date=start,
                        end_date=end,
                        days=days,
                        is_paid=is_paid,
                    )
                )
                if is_paid:
                    summary.paid_days += days
                else:
                    summary.unpaid_days += days

        employees = list(summaries.values())
        logger.info(
            "Payroll export %s-%s: %d employee(s)", year, month or "all", len(employees),
        )
        return PayrollReport(
            year=year,
            month=month,
            period_start=period_start,
            period_end=period_end,
            employees=employees,
            total_paid_days=sum((e.paid_days for e in employees), Decimal("0")),
            total_unpaid_days=sum((e.unpaid_days for e in employees), Decimal("0")),
        )
