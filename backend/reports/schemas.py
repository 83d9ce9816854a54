"""Payroll export schemas."""


import uuid
from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel

from backend.common.constants import LeaveType


class PayrollLeaveLine(BaseModel):
    """One approved request, clipped to the reporting period."""

    request_id: uuid.UUID
    leave_type: LeaveType
    start_date: date
    end_date: date
    days: Decimal
    is_paid: bool


class PayrollEmployeeSummary(BaseModel):
    employee_id: uuid.UUID
    employee_code: str
    full_name: str
    paid_days: Decimal = Decimal("0")
    unpaid_days: Decimal = Decimal("0")
    lines: list[PayrollLeaveLine] = []


class PayrollReport(BaseModel):
    year: int
    month: Optional[int] = None
    period_start: date
    period_end: date
    employees: list[PayrollEmployeeSummary]
    total_paid_days: Decimal
    total_unpaid_days: Decimal
