"""Entitlement calculator — tenure, annual quota, chargeable duration, validation."""

from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import LeaveType
from backend.common.exceptions import (
    InvalidDateRange,
    LeavePolicyViolation,
    PastDateNotAllowed,
    ProbationRestriction,
)
from backend.core_hr.service import EmployeeIdentity
from backend.holidays.service import HolidayCalendar
from backend.leave.config_store import EntitlementConfigStore, LeavePolicy

logger = logging.getLogger(__name__)

HALF_DAY = Decimal("0.5")
_CENTS = Decimal("0.01")
_WEEKEND = {5, 6}  # Saturday, Sunday


def _anniversary(joined: date, year: int) -> date:
    try:
        return joined.replace(year=year)
    except ValueError:
        # 29 February in a non-leap year
        return date(year, 2, 28)


def tenure_years(joined: date, as_of_year: int) -> int:
    """Completed years of service as of 1 January of ``as_of_year``."""
    years = as_of_year - joined.year
    if _anniversary(joined, joined.year + years) > date(as_of_year, 1, 1):
        years -= 1
    return max(years, 0)


def months_worked(joined: date, year: int) -> int:
    """Completed months of service within ``year``, capped at 12.

    Joining on the 1st counts the joining month in full.
    """
    if joined.year < year:
        return 12
    if joined.year > year:
        return 0
    months = 13 - joined.month
    if joined.day > 1:
        months -= 1
    return max(min(months, 12), 0)


def quota_for(policy: LeavePolicy, joined: date, year: int) -> Decimal:
    """Pure quota computation for an already-resolved policy."""
    tenure = tenure_years(joined, year)
    quota = policy.base_entitlement
    for threshold, bonus in policy.tenure_tiers:
        if threshold <= tenure:
            quota += bonus

    if tenure == 0 and policy.prorate_first_year:
        quota = quota * months_worked(joined, year) / 12

    return Decimal(quota).quantize(_CENTS, rounding=ROUND_HALF_UP)


class EntitlementCalculator:
    """Derives quotas and durations from the config store and holiday calendar."""

    def __init__(
        self,
        config_store: EntitlementConfigStore,
        holiday_calendar: HolidayCalendar,
    ) -> None:
        self.config_store = config_store
        self.holiday_calendar = holiday_calendar

    # ── Entitlement ─────────────────────────────────────────────────

    tenure_years = staticmethod(tenure_years)
    months_worked = staticmethod(months_worked)

    async def annual_quota(
        self, db: AsyncSession, leave_type: LeaveType, joined: date, year: int,
    ) -> Decimal:
        policy = await self.config_store.resolve(db, leave_type)
        return quota_for(policy, joined, year)

    # ── Duration ────────────────────────────────────────────────────

    async def chargeable_duration(
        self,
        db: AsyncSession,
        start: date,
        end: date,
        leave_type: LeaveType,
        *,
        region: Optional[str] = None,
        half_day: bool = False,
        policy: Optional[LeavePolicy] = None,
    ) -> Decimal:
        """Days consumed by ``[start, end]`` under the type's counting rule.

        Calendar-day types count every day inclusive. Everything else skips
        weekends and active public holidays for ``region``.
        """
        if start > end:
            raise InvalidDateRange()
        if half_day and start != end:
            raise LeavePolicyViolation(
                "half_day", "Half-day leave must start and end on the same day."
            )

        if policy is None:
            policy = await self.config_store.resolve(db, leave_type)

        if policy.counts_calendar_days:
            days = Decimal((end - start).days + 1)
        else:
            holidays = await self.holiday_calendar.holidays_between(db, start, end, region)
            count = 0
            current = start
            while current <= end:
                if current.weekday() not in _WEEKEND and current not in holidays:
                    count += 1
                current += timedelta(days=1)
            days = Decimal(count)

        if half_day and days > 0:
            return HALF_DAY
        return days

    # ── Validation ──────────────────────────────────────────────────

    @staticmethod
    def validate(
        employee: EmployeeIdentity,
        leave_type: LeaveType,
        start: date,
        end: date,
        *,
        today: Optional[date] = None,
    ) -> None:
        """Eligibility checks run before any balance lookup or mutation."""
        today = today or date.today()

        if not employee.is_confirmed and leave_type != LeaveType.sick:
            raise ProbationRestriction()

        if start > end:
            raise InvalidDateRange()

        if start < today - timedelta(days=1) and leave_type != LeaveType.emergency:
            raise PastDateNotAllowed()
