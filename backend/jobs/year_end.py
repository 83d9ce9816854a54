"""Year-end processing: carry-forward into next year's ledger and archival."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.common.constants import TERMINAL_STATUSES, LeaveType
from backend.common.unit_of_work import unit_of_work
from backend.core_hr.models import Employee
from backend.jobs.escalation import SweepResult
from backend.leave.calculator import quota_for
from backend.leave.config_store import LeavePolicy
from backend.leave.ledger import BalanceLedger
from backend.leave.models import LeaveBalance, LeaveRequest

logger = logging.getLogger(__name__)


@dataclass
class YearEndResult:
    year: int
    carry_forward: dict[str, SweepResult] = field(default_factory=dict)
    archived: int = 0


class YearEndProcessor:
    """Credits unused days into next year and archives old requests.

    Safe to re-run: a next-year row already marked as credited is skipped.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ledger: BalanceLedger,
        *,
        retention_years: int = 7,
    ) -> None:
        self._session_factory = session_factory
        self.ledger = ledger
        self.retention_years = retention_years

    async def run(self, year: Optional[int] = None, *, today: Optional[date] = None) -> YearEndResult:
        today = today or date.today()
        year = year if year is not None else today.year
        logger.info("Year-end processing started for %d", year)

        result = YearEndResult(year=year)
        result.carry_forward = await self.process_carry_forward(year)
        try:
            result.archived = await self.archive_old_records(today=today)
        except Exception:
            logger.exception("Archival failed during year-end processing for %d", year)

        logger.info("Year-end processing finished for %d", year)
        return result

    async def eligible_policies(self) -> list[LeavePolicy]:
        """Balance-bearing types that allow carry-forward."""
        config_store = self.ledger.calculator.config_store
        policies: list[LeavePolicy] = []
        async with self._session_factory() as db:
            for leave_type in LeaveType:
                policy = await config_store.resolve(db, leave_type)
                if policy.is_balance_bearing and policy.allow_carry_forward:
                    policies.append(policy)
        return policies

    async def process_carry_forward(self, year: int) -> dict[str, SweepResult]:
        results: dict[str, SweepResult] = {}
        for policy in await self.eligible_policies():
            results[policy.leave_type.value] = await self._carry_forward_type(policy, year)
        return results

    async def _carry_forward_type(self, policy: LeavePolicy, year: int) -> SweepResult:
        leave_type = policy.leave_type
        cap = policy.carry_forward_cap

        async with self._session_factory() as db:
            rows = (
                await db.execute(
                    select(
                        LeaveBalance.employee_id,
                        LeaveBalance.entitlement,
                        LeaveBalance.adjustment,
                        LeaveBalance.used,
                        Employee.date_of_joining,
                    )
                    .join(Employee, Employee.id == LeaveBalance.employee_id)
                    .where(
                        LeaveBalance.leave_type == leave_type,
                        LeaveBalance.year == year,
                    )
                )
            ).all()

        result = SweepResult(examined=len(rows))
        for employee_id, entitlement, adjustment, used, joined in rows:
            # Prior carry-forward is excluded so it cannot compound
            available = Decimal(entitlement) + Decimal(adjustment) - Decimal(used)
            if available <= 0:
                result.skipped += 1
                continue
            amount = min(available, cap)
            next_entitlement = quota_for(policy, joined, year + 1)
            try:
                async with unit_of_work(self._session_factory) as db:
                    credited = await self.ledger.credit_carry_forward(
                        db, employee_id, leave_type, year + 1, amount, next_entitlement,
                    )
            except Exception:
                logger.exception(
                    "Carry-forward failed for employee %s (%s %d)",
                    employee_id, leave_type.value, year,
                )
                result.failed += 1
                continue

            if credited:
                result.succeeded += 1
                logger.debug(
                    "Carried %s %s day(s) into %d for employee %s",
                    amount, leave_type.value, year + 1, employee_id,
                )
            else:
                result.skipped += 1

        logger.info(
            "Carry-forward %s %d: %d credited, %d skipped, %d failed",
            leave_type.value, year, result.succeeded, result.skipped, result.failed,
        )
        return result

    async def archive_old_records(self, *, today: Optional[date] = None) -> int:
        """Flag terminal requests that ended before the retention window."""
        today = today or date.today()
        try:
            cutoff = today.replace(year=today.year - self.retention_years)
        except ValueError:
            cutoff = date(today.year - self.retention_years, 2, 28)

        async with unit_of_work(self._session_factory) as db:
            archived = await db.execute(
                update(LeaveRequest)
                .where(
                    LeaveRequest.status.in_(list(TERMINAL_STATUSES)),
                    LeaveRequest.end_date < cutoff,
                    LeaveRequest.is_archived.is_(False),
                )
                .values(is_archived=True, version=LeaveRequest.version + 1)
                .execution_options(synchronize_session=False)
            )
        count = archived.rowcount or 0
        logger.info("Archived %d leave request(s) that ended before %s", count, cutoff)
        return count
