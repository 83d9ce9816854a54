"""Balance ledger — one row per (employee, leave type, year).

Debits are a single conditional UPDATE so two approvals against the same row
serialize on the row lock and the second re-checks the balance it actually
sees; the row can never be overdrawn outside :meth:`BalanceLedger.override`.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.common.audit import AuditSink
from backend.common.constants import LeaveType
from backend.common.exceptions import InsufficientBalance, NotFound
from backend.common.unit_of_work import insert_ignore, unit_of_work
from backend.core_hr.models import Employee
from backend.leave.calculator import EntitlementCalculator
from backend.leave.models import LeaveBalance
from backend.leave.schemas import LeaveBalanceOut

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def _available_expr():
    return (
        LeaveBalance.entitlement
        + LeaveBalance.carried_forward
        + LeaveBalance.adjustment
        - LeaveBalance.used
    )


class BalanceLedger:
    """Durable leave accounts, debited by approvals and credited at year end."""

    def __init__(
        self,
        calculator: EntitlementCalculator,
        session_factory: async_sessionmaker[AsyncSession],
        audit: AuditSink,
    ) -> None:
        self.calculator = calculator
        self._session_factory = session_factory
        self._audit = audit

    @staticmethod
    def available(row: LeaveBalance) -> Decimal:
        return (
            Decimal(row.entitlement)
            + Decimal(row.carried_forward)
            + Decimal(row.adjustment)
            - Decimal(row.used)
        )

    # ── Lookup / lazy creation ──────────────────────────────────────

    async def _find(
        self,
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: LeaveType,
        year: int,
        *,
        for_update: bool = False,
    ) -> Optional[LeaveBalance]:
        query = select(LeaveBalance).where(
            LeaveBalance.employee_id == employee_id,
            LeaveBalance.leave_type == leave_type,
            LeaveBalance.year == year,
        )
        if for_update:
            query = query.with_for_update()
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def _joined_date(self, db: AsyncSession, employee_id: uuid.UUID):
        joined = (
            await db.execute(
                select(Employee.date_of_joining).where(Employee.id == employee_id)
            )
        ).scalar_one_or_none()
        if joined is None:
            raise NotFound("Employee", employee_id)
        return joined

    async def get(
        self,
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: LeaveType,
        year: int,
        *,
        for_update: bool = False,
    ) -> LeaveBalance:
        """Existing row, or a new one seeded with the computed annual quota."""
        row = await self._find(db, employee_id, leave_type, year, for_update=for_update)
        if row is not None:
            return row

        joined = await self._joined_date(db, employee_id)
        entitlement = await self.calculator.annual_quota(db, leave_type, joined, year)
        await db.execute(
            insert_ignore(
                db,
                LeaveBalance,
                id=uuid.uuid4(),
                employee_id=employee_id,
                leave_type=leave_type,
                year=year,
                entitlement=entitlement,
                used=ZERO,
                carried_forward=ZERO,
                adjustment=ZERO,
                manual_override=False,
                carry_forward_applied=False,
                version=1,
                created_at=datetime.now(timezone.utc),
                updated_at=datetime.now(timezone.utc),
            )
        )
        logger.debug(
            "Opened %s balance for employee %s year %s with %s days",
            leave_type.value, employee_id, year, entitlement,
        )
        # Another writer may have won the insert; read whichever row exists
        return await self._find(db, employee_id, leave_type, year, for_update=for_update)

    async def balances_for(
        self, db: AsyncSession, employee_id: uuid.UUID, year: int,
    ) -> list[LeaveBalance]:
        """Rows for every balance-bearing type, created on demand."""
        rows: list[LeaveBalance] = []
        for leave_type in LeaveType:
            policy = await self.calculator.config_store.resolve(db, leave_type)
            if not policy.is_balance_bearing or not policy.is_active:
                continue
            rows.append(await self.get(db, employee_id, leave_type, year))
        return rows

    # ── Debit ───────────────────────────────────────────────────────

    async def debit(
        self,
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: LeaveType,
        year: int,
        amount: Decimal,
    ) -> LeaveBalance:
        """Increase ``used`` by ``amount`` inside the caller's transaction.

        Raises ``InsufficientBalance`` when the row cannot cover ``amount``;
        the caller's unit of work then rolls back everything it flushed.
        """
        row = await self.get(db, employee_id, leave_type, year)
        result = await db.execute(
            update(LeaveBalance)
            .where(LeaveBalance.id == row.id, _available_expr() >= amount)
            .values(
                used=LeaveBalance.used + amount,
                version=LeaveBalance.version + 1,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        await db.refresh(row)

        if result.rowcount != 1:
            available = self.available(row)
            logger.info(
                "Debit of %s refused for employee %s (%s %s): available %s",
                amount, employee_id, leave_type.value, year, available,
            )
            raise InsufficientBalance(available=available, requested=amount)

        return row

    # ── Administrative override ─────────────────────────────────────

    async def override(
        self,
        employee_id: uuid.UUID,
        leave_type: LeaveType,
        year: int,
        new_entitlement: Decimal,
        adjustment: Decimal,
        reason: str,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveBalanceOut:
        """Set entitlement and adjustment without any sufficiency check.

        The row is flagged ``manual_override`` so year-end recomputation
        leaves the entitlement alone. Always audited.
        """
        async with unit_of_work(self._session_factory) as db:
            row = await self.get(db, employee_id, leave_type, year, for_update=True)
            old_values = {
                "entitlement": str(row.entitlement),
                "adjustment": str(row.adjustment),
                "manual_override": row.manual_override,
            }
            row.entitlement = new_entitlement
            row.adjustment = adjustment
            row.manual_override = True
            row.override_reason = reason
            row.version = row.version + 1
            await db.flush()
            await db.refresh(row)
            snapshot = LeaveBalanceOut.model_validate(row)

        logger.info(
            "Balance override for employee %s (%s %s) by %s: %s",
            employee_id, leave_type.value, year, actor_id, reason,
        )
        await self._audit.record(
            action="balance_override",
            entity_type="leave_balance",
            entity_id=snapshot.id,
            actor_id=actor_id,
            old_values=old_values,
            new_values={
                "entitlement": str(new_entitlement),
                "adjustment": str(adjustment),
                "manual_override": True,
                "reason": reason,
            },
        )
        return snapshot

    # ── Year-end credit ─────────────────────────────────────────────

    async def credit_carry_forward(
        self,
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: LeaveType,
        year: int,
        amount: Decimal,
        entitlement: Decimal,
    ) -> bool:
        """Upsert ``year``'s row with ``amount`` carried forward.

        Returns False when carry-forward was already applied to the row, so
        a re-run of the year-end job never credits twice.
        """
        now = datetime.now(timezone.utc)
        inserted = await db.execute(
            insert_ignore(
                db,
                LeaveBalance,
                id=uuid.uuid4(),
                employee_id=employee_id,
                leave_type=leave_type,
                year=year,
                entitlement=entitlement,
                used=ZERO,
                carried_forward=amount,
                adjustment=ZERO,
                manual_override=False,
                carry_forward_applied=True,
                version=1,
                created_at=now,
                updated_at=now,
            )
        )
        if inserted.rowcount == 1:
            return True

        row = await self._find(db, employee_id, leave_type, year, for_update=True)
        if row is None or row.carry_forward_applied:
            return False

        # Row opened lazily during the year; credit it in place
        row.carried_forward = amount
        row.carry_forward_applied = True
        if not row.manual_override:
            row.entitlement = entitlement
        row.version = row.version + 1
        await db.flush()
        return True
