"""Employee directory — the identity provider consumed by the leave engine.

Supplies the id, role, manager id and confirmation status of an employee as
an immutable snapshot, so the lifecycle never holds on to a live ORM row of
somebody else's record.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date
from typing import Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.common.audit import AuditSink
from backend.common.constants import HR_ROLES, UserRole
from backend.common.exceptions import NotFound
from backend.common.unit_of_work import unit_of_work
from backend.core_hr.models import Employee

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmployeeIdentity:
    """Read-only view of the fields the leave engine authorizes against."""

    id: uuid.UUID
    role: UserRole
    manager_id: Optional[uuid.UUID]
    date_of_joining: date
    is_confirmed: bool
    region: Optional[str] = None
    is_active: bool = True

    @property
    def is_hr(self) -> bool:
        return self.role in HR_ROLES

    @classmethod
    def from_model(cls, employee: Employee) -> "EmployeeIdentity":
        return cls(
            id=employee.id,
            role=employee.role,
            manager_id=employee.reporting_manager_id,
            date_of_joining=employee.date_of_joining,
            is_confirmed=employee.is_confirmed,
            region=employee.region,
            is_active=employee.is_active,
        )


class IdentityProvider(Protocol):
    async def get(self, db: AsyncSession, employee_id: uuid.UUID) -> EmployeeIdentity: ...

    async def hr_recipient_ids(self, db: AsyncSession) -> list[uuid.UUID]: ...


# ═════════════════════════════════════════════════════════════════════
# EmployeeDirectory
# ═════════════════════════════════════════════════════════════════════


class EmployeeDirectory:
    """Database-backed identity provider."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        audit: AuditSink,
    ) -> None:
        self._session_factory = session_factory
        self._audit = audit

    async def get(self, db: AsyncSession, employee_id: uuid.UUID) -> EmployeeIdentity:
        employee = await db.get(Employee, employee_id)
        if employee is None:
            raise NotFound("Employee", employee_id)
        return EmployeeIdentity.from_model(employee)

    async def hr_recipient_ids(self, db: AsyncSession) -> list[uuid.UUID]:
        """Active HR and system administrators, the escalation audience."""
        result = await db.execute(
            select(Employee.id).where(
                Employee.role.in_(list(HR_ROLES)),
                Employee.is_active.is_(True),
            )
        )
        return list(result.scalars().all())

    # ── Probation ───────────────────────────────────────────────────

    async def confirm_probation(
        self,
        employee_id: uuid.UUID,
        *,
        actor_id: uuid.UUID,
        confirmation_date: Optional[date] = None,
    ) -> EmployeeIdentity:
        """Mark an employee as confirmed so they may apply for any leave type.

        Confirming an already-confirmed employee is a no-op and is not audited.
        """
        async with unit_of_work(self._session_factory) as db:
            employee = await db.get(Employee, employee_id, with_for_update=True)
            if employee is None:
                raise NotFound("Employee", employee_id)

            if employee.is_confirmed:
                return EmployeeIdentity.from_model(employee)

            old_values = {
                "is_confirmed": employee.is_confirmed,
                "date_of_confirmation": None,
            }
            employee.is_confirmed = True
            employee.date_of_confirmation = confirmation_date or date.today()
            await db.flush()
            identity = EmployeeIdentity.from_model(employee)
            new_values = {
                "is_confirmed": True,
                "date_of_confirmation": employee.date_of_confirmation.isoformat(),
            }

        logger.info("Employee %s confirmed by %s", employee_id, actor_id)
        await self._audit.record(
            action="confirm_probation",
            entity_type="employee",
            entity_id=employee_id,
            actor_id=actor_id,
            old_values=old_values,
            new_values=new_values,
        )
        return identity
