"""Shared FastAPI dependencies and the service container.

Components are wired once per application from a session factory and the
settings, each receiving the narrow collaborators it uses. Tests build the
same container with in-memory fakes swapped in.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.common.audit import AuditSink, DatabaseAuditSink
from backend.config import Settings
from backend.core_hr.service import EmployeeDirectory
from backend.holidays.service import DatabaseHolidayCalendar, HolidayCalendar
from backend.jobs.escalation import EscalationScheduler
from backend.jobs.year_end import YearEndProcessor
from backend.leave.calculator import EntitlementCalculator
from backend.leave.config_store import EntitlementConfigStore
from backend.leave.ledger import BalanceLedger
from backend.leave.service import LeaveLifecycle
from backend.notifications.service import InAppNotificationSink, NotificationSink
from backend.reports.service import PayrollExport


@dataclass
class Services:
    session_factory: async_sessionmaker[AsyncSession]
    config_store: EntitlementConfigStore
    holiday_calendar: HolidayCalendar
    audit: AuditSink
    notifications: NotificationSink
    directory: EmployeeDirectory
    calculator: EntitlementCalculator
    ledger: BalanceLedger
    lifecycle: LeaveLifecycle
    escalation: EscalationScheduler
    year_end: YearEndProcessor
    payroll: PayrollExport


def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    *,
    holiday_calendar: Optional[HolidayCalendar] = None,
    audit: Optional[AuditSink] = None,
    notifications: Optional[NotificationSink] = None,
) -> Services:
    config_store = EntitlementConfigStore()
    holiday_calendar = holiday_calendar or DatabaseHolidayCalendar()
    audit = audit or DatabaseAuditSink(session_factory)
    notifications = notifications or InAppNotificationSink(session_factory)

    directory = EmployeeDirectory(session_factory, audit)
    calculator = EntitlementCalculator(config_store, holiday_calendar)
    ledger = BalanceLedger(calculator, session_factory, audit)
    lifecycle = LeaveLifecycle(session_factory, calculator, ledger, directory, notifications)

    return Services(
        session_factory=session_factory,
        config_store=config_store,
        holiday_calendar=holiday_calendar,
        audit=audit,
        notifications=notifications,
        directory=directory,
        calculator=calculator,
        ledger=ledger,
        lifecycle=lifecycle,
        escalation=EscalationScheduler(
            session_factory,
            lifecycle,
            directory,
            notifications,
            escalation_days=settings.ESCALATION_DAYS,
            reminder_days=settings.REMINDER_DAYS,
        ),
        year_end=YearEndProcessor(
            session_factory,
            ledger,
            retention_years=settings.RETENTION_YEARS,
        ),
        payroll=PayrollExport(session_factory, calculator),
    )


def get_services(request: Request) -> Services:
    """FastAPI dependency: the container attached to the running app."""
    return request.app.state.services
