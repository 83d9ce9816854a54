"""Shared test fixtures — async DB, service container, client, auth helpers, factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL. The
holiday calendar, notification sink and audit sink are in-memory fakes so
tests can assert on what the engine emitted.
"""

from __future__ import annotations

import os

# Set test configuration before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("SEED_LEAVE_CONFIG_ON_STARTUP", "false")
os.environ.setdefault("CREATE_TABLES_ON_STARTUP", "false")

import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from backend.common.constants import LeaveType, NotificationKind, UserRole
from backend.config import settings
from backend.database import Base, get_db
from backend.dependencies import Services, build_services
from backend.main import create_app

# Import ALL model modules so every table is registered on Base.metadata
import backend.common.audit  # noqa: F401
import backend.core_hr.models  # noqa: F401
import backend.holidays.models  # noqa: F401
import backend.leave.models  # noqa: F401
import backend.notifications.models  # noqa: F401

from backend.core_hr.models import Employee
from backend.leave.models import LeaveBalance, LeaveTypeConfig
from backend.leave.schemas import LeaveRequestOut


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from backend.common.rate_limit import limiter

    limiter.reset()
    yield


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    """Per-test session; rolled back at the end."""
    async with TestSessionFactory() as session:
        yield session
        await session.rollback()


# ── In-memory collaborators ─────────────────────────────────────────

class InMemoryHolidayCalendar:
    """Holiday calendar keyed by date; a ``None`` region means nationwide."""

    def __init__(self) -> None:
        self.days: dict[date, Optional[str]] = {}

    def add(self, day: date, region: Optional[str] = None) -> None:
        self.days[day] = region

    def _applies(self, day: date, region: Optional[str]) -> bool:
        if day not in self.days:
            return False
        holiday_region = self.days[day]
        return holiday_region is None or holiday_region == region

    async def is_holiday(self, db, day: date, region: Optional[str] = None) -> bool:
        return self._applies(day, region)

    async def holidays_between(
        self, db, start: date, end: date, region: Optional[str] = None,
    ) -> set[date]:
        return {d for d in self.days if start <= d <= end and self._applies(d, region)}


class RecordingNotificationSink:
    def __init__(self) -> None:
        self.events: list[tuple[NotificationKind, uuid.UUID, LeaveRequestOut]] = []

    async def notify(
        self, kind: NotificationKind, recipient_id: uuid.UUID, request: LeaveRequestOut,
    ) -> None:
        self.events.append((kind, recipient_id, request))

    def kinds(self) -> list[NotificationKind]:
        return [kind for kind, _, _ in self.events]

    def recipients(self, kind: NotificationKind) -> list[uuid.UUID]:
        return [rid for k, rid, _ in self.events if k == kind]


class RecordingAuditSink:
    def __init__(self) -> None:
        self.entries: list[dict[str, Any]] = []

    async def record(self, **entry: Any) -> None:
        self.entries.append(entry)


@pytest.fixture
def holiday_calendar() -> InMemoryHolidayCalendar:
    return InMemoryHolidayCalendar()


@pytest.fixture
def notification_sink() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def services(holiday_calendar, notification_sink, audit_sink) -> Services:
    """Service container wired to the test database and in-memory fakes."""
    return build_services(
        TestSessionFactory,
        settings,
        holiday_calendar=holiday_calendar,
        audit=audit_sink,
        notifications=notification_sink,
    )


# ── File-backed database for contention tests ─────────────────────

@pytest.fixture
async def file_session_factory(tmp_path):
    """Session factory over a SQLite file; each session gets its own connection.

    Concurrent transactions contend for the database write lock here, which
    the single shared in-memory connection above cannot show.
    """
    file_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'leave.db'}",
        connect_args={"timeout": 30},
    )
    async with file_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)
    await file_engine.dispose()


@pytest.fixture
def file_services(
    file_session_factory, holiday_calendar, notification_sink, audit_sink,
) -> Services:
    return build_services(
        file_session_factory,
        settings,
        holiday_calendar=holiday_calendar,
        audit=audit_sink,
        notifications=notification_sink,
    )


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app(services):
    """Create a fresh app instance with DB dependency overridden."""
    application = create_app(services=services)
    application.dependency_overrides[get_db] = _override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Model factories ─────────────────────────────────────────────────
# Each factory commits so the row is visible to every service session.

async def make_employee(
    *,
    role: UserRole = UserRole.employee,
    manager_id: Optional[uuid.UUID] = None,
    date_of_joining: date = date(2020, 1, 1),
    is_confirmed: bool = True,
    region: Optional[str] = None,
    first_name: str = "Test",
    last_name: str = "User",
    session_factory: async_sessionmaker = TestSessionFactory,
) -> Employee:
    code = uuid.uuid4().hex[:8]
    employee = Employee(
        id=uuid.uuid4(),
        employee_code=f"EMP-{code.upper()}",
        email=f"{first_name.lower()}.{code}@example.com",
        first_name=first_name,
        last_name=last_name,
        role=role,
        reporting_manager_id=manager_id,
        date_of_joining=date_of_joining,
        is_confirmed=is_confirmed,
        region=region,
        is_active=True,
    )
    async with session_factory() as db:
        db.add(employee)
        await db.commit()
    return employee


async def make_balance(
    employee_id: uuid.UUID,
    *,
    leave_type: LeaveType = LeaveType.annual,
    year: int,
    entitlement: Decimal = Decimal("12"),
    used: Decimal = Decimal("0"),
    carried_forward: Decimal = Decimal("0"),
    adjustment: Decimal = Decimal("0"),
    session_factory: async_sessionmaker = TestSessionFactory,
) -> LeaveBalance:
    row = LeaveBalance(
        id=uuid.uuid4(),
        employee_id=employee_id,
        leave_type=leave_type,
        year=year,
        entitlement=entitlement,
        used=used,
        carried_forward=carried_forward,
        adjustment=adjustment,
    )
    async with session_factory() as db:
        db.add(row)
        await db.commit()
    return row


async def make_config(leave_type: LeaveType, **fields: Any) -> LeaveTypeConfig:
    values: dict[str, Any] = {
        "leave_type": leave_type,
        "name": f"{leave_type.value.title()} Leave",
        "base_entitlement": Decimal("12"),
        "tenure_tiers": [],
    }
    values.update(fields)
    row = LeaveTypeConfig(**values)
    async with TestSessionFactory() as db:
        db.add(row)
        await db.commit()
    return row


async def read_balance(
    employee_id: uuid.UUID, leave_type: LeaveType, year: int,
    session_factory: async_sessionmaker = TestSessionFactory,
) -> Optional[LeaveBalance]:
    from sqlalchemy import select

    async with session_factory() as db:
        result = await db.execute(
            select(LeaveBalance).where(
                LeaveBalance.employee_id == employee_id,
                LeaveBalance.leave_type == leave_type,
                LeaveBalance.year == year,
            )
        )
        return result.scalar_one_or_none()


@pytest.fixture
async def manager() -> Employee:
    return await make_employee(role=UserRole.manager, first_name="Mona")


@pytest.fixture
async def employee(manager) -> Employee:
    return await make_employee(manager_id=manager.id, first_name="Eli")


@pytest.fixture
async def hr_admin() -> Employee:
    return await make_employee(role=UserRole.hr_admin, first_name="Hana")


# ── Auth helpers ────────────────────────────────────────────────────

def create_access_token(employee_id: uuid.UUID, expired: bool = False) -> str:
    """Generate a JWT access token for testing."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + timedelta(hours=1)
    payload = {
        "sub": str(employee_id),
        "type": "access",
        "exp": exp,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_headers(employee_id: uuid.UUID) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(employee_id)}"}


def next_weekday(start: date, weekday: int) -> date:
    """First date on or after ``start`` falling on ``weekday`` (Mon=0)."""
    return start + timedelta(days=(weekday - start.weekday()) % 7)
