"""Core HR ORM model: Employee.

SQLAlchemy 2.0 async-compatible model with Mapped[] annotations. Column types
are portable (``sa.Uuid``) so the same model runs on PostgreSQL and SQLite.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from backend.common.constants import UserRole
from backend.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═════════════════════════════════════════════════════════════════════
# Employee
# ═════════════════════════════════════════════════════════════════════


class Employee(Base):
    """Employee record: identity, reporting line and probation status.

    The reporting manager is referenced by id only; chains are resolved one
    hop at a time by the directory, never loaded recursively.
    """

    __tablename__ = "employees"

    # ── Primary key ─────────────────────────────────────────────────
    id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    # ── Identifiers ─────────────────────────────────────────────────
    employee_code: Mapped[str] = mapped_column(
        sa.String(20), unique=True, nullable=False,
    )
    email: Mapped[str] = mapped_column(
        sa.String(255), unique=True, nullable=False,
    )

    # ── Name ────────────────────────────────────────────────────────
    first_name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(sa.String(100), nullable=False)

    # ── Access ──────────────────────────────────────────────────────
    role: Mapped[UserRole] = mapped_column(
        sa.Enum(UserRole, name="user_role"),
        nullable=False,
        default=UserRole.employee,
    )

    # ── Org hierarchy ───────────────────────────────────────────────
    reporting_manager_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        sa.Uuid, sa.ForeignKey("employees.id"), index=True,
    )
    department: Mapped[Optional[str]] = mapped_column(sa.String(150))
    region: Mapped[Optional[str]] = mapped_column(sa.String(100))

    # ── Employment lifecycle ────────────────────────────────────────
    date_of_joining: Mapped[date] = mapped_column(sa.Date, nullable=False)
    is_confirmed: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False,
    )
    date_of_confirmation: Mapped[Optional[date]] = mapped_column(sa.Date)
    probation_end_date: Mapped[Optional[date]] = mapped_column(sa.Date)

    # ── Status / Timestamps ─────────────────────────────────────────
    is_active: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow,
    )

    # ── Helpers ─────────────────────────────────────────────────────

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __repr__(self) -> str:
        return (
            f"<Employee {self.employee_code} "
            f"{self.first_name} {self.last_name}>"
        )
