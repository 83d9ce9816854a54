"""Leave ORM models: LeaveTypeConfig, LeaveBalance, LeaveRequest, Chronology."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.common.constants import (
    ChronologyAction,
    LeaveStatus,
    LeaveType,
    SpecialLeaveType,
)
from backend.database import Base

DAYS = sa.Numeric(6, 2)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LeaveTypeConfig(Base):
    """Per-leave-type entitlement policy, edited by administrators."""

    __tablename__ = "leave_type_configs"

    id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    leave_type: Mapped[LeaveType] = mapped_column(
        sa.Enum(LeaveType, name="leave_type"), unique=True, nullable=False
    )
    name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    base_entitlement: Mapped[Decimal] = mapped_column(DAYS, nullable=False, default=Decimal("0"))
    # [{"years": 2, "bonus_days": 4}, ...] ordered by years
    tenure_tiers: Mapped[list] = mapped_column(sa.JSON, nullable=False, default=list)
    prorate_first_year: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    allow_carry_forward: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    max_carry_forward: Mapped[Optional[Decimal]] = mapped_column(DAYS)
    requires_attachment: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    min_advance_notice_days: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    max_days_per_application: Mapped[Optional[Decimal]] = mapped_column(DAYS)
    is_balance_bearing: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    counts_calendar_days: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    display_order: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    def __repr__(self) -> str:
        return f"<LeaveTypeConfig {self.leave_type.value} base={self.base_entitlement}>"


class LeaveBalance(Base):
    """Ledger row for one (employee, leave type, year).

    ``available = entitlement + carried_forward + adjustment - used``. Rows are
    never deleted; a new year gets a new row.
    """

    __tablename__ = "leave_balances"
    __table_args__ = (
        sa.UniqueConstraint(
            "employee_id", "leave_type", "year", name="uq_leave_balance"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid, sa.ForeignKey("employees.id"), nullable=False
    )
    leave_type: Mapped[LeaveType] = mapped_column(
        sa.Enum(LeaveType, name="leave_type"), nullable=False
    )
    year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    entitlement: Mapped[Decimal] = mapped_column(DAYS, nullable=False, default=Decimal("0"))
    used: Mapped[Decimal] = mapped_column(DAYS, nullable=False, default=Decimal("0"))
    carried_forward: Mapped[Decimal] = mapped_column(DAYS, nullable=False, default=Decimal("0"))
    adjustment: Mapped[Decimal] = mapped_column(DAYS, nullable=False, default=Decimal("0"))
    manual_override: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    override_reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    # Set once the year-end job has credited this row; guards re-runs
    carry_forward_applied: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False
    )
    # Bumped by every conditional debit / override
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    @property
    def available(self) -> Decimal:
        return self.entitlement + self.carried_forward + self.adjustment - self.used

    def __repr__(self) -> str:
        return (
            f"<LeaveBalance {self.employee_id} {self.leave_type.value} "
            f"{self.year} available={self.available}>"
        )


class LeaveRequest(Base):
    """A time-off request and its position in the approval state machine."""

    __tablename__ = "leave_requests"
    __table_args__ = (
        sa.CheckConstraint("end_date >= start_date", name="ck_leave_request_range"),
        sa.CheckConstraint("duration >= 0", name="ck_leave_request_duration"),
        sa.Index("ix_leave_requests_employee", "employee_id", "start_date"),
        sa.Index("ix_leave_requests_status_created", "status", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid, sa.ForeignKey("employees.id"), nullable=False
    )
    leave_type: Mapped[LeaveType] = mapped_column(
        sa.Enum(LeaveType, name="leave_type"), nullable=False
    )
    special_leave_type: Mapped[Optional[SpecialLeaveType]] = mapped_column(
        sa.Enum(SpecialLeaveType, name="special_leave_type")
    )
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    half_day: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    duration: Mapped[Decimal] = mapped_column(DAYS, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    attachment_url: Mapped[Optional[str]] = mapped_column(sa.String(500))
    status: Mapped[LeaveStatus] = mapped_column(
        sa.Enum(LeaveStatus, name="leave_status"),
        nullable=False,
        default=LeaveStatus.pending,
    )
    approver_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        sa.Uuid, sa.ForeignKey("employees.id")
    )
    is_escalated: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    escalated_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    reviewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        sa.Uuid, sa.ForeignKey("employees.id")
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    rejected_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    rejection_reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    is_archived: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    # Relationships
    chronology: Mapped[list[Chronology]] = relationship(
        order_by="Chronology.created_at",
        viewonly=True,
    )

    # Racing writers on one request: the loser's UPDATE matches no row
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<LeaveRequest {self.id} {self.leave_type.value} "
            f"{self.start_date}..{self.end_date} {self.status.value}>"
        )


class Chronology(Base):
    """Write-once log of actions taken on a leave request."""

    __tablename__ = "leave_chronology"
    __table_args__ = (
        sa.Index("ix_leave_chronology_request", "leave_request_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    leave_request_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid, sa.ForeignKey("leave_requests.id"), nullable=False
    )
    action: Mapped[ChronologyAction] = mapped_column(
        sa.Enum(ChronologyAction, name="chronology_action"), nullable=False
    )
    # Null actor means the system (scheduler)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        sa.Uuid, sa.ForeignKey("employees.id")
    )
    comment: Mapped[Optional[str]] = mapped_column(sa.Text)
    details: Mapped[Optional[dict]] = mapped_column("metadata", sa.JSON)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )

    def __repr__(self) -> str:
        return f"<Chronology {self.leave_request_id} {self.action.value}>"
