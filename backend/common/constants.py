"""Enums and constants for the leave lifecycle service."""

from __future__ import annotations

import enum


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    employee = "employee"
    manager = "manager"
    hr_admin = "hr_admin"
    system_admin = "system_admin"


# Roles that receive escalations and may decide escalated requests
HR_ROLES: frozenset[UserRole] = frozenset({UserRole.hr_admin, UserRole.system_admin})


# ── Leave ───────────────────────────────────────────────────────────

class LeaveType(str, enum.Enum):
    annual = "annual"
    sick = "sick"
    maternity = "maternity"
    paternity = "paternity"
    emergency = "emergency"
    unpaid = "unpaid"
    special = "special"
    hospitalization = "hospitalization"


class SpecialLeaveType(str, enum.Enum):
    """Sub-type tags under ``LeaveType.special``."""

    marriage = "marriage"
    compassionate = "compassionate"
    hajj = "hajj"


class LeaveStatus(str, enum.Enum):
    pending = "pending"
    escalated = "escalated"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"


OPEN_STATUSES: frozenset[LeaveStatus] = frozenset(
    {LeaveStatus.pending, LeaveStatus.escalated}
)
TERMINAL_STATUSES: frozenset[LeaveStatus] = frozenset(
    {LeaveStatus.approved, LeaveStatus.rejected, LeaveStatus.cancelled}
)


class ChronologyAction(str, enum.Enum):
    submitted = "submitted"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"
    escalated = "escalated"
    commented = "commented"


# ── Notifications ───────────────────────────────────────────────────

class NotificationType(str, enum.Enum):
    info = "info"
    action_required = "action_required"
    approval = "approval"
    reminder = "reminder"
    alert = "alert"


class NotificationKind(str, enum.Enum):
    """Lifecycle events delivered through the notification sink."""

    submitted = "submitted"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"
    escalated = "escalated"
    reminder = "reminder"


# ── Misc ────────────────────────────────────────────────────────────

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100
