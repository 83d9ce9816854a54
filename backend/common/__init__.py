"""Common module — shared utilities for the leave lifecycle service."""

from backend.common.audit import (
    AuditSink,
    AuditTrail,
    DatabaseAuditSink,
    create_audit_entry,
    list_audit_entries,
)
from backend.common.constants import (
    DEFAULT_PAGE_SIZE,
    HR_ROLES,
    MAX_PAGE_SIZE,
    OPEN_STATUSES,
    TERMINAL_STATUSES,
    ChronologyAction,
    LeaveStatus,
    LeaveType,
    NotificationKind,
    NotificationType,
    SpecialLeaveType,
    UserRole,
)
from backend.common.exceptions import (
    AppException,
    ConfigurationMissing,
    InsufficientBalance,
    InvalidDateRange,
    InvalidTransition,
    LeavePolicyViolation,
    NotAuthorized,
    NotFound,
    PastDateNotAllowed,
    ProbationRestriction,
    register_exception_handlers,
)
from backend.common.pagination import (
    PaginatedResponse,
    PaginationMeta,
    PaginationParams,
    paginate,
)
from backend.common.unit_of_work import insert_ignore, unit_of_work

__all__ = [
    # Audit
    "AuditSink",
    "AuditTrail",
    "DatabaseAuditSink",
    "create_audit_entry",
    "list_audit_entries",
    # Constants / Enums
    "ChronologyAction",
    "LeaveStatus",
    "LeaveType",
    "NotificationKind",
    "NotificationType",
    "SpecialLeaveType",
    "UserRole",
    "HR_ROLES",
    "OPEN_STATUSES",
    "TERMINAL_STATUSES",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    # Exceptions
    "AppException",
    "ConfigurationMissing",
    "InsufficientBalance",
    "InvalidDateRange",
    "InvalidTransition",
    "LeavePolicyViolation",
    "NotAuthorized",
    "NotFound",
    "PastDateNotAllowed",
    "ProbationRestriction",
    "register_exception_handlers",
    # Pagination
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
    "paginate",
    # Transactions
    "insert_ignore",
    "unit_of_work",
]
