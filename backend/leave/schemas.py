"""Leave Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Request  → request bodies (write)
  - *Out / *Detail      → response bodies (read)
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from backend.common.constants import (
    ChronologyAction,
    LeaveStatus,
    LeaveType,
    SpecialLeaveType,
)


# ═════════════════════════════════════════════════════════════════════
# Leave type configuration
# ═════════════════════════════════════════════════════════════════════


class TenureTier(BaseModel):
    """Bonus days granted once an employee reaches ``years`` of service."""

    years: int = Field(..., ge=0)
    bonus_days: Decimal = Field(..., ge=0)


class LeaveTypeConfigOut(BaseModel):
    """Full leave type configuration."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    leave_type: LeaveType
    name: str
    description: Optional[str] = None
    base_entitlement: Decimal
    tenure_tiers: list[TenureTier] = []
    prorate_first_year: bool = False
    allow_carry_forward: bool = False
    max_carry_forward: Optional[Decimal] = None
    requires_attachment: bool = False
    min_advance_notice_days: int = 0
    max_days_per_application: Optional[Decimal] = None
    is_balance_bearing: bool = False
    counts_calendar_days: bool = False
    is_active: bool = True
    display_order: int = 0
    updated_at: Optional[datetime] = None


# Columns an update may clear
NULLABLE_CONFIG_FIELDS = frozenset(
    {"description", "max_carry_forward", "max_days_per_application"}
)


class LeaveTypeConfigUpdate(BaseModel):
    """Partial update; only provided fields change."""

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    base_entitlement: Optional[Decimal] = Field(None, ge=0)
    tenure_tiers: Optional[list[TenureTier]] = None
    prorate_first_year: Optional[bool] = None
    allow_carry_forward: Optional[bool] = None
    max_carry_forward: Optional[Decimal] = Field(None, ge=0)
    requires_attachment: Optional[bool] = None
    min_advance_notice_days: Optional[int] = Field(None, ge=0)
    max_days_per_application: Optional[Decimal] = Field(None, gt=0)
    is_balance_bearing: Optional[bool] = None
    counts_calendar_days: Optional[bool] = None
    is_active: Optional[bool] = None
    display_order: Optional[int] = None

    @model_validator(mode="after")
    def reject_null_required(self) -> "LeaveTypeConfigUpdate":
        for name in sorted(self.model_fields_set - NULLABLE_CONFIG_FIELDS):
            if getattr(self, name) is None:
                raise ValueError(f"{name} may not be null.")
        return self


# ═════════════════════════════════════════════════════════════════════
# Leave Balance
# ═════════════════════════════════════════════════════════════════════


class LeaveBalanceOut(BaseModel):
    """One ledger row with its computed available days."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type: LeaveType
    year: int
    entitlement: Decimal
    used: Decimal
    carried_forward: Decimal
    adjustment: Decimal
    manual_override: bool = False
    available: Decimal


class BalanceOverrideRequest(BaseModel):
    """Administrative override of a ledger row."""

    employee_id: uuid.UUID
    leave_type: LeaveType
    year: int = Field(..., ge=2000, le=2100)
    entitlement: Decimal = Field(..., ge=0)
    adjustment: Decimal = Decimal("0")
    reason: str = Field(..., min_length=3, max_length=500)


# ═════════════════════════════════════════════════════════════════════
# Leave Request: Create
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestCreate(BaseModel):
    """Payload for applying a leave request."""

    leave_type: LeaveType
    start_date: date = Field(..., description="Leave start date (inclusive)")
    end_date: date = Field(..., description="Leave end date (inclusive)")
    half_day: bool = Field(False, description="Single-day requests only; charges 0.5")
    reason: Optional[str] = Field(None, max_length=1000)
    attachment_url: Optional[str] = Field(None, max_length=500)
    special_leave_type: Optional[SpecialLeaveType] = None

    @field_validator("reason")
    @classmethod
    def strip_reason(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return v.strip() or None


# ═════════════════════════════════════════════════════════════════════
# Leave Request: Response
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestOut(BaseModel):
    """Full leave request response; also the snapshot handed to sinks."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type: LeaveType
    special_leave_type: Optional[SpecialLeaveType] = None
    start_date: date
    end_date: date
    half_day: bool = False
    duration: Decimal
    reason: Optional[str] = None
    attachment_url: Optional[str] = None
    status: LeaveStatus
    approver_id: Optional[uuid.UUID] = None
    is_escalated: bool = False
    escalated_at: Optional[datetime] = None
    reviewed_by: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    is_archived: bool = False
    created_at: datetime


class ChronologyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    action: ChronologyAction
    actor_id: Optional[uuid.UUID] = None
    comment: Optional[str] = None
    details: Optional[dict[str, Any]] = None
    created_at: datetime


class LeaveRequestDetail(LeaveRequestOut):
    """Leave request with its full chronology, oldest first."""

    chronology: list[ChronologyOut] = []


# ═════════════════════════════════════════════════════════════════════
# Leave Approve / Reject / Cancel / Comment
# ═════════════════════════════════════════════════════════════════════


class LeaveApproveRequest(BaseModel):
    """Payload for approving a leave request."""

    comment: Optional[str] = Field(None, max_length=500)


class LeaveRejectRequest(BaseModel):
    """Payload for rejecting a leave request."""

    reason: str = Field(..., min_length=3, max_length=500)


class LeaveCancelRequest(BaseModel):
    """Payload for cancelling a leave request."""

    reason: Optional[str] = Field(None, max_length=500)


class LeaveCommentRequest(BaseModel):
    comment: str = Field(..., min_length=1, max_length=1000)
