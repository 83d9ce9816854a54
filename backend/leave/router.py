"""Leave router — apply, approve/reject/cancel, comments, balances, policies.

All endpoints require authentication. Decision rights on an individual
request (designated approver, HR once escalated) are enforced by the
lifecycle, not by role alone.
"""


import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from backend.auth.dependencies import get_current_user, require_role
from backend.common.constants import LeaveStatus, LeaveType, UserRole
from backend.common.pagination import PaginatedResponse, PaginationParams
from backend.common.rate_limit import APPLY_RATE_LIMIT, limiter
from backend.common.unit_of_work import unit_of_work
from backend.config import settings
from backend.core_hr.models import Employee
from backend.database import get_db
from backend.dependencies import Services, get_services
from backend.holidays.schemas import HolidayResponse
from backend.holidays.service import HolidayService
from backend.leave.schemas import (
    LeaveApproveRequest,
    LeaveBalanceOut,
    LeaveCancelRequest,
    LeaveCommentRequest,
    LeaveRejectRequest,
    LeaveRequestCreate,
    LeaveRequestDetail,
    LeaveRequestOut,
    LeaveTypeConfigOut,
)

router = APIRouter(prefix="", tags=["leave"])


# ── POST /apply ─────────────────────────────────────────────────────

@router.post("/apply", response_model=LeaveRequestOut, status_code=201)
@limiter.limit(APPLY_RATE_LIMIT)
async def apply_leave(
    request: Request,
    body: LeaveRequestCreate,
    employee: Employee = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """Apply for leave. Validates eligibility, policy, overlap and balance."""
    return await services.lifecycle.submit(employee.id, body)


# ── GET /my-leaves ──────────────────────────────────────────────────

@router.get("/my-leaves", response_model=PaginatedResponse[LeaveRequestOut])
async def my_leaves(
    status: Optional[LeaveStatus] = Query(None),
    year: Optional[int] = Query(None, ge=2000, le=2100),
    leave_type: Optional[LeaveType] = Query(None),
    pagination: PaginationParams = Depends(),
    employee: Employee = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """Get the authenticated user's leave requests with pagination."""
    return await services.lifecycle.list_mine(
        employee.id, pagination, status=status, year=year, leave_type=leave_type,
    )


# ── GET /team-leaves ────────────────────────────────────────────────

@router.get("/team-leaves", response_model=PaginatedResponse[LeaveRequestOut])
async def team_leaves(
    status: Optional[LeaveStatus] = Query(None),
    pagination: PaginationParams = Depends(),
    employee: Employee = Depends(
        require_role(UserRole.manager, UserRole.hr_admin, UserRole.system_admin)
    ),
    services: Services = Depends(get_services),
):
    """Get leave requests for the manager's direct reports (team view)."""
    return await services.lifecycle.list_team(employee.id, pagination, status=status)


# ── GET /all ────────────────────────────────────────────────────────

@router.get("/all", response_model=PaginatedResponse[LeaveRequestOut])
async def all_leaves(
    status: Optional[LeaveStatus] = Query(None),
    year: Optional[int] = Query(None, ge=2000, le=2100),
    include_archived: bool = Query(False),
    pagination: PaginationParams = Depends(),
    employee: Employee = Depends(require_role(UserRole.hr_admin, UserRole.system_admin)),
    services: Services = Depends(get_services),
):
    """Every leave request in the organisation (HR view)."""
    return await services.lifecycle.list_all(
        pagination, status=status, year=year, include_archived=include_archived,
    )


# ── GET /balances ───────────────────────────────────────────────────

@router.get("/balances", response_model=list[LeaveBalanceOut])
async def get_balances(
    year: Optional[int] = Query(None, description="Leave year; defaults to current year"),
    employee: Employee = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """The authenticated user's balances; rows are opened on first look."""
    target_year = year or date.today().year
    async with unit_of_work(services.session_factory) as db:
        rows = await services.ledger.balances_for(db, employee.id, target_year)
        return [LeaveBalanceOut.model_validate(r) for r in rows]


# ── GET /policies ───────────────────────────────────────────────────

@router.get("/policies", response_model=list[LeaveTypeConfigOut])
async def get_policies(
    employee: Employee = Depends(get_current_user),
    services: Services = Depends(get_services),
    db: AsyncSession = Depends(get_db),
):
    """List active leave types and their policies."""
    return await services.config_store.list_all(db, active_only=True)


# ── GET /holidays ───────────────────────────────────────────────────

@router.get("/holidays", response_model=list[HolidayResponse])
async def get_holidays(
    year: Optional[int] = Query(None),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Public holidays that apply to the caller's region."""
    return await HolidayService.list_holidays(
        db,
        year=year or date.today().year,
        region=employee.region or settings.HOLIDAY_REGION,
    )


# ── GET /{id} ───────────────────────────────────────────────────────

@router.get("/{request_id}", response_model=LeaveRequestDetail)
async def get_leave(
    request_id: uuid.UUID,
    employee: Employee = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """A single request with its chronology."""
    return await services.lifecycle.get(request_id, employee.id)


# ── PUT /{id}/approve ───────────────────────────────────────────────

@router.put("/{request_id}/approve", response_model=LeaveRequestOut)
async def approve_leave(
    request_id: uuid.UUID,
    body: LeaveApproveRequest,
    employee: Employee = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """Approve a pending or escalated request. Debits the balance."""
    return await services.lifecycle.approve(request_id, employee.id, comment=body.comment)


# ── PUT /{id}/reject ────────────────────────────────────────────────

@router.put("/{request_id}/reject", response_model=LeaveRequestOut)
async def reject_leave(
    request_id: uuid.UUID,
    body: LeaveRejectRequest,
    employee: Employee = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.lifecycle.reject(request_id, employee.id, body.reason)


# ── PUT /{id}/cancel ────────────────────────────────────────────────

@router.put("/{request_id}/cancel", response_model=LeaveRequestOut)
async def cancel_leave(
    request_id: uuid.UUID,
    body: LeaveCancelRequest,
    employee: Employee = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """Withdraw your own request while it is still pending."""
    return await services.lifecycle.cancel(request_id, employee.id, reason=body.reason)


# ── POST /{id}/comments ─────────────────────────────────────────────

@router.post("/{request_id}/comments", response_model=LeaveRequestDetail, status_code=201)
async def comment_on_leave(
    request_id: uuid.UUID,
    body: LeaveCommentRequest,
    employee: Employee = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.lifecycle.comment(request_id, employee.id, body.comment)
