"""Admin router — leave configuration, balance overrides, probation, holidays,
job triggers and the audit trail.

All endpoints require system_admin or hr_admin role.
"""

import uuid
from dataclasses import asdict
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.admin.schemas import (
    AuditEntryOut,
    ConfirmProbationRequest,
    EmployeeStatusOut,
    EscalationRunOut,
    SeedResultOut,
    SweepResultOut,
    YearEndRequest,
    YearEndResultOut,
)
from backend.admin.service import AdminService
from backend.auth.dependencies import require_role
from backend.common.audit import list_audit_entries
from backend.common.constants import LeaveType, UserRole
from backend.common.pagination import PaginatedResponse, PaginationParams
from backend.core_hr.models import Employee
from backend.database import get_db
from backend.dependencies import Services, get_services
from backend.holidays.schemas import HolidayCreate, HolidayResponse, HolidayUpdate
from backend.holidays.service import HolidayService
from backend.leave.schemas import (
    BalanceOverrideRequest,
    LeaveBalanceOut,
    LeaveTypeConfigOut,
    LeaveTypeConfigUpdate,
)

router = APIRouter(prefix="", tags=["admin"])

_admin_dep = require_role(UserRole.system_admin, UserRole.hr_admin)


# ═══════════════════════════════════════════════════════════════════
# LEAVE TYPE CONFIGURATION
# ═══════════════════════════════════════════════════════════════════

@router.get("/leave-configs", response_model=list[LeaveTypeConfigOut])
async def list_leave_configs(
    _user: Employee = Depends(_admin_dep),
    services: Services = Depends(get_services),
    db: AsyncSession = Depends(get_db),
):
    """List all leave type configurations (active + inactive)."""
    return await services.config_store.list_all(db)


@router.put("/leave-configs/{leave_type}", response_model=LeaveTypeConfigOut)
async def update_leave_config(
    leave_type: LeaveType,
    body: LeaveTypeConfigUpdate,
    user: Employee = Depends(_admin_dep),
    services: Services = Depends(get_services),
):
    """Update a leave type's policy. Audited."""
    return await AdminService.update_leave_config(services, leave_type, body, user.id)


@router.post("/leave-configs/seed", response_model=SeedResultOut, status_code=201)
async def seed_leave_configs(
    _user: Employee = Depends(_admin_dep),
    services: Services = Depends(get_services),
):
    """Install the default configurations if none exist yet."""
    return SeedResultOut(created=await AdminService.seed_leave_configs(services))


# ═══════════════════════════════════════════════════════════════════
# BALANCES / EMPLOYEES
# ═══════════════════════════════════════════════════════════════════

@router.post("/balances/override", response_model=LeaveBalanceOut)
async def override_balance(
    body: BalanceOverrideRequest,
    user: Employee = Depends(_admin_dep),
    services: Services = Depends(get_services),
):
    """Force a ledger row's entitlement/adjustment. May leave it negative."""
    return await services.ledger.override(
        body.employee_id,
        body.leave_type,
        body.year,
        body.entitlement,
        body.adjustment,
        body.reason,
        actor_id=user.id,
    )


@router.post("/employees/{employee_id}/confirm", response_model=EmployeeStatusOut)
async def confirm_probation(
    employee_id: uuid.UUID,
    body: ConfirmProbationRequest,
    user: Employee = Depends(_admin_dep),
    services: Services = Depends(get_services),
):
    """End an employee's probation so they may apply for any leave type."""
    identity = await services.directory.confirm_probation(
        employee_id, actor_id=user.id, confirmation_date=body.confirmation_date,
    )
    return EmployeeStatusOut(
        id=identity.id,
        is_confirmed=identity.is_confirmed,
        role=identity.role.value,
        manager_id=identity.manager_id,
    )


# ═══════════════════════════════════════════════════════════════════
# HOLIDAYS
# ═══════════════════════════════════════════════════════════════════

@router.get("/holidays", response_model=list[HolidayResponse])
async def list_holidays(
    year: Optional[int] = Query(None),
    region: Optional[str] = Query(None),
    include_inactive: bool = Query(True),
    _user: Employee = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    return await HolidayService.list_holidays(
        db, year=year, region=region, include_inactive=include_inactive,
    )


@router.post("/holidays", response_model=HolidayResponse, status_code=201)
async def create_holiday(
    body: HolidayCreate,
    _user: Employee = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    return await HolidayService.create_holiday(db, body)


@router.put("/holidays/{holiday_id}", response_model=HolidayResponse)
async def update_holiday(
    holiday_id: uuid.UUID,
    body: HolidayUpdate,
    _user: Employee = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    return await HolidayService.update_holiday(db, holiday_id, body)


@router.delete("/holidays/{holiday_id}", status_code=204)
async def delete_holiday(
    holiday_id: uuid.UUID,
    _user: Employee = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    await HolidayService.delete_holiday(db, holiday_id)


# ═══════════════════════════════════════════════════════════════════
# JOBS
# ═══════════════════════════════════════════════════════════════════

@router.post("/jobs/escalation", response_model=EscalationRunOut)
async def run_escalation(
    _user: Employee = Depends(_admin_dep),
    services: Services = Depends(get_services),
):
    """Run the escalation and reminder sweeps now."""
    escalation = await services.escalation.check_escalated_requests()
    reminders = await services.escalation.send_reminder_emails()
    return EscalationRunOut(
        escalation=SweepResultOut(**asdict(escalation)),
        reminders=SweepResultOut(**asdict(reminders)),
    )


@router.post("/jobs/year-end", response_model=YearEndResultOut)
async def run_year_end(
    body: YearEndRequest,
    _user: Employee = Depends(_admin_dep),
    services: Services = Depends(get_services),
):
    """Run carry-forward and archival for a year (default: current year)."""
    result = await services.year_end.run(body.year)
    return YearEndResultOut(
        year=result.year,
        carry_forward={k: SweepResultOut(**asdict(v)) for k, v in result.carry_forward.items()},
        archived=result.archived,
    )


# ═══════════════════════════════════════════════════════════════════
# AUDIT TRAIL
# ═══════════════════════════════════════════════════════════════════

@router.get("/audit", response_model=PaginatedResponse[AuditEntryOut])
async def audit_entries(
    actor_id: Optional[uuid.UUID] = Query(None),
    entity_id: Optional[uuid.UUID] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    pagination: PaginationParams = Depends(),
    _user: Employee = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    page = await list_audit_entries(
        db,
        pagination,
        actor_id=actor_id,
        entity_id=entity_id,
        from_date=from_date,
        to_date=to_date,
    )
    return PaginatedResponse(
        data=[AuditEntryOut.model_validate(e) for e in page.data],
        meta=page.meta,
    )
