"""Reports router — payroll leave export (HR only)."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from backend.auth.dependencies import require_role
from backend.common.constants import UserRole
from backend.core_hr.models import Employee
from backend.dependencies import Services, get_services
from backend.reports.schemas import PayrollReport

router = APIRouter(prefix="", tags=["reports"])


@router.get("/payroll", response_model=PayrollReport)
async def payroll_export(
    year: int = Query(..., ge=2000, le=2100),
    month: Optional[int] = Query(None, ge=1, le=12),
    _user: Employee = Depends(require_role(UserRole.hr_admin, UserRole.system_admin)),
    services: Services = Depends(get_services),
):
    """Approved leave days per employee for a month, or the whole year."""
    return await services.payroll.export(year, month)
