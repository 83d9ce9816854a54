"""Admin Pydantic schemas — audit listing and job triggers."""


import uuid
from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class AuditEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    actor_id: Optional[uuid.UUID] = None
    action: str
    entity_type: str
    entity_id: uuid.UUID
    old_values: Optional[dict[str, Any]] = None
    new_values: Optional[dict[str, Any]] = None
    created_at: datetime


class ConfirmProbationRequest(BaseModel):
    confirmation_date: Optional[date] = None


class EmployeeStatusOut(BaseModel):
    id: uuid.UUID
    is_confirmed: bool
    role: str
    manager_id: Optional[uuid.UUID] = None


class YearEndRequest(BaseModel):
    """Manual year-end trigger; defaults to the current year."""

    year: Optional[int] = Field(None, ge=2000, le=2100)


class SweepResultOut(BaseModel):
    examined: int
    succeeded: int
    skipped: int
    failed: int


class EscalationRunOut(BaseModel):
    escalation: SweepResultOut
    reminders: SweepResultOut


class YearEndResultOut(BaseModel):
    year: int
    carry_forward: dict[str, SweepResultOut]
    archived: int


class SeedResultOut(BaseModel):
    created: int
