"""Public holiday Pydantic v2 schemas."""


import datetime as dt
import uuid
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class HolidayCreate(BaseModel):
    """Payload for adding a public holiday."""

    name: str = Field(..., min_length=1, max_length=150)
    date: dt.date
    description: Optional[str] = None
    region: Optional[str] = Field(
        None,
        max_length=100,
        description="Region / state code; omit for a nationwide holiday",
    )
    is_active: bool = True


class HolidayUpdate(BaseModel):
    """Partial update; only provided fields change."""

    name: Optional[str] = Field(None, min_length=1, max_length=150)
    date: Optional[dt.date] = None
    description: Optional[str] = None
    region: Optional[str] = Field(None, max_length=100)
    is_active: Optional[bool] = None

    @model_validator(mode="after")
    def reject_null_required(self) -> "HolidayUpdate":
        for name in ("name", "date", "is_active"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} may not be null.")
        return self


class HolidayResponse(BaseModel):
    """Single holiday entry."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    date: dt.date
    description: Optional[str] = None
    region: Optional[str] = None
    is_active: bool = True
