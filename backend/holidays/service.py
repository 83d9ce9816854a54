"""Holiday calendar and public-holiday administration."""

from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import Optional, Protocol

from sqlalchemy import extract, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.exceptions import LeavePolicyViolation, NotFound
from backend.holidays.models import PublicHoliday
from backend.holidays.schemas import HolidayCreate, HolidayResponse, HolidayUpdate

logger = logging.getLogger(__name__)


class HolidayCalendar(Protocol):
    """Answers whether a date is a non-working public holiday in a region."""

    async def is_holiday(
        self, db: AsyncSession, day: date, region: Optional[str] = None,
    ) -> bool: ...

    async def holidays_between(
        self, db: AsyncSession, start: date, end: date, region: Optional[str] = None,
    ) -> set[date]: ...


def _region_clause(region: Optional[str]):
    # Nationwide holidays (region IS NULL) apply everywhere
    if region is None:
        return PublicHoliday.region.is_(None)
    return or_(PublicHoliday.region.is_(None), PublicHoliday.region == region)


class DatabaseHolidayCalendar:
    """Calendar backed by the ``public_holidays`` table; inactive rows are ignored."""

    async def is_holiday(
        self, db: AsyncSession, day: date, region: Optional[str] = None,
    ) -> bool:
        result = await db.execute(
            select(PublicHoliday.id)
            .where(
                PublicHoliday.date == day,
                PublicHoliday.is_active.is_(True),
                _region_clause(region),
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def holidays_between(
        self, db: AsyncSession, start: date, end: date, region: Optional[str] = None,
    ) -> set[date]:
        """All holiday dates in ``[start, end]``, fetched in one query."""
        result = await db.execute(
            select(PublicHoliday.date).where(
                PublicHoliday.date >= start,
                PublicHoliday.date <= end,
                PublicHoliday.is_active.is_(True),
                _region_clause(region),
            )
        )
        return set(result.scalars().all())


# ═════════════════════════════════════════════════════════════════════
# HolidayService
# ═════════════════════════════════════════════════════════════════════


class HolidayService:
    """Async CRUD for public holidays (admin surface)."""

    @staticmethod
    async def _ensure_unique(
        db: AsyncSession,
        day: date,
        region: Optional[str],
        *,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> None:
        """One holiday per (date, region); ``region=None`` is its own slot."""
        region_match = (
            PublicHoliday.region.is_(None) if region is None else PublicHoliday.region == region
        )
        query = select(PublicHoliday.id).where(PublicHoliday.date == day, region_match)
        if exclude_id is not None:
            query = query.where(PublicHoliday.id != exclude_id)
        if (await db.execute(query.limit(1))).scalar_one_or_none() is not None:
            raise LeavePolicyViolation(
                "date", f"A holiday already exists on {day} for this region."
            )

    @staticmethod
    async def list_holidays(
        db: AsyncSession,
        *,
        year: Optional[int] = None,
        region: Optional[str] = None,
        include_inactive: bool = False,
    ) -> list[HolidayResponse]:
        """List holidays, optionally filtered by year and region."""
        query = select(PublicHoliday).order_by(PublicHoliday.date)
        if year is not None:
            query = query.where(extract("year", PublicHoliday.date) == year)
        if region is not None:
            query = query.where(_region_clause(region))
        if not include_inactive:
            query = query.where(PublicHoliday.is_active.is_(True))

        result = await db.execute(query)
        return [HolidayResponse.model_validate(h) for h in result.scalars().all()]

    @staticmethod
    async def create_holiday(db: AsyncSession, data: HolidayCreate) -> HolidayResponse:
        await HolidayService._ensure_unique(db, data.date, data.region)
        holiday = PublicHoliday(**data.model_dump())
        db.add(holiday)
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            raise LeavePolicyViolation(
                "date", f"A holiday already exists on {data.date} for this region."
            )
        logger.info("Holiday %s added on %s (region=%s)", holiday.name, holiday.date, holiday.region)
        return HolidayResponse.model_validate(holiday)

    @staticmethod
    async def update_holiday(
        db: AsyncSession, holiday_id: uuid.UUID, data: HolidayUpdate,
    ) -> HolidayResponse:
        holiday = await db.get(PublicHoliday, holiday_id)
        if holiday is None:
            raise NotFound("Holiday", holiday_id)

        changes = data.model_dump(exclude_unset=True)
        if "date" in changes or "region" in changes:
            await HolidayService._ensure_unique(
                db,
                changes.get("date", holiday.date),
                changes.get("region", holiday.region),
                exclude_id=holiday.id,
            )
        for field, value in changes.items():
            setattr(holiday, field, value)
        await db.flush()
        return HolidayResponse.model_validate(holiday)

    @staticmethod
    async def delete_holiday(db: AsyncSession, holiday_id: uuid.UUID) -> None:
        holiday = await db.get(PublicHoliday, holiday_id)
        if holiday is None:
            raise NotFound("Holiday", holiday_id)
        await db.delete(holiday)
        await db.flush()
