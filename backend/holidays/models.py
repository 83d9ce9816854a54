"""Public holiday ORM model."""

from __future__ import annotations

import datetime as dt
import uuid
from datetime import datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from backend.database import Base


class PublicHoliday(Base):
    """A non-working day, nationwide when ``region`` is null."""

    __tablename__ = "public_holidays"
    __table_args__ = (
        sa.UniqueConstraint("date", "region", name="uq_public_holiday_date_region"),
        # Regional uniqueness above treats NULL regions as distinct
        sa.Index(
            "uq_public_holiday_nationwide_date",
            "date",
            unique=True,
            postgresql_where=sa.text("region IS NULL"),
            sqlite_where=sa.text("region IS NULL"),
        ),
        sa.Index("ix_public_holidays_date", "date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(sa.String(150), nullable=False)
    date: Mapped[dt.date] = mapped_column(sa.Date, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    region: Mapped[Optional[str]] = mapped_column(sa.String(100))
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self) -> str:
        return f"<PublicHoliday {self.date} {self.name!r} region={self.region}>"
