"""Audit trail model, async helper, and the best-effort audit sink."""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, time, timezone
from typing import Any, Optional, Protocol

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    String,
    Uuid,
    select,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Mapped, mapped_column

from backend.common.pagination import PaginatedResponse, PaginationParams, paginate
from backend.common.unit_of_work import unit_of_work
from backend.database import Base

logger = logging.getLogger(__name__)


# ── Immutable audit-trail table ─────────────────────────────────────

class AuditTrail(Base):
    """Immutable before/after log of administrative changes."""

    __tablename__ = "audit_trail"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("employees.id"),
        nullable=True,
    )
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    old_values: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    new_values: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_audit_trail_actor_id", "actor_id"),
        Index("ix_audit_trail_entity", "entity_type", "entity_id"),
        Index("ix_audit_trail_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<AuditTrail {self.action} {self.entity_type}"
            f"/{self.entity_id} by {self.actor_id}>"
        )


# ── Helper to create an entry ───────────────────────────────────────

async def create_audit_entry(
    session: AsyncSession,
    *,
    action: str,
    entity_type: str,
    entity_id: uuid.UUID,
    actor_id: Optional[uuid.UUID] = None,
    old_values: Optional[dict[str, Any]] = None,
    new_values: Optional[dict[str, Any]] = None,
) -> AuditTrail:
    """
    Create and flush an audit-trail entry.

    Args:
        session: Async SQLAlchemy session.
        action: override | confirm_probation | update_config | etc.
        entity_type: e.g. "leave_balance", "employee".
        entity_id: UUID of the affected entity.
        actor_id: UUID of the user performing the action.
        old_values: Previous state.
        new_values: New state.
    """
    entry = AuditTrail(
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        old_values=old_values,
        new_values=new_values,
    )
    session.add(entry)
    await session.flush()
    return entry


# ── Outbound sink ───────────────────────────────────────────────────

class AuditSink(Protocol):
    """Append-only record of administrative before/after state."""

    async def record(
        self,
        *,
        action: str,
        entity_type: str,
        entity_id: uuid.UUID,
        actor_id: Optional[uuid.UUID],
        old_values: Optional[dict[str, Any]] = None,
        new_values: Optional[dict[str, Any]] = None,
    ) -> None: ...


class DatabaseAuditSink:
    """Writes audit entries in their own transaction, after the change commits.

    Best-effort: a failure is logged and swallowed, never retried, and never
    reaches the operation that produced the event.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def record(
        self,
        *,
        action: str,
        entity_type: str,
        entity_id: uuid.UUID,
        actor_id: Optional[uuid.UUID],
        old_values: Optional[dict[str, Any]] = None,
        new_values: Optional[dict[str, Any]] = None,
    ) -> None:
        try:
            async with unit_of_work(self._session_factory) as db:
                await create_audit_entry(
                    db,
                    action=action,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    actor_id=actor_id,
                    old_values=old_values,
                    new_values=new_values,
                )
        except Exception:
            logger.exception(
                "Failed to record audit entry %s for %s/%s",
                action, entity_type, entity_id,
            )


# ── Query ───────────────────────────────────────────────────────────

async def list_audit_entries(
    session: AsyncSession,
    params: PaginationParams,
    *,
    actor_id: Optional[uuid.UUID] = None,
    entity_id: Optional[uuid.UUID] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
) -> PaginatedResponse:
    """Paginated audit entries, newest first."""
    query = select(AuditTrail).order_by(AuditTrail.created_at.desc())
    if actor_id is not None:
        query = query.where(AuditTrail.actor_id == actor_id)
    if entity_id is not None:
        query = query.where(AuditTrail.entity_id == entity_id)
    if from_date is not None:
        query = query.where(
            AuditTrail.created_at >= datetime.combine(from_date, time.min, timezone.utc)
        )
    if to_date is not None:
        query = query.where(
            AuditTrail.created_at <= datetime.combine(to_date, time.max, timezone.utc)
        )

    return await paginate(session, query, params, model=AuditTrail)
