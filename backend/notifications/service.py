"""Notification service — inbox CRUD and the in-app notification sink."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Protocol

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.common.constants import NotificationKind, NotificationType
from backend.common.exceptions import NotAuthorized, NotFound
from backend.common.pagination import PaginationParams, build_meta
from backend.common.unit_of_work import unit_of_work
from backend.leave.schemas import LeaveRequestOut
from backend.notifications.models import Notification
from backend.notifications.schemas import (
    NotificationListMeta,
    NotificationListResponse,
    NotificationResponse,
)

logger = logging.getLogger(__name__)


# ── Core service ────────────────────────────────────────────────────


class NotificationService:
    """Async notification operations."""

    @staticmethod
    async def create_notification(
        db: AsyncSession,
        *,
        recipient_id: uuid.UUID,
        type: NotificationType = NotificationType.info,
        kind: Optional[NotificationKind] = None,
        title: str,
        message: str,
        action_url: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[uuid.UUID] = None,
    ) -> Notification:
        """Create a new notification and flush to DB."""
        notification = Notification(
            recipient_id=recipient_id,
            type=type,
            kind=kind,
            title=title,
            message=message,
            action_url=action_url,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        db.add(notification)
        await db.flush()
        return notification

    @staticmethod
    async def get_notifications(
        db: AsyncSession,
        employee_id: uuid.UUID,
        pagination: PaginationParams,
        *,
        is_read: Optional[bool] = None,
        kind: Optional[NotificationKind] = None,
    ) -> NotificationListResponse:
        """Return paginated notifications for an employee, newest first."""
        query = (
            select(Notification)
            .where(Notification.recipient_id == employee_id)
            .order_by(Notification.created_at.desc())
        )

        if is_read is not None:
            query = query.where(Notification.is_read == is_read)
        if kind is not None:
            query = query.where(Notification.kind == kind)

        count_q = query.with_only_columns(func.count(), maintain_column_froms=True).order_by(None)
        total: int = (await db.execute(count_q)).scalar_one()

        rows = (
            await db.execute(
                query.offset(pagination.offset).limit(pagination.page_size)
            )
        ).scalars().all()

        # Unread count is always unfiltered (badge)
        unread = await NotificationService.get_unread_count(db, employee_id)

        meta = build_meta(pagination, total)
        return NotificationListResponse(
            data=[NotificationResponse.model_validate(n) for n in rows],
            meta=NotificationListMeta(**meta.model_dump(), unread=unread),
        )

    @staticmethod
    async def mark_read(
        db: AsyncSession,
        notification_id: uuid.UUID,
        employee_id: uuid.UUID,
    ) -> Notification:
        """Mark a single notification as read. Verifies ownership."""
        notification = await db.get(Notification, notification_id)
        if notification is None:
            raise NotFound("Notification", notification_id)

        if notification.recipient_id != employee_id:
            raise NotAuthorized("You can only mark your own notifications as read.")

        notification.is_read = True
        notification.read_at = datetime.now(timezone.utc)
        await db.flush()
        return notification

    @staticmethod
    async def mark_all_read(db: AsyncSession, employee_id: uuid.UUID) -> int:
        """Bulk-mark all unread notifications as read. Returns count updated."""
        result = await db.execute(
            update(Notification)
            .where(
                Notification.recipient_id == employee_id,
                Notification.is_read.is_(False),
            )
            .values(is_read=True, read_at=datetime.now(timezone.utc))
        )
        await db.flush()
        return result.rowcount  # type: ignore[return-value]

    @staticmethod
    async def get_unread_count(db: AsyncSession, employee_id: uuid.UUID) -> int:
        result = await db.execute(
            select(func.count())
            .select_from(Notification)
            .where(
                Notification.recipient_id == employee_id,
                Notification.is_read.is_(False),
            )
        )
        return result.scalar_one()


# ── Outbound sink ───────────────────────────────────────────────────


class NotificationSink(Protocol):
    """Lifecycle event delivery. Implementations never raise to the caller."""

    async def notify(
        self,
        kind: NotificationKind,
        recipient_id: uuid.UUID,
        request: LeaveRequestOut,
    ) -> None: ...


def _render(kind: NotificationKind, request: LeaveRequestOut) -> tuple[NotificationType, str, str]:
    span = f"{request.start_date} to {request.end_date} ({request.duration} day(s))"
    leave = request.leave_type.value
    if kind == NotificationKind.submitted:
        return (
            NotificationType.action_required,
            "New Leave Request",
            f"A {leave} leave request from {span} requires your approval.",
        )
    if kind == NotificationKind.approved:
        return (
            NotificationType.approval,
            "Leave Request Approved",
            f"Your {leave} leave request from {span} has been approved.",
        )
    if kind == NotificationKind.rejected:
        reason = f" Reason: {request.rejection_reason}" if request.rejection_reason else ""
        return (
            NotificationType.alert,
            "Leave Request Rejected",
            f"Your {leave} leave request from {span} was rejected.{reason}",
        )
    if kind == NotificationKind.cancelled:
        return (
            NotificationType.info,
            "Leave Request Cancelled",
            f"The {leave} leave request from {span} was cancelled by the employee.",
        )
    if kind == NotificationKind.escalated:
        return (
            NotificationType.action_required,
            "Leave Request Escalated",
            f"A {leave} leave request from {span} has been escalated to HR.",
        )
    return (
        NotificationType.reminder,
        "Pending Leave Request",
        f"A {leave} leave request from {span} is still awaiting your decision.",
    )


class InAppNotificationSink:
    """Writes one inbox row per event in its own transaction.

    Called after the lifecycle transaction commits. A failed write is logged
    and dropped; it is never retried and never reaches the caller.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def notify(
        self,
        kind: NotificationKind,
        recipient_id: uuid.UUID,
        request: LeaveRequestOut,
    ) -> None:
        type_, title, message = _render(kind, request)
        try:
            async with unit_of_work(self._session_factory) as db:
                await NotificationService.create_notification(
                    db,
                    recipient_id=recipient_id,
                    type=type_,
                    kind=kind,
                    title=title,
                    message=message,
                    action_url=f"/leave/requests/{request.id}",
                    entity_type="leave_request",
                    entity_id=request.id,
                )
        except Exception:
            logger.exception(
                "Failed to deliver %s notification for request %s to %s",
                kind.value, request.id, recipient_id,
            )
            return
        logger.debug("Delivered %s notification for %s to %s", kind.value, request.id, recipient_id)
