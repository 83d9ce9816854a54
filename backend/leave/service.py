"""Leave lifecycle — the request state machine.

    submit ──► pending ──► approved
       │          │  └───► rejected
       │          ├──────► cancelled
       │          ▼
       └────► escalated ─► approved / rejected

Every operation is one unit of work. On approval the status change is flushed
first (optimistic version check on the request row) and the ledger debit runs
in the same transaction, so a request is never approved without its debit
and never debited without being approved. Notifications go out only after the
transaction has committed.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from backend.common.constants import (
    OPEN_STATUSES,
    ChronologyAction,
    LeaveStatus,
    LeaveType,
    NotificationKind,
)
from backend.common.exceptions import (
    InsufficientBalance,
    InvalidTransition,
    LeavePolicyViolation,
    NotAuthorized,
    NotFound,
)
from backend.common.pagination import PaginatedResponse, PaginationParams, paginate
from backend.common.unit_of_work import unit_of_work
from backend.config import settings
from backend.core_hr.models import Employee
from backend.core_hr.service import EmployeeIdentity, IdentityProvider
from backend.leave.calculator import EntitlementCalculator
from backend.leave.ledger import BalanceLedger
from backend.leave.models import Chronology, LeaveRequest
from backend.leave.schemas import LeaveRequestCreate, LeaveRequestDetail, LeaveRequestOut
from backend.notifications.service import NotificationSink

logger = logging.getLogger(__name__)

# Statuses that occupy the employee's calendar for overlap checks
_BLOCKING_STATUSES = (LeaveStatus.pending, LeaveStatus.escalated, LeaveStatus.approved)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═════════════════════════════════════════════════════════════════════
# LeaveLifecycle
# ═════════════════════════════════════════════════════════════════════


class LeaveLifecycle:
    """Creates and moves leave requests through their states."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        calculator: EntitlementCalculator,
        ledger: BalanceLedger,
        identities: IdentityProvider,
        notifications: NotificationSink,
    ) -> None:
        self._session_factory = session_factory
        self.calculator = calculator
        self.ledger = ledger
        self.identities = identities
        self.notifications = notifications

    # ── Internals ───────────────────────────────────────────────────

    @staticmethod
    async def _load(
        db: AsyncSession, request_id: uuid.UUID, *, for_update: bool = True,
    ) -> LeaveRequest:
        query = select(LeaveRequest).where(LeaveRequest.id == request_id)
        if for_update:
            query = query.with_for_update()
        request = (await db.execute(query)).scalar_one_or_none()
        if request is None:
            raise NotFound("LeaveRequest", request_id)
        return request

    @staticmethod
    async def _append(
        db: AsyncSession,
        request: LeaveRequest,
        action: ChronologyAction,
        *,
        actor_id: Optional[uuid.UUID],
        comment: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> Chronology:
        entry = Chronology(
            leave_request_id=request.id,
            action=action,
            actor_id=actor_id,
            comment=comment,
            details=details,
        )
        db.add(entry)
        await db.flush()
        return entry

    async def _current_status(self, request_id: uuid.UUID) -> Optional[LeaveStatus]:
        async with self._session_factory() as db:
            return (
                await db.execute(
                    select(LeaveRequest.status).where(LeaveRequest.id == request_id)
                )
            ).scalar_one_or_none()

    @staticmethod
    def _authorize_decision(request: LeaveRequest, actor: EmployeeIdentity) -> None:
        """Designated approver decides; HR may also decide once escalated."""
        if actor.id == request.employee_id:
            raise NotAuthorized("You cannot decide on your own leave request.")
        if actor.id == request.approver_id:
            return
        if request.status == LeaveStatus.escalated and actor.is_hr:
            return
        raise NotAuthorized("Only the designated approver may decide on this leave request.")

    async def _notify(
        self,
        kind: NotificationKind,
        recipients: list[uuid.UUID],
        snapshot: LeaveRequestOut,
    ) -> None:
        for recipient_id in recipients:
            await self.notifications.notify(kind, recipient_id, snapshot)

    # ─────────────────────────────────────────────────────────────────
    # Submit
    # ─────────────────────────────────────────────────────────────────

    async def submit(
        self,
        employee_id: uuid.UUID,
        data: LeaveRequestCreate,
        *,
        today: Optional[date] = None,
    ) -> LeaveRequestOut:
        """Create a request as ``pending`` (or ``escalated`` with no manager).

        Eligibility, policy and balance checks all run before anything is
        written; a failure leaves no trace.
        """
        today = today or date.today()
        leave_type = data.leave_type

        async with unit_of_work(self._session_factory) as db:
            employee = await self.identities.get(db, employee_id)
            self.calculator.validate(
                employee, leave_type, data.start_date, data.end_date, today=today,
            )

            policy = await self.calculator.config_store.resolve(db, leave_type)
            if not policy.is_active:
                raise LeavePolicyViolation(
                    "leave_type", f"{leave_type.value} leave is not currently available."
                )
            if data.special_leave_type is not None and leave_type != LeaveType.special:
                raise LeavePolicyViolation(
                    "special_leave_type", "A sub-type may only be given for special leave."
                )
            if policy.requires_attachment and not data.attachment_url:
                raise LeavePolicyViolation(
                    "attachment_url", f"{leave_type.value} leave requires a supporting document."
                )
            notice = (data.start_date - today).days
            if (
                policy.min_advance_notice_days
                and leave_type != LeaveType.emergency
                and notice < policy.min_advance_notice_days
            ):
                raise LeavePolicyViolation(
                    "start_date",
                    f"{leave_type.value} leave must be requested at least "
                    f"{policy.min_advance_notice_days} day(s) in advance.",
                )

            duration = await self.calculator.chargeable_duration(
                db,
                data.start_date,
                data.end_date,
                leave_type,
                region=employee.region or settings.HOLIDAY_REGION,
                half_day=data.half_day,
                policy=policy,
            )
            if duration <= 0:
                raise LeavePolicyViolation(
                    "end_date", "The selected dates contain no working days."
                )
            if (
                policy.max_days_per_application is not None
                and duration > policy.max_days_per_application
            ):
                raise LeavePolicyViolation(
                    "end_date",
                    f"A single {leave_type.value} leave request may not exceed "
                    f"{policy.max_days_per_application} day(s).",
                )

            overlap = (
                await db.execute(
                    select(LeaveRequest.id)
                    .where(
                        LeaveRequest.employee_id == employee_id,
                        LeaveRequest.status.in_(_BLOCKING_STATUSES),
                        LeaveRequest.start_date <= data.end_date,
                        LeaveRequest.end_date >= data.start_date,
                    )
                    .limit(1)
                )
            ).scalar_one_or_none()
            if overlap is not None:
                raise LeavePolicyViolation(
                    "start_date", "These dates overlap with another leave request."
                )

            if policy.is_balance_bearing:
                row = await self.ledger.get(db, employee_id, leave_type, data.start_date.year)
                available = self.ledger.available(row)
                if available < duration:
                    raise InsufficientBalance(available=available, requested=duration)

            now = _utcnow()
            request = LeaveRequest(
                employee_id=employee_id,
                leave_type=leave_type,
                special_leave_type=data.special_leave_type,
                start_date=data.start_date,
                end_date=data.end_date,
                half_day=data.half_day,
                duration=duration,
                reason=data.reason,
                attachment_url=data.attachment_url,
                status=LeaveStatus.pending,
                approver_id=employee.manager_id,
            )
            if employee.manager_id is None:
                request.status = LeaveStatus.escalated
                request.is_escalated = True
                request.escalated_at = now
            db.add(request)
            await db.flush()

            await self._append(
                db,
                request,
                ChronologyAction.submitted,
                actor_id=employee_id,
                comment=data.reason,
                details={
                    "leave_type": leave_type.value,
                    "start_date": data.start_date.isoformat(),
                    "end_date": data.end_date.isoformat(),
                    "duration": str(duration),
                },
            )
            snapshot = LeaveRequestOut.model_validate(request)

            if employee.manager_id is not None:
                recipients = [employee.manager_id]
            else:
                recipients = await self.identities.hr_recipient_ids(db)

        logger.info(
            "Leave request %s submitted by %s (%s, %s days, %s)",
            snapshot.id, employee_id, leave_type.value, duration, snapshot.status.value,
        )
        await self._notify(NotificationKind.submitted, recipients, snapshot)
        return snapshot

    # ─────────────────────────────────────────────────────────────────
    # Approve
    # ─────────────────────────────────────────────────────────────────

    async def approve(
        self,
        request_id: uuid.UUID,
        actor_id: uuid.UUID,
        *,
        comment: Optional[str] = None,
    ) -> LeaveRequestOut:
        """Approve and, for balance-bearing types, debit the ledger atomically."""
        try:
            async with unit_of_work(self._session_factory) as db:
                request = await self._load(db, request_id)
                if request.status not in OPEN_STATUSES:
                    raise InvalidTransition("approve", request.status)
                actor = await self.identities.get(db, actor_id)
                self._authorize_decision(request, actor)

                previous = request.status
                request.status = LeaveStatus.approved
                request.approved_at = _utcnow()
                request.reviewed_by = actor_id
                await db.flush()

                policy = await self.calculator.config_store.resolve(db, request.leave_type)
                if policy.is_balance_bearing:
                    await self.ledger.debit(
                        db,
                        request.employee_id,
                        request.leave_type,
                        request.start_date.year,
                        Decimal(request.duration),
                    )

                await self._append(
                    db,
                    request,
                    ChronologyAction.approved,
                    actor_id=actor_id,
                    comment=comment,
                    details={
                        "previous_status": previous.value,
                        "duration": str(request.duration),
                        "debited": policy.is_balance_bearing,
                    },
                )
                snapshot = LeaveRequestOut.model_validate(request)
        except StaleDataError:
            status = await self._current_status(request_id)
            raise InvalidTransition("approve", status) from None

        logger.info("Leave request %s approved by %s", request_id, actor_id)
        await self._notify(NotificationKind.approved, [snapshot.employee_id], snapshot)
        return snapshot

    # ─────────────────────────────────────────────────────────────────
    # Reject
    # ─────────────────────────────────────────────────────────────────

    async def reject(
        self,
        request_id: uuid.UUID,
        actor_id: uuid.UUID,
        reason: str,
    ) -> LeaveRequestOut:
        try:
            async with unit_of_work(self._session_factory) as db:
                request = await self._load(db, request_id)
                if request.status not in OPEN_STATUSES:
                    raise InvalidTransition("reject", request.status)
                actor = await self.identities.get(db, actor_id)
                self._authorize_decision(request, actor)

                previous = request.status
                request.status = LeaveStatus.rejected
                request.rejected_at = _utcnow()
                request.rejection_reason = reason
                request.reviewed_by = actor_id
                await db.flush()

                await self._append(
                    db,
                    request,
                    ChronologyAction.rejected,
                    actor_id=actor_id,
                    comment=reason,
                    details={"previous_status": previous.value},
                )
                snapshot = LeaveRequestOut.model_validate(request)
        except StaleDataError:
            status = await self._current_status(request_id)
            raise InvalidTransition("reject", status) from None

        logger.info("Leave request %s rejected by %s", request_id, actor_id)
        await self._notify(NotificationKind.rejected, [snapshot.employee_id], snapshot)
        return snapshot

    # ─────────────────────────────────────────────────────────────────
    # Cancel
    # ─────────────────────────────────────────────────────────────────

    async def cancel(
        self,
        request_id: uuid.UUID,
        actor_id: uuid.UUID,
        *,
        reason: Optional[str] = None,
    ) -> LeaveRequestOut:
        """Withdraw a request. Only the requester, and only while pending."""
        try:
            async with unit_of_work(self._session_factory) as db:
                request = await self._load(db, request_id)
                if request.employee_id != actor_id:
                    raise NotAuthorized("Only the requester may cancel this leave request.")
                if request.status != LeaveStatus.pending:
                    raise InvalidTransition("cancel", request.status)

                request.status = LeaveStatus.cancelled
                request.cancelled_at = _utcnow()
                await db.flush()

                await self._append(
                    db,
                    request,
                    ChronologyAction.cancelled,
                    actor_id=actor_id,
                    comment=reason,
                )
                snapshot = LeaveRequestOut.model_validate(request)
        except StaleDataError:
            status = await self._current_status(request_id)
            raise InvalidTransition("cancel", status) from None

        logger.info("Leave request %s cancelled by requester", request_id)
        if snapshot.approver_id is not None:
            await self._notify(NotificationKind.cancelled, [snapshot.approver_id], snapshot)
        return snapshot

    # ─────────────────────────────────────────────────────────────────
    # Escalate (system)
    # ─────────────────────────────────────────────────────────────────

    async def escalate(
        self,
        request_id: uuid.UUID,
        *,
        threshold_days: Optional[int] = None,
    ) -> Optional[LeaveRequestOut]:
        """Hand a stale pending request to HR.

        Returns the escalated snapshot, or None when the request was already
        escalated (no-op). Terminal requests raise ``InvalidTransition``.
        """
        days = threshold_days if threshold_days is not None else settings.ESCALATION_DAYS
        try:
            async with unit_of_work(self._session_factory) as db:
                request = await self._load(db, request_id)
                if request.status == LeaveStatus.escalated:
                    return None
                if request.status != LeaveStatus.pending:
                    raise InvalidTransition("escalate", request.status)

                request.status = LeaveStatus.escalated
                request.is_escalated = True
                request.escalated_at = _utcnow()
                await db.flush()

                await self._append(
                    db,
                    request,
                    ChronologyAction.escalated,
                    actor_id=None,
                    details={
                        "reason": f"{days}-day escalation rule",
                        "approver_id": str(request.approver_id) if request.approver_id else None,
                    },
                )
                snapshot = LeaveRequestOut.model_validate(request)
        except StaleDataError:
            status = await self._current_status(request_id)
            if status == LeaveStatus.escalated:
                return None
            raise InvalidTransition("escalate", status) from None

        logger.info("Leave request %s escalated (%d-day rule)", request_id, days)
        return snapshot

    # ─────────────────────────────────────────────────────────────────
    # Comment
    # ─────────────────────────────────────────────────────────────────

    async def comment(
        self,
        request_id: uuid.UUID,
        actor_id: uuid.UUID,
        comment: str,
    ) -> LeaveRequestDetail:
        """Append a note to the chronology; the request itself is untouched."""
        async with unit_of_work(self._session_factory) as db:
            request = await self._load(db, request_id, for_update=False)
            actor = await self.identities.get(db, actor_id)
            if actor.id not in (request.employee_id, request.approver_id) and not actor.is_hr:
                raise NotAuthorized("You may not comment on this leave request.")

            await self._append(
                db, request, ChronologyAction.commented, actor_id=actor_id, comment=comment,
            )
            return await self._detail(db, request_id)

    # ─────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _detail(db: AsyncSession, request_id: uuid.UUID) -> LeaveRequestDetail:
        result = await db.execute(
            select(LeaveRequest)
            .where(LeaveRequest.id == request_id)
            .options(selectinload(LeaveRequest.chronology))
            .execution_options(populate_existing=True)
        )
        request = result.scalar_one_or_none()
        if request is None:
            raise NotFound("LeaveRequest", request_id)
        return LeaveRequestDetail.model_validate(request)

    async def get(self, request_id: uuid.UUID, actor_id: uuid.UUID) -> LeaveRequestDetail:
        """One request with its chronology, visible to requester, approvers and HR."""
        async with self._session_factory() as db:
            detail = await self._detail(db, request_id)
            actor = await self.identities.get(db, actor_id)
            if actor.id in (detail.employee_id, detail.approver_id) or actor.is_hr:
                return detail
            owner = await self.identities.get(db, detail.employee_id)
            if owner.manager_id == actor.id:
                return detail
        raise NotAuthorized("You may not view this leave request.")

    @staticmethod
    async def _page(
        db: AsyncSession, query, params: PaginationParams,
    ) -> PaginatedResponse:
        page = await paginate(db, query, params, model=LeaveRequest)
        return PaginatedResponse(
            data=[LeaveRequestOut.model_validate(r) for r in page.data],
            meta=page.meta,
        )

    async def list_mine(
        self,
        employee_id: uuid.UUID,
        params: PaginationParams,
        *,
        status: Optional[LeaveStatus] = None,
        year: Optional[int] = None,
        leave_type: Optional[LeaveType] = None,
    ) -> PaginatedResponse:
        query = (
            select(LeaveRequest)
            .where(LeaveRequest.employee_id == employee_id)
            .order_by(LeaveRequest.start_date.desc())
        )
        if status is not None:
            query = query.where(LeaveRequest.status == status)
        if year is not None:
            query = query.where(
                LeaveRequest.start_date >= date(year, 1, 1),
                LeaveRequest.start_date <= date(year, 12, 31),
            )
        if leave_type is not None:
            query = query.where(LeaveRequest.leave_type == leave_type)

        async with self._session_factory() as db:
            return await self._page(db, query, params)

    async def list_team(
        self,
        manager_id: uuid.UUID,
        params: PaginationParams,
        *,
        status: Optional[LeaveStatus] = None,
    ) -> PaginatedResponse:
        """Requests of the manager's direct reports, newest first."""
        reports = select(Employee.id).where(Employee.reporting_manager_id == manager_id)
        query = (
            select(LeaveRequest)
            .where(LeaveRequest.employee_id.in_(reports))
            .order_by(LeaveRequest.created_at.desc())
        )
        if status is not None:
            query = query.where(LeaveRequest.status == status)

        async with self._session_factory() as db:
            return await self._page(db, query, params)

    async def list_all(
        self,
        params: PaginationParams,
        *,
        status: Optional[LeaveStatus] = None,
        year: Optional[int] = None,
        include_archived: bool = False,
    ) -> PaginatedResponse:
        query = select(LeaveRequest).order_by(LeaveRequest.created_at.desc())
        if status is not None:
            query = query.where(LeaveRequest.status == status)
        if year is not None:
            query = query.where(
                LeaveRequest.start_date >= date(year, 1, 1),
                LeaveRequest.start_date <= date(year, 12, 31),
            )
        if not include_archived:
            query = query.where(LeaveRequest.is_archived.is_(False))

        async with self._session_factory() as db:
            return await self._page(db, query, params)

    async def pending_older_than(self, cutoff: datetime) -> list[LeaveRequestOut]:
        """Read snapshot of pending requests created before ``cutoff``."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(LeaveRequest)
                .where(
                    LeaveRequest.status == LeaveStatus.pending,
                    LeaveRequest.created_at < cutoff,
                )
                .order_by(LeaveRequest.created_at)
            )
            return [LeaveRequestOut.model_validate(r) for r in result.scalars().all()]
