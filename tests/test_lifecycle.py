"""Leave lifecycle test suite — submit, approve, reject, cancel, escalate, comment,
queries, and the ledger side effects of each transition.

Tests run against SQLite via the shared conftest.py fixtures. Dates are fixed
in 2030 and ``today`` is passed explicitly so the suite is calendar-independent.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import date
from decimal import Decimal
from typing import Optional

import pytest

from backend.common.constants import (
    ChronologyAction,
    LeaveStatus,
    LeaveType,
    NotificationKind,
    SpecialLeaveType,
    UserRole,
)
from backend.common.exceptions import (
    InsufficientBalance,
    InvalidTransition,
    LeavePolicyViolation,
    NotAuthorized,
    NotFound,
    PastDateNotAllowed,
    ProbationRestriction,
)
from backend.common.pagination import PaginationParams
from backend.leave.schemas import LeaveRequestCreate
from tests.conftest import (
    make_balance,
    make_config,
    make_employee,
    read_balance,
)

TODAY = date(2030, 3, 1)
# Monday 11 March .. Friday 15 March 2030: five working days
MON = date(2030, 3, 11)
FRI = date(2030, 3, 15)


def _params(page_size: int = 50) -> PaginationParams:
    return PaginationParams(page=1, page_size=page_size, sort=None)


def _create(
    leave_type: LeaveType = LeaveType.annual,
    start: date = MON,
    end: date = FRI,
    **extra,
) -> LeaveRequestCreate:
    return LeaveRequestCreate(leave_type=leave_type, start_date=start, end_date=end, **extra)


async def _submit(services, employee_id: uuid.UUID, data: Optional[LeaveRequestCreate] = None):
    return await services.lifecycle.submit(employee_id, data or _create(), today=TODAY)


async def _chronology(services, request_id: uuid.UUID, viewer_id: uuid.UUID):
    detail = await services.lifecycle.get(request_id, viewer_id)
    return [entry.action for entry in detail.chronology]


# ═════════════════════════════════════════════════════════════════════
# 1. Submit
# ═════════════════════════════════════════════════════════════════════


class TestSubmit:
    async def test_creates_pending_request_for_manager(
        self, services, employee, manager, notification_sink,
    ):
        request = await _submit(services, employee.id)

        assert request.status == LeaveStatus.pending
        assert request.approver_id == manager.id
        assert request.is_escalated is False
        assert request.duration == Decimal("5")
        assert await _chronology(services, request.id, employee.id) == [
            ChronologyAction.submitted,
        ]
        assert notification_sink.recipients(NotificationKind.submitted) == [manager.id]

    async def test_submitted_chronology_metadata(self, services, employee):
        request = await _submit(services, employee.id, _create(reason="Family trip"))
        detail = await services.lifecycle.get(request.id, employee.id)
        entry = detail.chronology[0]
        assert entry.actor_id == employee.id
        assert entry.comment == "Family trip"
        assert entry.details == {
            "leave_type": "annual",
            "start_date": "2030-03-11",
            "end_date": "2030-03-15",
            "duration": "5",
        }

    async def test_no_manager_is_escalated_on_submit(
        self, services, hr_admin, notification_sink,
    ):
        loner = await make_employee(manager_id=None)
        request = await _submit(services, loner.id)

        assert request.status == LeaveStatus.escalated
        assert request.is_escalated is True
        assert request.escalated_at is not None
        assert request.approver_id is None
        # Tagged "submitted", not "escalated"
        assert await _chronology(services, request.id, loner.id) == [
            ChronologyAction.submitted,
        ]
        assert notification_sink.recipients(NotificationKind.submitted) == [hr_admin.id]

    async def test_submit_does_not_debit(self, services, employee):
        await _submit(services, employee.id)
        row = await read_balance(employee.id, LeaveType.annual, 2030)
        assert row.used == Decimal("0")

    async def test_insufficient_balance_writes_nothing(self, services, employee, notification_sink):
        await make_balance(employee.id, year=2030, entitlement=Decimal("3"))

        with pytest.raises(InsufficientBalance):
            await _submit(services, employee.id)

        page = await services.lifecycle.list_mine(employee.id, _params())
        assert page.meta.total == 0
        assert notification_sink.events == []

    async def test_probation_restricts_to_sick(self, services, manager):
        newcomer = await make_employee(manager_id=manager.id, is_confirmed=False)
        with pytest.raises(ProbationRestriction):
            await _submit(services, newcomer.id)

        sick = await _submit(services, newcomer.id, _create(LeaveType.sick))
        assert sick.status == LeaveStatus.pending

    async def test_past_dates_rejected(self, services, employee):
        with pytest.raises(PastDateNotAllowed):
            await _submit(
                services, employee.id, _create(start=date(2030, 2, 25), end=date(2030, 2, 26)),
            )

    async def test_overlap_with_open_request(self, services, employee):
        await _submit(services, employee.id)
        with pytest.raises(LeavePolicyViolation) as exc_info:
            await _submit(
                services, employee.id, _create(start=date(2030, 3, 14), end=date(2030, 3, 19)),
            )
        assert "start_date" in exc_info.value.errors

    async def test_cancelled_request_frees_dates(self, services, employee):
        first = await _submit(services, employee.id)
        await services.lifecycle.cancel(first.id, employee.id)
        second = await _submit(services, employee.id)
        assert second.status == LeaveStatus.pending

    async def test_weekend_only_request_rejected(self, services, employee):
        with pytest.raises(LeavePolicyViolation):
            await _submit(
                services, employee.id, _create(start=date(2030, 3, 16), end=date(2030, 3, 17)),
            )

    async def test_holidays_reduce_duration(self, services, employee, holiday_calendar):
        holiday_calendar.add(date(2030, 3, 13))
        request = await _submit(services, employee.id)
        assert request.duration == Decimal("4")

    async def test_half_day(self, services, employee):
        request = await _submit(
            services, employee.id, _create(start=MON, end=MON, half_day=True),
        )
        assert request.duration == Decimal("0.5")

    async def test_attachment_required_by_config(self, services, employee):
        await make_config(LeaveType.sick, base_entitlement=Decimal("14"),
                          is_balance_bearing=True, requires_attachment=True)
        with pytest.raises(LeavePolicyViolation) as exc_info:
            await _submit(services, employee.id, _create(LeaveType.sick))
        assert "attachment_url" in exc_info.value.errors

        request = await _submit(
            services, employee.id,
            _create(LeaveType.sick, attachment_url="https://files.example.com/note.pdf"),
        )
        assert request.attachment_url == "https://files.example.com/note.pdf"

    async def test_advance_notice(self, services, employee):
        await make_config(LeaveType.annual, is_balance_bearing=True, min_advance_notice_days=14)
        with pytest.raises(LeavePolicyViolation):
            await _submit(services, employee.id)

    async def test_emergency_ignores_advance_notice(self, services, employee):
        await make_config(
            LeaveType.emergency, base_entitlement=Decimal("3"),
            is_balance_bearing=True, min_advance_notice_days=14,
        )
        request = await _submit(
            services, employee.id, _create(LeaveType.emergency, start=TODAY, end=TODAY),
        )
        assert request.duration == Decimal("1")

    async def test_max_days_per_application(self, services, employee):
        await make_config(
            LeaveType.annual, base_entitlement=Decimal("20"),
            is_balance_bearing=True, max_days_per_application=Decimal("3"),
        )
        with pytest.raises(LeavePolicyViolation):
            await _submit(services, employee.id)

    async def test_inactive_leave_type(self, services, employee):
        await make_config(LeaveType.annual, is_balance_bearing=True, is_active=False)
        with pytest.raises(LeavePolicyViolation):
            await _submit(services, employee.id)

    async def test_special_sub_type_only_on_special_leave(self, services, employee):
        with pytest.raises(LeavePolicyViolation):
            await _submit(
                services, employee.id,
                _create(special_leave_type=SpecialLeaveType.marriage),
            )
        request = await _submit(
            services, employee.id,
            _create(LeaveType.special, special_leave_type=SpecialLeaveType.marriage),
        )
        assert request.special_leave_type == SpecialLeaveType.marriage

    async def test_unknown_employee(self, services):
        with pytest.raises(NotFound):
            await _submit(services, uuid.uuid4())


# ═════════════════════════════════════════════════════════════════════
# 2. Approve
# ═════════════════════════════════════════════════════════════════════


class TestApprove:
    async def test_approve_debits_exactly_once(self, services, employee, manager, notification_sink):
        request = await _submit(services, employee.id)

        approved = await services.lifecycle.approve(request.id, manager.id, comment="Enjoy")
        assert approved.status == LeaveStatus.approved
        assert approved.approved_at is not None
        assert approved.reviewed_by == manager.id

        row = await read_balance(employee.id, LeaveType.annual, 2030)
        assert row.used == Decimal("5")

        with pytest.raises(InvalidTransition):
            await services.lifecycle.approve(request.id, manager.id)

        row = await read_balance(employee.id, LeaveType.annual, 2030)
        assert row.used == Decimal("5")
        assert await _chronology(services, request.id, employee.id) == [
            ChronologyAction.submitted,
            ChronologyAction.approved,
        ]
        assert notification_sink.recipients(NotificationKind.approved) == [employee.id]

    async def test_only_designated_approver(self, services, employee):
        stranger = await make_employee(role=UserRole.manager)
        request = await _submit(services, employee.id)

        with pytest.raises(NotAuthorized):
            await services.lifecycle.approve(request.id, stranger.id)

        row = await read_balance(employee.id, LeaveType.annual, 2030)
        assert row.used == Decimal("0")

    async def test_cannot_approve_own_request(self, services, employee):
        request = await _submit(services, employee.id)
        with pytest.raises(NotAuthorized):
            await services.lifecycle.approve(request.id, employee.id)

    async def test_hr_cannot_bypass_pending_manager(self, services, employee, hr_admin):
        request = await _submit(services, employee.id)
        with pytest.raises(NotAuthorized):
            await services.lifecycle.approve(request.id, hr_admin.id)

    async def test_hr_decides_escalated_request(self, services, hr_admin):
        loner = await make_employee()
        request = await _submit(services, loner.id)

        approved = await services.lifecycle.approve(request.id, hr_admin.id)
        assert approved.status == LeaveStatus.approved
        row = await read_balance(loner.id, LeaveType.annual, 2030)
        assert row.used == Decimal("5")

    async def test_failed_debit_rolls_back_status(self, services, employee, manager):
        """Two requests that each fit, but not together: the second approval aborts."""
        await make_balance(employee.id, year=2030, entitlement=Decimal("6"))
        first = await _submit(services, employee.id)
        second = await _submit(
            services, employee.id, _create(start=date(2030, 3, 18), end=date(2030, 3, 19)),
        )

        await services.lifecycle.approve(first.id, manager.id)
        with pytest.raises(InsufficientBalance):
            await services.lifecycle.approve(second.id, manager.id)

        detail = await services.lifecycle.get(second.id, employee.id)
        assert detail.status == LeaveStatus.pending
        assert detail.approved_at is None
        assert [e.action for e in detail.chronology] == [ChronologyAction.submitted]

        row = await read_balance(employee.id, LeaveType.annual, 2030)
        assert row.used == Decimal("5")
        assert services.ledger.available(row) >= 0

    async def test_non_balance_bearing_type_is_not_debited(self, services, employee, manager):
        request = await _submit(
            services, employee.id,
            _create(LeaveType.maternity, start=MON, end=date(2030, 3, 17)),
        )
        assert request.duration == Decimal("7")
        await services.lifecycle.approve(request.id, manager.id)
        assert await read_balance(employee.id, LeaveType.maternity, 2030) is None

    async def test_available_never_negative(self, services, employee, manager):
        await make_balance(employee.id, year=2030, entitlement=Decimal("4"))
        spans = [
            (date(2030, 3, 11), date(2030, 3, 12)),
            (date(2030, 3, 13), date(2030, 3, 13)),
            (date(2030, 3, 18), date(2030, 3, 19)),
        ]
        for start, end in spans:
            try:
                request = await _submit(services, employee.id, _create(start=start, end=end))
                await services.lifecycle.approve(request.id, manager.id)
            except InsufficientBalance:
                pass
            row = await read_balance(employee.id, LeaveType.annual, 2030)
            assert services.ledger.available(row) >= 0

        row = await read_balance(employee.id, LeaveType.annual, 2030)
        assert row.used == Decimal("3")

    async def test_missing_request(self, services, manager):
        with pytest.raises(NotFound):
            await services.lifecycle.approve(uuid.uuid4(), manager.id)

    async def test_racing_approvers_have_one_winner(self, file_services, file_session_factory):
        boss = await make_employee(role=UserRole.manager, session_factory=file_session_factory)
        emp = await make_employee(manager_id=boss.id, session_factory=file_session_factory)
        await make_balance(emp.id, year=2030, session_factory=file_session_factory)
        request = await file_services.lifecycle.submit(emp.id, _create(), today=TODAY)

        results = await asyncio.gather(
            *(file_services.lifecycle.approve(request.id, boss.id) for _ in range(4)),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert winners[0].status == LeaveStatus.approved
        assert len(losers) == 3
        assert all(isinstance(exc, InvalidTransition) for exc in losers)

        row = await read_balance(
            emp.id, LeaveType.annual, 2030, session_factory=file_session_factory,
        )
        assert row.used == Decimal("5")

    async def test_concurrent_approvals_never_overdraw(self, file_services, file_session_factory):
        boss = await make_employee(role=UserRole.manager, session_factory=file_session_factory)
        emp = await make_employee(manager_id=boss.id, session_factory=file_session_factory)
        await make_balance(
            emp.id, year=2030, entitlement=Decimal("2"), session_factory=file_session_factory,
        )
        # Five single-day requests, Monday to Friday
        requests = []
        for offset in range(5):
            day = date(2030, 3, 11 + offset)
            requests.append(
                await file_services.lifecycle.submit(
                    emp.id, _create(start=day, end=day), today=TODAY,
                )
            )

        results = await asyncio.gather(
            *(file_services.lifecycle.approve(r.id, boss.id) for r in requests),
            return_exceptions=True,
        )

        refused = [r for r in results if isinstance(r, Exception)]
        assert len(results) - len(refused) == 2
        assert len(refused) == 3
        assert all(isinstance(exc, InsufficientBalance) for exc in refused)

        row = await read_balance(
            emp.id, LeaveType.annual, 2030, session_factory=file_session_factory,
        )
        assert row.used == Decimal("2")
        assert file_services.ledger.available(row) == Decimal("0")


# ═════════════════════════════════════════════════════════════════════
# 3. Reject
# ═════════════════════════════════════════════════════════════════════


class TestReject:
    async def test_reject_records_reason_without_balance_change(
        self, services, employee, manager, notification_sink,
    ):
        request = await _submit(services, employee.id)
        rejected = await services.lifecycle.reject(request.id, manager.id, "Quarter-end freeze")

        assert rejected.status == LeaveStatus.rejected
        assert rejected.rejection_reason == "Quarter-end freeze"
        assert rejected.rejected_at is not None
        row = await read_balance(employee.id, LeaveType.annual, 2030)
        assert row.used == Decimal("0")
        assert notification_sink.recipients(NotificationKind.rejected) == [employee.id]

    async def test_cannot_reject_terminal(self, services, employee, manager):
        request = await _submit(services, employee.id)
        await services.lifecycle.approve(request.id, manager.id)
        with pytest.raises(InvalidTransition):
            await services.lifecycle.reject(request.id, manager.id, "Changed my mind")

    async def test_only_designated_approver(self, services, employee):
        request = await _submit(services, employee.id)
        with pytest.raises(NotAuthorized):
            await services.lifecycle.reject(request.id, employee.id, "Self-reject")


# ═════════════════════════════════════════════════════════════════════
# 4. Cancel
# ═════════════════════════════════════════════════════════════════════


class TestCancel:
    async def test_cancel_pending(self, services, employee, manager, notification_sink):
        request = await _submit(services, employee.id)
        cancelled = await services.lifecycle.cancel(request.id, employee.id, reason="Plans changed")

        assert cancelled.status == LeaveStatus.cancelled
        assert cancelled.cancelled_at is not None
        assert notification_sink.recipients(NotificationKind.cancelled) == [manager.id]

    async def test_only_requester(self, services, employee, manager):
        request = await _submit(services, employee.id)
        with pytest.raises(NotAuthorized):
            await services.lifecycle.cancel(request.id, manager.id)

    @pytest.mark.parametrize("terminal", ["approve", "reject", "cancel"])
    async def test_cancel_after_decision(self, services, employee, manager, terminal):
        request = await _submit(services, employee.id)
        if terminal == "approve":
            await services.lifecycle.approve(request.id, manager.id)
        elif terminal == "reject":
            await services.lifecycle.reject(request.id, manager.id, "No cover")
        else:
            await services.lifecycle.cancel(request.id, employee.id)
        before = await read_balance(employee.id, LeaveType.annual, 2030)

        with pytest.raises(InvalidTransition):
            await services.lifecycle.cancel(request.id, employee.id)

        after = await read_balance(employee.id, LeaveType.annual, 2030)
        assert after.used == before.used

    async def test_cancel_escalated(self, services, employee):
        request = await _submit(services, employee.id)
        await services.lifecycle.escalate(request.id)
        with pytest.raises(InvalidTransition):
            await services.lifecycle.cancel(request.id, employee.id)

        detail = await services.lifecycle.get(request.id, employee.id)
        assert detail.status == LeaveStatus.escalated


# ═════════════════════════════════════════════════════════════════════
# 5. Escalate
# ═════════════════════════════════════════════════════════════════════


class TestEscalate:
    async def test_escalate_pending(self, services, employee, manager):
        request = await _submit(services, employee.id)
        escalated = await services.lifecycle.escalate(request.id, threshold_days=7)

        assert escalated.status == LeaveStatus.escalated
        assert escalated.is_escalated is True
        assert escalated.escalated_at is not None

        detail = await services.lifecycle.get(request.id, employee.id)
        entry = detail.chronology[-1]
        assert entry.action == ChronologyAction.escalated
        assert entry.actor_id is None
        assert entry.details == {
            "reason": "7-day escalation rule",
            "approver_id": str(manager.id),
        }

    async def test_escalate_is_idempotent(self, services, employee):
        request = await _submit(services, employee.id)
        assert await services.lifecycle.escalate(request.id) is not None
        assert await services.lifecycle.escalate(request.id) is None

        actions = await _chronology(services, request.id, employee.id)
        assert actions.count(ChronologyAction.escalated) == 1

    async def test_escalate_terminal(self, services, employee, manager):
        request = await _submit(services, employee.id)
        await services.lifecycle.reject(request.id, manager.id, "No cover")
        with pytest.raises(InvalidTransition):
            await services.lifecycle.escalate(request.id)

    async def test_original_manager_may_still_decide(self, services, employee, manager):
        request = await _submit(services, employee.id)
        await services.lifecycle.escalate(request.id)
        approved = await services.lifecycle.approve(request.id, manager.id)
        assert approved.status == LeaveStatus.approved


# ═════════════════════════════════════════════════════════════════════
# 6. Comments and visibility
# ═════════════════════════════════════════════════════════════════════


class TestCommentsAndQueries:
    async def test_comment_appends_to_chronology(self, services, employee, manager):
        request = await _submit(services, employee.id)
        detail = await services.lifecycle.comment(request.id, manager.id, "Who covers on-call?")

        assert detail.status == LeaveStatus.pending
        assert detail.chronology[-1].action == ChronologyAction.commented
        assert detail.chronology[-1].comment == "Who covers on-call?"

    async def test_outsider_cannot_comment_or_view(self, services, employee):
        outsider = await make_employee()
        request = await _submit(services, employee.id)
        with pytest.raises(NotAuthorized):
            await services.lifecycle.comment(request.id, outsider.id, "Hi")
        with pytest.raises(NotAuthorized):
            await services.lifecycle.get(request.id, outsider.id)

    async def test_hr_can_view(self, services, employee, hr_admin):
        request = await _submit(services, employee.id)
        detail = await services.lifecycle.get(request.id, hr_admin.id)
        assert detail.id == request.id

    async def test_list_mine_filters(self, services, employee):
        await _submit(services, employee.id)
        await _submit(
            services, employee.id,
            _create(LeaveType.sick, start=date(2030, 3, 18), end=date(2030, 3, 18)),
        )
        everything = await services.lifecycle.list_mine(employee.id, _params())
        sick_only = await services.lifecycle.list_mine(
            employee.id, _params(), leave_type=LeaveType.sick,
        )
        assert everything.meta.total == 2
        assert sick_only.meta.total == 1
        assert sick_only.data[0].leave_type == LeaveType.sick

    async def test_list_team_only_direct_reports(self, services, employee, manager):
        other = await make_employee()
        await _submit(services, employee.id)
        await _submit(services, other.id)

        page = await services.lifecycle.list_team(manager.id, _params())
        assert page.meta.total == 1
        assert page.data[0].employee_id == employee.id

    async def test_list_all_with_status(self, services, employee, manager):
        first = await _submit(services, employee.id)
        await _submit(
            services, employee.id, _create(start=date(2030, 3, 18), end=date(2030, 3, 19)),
        )
        await services.lifecycle.approve(first.id, manager.id)

        approved = await services.lifecycle.list_all(_params(), status=LeaveStatus.approved)
        assert approved.meta.total == 1
        assert approved.data[0].id == first.id
