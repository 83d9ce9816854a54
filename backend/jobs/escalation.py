"""Escalation and reminder sweeps over stale pending requests."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.common.constants import NotificationKind
from backend.common.exceptions import InvalidTransition
from backend.core_hr.service import IdentityProvider
from backend.leave.service import LeaveLifecycle
from backend.notifications.service import NotificationSink

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Per-run tally returned to schedulers and the admin trigger endpoint."""

    examined: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0


class EscalationScheduler:
    """Escalates requests left pending too long and reminds their approvers.

    Both sweeps read a snapshot first and then handle each request on its
    own; one failure is logged and the sweep moves on.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lifecycle: LeaveLifecycle,
        identities: IdentityProvider,
        notifications: NotificationSink,
        *,
        escalation_days: int = 7,
        reminder_days: int = 3,
    ) -> None:
        self._session_factory = session_factory
        self.lifecycle = lifecycle
        self.identities = identities
        self.notifications = notifications
        self.escalation_days = escalation_days
        self.reminder_days = reminder_days

    async def check_escalated_requests(self, now: Optional[datetime] = None) -> SweepResult:
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=self.escalation_days)
        stale = await self.lifecycle.pending_older_than(cutoff)
        result = SweepResult(examined=len(stale))
        logger.info("Escalation sweep: %d request(s) pending since before %s", len(stale), cutoff)

        for request in stale:
            try:
                escalated = await self.lifecycle.escalate(
                    request.id, threshold_days=self.escalation_days,
                )
            except InvalidTransition as exc:
                # Decided or cancelled after the snapshot was taken
                logger.info("Skipping escalation of %s: %s", request.id, exc.detail)
                result.skipped += 1
                continue
            except Exception:
                logger.exception("Failed to escalate leave request %s", request.id)
                result.failed += 1
                continue

            if escalated is None:
                result.skipped += 1
                continue

            result.succeeded += 1
            try:
                async with self._session_factory() as db:
                    recipients = await self.identities.hr_recipient_ids(db)
            except Exception:
                logger.exception("Could not resolve HR recipients for %s", request.id)
                continue
            for recipient_id in recipients:
                await self.notifications.notify(
                    NotificationKind.escalated, recipient_id, escalated,
                )

        logger.info(
            "Escalation sweep finished: %d escalated, %d skipped, %d failed",
            result.succeeded, result.skipped, result.failed,
        )
        return result

    async def send_reminder_emails(self, now: Optional[datetime] = None) -> SweepResult:
        """Remind approvers of requests pending past the reminder threshold."""
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=self.reminder_days)
        pending = await self.lifecycle.pending_older_than(cutoff)
        result = SweepResult(examined=len(pending))

        for request in pending:
            if request.approver_id is None:
                result.skipped += 1
                continue
            try:
                await self.notifications.notify(
                    NotificationKind.reminder, request.approver_id, request,
                )
            except Exception:
                logger.exception("Failed to send reminder for leave request %s", request.id)
                result.failed += 1
                continue
            result.succeeded += 1

        logger.info(
            "Reminder sweep finished: %d sent, %d skipped, %d failed",
            result.succeeded, result.skipped, result.failed,
        )
        return result
