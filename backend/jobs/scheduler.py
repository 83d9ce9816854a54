"""APScheduler wiring for the escalation, reminder and year-end jobs."""

from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from backend.config import Settings
from backend.jobs.escalation import EscalationScheduler
from backend.jobs.year_end import YearEndProcessor

logger = logging.getLogger(__name__)


def build_scheduler(
    escalation: EscalationScheduler,
    year_end: YearEndProcessor,
    settings: Settings,
) -> AsyncIOScheduler:
    """Create (but do not start) the scheduler with the three cron jobs."""
    tz = settings.SCHEDULER_TIMEZONE
    scheduler = AsyncIOScheduler(timezone=tz)

    scheduler.add_job(
        escalation.check_escalated_requests,
        CronTrigger.from_crontab(settings.ESCALATION_CRON, timezone=tz),
        id="leave_escalation",
        name="Escalate stale pending leave requests",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    scheduler.add_job(
        escalation.send_reminder_emails,
        CronTrigger.from_crontab(settings.REMINDER_CRON, timezone=tz),
        id="leave_reminders",
        name="Remind approvers of pending leave requests",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    scheduler.add_job(
        year_end.run,
        CronTrigger.from_crontab(settings.YEAR_END_CRON, timezone=tz),
        id="leave_year_end",
        name="Year-end carry-forward and archival",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    logger.info(
        "Scheduled leave jobs: escalation=%r reminders=%r year_end=%r (%s)",
        settings.ESCALATION_CRON, settings.REMINDER_CRON, settings.YEAR_END_CRON, tz,
    )
    return scheduler
