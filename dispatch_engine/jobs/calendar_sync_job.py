"""
Calendar sync job.
Reconciles the current ISO week (Monday to Sunday) onto Google Calendar.
"""

from datetime import date, timedelta

from dispatch_engine.infrastructure.observability.logging import get_logger
from dispatch_engine.models.domain.calendar_domain import SyncResult
from dispatch_engine.services.calendar.sync_service import calendar_sync_service
from dispatch_engine.services.dispatch_service import dispatch_job_store

logger = get_logger(__name__)


def current_week_window(today: date | None = None) -> tuple[date, date]:
    """Monday and Sunday of the ISO week containing ``today``."""
    today = today or date.today()
    week_start = today - timedelta(days=today.weekday())
    return week_start, week_start + timedelta(days=6)


async def run_calendar_sync(today: date | None = None) -> SyncResult:
    week_start, week_end = current_week_window(today)
    jobs = await dispatch_job_store.get_jobs(week_start, week_end)

    logger.info(
        "Calendar sync job starting",
        week_start=week_start.isoformat(),
        week_end=week_end.isoformat(),
        jobs=len(jobs),
    )
    return await calendar_sync_service.sync_week(jobs, week_start, week_end)
