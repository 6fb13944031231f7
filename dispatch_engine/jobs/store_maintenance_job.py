"""
Job store maintenance jobs: Supabase migration and recurring job generation.
"""

from datetime import date

from dispatch_engine.infrastructure.observability.logging import get_logger
from dispatch_engine.jobs.calendar_sync_job import current_week_window
from dispatch_engine.models.domain.dispatch_domain import DispatchJob, MigrationSummary
from dispatch_engine.services.dispatch_service import dispatch_job_store

logger = get_logger(__name__)


async def run_supabase_migration() -> MigrationSummary:
    """Push local employees, customer profiles and jobs to Supabase."""
    return await dispatch_job_store.migrate_local_people_to_supabase()


async def run_recurring_jobs(today: date | None = None) -> list[DispatchJob]:
    week_start, week_end = current_week_window(today)
    created = await dispatch_job_store.create_jobs_from_recurring_profiles(week_start, week_end)
    logger.info("Recurring job run finished", created=len(created))
    return created
