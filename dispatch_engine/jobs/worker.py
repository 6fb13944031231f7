"""
Generic background worker runner.

Reads the desired job name from CLI args or the WORKER_JOB environment
variable and runs it once.
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable
from typing import Any

from dispatch_engine.config import settings
from dispatch_engine.infrastructure.observability.logging import get_logger, setup_logging
from dispatch_engine.jobs.calendar_sync_job import run_calendar_sync
from dispatch_engine.jobs.store_maintenance_job import run_recurring_jobs, run_supabase_migration

logger = get_logger(__name__)

JobCoroutine = Callable[[], Awaitable[Any]]

JOB_REGISTRY: dict[str, JobCoroutine] = {
    "calendar_sync": run_calendar_sync,
    "supabase_migration": run_supabase_migration,
    "recurring_jobs": run_recurring_jobs,
}


def _resolve_job_name() -> str:
    """Pick the target job from CLI args or WORKER_JOB env variable."""
    if len(sys.argv) > 1:
        return sys.argv[1].strip().lower()
    return os.getenv("WORKER_JOB", "calendar_sync").strip().lower()


async def run_worker(job_name: str | None = None) -> Any:
    """Run the requested job and return its result."""
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    logger.info("Starting worker job", job=name)
    result = await JOB_REGISTRY[name]()
    logger.info("Worker job finished", job=name)
    return result


def main() -> None:
    """CLI entrypoint."""
    setup_logging(settings.LOG_LEVEL)
    job_name = _resolve_job_name()
    asyncio.run(run_worker(job_name))


if __name__ == "__main__":
    main()
