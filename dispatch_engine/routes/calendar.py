"""
Calendar API Routes
HTTP endpoint that reconciles a week of jobs onto Google Calendar.
"""

from zoneinfo import ZoneInfoNotFoundError

from fastapi import APIRouter, Depends, HTTPException, status

from dispatch_engine.infrastructure.observability.logging import get_logger
from dispatch_engine.models.api.dispatch_request import WeekWindowRequest
from dispatch_engine.models.domain.calendar_domain import SyncResult
from dispatch_engine.routes.dispatch import get_job_store
from dispatch_engine.services.calendar.google_client import GoogleCalendarError
from dispatch_engine.services.calendar.sync_service import (
    CalendarSyncConfigError,
    CalendarSyncService,
    calendar_sync_service,
)
from dispatch_engine.services.dispatch_service import DispatchJobStore
from dispatch_engine.services.token_broker import AccessTokenConfigError, AccessTokenError

logger = get_logger(__name__)

router = APIRouter(prefix="/calendar", tags=["calendar"])


def get_sync_service() -> CalendarSyncService:
    return calendar_sync_service


@router.post("/sync", response_model=SyncResult)
async def sync_calendar_week(
    window: WeekWindowRequest,
    store: DispatchJobStore = Depends(get_job_store),
    sync_service: CalendarSyncService = Depends(get_sync_service),
):
    """Push the week's jobs to the calendar and remove stale managed events."""
    if window.week_end < window.week_start:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="week_end must not precede week_start"
        )

    jobs = await store.get_jobs(window.week_start, window.week_end)

    try:
        return await sync_service.sync_week(
            jobs, window.week_start, window.week_end, timezone=window.timezone
        )
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown time zone: {window.timezone}"
        ) from e
    except (CalendarSyncConfigError, AccessTokenConfigError) as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)) from e
    except AccessTokenError as e:
        logger.warning("Calendar authorization failed", error_code=e.error_code)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e)) from e
    except GoogleCalendarError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from e
