"""
Calendar Sync Service
One-way reconciliation of a week of dispatch jobs onto a Google Calendar.
Only events tagged with the dispatch source are read, patched or deleted.
"""

import asyncio
import hashlib
import json
from collections.abc import Awaitable, Iterable
from datetime import date, datetime, time, timedelta, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

from dispatch_engine.config import settings
from dispatch_engine.infrastructure.observability.logging import get_logger
from dispatch_engine.models.domain.calendar_domain import (
    DISPATCH_JOB_ID_KEY,
    DISPATCH_PAYLOAD_HASH_KEY,
    DISPATCH_SOURCE_KEY,
    DISPATCH_SOURCE_TAG,
    CalendarEvent,
    SyncResult,
)
from dispatch_engine.models.domain.dispatch_domain import DispatchJob
from dispatch_engine.services.calendar.google_client import (
    GoogleCalendarError,
    GoogleCalendarService,
    google_calendar_service,
)
from dispatch_engine.services.token_broker import AccessTokenBroker, access_token_broker

logger = get_logger(__name__)


class CalendarSyncConfigError(Exception):
    """Raised before any network call when calendar sync is not configured."""


# =================================================================
# Payload building
# =================================================================


def build_event_summary(job: DispatchJob) -> str:
    if job.customer_name:
        return f"{job.title} - {job.customer_name}"
    return job.title


def build_event_description(job: DispatchJob) -> str:
    lines = [
        f"Dispatch Job ID: {job.id}",
        f"Status: {job.status}",
        f"Service Type: {job.service_type}",
    ]
    optional_lines = (
        ("Customer", job.customer_name),
        ("Phone", job.customer_phone),
        ("Address", job.customer_address),
        ("Notes", job.notes),
        ("Description", job.description),
    )
    lines.extend(f"{label}: {value}" for label, value in optional_lines if value)
    return "\n".join(lines)


def _localize(day: date, wall_clock: time, tz: tzinfo | None) -> datetime:
    naive = datetime.combine(day, wall_clock.replace(tzinfo=None))
    if tz is None:
        # Host zone: the offset is looked up for this date
        return naive.astimezone()
    return naive.replace(tzinfo=tz)


def _event_time(day: date, wall_clock: time, tz: tzinfo | None) -> dict[str, str]:
    # Offset is resolved per date, so DST boundaries inside a week are honoured
    value = {"dateTime": _localize(day, wall_clock, tz).isoformat()}
    zone_key = getattr(tz, "key", None)
    if zone_key:
        value["timeZone"] = zone_key
    return value


def compute_payload_hash(payload: dict) -> str:
    """SHA-256 over the canonical JSON form of an event payload."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def build_event_payload(job: DispatchJob, tz: tzinfo | None, include_hash: bool = False) -> dict:
    """
    Build the Calendar API event body for a job.

    The ownership tag and job id are stamped on every write. With
    ``include_hash`` the payload also carries its own content hash so a later
    pass can skip unchanged events.
    """
    payload: dict = {
        "summary": build_event_summary(job),
        "description": build_event_description(job),
        "start": _event_time(job.scheduled_date, job.scheduled_start_time, tz),
        "end": _event_time(job.scheduled_date, job.scheduled_end_time, tz),
        "extendedProperties": {
            "private": {
                DISPATCH_SOURCE_KEY: DISPATCH_SOURCE_TAG,
                DISPATCH_JOB_ID_KEY: job.id,
            }
        },
    }
    if job.customer_address:
        payload["location"] = job.customer_address

    if include_hash:
        payload["extendedProperties"]["private"][DISPATCH_PAYLOAD_HASH_KEY] = compute_payload_hash(
            payload
        )
    return payload


def resolve_timezone(timezone: tzinfo | str | None) -> tzinfo | None:
    """
    Zone used to place job wall-clock times.

    An explicit zone or IANA name wins. Otherwise DISPATCH_TIMEZONE is used,
    and when that is unset the result is None, meaning the host's local zone.

    Raises:
        CalendarSyncConfigError: If DISPATCH_TIMEZONE names no known zone
    """
    if timezone is None:
        try:
            return settings.sync_timezone()
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise CalendarSyncConfigError(
                f"DISPATCH_TIMEZONE is not a valid IANA time zone: {settings.DISPATCH_TIMEZONE}"
            ) from e
    if isinstance(timezone, str):
        return ZoneInfo(timezone)
    return timezone


async def _run_bounded(operations: Iterable[Awaitable], limit: int) -> list:
    """
    Await ``operations`` with at most ``limit`` in flight.

    The first failure cancels every operation still pending and is re-raised,
    so a pass aborts instead of carrying on past an error.
    """
    semaphore = asyncio.Semaphore(max(1, limit))

    async def guarded(operation: Awaitable):
        async with semaphore:
            return await operation

    tasks = [asyncio.ensure_future(guarded(operation)) for operation in operations]
    if not tasks:
        return []
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class CalendarSyncService:
    """
    Converges the tagged events of one calendar with a set of dispatch jobs.

    Jobs are matched to events by the job id stored in the event's private
    extended properties, never by event content.
    """

    def __init__(
        self,
        calendar_client: GoogleCalendarService | None = None,
        token_broker: AccessTokenBroker | None = None,
        client_id: str | None = None,
        calendar_id: str | None = None,
        max_concurrency: int | None = None,
        skip_unchanged: bool | None = None,
    ):
        self.calendar_client = calendar_client or google_calendar_service
        self.token_broker = token_broker or access_token_broker
        self.client_id = client_id
        self.calendar_id = calendar_id or settings.calendar_id()
        self.max_concurrency = (
            max_concurrency if max_concurrency is not None else settings.CALENDAR_SYNC_MAX_CONCURRENCY
        )
        self.skip_unchanged = (
            skip_unchanged if skip_unchanged is not None else settings.CALENDAR_SYNC_SKIP_UNCHANGED
        )

    def _resolve_client_id(self) -> str:
        client_id = (self.client_id or settings.calendar_client_id() or "").strip()
        if not client_id:
            raise CalendarSyncConfigError(
                "Google Calendar sync is not configured (GOOGLE_CALENDAR_CLIENT_ID missing)"
            )
        return client_id

    async def sync_week(
        self,
        jobs: list[DispatchJob],
        week_start: date,
        week_end: date,
        timezone: tzinfo | str | None = None,
    ) -> SyncResult:
        """
        Reconcile the calendar window [week_start 00:00, week_end + 1 day 00:00).

        Cancelled jobs are excluded from the sync set, so their events are
        deleted along with events whose job no longer exists. When several
        managed events carry the same job id, the first is kept and the rest
        are deleted and counted in ``deleted``.

        Without ``timezone`` the zone comes from DISPATCH_TIMEZONE, falling
        back to the host's local zone with its offset looked up per job date.

        Raises:
            CalendarSyncConfigError: If no calendar client id is configured or
                DISPATCH_TIMEZONE does not name a known zone
            AccessTokenError: If authorization fails
            GoogleCalendarError: On the first failed calendar request
        """
        client_id = self._resolve_client_id()
        tz = resolve_timezone(timezone)
        calendar_id = self.calendar_id

        with structlog.contextvars.bound_contextvars(
            calendar_id=calendar_id,
            week_start=week_start.isoformat(),
            week_end=week_end.isoformat(),
        ):
            access_token = await self.token_broker.request_access_token(client_id)
            try:
                result = await self._reconcile(access_token, calendar_id, jobs, week_start, week_end, tz)
            except GoogleCalendarError as e:
                if e.status_code == 401:
                    self.token_broker.invalidate()
                logger.error(
                    "Calendar sync pass aborted",
                    error=str(e),
                    status_code=e.status_code,
                )
                raise

            logger.info("Calendar week synced", **result.model_dump(exclude={"calendar_id"}))
            return result

    async def _reconcile(
        self,
        access_token: str,
        calendar_id: str,
        jobs: list[DispatchJob],
        week_start: date,
        week_end: date,
        tz: tzinfo | None,
    ) -> SyncResult:
        time_min = _localize(week_start, time.min, tz)
        time_max = _localize(week_end + timedelta(days=1), time.min, tz)

        events = await self.calendar_client.list_events(
            access_token,
            calendar_id=calendar_id,
            time_min=time_min,
            time_max=time_max,
        )

        mapped: dict[str, CalendarEvent] = {}
        duplicates: list[CalendarEvent] = []
        for event in events:
            job_id = event.dispatch_job_id
            if not event.id or not job_id or not event.is_dispatch_managed():
                continue
            if job_id in mapped:
                duplicates.append(event)
            else:
                mapped[job_id] = event

        sync_set = [job for job in jobs if job.is_active()]
        sync_ids = {job.id for job in sync_set}

        async def upsert(job: DispatchJob) -> str:
            payload = build_event_payload(job, tz, include_hash=self.skip_unchanged)
            existing = mapped.get(job.id)
            if existing is None:
                await self.calendar_client.create_event(access_token, payload, calendar_id)
                return "created"
            if self.skip_unchanged and existing.payload_hash == (
                payload["extendedProperties"]["private"][DISPATCH_PAYLOAD_HASH_KEY]
            ):
                return "skipped"
            await self.calendar_client.update_event(access_token, existing.id, payload, calendar_id)
            return "updated"

        outcomes = await _run_bounded((upsert(job) for job in sync_set), self.max_concurrency)

        # Deletes start only once every upsert has landed
        stale = [event for job_id, event in mapped.items() if job_id not in sync_ids]
        stale.extend(duplicates)

        async def delete(event: CalendarEvent) -> None:
            await self.calendar_client.delete_event(access_token, event.id, calendar_id)

        await _run_bounded((delete(event) for event in stale), self.max_concurrency)

        return SyncResult(
            created=outcomes.count("created"),
            updated=outcomes.count("updated"),
            skipped=outcomes.count("skipped"),
            deleted=len(stale),
            synced_jobs=len(sync_set),
            calendar_id=calendar_id,
        )


# Singleton instance for application use
calendar_sync_service = CalendarSyncService()
