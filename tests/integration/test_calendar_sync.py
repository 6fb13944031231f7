import asyncio
from datetime import date, timedelta, timezone

import pytest

from dispatch_engine.config import settings
from dispatch_engine.models.domain.calendar_domain import CalendarEvent
from dispatch_engine.services.calendar.google_client import (
    GoogleCalendarError,
    GoogleCalendarService,
)
from dispatch_engine.services.calendar.sync_service import (
    CalendarSyncConfigError,
    CalendarSyncService,
)
from dispatch_engine.services.token_broker import AccessTokenBroker

BRISBANE = timezone(timedelta(hours=10))
WEEK_START = date(2026, 2, 16)
WEEK_END = date(2026, 2, 22)


def _build_service(fake_calendar, flow, **kwargs) -> CalendarSyncService:
    client = GoogleCalendarService(
        timeout=5, max_retries=1, backoff_factor=0, transport=fake_calendar.transport
    )
    broker = AccessTokenBroker(flow=flow, client_id="client-123")
    return CalendarSyncService(
        calendar_client=client,
        token_broker=broker,
        client_id="client-123",
        calendar_id="primary",
        **kwargs,
    )


@pytest.mark.asyncio
async def test_sync_creates_updates_and_deletes_then_converges(fake_calendar, fake_flow, job_factory):
    fake_calendar.add_event("job-b")
    stale_event = fake_calendar.add_event("job-c")
    foreign_event = fake_calendar.add_event(None, tagged=False, summary="Dentist")
    service = _build_service(fake_calendar, fake_flow)
    jobs = [job_factory("job-a"), job_factory("job-b")]

    first = await service.sync_week(jobs, WEEK_START, WEEK_END, timezone=BRISBANE)

    assert (first.created, first.updated, first.deleted) == (1, 1, 1)
    assert first.synced_jobs == 2
    assert first.calendar_id == "primary"
    assert stale_event not in fake_calendar.events
    assert foreign_event in fake_calendar.events

    second = await service.sync_week(jobs, WEEK_START, WEEK_END, timezone=BRISBANE)

    assert (second.created, second.updated, second.deleted) == (0, 1, 0)
    managed_job_ids = sorted(
        CalendarEvent(event).dispatch_job_id
        for event in fake_calendar.events.values()
        if CalendarEvent(event).is_dispatch_managed()
    )
    assert managed_job_ids == ["job-a", "job-b"]
    await service.calendar_client.close()


@pytest.mark.asyncio
async def test_sync_lists_week_window_with_ownership_filter(fake_calendar, fake_flow):
    service = _build_service(fake_calendar, fake_flow)

    await service.sync_week([], WEEK_START, WEEK_END, timezone=BRISBANE)

    (list_request,) = fake_calendar.requests_for("GET")
    params = list_request.url.params
    assert params["timeMin"] == "2026-02-16T00:00:00+10:00"
    assert params["timeMax"] == "2026-02-23T00:00:00+10:00"
    assert params["singleEvents"] == "true"
    assert params["showDeleted"] == "false"
    assert params.get_list("privateExtendedProperty") == ["dispatchSource=sparkeryDispatch"]
    assert list_request.headers["Authorization"] == "Bearer token-1"
    await service.calendar_client.close()


@pytest.mark.asyncio
async def test_sync_removes_events_of_cancelled_jobs(fake_calendar, fake_flow, job_factory):
    cancelled_event = fake_calendar.add_event("job-b")
    service = _build_service(fake_calendar, fake_flow)

    result = await service.sync_week(
        [job_factory("job-b", status="cancelled")], WEEK_START, WEEK_END, timezone=BRISBANE
    )

    assert (result.created, result.updated, result.deleted) == (0, 0, 1)
    assert result.synced_jobs == 0
    assert cancelled_event not in fake_calendar.events
    await service.calendar_client.close()


@pytest.mark.asyncio
async def test_sync_follows_pagination(calendar_factory, fake_flow, job_factory):
    paged_calendar = calendar_factory(page_size=2)
    for index in range(5):
        paged_calendar.add_event(f"job-{index}")
    service = _build_service(paged_calendar, fake_flow)
    jobs = [job_factory(f"job-{index}") for index in range(5)]

    result = await service.sync_week(jobs, WEEK_START, WEEK_END, timezone=BRISBANE)

    assert (result.created, result.updated, result.deleted) == (0, 5, 0)
    list_requests = paged_calendar.requests_for("GET")
    assert [request.url.params.get("pageToken") for request in list_requests] == [None, "2", "4"]
    await service.calendar_client.close()


@pytest.mark.asyncio
async def test_sync_aborts_pass_on_request_failure(fake_calendar, fake_flow, job_factory):
    stale_event = fake_calendar.add_event("job-gone")
    fake_calendar.failures["POST"] = 403
    service = _build_service(fake_calendar, fake_flow, max_concurrency=1)

    with pytest.raises(GoogleCalendarError) as exc_info:
        await service.sync_week([job_factory("job-a")], WEEK_START, WEEK_END, timezone=BRISBANE)

    assert exc_info.value.status_code == 403
    assert fake_calendar.requests_for("DELETE") == []
    assert stale_event in fake_calendar.events

    # Next pass repairs the partial state
    del fake_calendar.failures["POST"]
    result = await service.sync_week([job_factory("job-a")], WEEK_START, WEEK_END, timezone=BRISBANE)
    assert (result.created, result.deleted) == (1, 1)
    await service.calendar_client.close()


@pytest.mark.asyncio
async def test_sync_unauthorized_drops_cached_token(fake_calendar, fake_flow):
    fake_calendar.failures["GET"] = 401
    service = _build_service(fake_calendar, fake_flow)

    with pytest.raises(GoogleCalendarError):
        await service.sync_week([], WEEK_START, WEEK_END, timezone=BRISBANE)

    assert service.token_broker.cached_token is None
    await service.calendar_client.close()


@pytest.mark.asyncio
async def test_sync_fails_fast_without_client_id(monkeypatch, fake_calendar, fake_flow):
    monkeypatch.setattr(settings, "GOOGLE_CALENDAR_CLIENT_ID", None)
    client = GoogleCalendarService(transport=fake_calendar.transport)
    service = CalendarSyncService(
        calendar_client=client, token_broker=AccessTokenBroker(flow=fake_flow)
    )

    with pytest.raises(CalendarSyncConfigError):
        await service.sync_week([], WEEK_START, WEEK_END, timezone=BRISBANE)

    assert fake_flow.calls == []
    assert fake_calendar.requests == []


@pytest.mark.asyncio
async def test_sync_rejects_unknown_configured_zone_before_any_request(
    monkeypatch, fake_calendar, fake_flow, job_factory
):
    monkeypatch.setattr(settings, "DISPATCH_TIMEZONE", "Mars/Olympus")
    service = _build_service(fake_calendar, fake_flow)

    with pytest.raises(CalendarSyncConfigError):
        await service.sync_week([job_factory("job-a")], WEEK_START, WEEK_END)

    assert fake_flow.calls == []
    assert fake_calendar.requests == []


@pytest.mark.asyncio
async def test_sync_in_host_zone_places_jobs_either_side_of_dst_change(
    monkeypatch, host_timezone, fake_calendar, fake_flow, job_factory
):
    # Sydney daylight time ends on Sunday 2026-04-05
    monkeypatch.setattr(settings, "DISPATCH_TIMEZONE", None)
    host_timezone("AEST-10AEDT,M10.1.0,M4.1.0/3")
    service = _build_service(fake_calendar, fake_flow)
    jobs = [
        job_factory("job-before", scheduled_date=date(2026, 4, 3)),
        job_factory("job-after", scheduled_date=date(2026, 4, 6)),
    ]

    result = await service.sync_week(jobs, date(2026, 4, 3), date(2026, 4, 9))

    assert result.created == 2
    starts = {
        CalendarEvent(event).dispatch_job_id: event["start"]
        for event in fake_calendar.events.values()
    }
    assert starts == {
        "job-before": {"dateTime": "2026-04-03T09:00:00+11:00"},
        "job-after": {"dateTime": "2026-04-06T09:00:00+10:00"},
    }
    params = fake_calendar.requests_for("GET")[0].url.params
    assert params["timeMin"] == "2026-04-03T00:00:00+11:00"
    assert params["timeMax"] == "2026-04-10T00:00:00+10:00"
    await service.calendar_client.close()


@pytest.mark.asyncio
async def test_skip_unchanged_avoids_rewriting_identical_events(fake_calendar, fake_flow, job_factory):
    service = _build_service(fake_calendar, fake_flow, skip_unchanged=True)
    job = job_factory("job-a")

    first = await service.sync_week([job], WEEK_START, WEEK_END, timezone=BRISBANE)
    second = await service.sync_week([job], WEEK_START, WEEK_END, timezone=BRISBANE)
    renamed = job.model_copy(update={"title": "Deep clean"})
    third = await service.sync_week([renamed], WEEK_START, WEEK_END, timezone=BRISBANE)

    assert (first.created, first.updated, first.skipped) == (1, 0, 0)
    assert (second.created, second.updated, second.skipped) == (0, 0, 1)
    assert (third.updated, third.skipped) == (1, 0)
    assert len(fake_calendar.requests_for("PATCH")) == 1
    await service.calendar_client.close()


class RecordingCalendarClient:
    """Calendar client double that tracks concurrency and call order."""

    def __init__(self, events: list[dict] | None = None):
        self.events = [CalendarEvent(event) for event in events or []]
        self.operations: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def list_events(self, access_token, calendar_id, time_min, time_max):
        return self.events

    async def _call(self, name: str):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(0.01)
        self.operations.append(name)
        self.in_flight -= 1

    async def create_event(self, access_token, payload, calendar_id):
        await self._call("create")

    async def update_event(self, access_token, event_id, payload, calendar_id):
        await self._call("update")

    async def delete_event(self, access_token, event_id, calendar_id):
        await self._call("delete")
        return True


def _tagged(event_id: str, job_id: str) -> dict:
    return {
        "id": event_id,
        "extendedProperties": {
            "private": {"dispatchSource": "sparkeryDispatch", "dispatchJobId": job_id}
        },
    }


@pytest.mark.asyncio
async def test_sync_fan_out_is_bounded_and_deletes_run_last(fake_flow, job_factory):
    client = RecordingCalendarClient(
        events=[_tagged("evt-old-1", "gone-1"), _tagged("evt-old-2", "gone-2")]
    )
    service = CalendarSyncService(
        calendar_client=client,
        token_broker=AccessTokenBroker(flow=fake_flow, client_id="client-123"),
        client_id="client-123",
        calendar_id="dispatch@group.calendar.google.com",
        max_concurrency=3,
    )
    jobs = [job_factory(f"job-{index}") for index in range(10)]

    result = await service.sync_week(jobs, WEEK_START, WEEK_END, timezone=BRISBANE)

    assert result.created == 10
    assert result.deleted == 2
    assert result.calendar_id == "dispatch@group.calendar.google.com"
    assert 1 < client.max_in_flight <= 3
    assert client.operations[-2:] == ["delete", "delete"]
    assert "delete" not in client.operations[:-2]


@pytest.mark.asyncio
async def test_duplicate_events_for_one_job_are_collapsed(fake_calendar, fake_flow, job_factory):
    fake_calendar.add_event("job-a")
    fake_calendar.add_event("job-a")
    service = _build_service(fake_calendar, fake_flow)

    result = await service.sync_week([job_factory("job-a")], WEEK_START, WEEK_END, timezone=BRISBANE)

    assert (result.created, result.updated, result.deleted) == (0, 1, 1)
    assert len(fake_calendar.events) == 1
    await service.calendar_client.close()
