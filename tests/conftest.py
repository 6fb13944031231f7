import json
import time as time_module
from datetime import UTC, date, datetime, time, timedelta

import httpx
import pytest

from dispatch_engine.models.api.dispatch_request import CreateDispatchJobPayload
from dispatch_engine.models.domain.calendar_domain import (
    DISPATCH_JOB_ID_KEY,
    DISPATCH_SOURCE_KEY,
    DISPATCH_SOURCE_TAG,
)
from dispatch_engine.models.domain.dispatch_domain import DispatchJob
from dispatch_engine.models.domain.oauth_domain import AccessToken
from dispatch_engine.repositories.local_repository import LocalDispatchRepository
from dispatch_engine.repositories.supabase_repository import SupabaseDispatchRepository
from dispatch_engine.services.dispatch_service import DispatchJobStore


class FakeGoogleCalendar:
    """In-memory Calendar API behind an httpx.MockTransport."""

    def __init__(self, page_size: int = 250):
        self.events: dict[str, dict] = {}
        self.page_size = page_size
        self.requests: list[httpx.Request] = []
        self.failures: dict[str, int] = {}
        self._next_id = 1

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def add_event(self, job_id: str | None, tagged: bool = True, **fields) -> str:
        event_id = f"evt-{self._next_id}"
        self._next_id += 1
        private = {}
        if tagged:
            private[DISPATCH_SOURCE_KEY] = DISPATCH_SOURCE_TAG
        if job_id:
            private[DISPATCH_JOB_ID_KEY] = job_id
        self.events[event_id] = {
            "id": event_id,
            "summary": fields.get("summary", "existing"),
            "start": {"dateTime": "2026-02-17T09:00:00+10:00"},
            "end": {"dateTime": "2026-02-17T11:00:00+10:00"},
            "extendedProperties": {"private": private},
        }
        return event_id

    def requests_for(self, method: str) -> list[httpx.Request]:
        return [request for request in self.requests if request.method == method]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method in self.failures:
            status_code = self.failures[request.method]
            return httpx.Response(
                status_code, json={"error": {"code": status_code, "message": "injected failure"}}
            )

        parts = request.url.path.split("/events")
        event_id = parts[1].strip("/") if len(parts) > 1 else ""

        if request.method == "GET":
            return self._list(request)
        if request.method == "POST":
            body = json.loads(request.content)
            new_id = f"evt-{self._next_id}"
            self._next_id += 1
            self.events[new_id] = {**body, "id": new_id}
            return httpx.Response(200, json=self.events[new_id])
        if event_id not in self.events:
            return httpx.Response(404, json={"error": {"code": 404, "message": "Not Found"}})
        if request.method == "PATCH":
            self.events[event_id].update(json.loads(request.content))
            return httpx.Response(200, json=self.events[event_id])
        if request.method == "DELETE":
            del self.events[event_id]
            return httpx.Response(204)
        return httpx.Response(405)

    def _list(self, request: httpx.Request) -> httpx.Response:
        filters = [
            value.split("=", 1) for value in request.url.params.get_list("privateExtendedProperty")
        ]
        matching = [
            event
            for event in self.events.values()
            if all(
                event.get("extendedProperties", {}).get("private", {}).get(key) == value
                for key, value in filters
            )
        ]
        offset = int(request.url.params.get("pageToken") or 0)
        page = matching[offset : offset + self.page_size]
        body: dict = {"items": page}
        if offset + self.page_size < len(matching):
            body["nextPageToken"] = str(offset + self.page_size)
        return httpx.Response(200, json=body)


class FakeAuthorizationFlow:
    """Records authorization prompts and hands out one-hour tokens."""

    def __init__(self, lifetime_seconds: int = 3600, error: Exception | None = None):
        self.calls: list[tuple[str, str]] = []
        self.lifetime_seconds = lifetime_seconds
        self.error = error

    async def authorize(self, client_id: str, prompt: str) -> AccessToken:
        self.calls.append((client_id, prompt))
        if self.error:
            raise self.error
        return AccessToken(
            access_token=f"token-{len(self.calls)}",
            scope="https://www.googleapis.com/auth/calendar.events",
            expires_at=datetime.now(UTC) + timedelta(seconds=self.lifetime_seconds),
        )


def make_job(job_id: str, **overrides) -> DispatchJob:
    fields = {
        "id": job_id,
        "title": f"Clean {job_id}",
        "service_type": "regular",
        "scheduled_date": date(2026, 2, 17),
        "scheduled_start_time": time(9, 0),
        "scheduled_end_time": time(11, 0),
    }
    fields.update(overrides)
    return DispatchJob(**fields)


@pytest.fixture
def fake_calendar():
    return FakeGoogleCalendar()


@pytest.fixture
def calendar_factory():
    return FakeGoogleCalendar


@pytest.fixture
def fake_flow():
    return FakeAuthorizationFlow()


@pytest.fixture
def flow_factory():
    return FakeAuthorizationFlow


@pytest.fixture
def job_factory():
    return make_job


@pytest.fixture
def store():
    return DispatchJobStore(
        local=LocalDispatchRepository(),
        remote=SupabaseDispatchRepository(url="", anon_key=""),
        backend="local",
    )


@pytest.fixture
def job_payload():
    def _build(**overrides) -> CreateDispatchJobPayload:
        fields = {
            "title": "End of lease clean",
            "service_type": "bond",
            "scheduled_date": date(2026, 2, 17),
            "scheduled_start_time": time(9, 0),
            "scheduled_end_time": time(12, 0),
            "customer_name": "Jane Citizen",
            "customer_address": "1 Queen St, Brisbane",
        }
        fields.update(overrides)
        return CreateDispatchJobPayload(**fields)

    return _build


@pytest.fixture
def host_timezone(monkeypatch):
    """Switch the process local zone via TZ, restoring it afterwards."""
    if not hasattr(time_module, "tzset"):
        pytest.skip("time.tzset is unavailable on this platform")

    def _set(tz_value: str) -> None:
        monkeypatch.setenv("TZ", tz_value)
        time_module.tzset()

    yield _set
    monkeypatch.undo()
    time_module.tzset()
