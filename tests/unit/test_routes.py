from datetime import date

import pytest
from fastapi.testclient import TestClient

from dispatch_engine.main import app
from dispatch_engine.models.domain.calendar_domain import SyncResult
from dispatch_engine.routes.calendar import get_sync_service
from dispatch_engine.routes.dispatch import get_job_store
from dispatch_engine.routes.travel import get_travel_estimator
from dispatch_engine.services.calendar.sync_service import CalendarSyncConfigError
from dispatch_engine.services.maps.google_maps_client import GoogleMapsService
from dispatch_engine.services.token_broker import AccessTokenError
from dispatch_engine.services.travel_service import TravelEstimator

JOB_BODY = {
    "title": "End of lease clean",
    "service_type": "bond",
    "scheduled_date": "2026-02-21",
    "scheduled_start_time": "09:00",
    "scheduled_end_time": "12:00",
    "customer_name": "Jane Citizen",
}


class StubSyncService:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls = []

    async def sync_week(self, jobs, week_start, week_end, timezone=None):
        self.calls.append((jobs, week_start, week_end, timezone))
        if self.error:
            raise self.error
        return SyncResult(created=len(jobs), synced_jobs=len(jobs), calendar_id="primary")


@pytest.fixture
def client(store):
    app.dependency_overrides[get_job_store] = lambda: store
    app.dependency_overrides[get_travel_estimator] = lambda: TravelEstimator(
        maps_client=GoogleMapsService(api_key="")
    )
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_healthz_reports_integrations(client):
    response = client.get("/healthz")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert set(body["integrations"]) == {"google_calendar", "google_maps", "supabase"}


def test_job_lifecycle_over_http(client):
    created = client.post("/dispatch/jobs", json=JOB_BODY)
    assert created.status_code == 201
    job_id = created.json()["id"]

    assigned = client.post(f"/dispatch/jobs/{job_id}/assign", json={"employee_id": "emp-1"})
    completed = client.post(f"/dispatch/jobs/{job_id}/status", json={"status": "completed"})
    week = client.get("/dispatch/jobs", params={"week_start": "2026-02-16", "week_end": "2026-02-22"})
    later = client.get("/dispatch/jobs", params={"week_start": "2026-03-01"})

    assert assigned.json()["status"] == "assigned"
    assert assigned.json()["assigned_employee_ids"] == ["emp-1"]
    assert completed.json()["status"] == "completed"
    assert [job["id"] for job in week.json()] == [job_id]
    assert later.json() == []

    assert client.delete(f"/dispatch/jobs/{job_id}").status_code == 204
    assert client.get(f"/dispatch/jobs/{job_id}").status_code == 404


def test_store_errors_map_to_status_codes(client):
    inverted = client.post(
        "/dispatch/jobs", json={**JOB_BODY, "scheduled_start_time": "13:00"}
    )
    missing = client.post("/dispatch/jobs/job-missing/assign", json={"employee_id": "emp-1"})
    migrate = client.post("/dispatch/migrate")

    assert inverted.status_code == 422
    assert missing.status_code == 404
    assert migrate.status_code == 503


def test_backup_export_and_import(client):
    client.post("/dispatch/jobs", json=JOB_BODY)
    backup = client.get("/dispatch/backup")
    assert backup.headers["content-type"].startswith("application/json")

    client.post("/dispatch/jobs", json={**JOB_BODY, "title": "Extra"})
    restored = client.post(
        "/dispatch/backup", content=backup.text, headers={"Content-Type": "application/json"}
    )
    invalid = client.post("/dispatch/backup", content="{}", headers={"Content-Type": "application/json"})

    assert restored.status_code == 200
    assert restored.json()["jobs"] == 1
    assert [job["title"] for job in client.get("/dispatch/jobs").json()] == ["End of lease clean"]
    assert invalid.status_code == 400


def test_calendar_sync_passes_week_jobs(client):
    stub = StubSyncService()
    app.dependency_overrides[get_sync_service] = lambda: stub
    client.post("/dispatch/jobs", json=JOB_BODY)
    client.post("/dispatch/jobs", json={**JOB_BODY, "scheduled_date": "2026-03-01"})

    response = client.post(
        "/calendar/sync",
        json={"week_start": "2026-02-16", "week_end": "2026-02-22", "timezone": "Australia/Brisbane"},
    )

    assert response.status_code == 200
    assert response.json()["created"] == 1
    jobs, week_start, week_end, timezone = stub.calls[0]
    assert [job.scheduled_date for job in jobs] == [date(2026, 2, 21)]
    assert (week_start, week_end, timezone) == (date(2026, 2, 16), date(2026, 2, 22), "Australia/Brisbane")


@pytest.mark.parametrize(
    ("error", "status_code"),
    [
        (CalendarSyncConfigError("not configured"), 503),
        (AccessTokenError("denied", error_code="access_denied"), 401),
    ],
)
def test_calendar_sync_error_mapping(client, error, status_code):
    app.dependency_overrides[get_sync_service] = lambda: StubSyncService(error=error)

    response = client.post("/calendar/sync", json={"week_start": "2026-02-16", "week_end": "2026-02-22"})

    assert response.status_code == status_code


def test_travel_route_returns_legs_and_navigation_link(client):
    response = client.post(
        "/travel/route",
        json={
            "origin": {"lat": 0, "lng": 0},
            "stops": [{"lat": 0, "lng": 1}, {"lat": 0, "lng": 2}],
        },
    )

    body = response.json()
    assert response.status_code == 200
    assert [leg["estimate"]["source"] for leg in body["legs"]] == ["fallback", "fallback"]
    assert body["total_distance_km"] == pytest.approx(222.39, abs=0.02)
    assert body["navigation_url"].startswith("https://www.google.com/maps/dir/?api=1")


def test_geocode_without_key_is_unavailable(client):
    response = client.post("/travel/geocode", json={"address": "1 Queen St"})

    assert response.status_code == 503
