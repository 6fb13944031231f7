# dispatch_engine/models/domain/calendar_domain.py
"""
Calendar Domain Models
Domain models for calendar events managed by the dispatch sync engine.
"""

from datetime import UTC, datetime

from pydantic import BaseModel

# Private extended-property keys stamped on every managed event
DISPATCH_SOURCE_KEY = "dispatchSource"
DISPATCH_JOB_ID_KEY = "dispatchJobId"
DISPATCH_PAYLOAD_HASH_KEY = "dispatchPayloadHash"
DISPATCH_SOURCE_TAG = "sparkeryDispatch"


class CalendarEvent:
    """Domain model for Google Calendar events with ownership tags."""

    def __init__(self, data: dict):
        self.id = data.get("id")
        self.summary = data.get("summary", "")
        self.description = data.get("description", "")
        self.start_time = self._parse_datetime(data.get("start", {}))
        self.end_time = self._parse_datetime(data.get("end", {}))
        self.timezone = data.get("start", {}).get("timeZone", "UTC")
        self.status = data.get("status", "confirmed")
        self.location = data.get("location", "")
        self.private_properties: dict[str, str] = (
            data.get("extendedProperties", {}).get("private", {}) or {}
        )
        self.raw_data = data

    def _parse_datetime(self, dt_data: dict) -> datetime | None:
        """Parse datetime from Google Calendar format."""
        if not dt_data:
            return None

        # Handle all-day events (date only)
        if "date" in dt_data:
            return datetime.strptime(dt_data["date"], "%Y-%m-%d").replace(tzinfo=UTC)

        if "dateTime" in dt_data:
            try:
                return datetime.fromisoformat(dt_data["dateTime"].replace("Z", "+00:00"))
            except ValueError:
                return None

        return None

    @property
    def dispatch_job_id(self) -> str | None:
        return self.private_properties.get(DISPATCH_JOB_ID_KEY) or None

    @property
    def payload_hash(self) -> str | None:
        return self.private_properties.get(DISPATCH_PAYLOAD_HASH_KEY) or None

    def is_dispatch_managed(self) -> bool:
        """Check if this event carries the dispatch ownership tag."""
        return self.private_properties.get(DISPATCH_SOURCE_KEY) == DISPATCH_SOURCE_TAG


class SyncResult(BaseModel):
    """Tallies for one calendar reconciliation pass."""

    created: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    synced_jobs: int = 0
    calendar_id: str
