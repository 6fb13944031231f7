# dispatch_engine/models/domain/dispatch_domain.py
"""
Dispatch Domain Models
Jobs, employees, customer profiles and schedules owned by the job store.
"""

import secrets
import time as time_module
from datetime import UTC, date, datetime, time
from typing import Literal

from pydantic import BaseModel, Field

DispatchServiceType = Literal["bond", "airbnb", "regular", "commercial"]
DispatchJobStatus = Literal["pending", "assigned", "in_progress", "completed", "cancelled"]
DispatchEmployeeStatus = Literal["available", "off"]
PropertyType = Literal["apartment", "townhouse", "house"]
ScheduleStatus = Literal["available", "assigned", "unavailable", "off"]

JOB_STATUSES: tuple[str, ...] = ("pending", "assigned", "in_progress", "completed", "cancelled")


def utc_now() -> datetime:
    return datetime.now(UTC)


def generate_id(prefix: str) -> str:
    """Generate a store id such as ``job-1739612345678-k3f9qa``."""
    millis = int(time_module.time() * 1000)
    return f"{prefix}-{millis}-{secrets.token_hex(3)}"


class DispatchJob(BaseModel):
    """Domain model for a scheduled unit of field work."""

    id: str
    title: str
    service_type: DispatchServiceType
    status: DispatchJobStatus = "pending"
    priority: int = Field(default=3, ge=1, le=5)
    scheduled_date: date
    scheduled_start_time: time
    scheduled_end_time: time
    assigned_employee_ids: list[str] = Field(default_factory=list)
    description: str | None = None
    notes: str | None = None
    image_urls: list[str] | None = None
    customer_profile_id: str | None = None
    customer_name: str | None = None
    customer_address: str | None = None
    customer_phone: str | None = None
    property_type: PropertyType | None = None
    estimated_duration_hours: float | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def is_active(self) -> bool:
        """Check if the job still belongs on the calendar."""
        return self.status != "cancelled"

    def is_within(self, week_start: date | None, week_end: date | None) -> bool:
        """Check if the job date falls in the closed interval [week_start, week_end]."""
        if week_start and self.scheduled_date < week_start:
            return False
        if week_end and self.scheduled_date > week_end:
            return False
        return True

    def routing_key(self) -> tuple[date, time]:
        return (self.scheduled_date, self.scheduled_start_time)


class DispatchEmployee(BaseModel):
    """Roster entry for a field worker."""

    id: str
    name: str
    name_cn: str | None = None
    phone: str | None = None
    skills: list[DispatchServiceType] = Field(default_factory=list)
    status: DispatchEmployeeStatus = "available"


class DispatchCustomerProfile(BaseModel):
    """Customer record with optional weekly recurring-service settings."""

    id: str
    name: str
    address: str | None = None
    phone: str | None = None
    default_job_title: str | None = None
    default_description: str | None = None
    default_notes: str | None = None
    recurring_enabled: bool | None = None
    recurring_weekday: int | None = Field(default=None, ge=1, le=7)
    recurring_start_time: time | None = None
    recurring_end_time: time | None = None
    recurring_service_type: DispatchServiceType | None = None
    recurring_priority: int | None = Field(default=None, ge=1, le=5)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def has_recurring_schedule(self) -> bool:
        return bool(
            self.recurring_enabled
            and self.recurring_weekday
            and self.recurring_start_time
            and self.recurring_end_time
        )


class EmployeeSchedule(BaseModel):
    id: str
    employee_id: str
    schedule_date: date
    time_start: time
    time_end: time
    status: ScheduleStatus = "available"


class DispatchStorage(BaseModel):
    """Complete local state: the unit exported and restored by backups."""

    jobs: list[DispatchJob] = Field(default_factory=list)
    employees: list[DispatchEmployee] = Field(default_factory=list)
    schedules: list[EmployeeSchedule] = Field(default_factory=list)
    customer_profiles: list[DispatchCustomerProfile] = Field(default_factory=list)


class DispatchBackup(BaseModel):
    version: Literal["v1"] = "v1"
    exported_at: datetime = Field(default_factory=utc_now)
    data: DispatchStorage


class MigrationSummary(BaseModel):
    """Rows pushed per entity type by a local-to-remote migration."""

    employees: int = 0
    customer_profiles: int = 0
    jobs: int = 0
