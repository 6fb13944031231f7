# dispatch_engine/models/api/dispatch_request.py
"""
Dispatch request models.
Used by the job store and routes for input validation.
"""

from datetime import date, time

from pydantic import BaseModel, Field

from dispatch_engine.models.domain.dispatch_domain import (
    DispatchEmployeeStatus,
    DispatchJobStatus,
    DispatchServiceType,
    PropertyType,
)


class CreateDispatchJobPayload(BaseModel):
    """Request for creating a dispatch job."""

    title: str = Field(..., min_length=1, max_length=200, description="Job title")
    service_type: DispatchServiceType = Field(..., description="Service category")
    priority: int = Field(default=3, ge=1, le=5, description="Priority 1 (highest) to 5")
    scheduled_date: date = Field(..., description="Calendar date of the visit")
    scheduled_start_time: time = Field(..., description="Local start time")
    scheduled_end_time: time = Field(..., description="Local end time")
    description: str | None = Field(default=None, max_length=2000)
    notes: str | None = Field(default=None, max_length=2000)
    image_urls: list[str] | None = None
    customer_profile_id: str | None = None
    customer_name: str | None = None
    customer_address: str | None = None
    customer_phone: str | None = None
    property_type: PropertyType | None = None
    estimated_duration_hours: float | None = Field(default=None, ge=0)


class UpdateDispatchJobPayload(BaseModel):
    """Partial update for a dispatch job. Unset fields are left untouched."""

    title: str | None = Field(default=None, min_length=1, max_length=200)
    service_type: DispatchServiceType | None = None
    status: DispatchJobStatus | None = None
    priority: int | None = Field(default=None, ge=1, le=5)
    scheduled_date: date | None = None
    scheduled_start_time: time | None = None
    scheduled_end_time: time | None = None
    assigned_employee_ids: list[str] | None = None
    description: str | None = None
    notes: str | None = None
    image_urls: list[str] | None = None
    customer_profile_id: str | None = None
    customer_name: str | None = None
    customer_address: str | None = None
    customer_phone: str | None = None
    property_type: PropertyType | None = None
    estimated_duration_hours: float | None = Field(default=None, ge=0)


class AssignJobRequest(BaseModel):
    employee_id: str = Field(..., min_length=1)


class UpdateJobStatusRequest(BaseModel):
    status: DispatchJobStatus


class UpsertDispatchEmployeePayload(BaseModel):
    id: str | None = None
    name: str = Field(..., min_length=1)
    name_cn: str | None = None
    phone: str | None = None
    skills: list[DispatchServiceType] = Field(default_factory=list)
    status: DispatchEmployeeStatus = "available"


class UpsertDispatchCustomerProfilePayload(BaseModel):
    """Customer profile upsert. Records are matched by ``id``."""

    id: str | None = None
    name: str = Field(..., min_length=1)
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


class WeekWindowRequest(BaseModel):
    """Inclusive calendar-date window, usually Monday to Sunday."""

    week_start: date
    week_end: date
    timezone: str | None = Field(
        default=None, description="IANA zone for calendar times (default: dispatcher zone)"
    )
