"""
Dispatch Job Store
Authoritative record of dispatch jobs, employees and customer profiles.
Handles job lifecycle, recurring job generation, backup/restore and the
one-time migration of local data to Supabase.
"""

import asyncio
import json
from datetime import date, timedelta

from pydantic import ValidationError

from dispatch_engine.config import settings
from dispatch_engine.infrastructure.observability.logging import get_logger
from dispatch_engine.models.api.dispatch_request import (
    CreateDispatchJobPayload,
    UpdateDispatchJobPayload,
    UpsertDispatchCustomerProfilePayload,
    UpsertDispatchEmployeePayload,
)
from dispatch_engine.models.domain.dispatch_domain import (
    JOB_STATUSES,
    DispatchBackup,
    DispatchCustomerProfile,
    DispatchEmployee,
    DispatchJob,
    DispatchStorage,
    EmployeeSchedule,
    MigrationSummary,
    generate_id,
    utc_now,
)
from dispatch_engine.repositories.local_repository import LocalDispatchRepository
from dispatch_engine.repositories.supabase_repository import (
    CUSTOMER_PROFILES_TABLE,
    EMPLOYEES_TABLE,
    JOBS_TABLE,
    SupabaseConfigError,
    SupabaseDispatchRepository,
    customer_profile_to_row,
    employee_to_row,
    job_to_row,
)

logger = get_logger(__name__)


class DispatchNotFoundError(Exception):
    """Raised when an operation references an unknown job id."""

    def __init__(self, message: str, job_id: str | None = None):
        super().__init__(message)
        self.job_id = job_id


class DispatchValidationError(Exception):
    """Raised for invalid scheduling input."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class BackupFormatError(Exception):
    """Raised when a backup snapshot cannot be parsed."""


def sequence_jobs_for_routing(jobs: list[DispatchJob]) -> list[DispatchJob]:
    """
    Order jobs by scheduled date, then start time.

    This is the visiting order handed to the travel estimator, which never
    reorders stops itself.
    """
    return sorted(jobs, key=lambda job: job.routing_key())


class DispatchJobStore:
    """
    Job store with local-first persistence and an optional remote backend.

    Every read-modify-write runs behind a single asyncio.Lock so concurrent
    callers serialise instead of overwriting each other.
    """

    def __init__(
        self,
        local: LocalDispatchRepository | None = None,
        remote: SupabaseDispatchRepository | None = None,
        backend: str | None = None,
    ):
        self.local = local or LocalDispatchRepository(settings.DISPATCH_STORAGE_PATH)
        self.remote = remote or SupabaseDispatchRepository()
        self.backend = backend or settings.DISPATCH_STORAGE_BACKEND
        self._gate = asyncio.Lock()

    @property
    def repository(self) -> LocalDispatchRepository | SupabaseDispatchRepository:
        """Repository serving job, employee and profile operations."""
        if self.backend == "supabase":
            return self.remote
        return self.local

    async def close(self) -> None:
        await self.remote.close()

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def create_job(self, payload: CreateDispatchJobPayload) -> DispatchJob:
        """
        Validate scheduling fields and persist a new pending job.

        Raises:
            DispatchValidationError: If the time window is empty or inverted
        """
        if not payload.title.strip():
            raise DispatchValidationError("Job title is required", field="title")
        if payload.scheduled_start_time >= payload.scheduled_end_time:
            raise DispatchValidationError(
                "Scheduled start time must be before end time",
                field="scheduled_start_time",
            )

        now = utc_now()
        job = DispatchJob(
            id=generate_id("job"),
            status="pending",
            assigned_employee_ids=[],
            created_at=now,
            updated_at=now,
            **payload.model_dump(exclude_none=True),
        )

        async with self._gate:
            saved = await self.repository.save_job(job)

        logger.info(
            "Dispatch job created",
            job_id=saved.id,
            scheduled_date=saved.scheduled_date.isoformat(),
            service_type=saved.service_type,
            backend=self.backend,
        )
        return saved

    async def get_jobs(
        self, week_start: date | None = None, week_end: date | None = None
    ) -> list[DispatchJob]:
        """Return all jobs, or those whose date lies in [week_start, week_end]."""
        return await self.repository.list_jobs(week_start, week_end)

    async def get_job(self, job_id: str) -> DispatchJob:
        job = await self.repository.get_job(job_id)
        if not job:
            raise DispatchNotFoundError(f"Job not found: {job_id}", job_id=job_id)
        return job

    async def update_job(self, job_id: str, patch: UpdateDispatchJobPayload) -> DispatchJob:
        """Apply a partial update. Fields left unset in ``patch`` are kept."""
        changes = patch.model_dump(exclude_unset=True)
        async with self._gate:
            return await self._apply_changes(job_id, changes)

    async def _apply_changes(self, job_id: str, changes: dict) -> DispatchJob:
        existing = await self.repository.get_job(job_id)
        if not existing:
            raise DispatchNotFoundError(f"Job not found: {job_id}", job_id=job_id)

        try:
            updated = DispatchJob.model_validate(
                {**existing.model_dump(), **changes, "updated_at": utc_now()}
            )
        except ValidationError as e:
            raise DispatchValidationError(f"Invalid job update: {e}") from e
        if updated.scheduled_start_time >= updated.scheduled_end_time:
            raise DispatchValidationError(
                "Scheduled start time must be before end time",
                field="scheduled_start_time",
            )
        return await self.repository.save_job(updated)

    async def assign_job(self, job_id: str, employee_id: str) -> DispatchJob:
        """
        Add ``employee_id`` to the job's assignees and mark it assigned.

        Adding an employee who is already assigned leaves membership unchanged.
        The status becomes ``assigned`` regardless of the prior status.
        """
        async with self._gate:
            existing = await self.repository.get_job(job_id)
            if not existing:
                raise DispatchNotFoundError(f"Job not found: {job_id}", job_id=job_id)

            assignees = list(existing.assigned_employee_ids)
            if employee_id not in assignees:
                assignees.append(employee_id)

            job = await self._apply_changes(
                job_id, {"assigned_employee_ids": assignees, "status": "assigned"}
            )

        logger.info(
            "Dispatch job assigned",
            job_id=job_id,
            employee_id=employee_id,
            assignee_count=len(job.assigned_employee_ids),
        )
        return job

    async def update_job_status(self, job_id: str, status: str) -> DispatchJob:
        """Overwrite the job status. Any explicit transition is allowed."""
        if status not in JOB_STATUSES:
            raise DispatchValidationError(f"Unknown job status '{status}'", field="status")

        async with self._gate:
            job = await self._apply_changes(job_id, {"status": status})

        logger.info("Dispatch job status updated", job_id=job_id, status=status)
        return job

    async def delete_job(self, job_id: str) -> None:
        """Remove a job. Deleting an absent job is a no-op."""
        async with self._gate:
            removed = await self.repository.delete_job(job_id)
        logger.info("Dispatch job deleted", job_id=job_id, removed=removed)

    # ------------------------------------------------------------------
    # Employees
    # ------------------------------------------------------------------

    async def get_employees(self) -> list[DispatchEmployee]:
        return await self.repository.list_employees()

    async def upsert_employee(self, payload: UpsertDispatchEmployeePayload) -> DispatchEmployee:
        employee = DispatchEmployee(
            id=payload.id or generate_id("emp"),
            name=payload.name,
            name_cn=payload.name_cn or None,
            phone=payload.phone or None,
            skills=payload.skills,
            status=payload.status,
        )
        async with self._gate:
            saved = await self.repository.save_employee(employee)
        logger.info("Dispatch employee upserted", employee_id=saved.id)
        return saved

    async def upsert_employee_schedule(self, schedule: EmployeeSchedule) -> EmployeeSchedule:
        """Schedules are local-only and travel with backups."""
        async with self._gate:
            return await self.local.save_schedule(schedule)

    # ------------------------------------------------------------------
    # Customer profiles
    # ------------------------------------------------------------------

    async def get_customer_profiles(self) -> list[DispatchCustomerProfile]:
        return await self.repository.list_customer_profiles()

    async def upsert_customer_profile(
        self, payload: UpsertDispatchCustomerProfilePayload
    ) -> DispatchCustomerProfile:
        """
        Insert a profile, or merge the payload into the one with the same id.

        Fields the payload does not set keep their stored values, so repeated
        upserts never erase data or create duplicates. The original
        ``created_at`` is kept on overwrite.
        """
        async with self._gate:
            now = utc_now()
            profile_id = payload.id or generate_id("customer")
            existing = await self.repository.get_customer_profile(profile_id)

            base = existing.model_dump() if existing else {"created_at": now}
            changes = payload.model_dump(exclude={"id"}, exclude_unset=True)
            profile = DispatchCustomerProfile.model_validate(
                {**base, **changes, "id": profile_id, "updated_at": now}
            )
            saved = await self.repository.save_customer_profile(profile)

        logger.info(
            "Customer profile upserted",
            profile_id=profile_id,
            created=existing is None,
        )
        return saved

    async def create_jobs_from_recurring_profiles(
        self, week_start: date, week_end: date
    ) -> list[DispatchJob]:
        """
        Create this week's job for every profile with recurring service enabled.

        A profile yields at most one job, dated ``week_start + (weekday - 1)``.
        It is skipped when a job with the same profile, date and start time
        already exists, so calling this twice for one week is safe.
        """
        profiles = await self.get_customer_profiles()
        existing_jobs = await self.get_jobs(week_start, week_end)
        existing_keys = {
            (job.customer_profile_id, job.scheduled_date, job.scheduled_start_time)
            for job in existing_jobs
            if job.customer_profile_id
        }

        created: list[DispatchJob] = []
        for profile in profiles:
            if not profile.has_recurring_schedule():
                continue

            scheduled_date = week_start + timedelta(days=profile.recurring_weekday - 1)
            if scheduled_date < week_start or scheduled_date > week_end:
                continue

            key = (profile.id, scheduled_date, profile.recurring_start_time)
            if key in existing_keys:
                continue

            payload = CreateDispatchJobPayload(
                title=profile.default_job_title or f"{profile.name} Recurring Service",
                service_type=profile.recurring_service_type or "regular",
                priority=profile.recurring_priority or 3,
                scheduled_date=scheduled_date,
                scheduled_start_time=profile.recurring_start_time,
                scheduled_end_time=profile.recurring_end_time,
                customer_profile_id=profile.id,
                customer_name=profile.name,
                customer_address=profile.address,
                customer_phone=profile.phone,
                description=profile.default_description,
                notes=profile.default_notes,
            )
            created.append(await self.create_job(payload))
            existing_keys.add(key)

        logger.info(
            "Recurring jobs generated",
            week_start=week_start.isoformat(),
            week_end=week_end.isoformat(),
            created=len(created),
        )
        return created

    # ------------------------------------------------------------------
    # Backup and migration
    # ------------------------------------------------------------------

    async def export_backup(self) -> str:
        """Serialise the full local store as a self-describing JSON document."""
        storage = await self.local.snapshot()
        backup = DispatchBackup(data=storage)
        logger.info("Dispatch backup exported", jobs=len(storage.jobs))
        return backup.model_dump_json(indent=2)

    async def import_backup(self, raw_backup: str) -> DispatchStorage:
        """
        Replace the local store with the contents of ``raw_backup``.

        Raises:
            BackupFormatError: If the JSON is invalid or has no ``data`` field
        """
        try:
            parsed = json.loads(raw_backup)
        except ValueError as e:
            raise BackupFormatError("Backup JSON format is invalid") from e

        if not isinstance(parsed, dict) or not isinstance(parsed.get("data"), dict):
            raise BackupFormatError("Backup JSON missing data field")

        data = parsed["data"]
        try:
            storage = DispatchStorage(
                jobs=data.get("jobs") or [],
                employees=data.get("employees") or [],
                schedules=data.get("schedules") or [],
                customer_profiles=data.get("customer_profiles") or [],
            )
        except ValidationError as e:
            raise BackupFormatError(f"Backup data is invalid: {e}") from e

        async with self._gate:
            await self.local.replace(storage)
        return storage

    async def migrate_local_people_to_supabase(self) -> MigrationSummary:
        """
        Push every local employee, customer profile and job to Supabase.

        Rows are upserted by id, so repeated runs converge instead of
        duplicating. Nothing is ever deleted remotely.

        Raises:
            SupabaseConfigError: If Supabase is not configured
        """
        if not self.remote.is_configured():
            raise SupabaseConfigError("Supabase is not configured")

        storage = await self.local.snapshot()
        employee_rows = [employee_to_row(employee) for employee in storage.employees]
        profile_rows = [customer_profile_to_row(profile) for profile in storage.customer_profiles]
        job_rows = [job_to_row(job) for job in storage.jobs]

        # Profiles before jobs: dispatch_jobs.customer_profile_id references them
        await self.remote.upsert_rows(EMPLOYEES_TABLE, employee_rows)
        await self.remote.upsert_rows(CUSTOMER_PROFILES_TABLE, profile_rows)
        await self.remote.upsert_rows(JOBS_TABLE, job_rows)

        summary = MigrationSummary(
            employees=len(employee_rows),
            customer_profiles=len(profile_rows),
            jobs=len(job_rows),
        )
        logger.info("Local dispatch data migrated to Supabase", **summary.model_dump())
        return summary


# Singleton instance for application use
dispatch_job_store = DispatchJobStore()
