"""
Local-first dispatch repository.

Keeps jobs, employees, schedules and customer profiles in id-keyed in-memory
tables and persists the whole snapshot to a JSON file after every write.
Callers are expected to serialise mutations (DispatchJobStore holds the gate).
"""

import asyncio
import json
from datetime import date
from pathlib import Path

from pydantic import ValidationError

from dispatch_engine.infrastructure.observability.logging import get_logger
from dispatch_engine.models.domain.dispatch_domain import (
    DispatchCustomerProfile,
    DispatchEmployee,
    DispatchJob,
    DispatchStorage,
    EmployeeSchedule,
)

logger = get_logger(__name__)


class LocalRepositoryError(Exception):
    """Raised when the local snapshot cannot be written."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.path = path


class LocalDispatchRepository:
    """
    JSON-file backed repository.

    ``path=None`` keeps everything in memory, which is what the tests use.
    """

    def __init__(self, path: str | Path | None = None):
        self.path = Path(path) if path else None
        self._jobs: dict[str, DispatchJob] = {}
        self._employees: dict[str, DispatchEmployee] = {}
        self._schedules: dict[str, EmployeeSchedule] = {}
        self._profiles: dict[str, DispatchCustomerProfile] = {}
        self._loaded = False

    # ------------------------------------------------------------------
    # Snapshot persistence
    # ------------------------------------------------------------------

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        storage = await asyncio.to_thread(self._read_snapshot)
        self._apply(storage)
        self._loaded = True

    def _read_snapshot(self) -> DispatchStorage:
        if not self.path or not self.path.exists():
            return DispatchStorage()
        try:
            raw = self.path.read_text(encoding="utf-8")
            return DispatchStorage.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            # Unreadable snapshot: start over like a fresh install
            logger.warning(
                "Local dispatch snapshot unreadable, starting empty",
                path=str(self.path),
                error=str(e),
            )
            return DispatchStorage()

    def _write_snapshot(self, payload: str) -> None:
        if not self.path:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp_path.write_text(payload, encoding="utf-8")
            tmp_path.replace(self.path)
        except OSError as e:
            logger.error("Failed to write dispatch snapshot", path=str(self.path), error=str(e))
            raise LocalRepositoryError(f"Failed to write snapshot: {e}", path=str(self.path)) from e

    def _tables(self) -> tuple[dict, dict, dict, dict]:
        return (dict(self._jobs), dict(self._employees), dict(self._schedules), dict(self._profiles))

    async def _persist(self, previous: tuple[dict, dict, dict, dict]) -> None:
        """Write the snapshot, rolling the tables back to ``previous`` if the write fails."""
        payload = self._build_storage().model_dump_json(indent=2)
        try:
            await asyncio.to_thread(self._write_snapshot, payload)
        except LocalRepositoryError:
            # Memory never runs ahead of the file
            self._jobs, self._employees, self._schedules, self._profiles = previous
            raise

    def _apply(self, storage: DispatchStorage) -> None:
        self._jobs = {job.id: job for job in storage.jobs}
        self._employees = {employee.id: employee for employee in storage.employees}
        self._schedules = {schedule.id: schedule for schedule in storage.schedules}
        self._profiles = {profile.id: profile for profile in storage.customer_profiles}

    def _build_storage(self) -> DispatchStorage:
        return DispatchStorage(
            jobs=list(self._jobs.values()),
            employees=list(self._employees.values()),
            schedules=list(self._schedules.values()),
            customer_profiles=list(self._profiles.values()),
        )

    async def snapshot(self) -> DispatchStorage:
        """Deep copy of the full local state."""
        await self._ensure_loaded()
        return self._build_storage().model_copy(deep=True)

    async def replace(self, storage: DispatchStorage) -> None:
        """Replace all local state with ``storage`` (no merge)."""
        await self._ensure_loaded()
        previous = self._tables()
        self._apply(storage.model_copy(deep=True))
        await self._persist(previous)
        logger.info(
            "Local dispatch storage replaced",
            jobs=len(storage.jobs),
            employees=len(storage.employees),
            customer_profiles=len(storage.customer_profiles),
        )

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def list_jobs(
        self, week_start: date | None = None, week_end: date | None = None
    ) -> list[DispatchJob]:
        await self._ensure_loaded()
        return [
            job.model_copy(deep=True)
            for job in self._jobs.values()
            if job.is_within(week_start, week_end)
        ]

    async def get_job(self, job_id: str) -> DispatchJob | None:
        await self._ensure_loaded()
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def save_job(self, job: DispatchJob) -> DispatchJob:
        await self._ensure_loaded()
        previous = self._tables()
        # dict assignment keeps the original insertion slot for existing ids
        self._jobs[job.id] = job.model_copy(deep=True)
        await self._persist(previous)
        return job

    async def delete_job(self, job_id: str) -> bool:
        await self._ensure_loaded()
        previous = self._tables()
        removed = self._jobs.pop(job_id, None) is not None
        if removed:
            await self._persist(previous)
        return removed

    # ------------------------------------------------------------------
    # Employees and schedules
    # ------------------------------------------------------------------

    async def list_employees(self) -> list[DispatchEmployee]:
        await self._ensure_loaded()
        return [employee.model_copy(deep=True) for employee in self._employees.values()]

    async def save_employee(self, employee: DispatchEmployee) -> DispatchEmployee:
        await self._ensure_loaded()
        previous = self._tables()
        self._employees[employee.id] = employee.model_copy(deep=True)
        await self._persist(previous)
        return employee

    async def save_schedule(self, schedule: EmployeeSchedule) -> EmployeeSchedule:
        await self._ensure_loaded()
        previous = self._tables()
        self._schedules[schedule.id] = schedule.model_copy(deep=True)
        await self._persist(previous)
        return schedule

    # ------------------------------------------------------------------
    # Customer profiles
    # ------------------------------------------------------------------

    async def list_customer_profiles(self) -> list[DispatchCustomerProfile]:
        await self._ensure_loaded()
        return [profile.model_copy(deep=True) for profile in self._profiles.values()]

    async def get_customer_profile(self, profile_id: str) -> DispatchCustomerProfile | None:
        await self._ensure_loaded()
        profile = self._profiles.get(profile_id)
        return profile.model_copy(deep=True) if profile else None

    async def save_customer_profile(
        self, profile: DispatchCustomerProfile
    ) -> DispatchCustomerProfile:
        await self._ensure_loaded()
        previous = self._tables()
        self._profiles[profile.id] = profile.model_copy(deep=True)
        await self._persist(previous)
        return profile
