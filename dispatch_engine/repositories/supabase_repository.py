"""
Supabase (PostgREST) repository for dispatch data.
Upserts rows by id with merge-duplicates so repeated writes converge.
"""

from datetime import date
from typing import Any

import httpx

from dispatch_engine.config import settings
from dispatch_engine.infrastructure.observability.logging import get_logger
from dispatch_engine.models.domain.dispatch_domain import (
    DispatchCustomerProfile,
    DispatchEmployee,
    DispatchJob,
)

logger = get_logger(__name__)

JOBS_TABLE = "dispatch_jobs"
EMPLOYEES_TABLE = "dispatch_employees"
CUSTOMER_PROFILES_TABLE = "dispatch_customer_profiles"

REQUEST_TIMEOUT = 15  # seconds
UPSERT_PREFER = "resolution=merge-duplicates,return=representation"


class SupabaseConfigError(Exception):
    """Raised when the remote store is used without URL or anon key."""


class SupabaseRequestError(Exception):
    """Non-success response from the Supabase REST API."""

    def __init__(self, message: str, status_code: int | None = None, response_text: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.response_text = response_text


# =================================================================
# Row mapping
# =================================================================


def _time_text(value) -> str | None:
    return value.strftime("%H:%M") if value else None


def job_to_row(job: DispatchJob) -> dict[str, Any]:
    row = job.model_dump(mode="json")
    row["scheduled_start_time"] = _time_text(job.scheduled_start_time)
    row["scheduled_end_time"] = _time_text(job.scheduled_end_time)
    row["assigned_employee_ids"] = list(job.assigned_employee_ids)
    return row


def row_to_job(row: dict[str, Any]) -> DispatchJob:
    data = {key: value for key, value in row.items() if value is not None}
    data.setdefault("assigned_employee_ids", [])
    return DispatchJob.model_validate(data)


def employee_to_row(employee: DispatchEmployee) -> dict[str, Any]:
    return employee.model_dump(mode="json")


def row_to_employee(row: dict[str, Any]) -> DispatchEmployee:
    data = {key: value for key, value in row.items() if value is not None}
    data.pop("created_at", None)
    data.pop("updated_at", None)
    data.setdefault("skills", [])
    return DispatchEmployee.model_validate(data)


def customer_profile_to_row(profile: DispatchCustomerProfile) -> dict[str, Any]:
    # created_at / updated_at are maintained by table defaults and triggers
    row = profile.model_dump(mode="json", exclude={"created_at", "updated_at"})
    row["recurring_start_time"] = _time_text(profile.recurring_start_time)
    row["recurring_end_time"] = _time_text(profile.recurring_end_time)
    return row


def row_to_customer_profile(row: dict[str, Any]) -> DispatchCustomerProfile:
    data = {key: value for key, value in row.items() if value is not None}
    data.pop("recurring_weekdays", None)
    return DispatchCustomerProfile.model_validate(data)


class SupabaseDispatchRepository:
    """
    Remote relational store reached through the Supabase REST API.

    Mirrors the LocalDispatchRepository interface so the job store can use
    either backend.
    """

    def __init__(
        self,
        url: str | None = None,
        anon_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = (url if url is not None else settings.SUPABASE_URL or "").strip().rstrip("/")
        self.anon_key = (anon_key if anon_key is not None else settings.SUPABASE_ANON_KEY or "").strip()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def is_configured(self) -> bool:
        return bool(self.url and self.anon_key)

    def _get_client(self) -> httpx.AsyncClient:
        if not self.is_configured():
            raise SupabaseConfigError("Supabase is not configured (SUPABASE_URL / SUPABASE_ANON_KEY)")
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.url,
                timeout=httpx.Timeout(REQUEST_TIMEOUT),
                transport=self._transport,
                headers={
                    "apikey": self.anon_key,
                    "Authorization": f"Bearer {self.anon_key}",
                    "Content-Type": "application/json",
                },
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: list[tuple[str, str]] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> list[dict[str, Any]]:
        client = self._get_client()
        headers = {"Prefer": prefer} if prefer else None
        response = await client.request(
            method, f"/rest/v1/{table}", params=params, json=json, headers=headers
        )

        if not response.is_success:
            details = response.text or "No details"
            logger.error(
                "Supabase request failed",
                method=method,
                table=table,
                status_code=response.status_code,
                response_text=details[:200],
            )
            raise SupabaseRequestError(
                f"Supabase request failed ({response.status_code}): {details}",
                status_code=response.status_code,
                response_text=details,
            )

        if not response.content:
            return []
        return response.json()

    async def upsert_rows(self, table: str, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Insert or merge ``rows`` by primary key."""
        if not rows:
            return []
        result = await self._request(
            "POST",
            table,
            params=[("on_conflict", "id")],
            json=rows,
            prefer=UPSERT_PREFER,
        )
        logger.info("Supabase rows upserted", table=table, row_count=len(rows))
        return result

    async def _upsert_one(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        result = await self.upsert_rows(table, [row])
        if not result:
            raise SupabaseRequestError(f"Supabase upsert into {table} returned no rows")
        return result[0]

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def list_jobs(
        self, week_start: date | None = None, week_end: date | None = None
    ) -> list[DispatchJob]:
        params = [
            ("select", "*"),
            ("order", "scheduled_date.asc,scheduled_start_time.asc"),
        ]
        if week_start:
            params.append(("scheduled_date", f"gte.{week_start.isoformat()}"))
        if week_end:
            params.append(("scheduled_date", f"lte.{week_end.isoformat()}"))
        rows = await self._request("GET", JOBS_TABLE, params=params)
        return [row_to_job(row) for row in rows]

    async def get_job(self, job_id: str) -> DispatchJob | None:
        rows = await self._request(
            "GET", JOBS_TABLE, params=[("select", "*"), ("id", f"eq.{job_id}")]
        )
        return row_to_job(rows[0]) if rows else None

    async def save_job(self, job: DispatchJob) -> DispatchJob:
        return row_to_job(await self._upsert_one(JOBS_TABLE, job_to_row(job)))

    async def delete_job(self, job_id: str) -> bool:
        rows = await self._request(
            "DELETE",
            JOBS_TABLE,
            params=[("id", f"eq.{job_id}")],
            prefer="return=representation",
        )
        return bool(rows)

    # ------------------------------------------------------------------
    # Employees
    # ------------------------------------------------------------------

    async def list_employees(self) -> list[DispatchEmployee]:
        rows = await self._request(
            "GET", EMPLOYEES_TABLE, params=[("select", "*"), ("order", "id.asc")]
        )
        return [row_to_employee(row) for row in rows]

    async def save_employee(self, employee: DispatchEmployee) -> DispatchEmployee:
        return row_to_employee(await self._upsert_one(EMPLOYEES_TABLE, employee_to_row(employee)))

    # ------------------------------------------------------------------
    # Customer profiles
    # ------------------------------------------------------------------

    async def list_customer_profiles(self) -> list[DispatchCustomerProfile]:
        rows = await self._request(
            "GET",
            CUSTOMER_PROFILES_TABLE,
            params=[("select", "*"), ("order", "updated_at.desc.nullslast,id.asc")],
        )
        return [row_to_customer_profile(row) for row in rows]

    async def get_customer_profile(self, profile_id: str) -> DispatchCustomerProfile | None:
        rows = await self._request(
            "GET",
            CUSTOMER_PROFILES_TABLE,
            params=[("select", "*"), ("id", f"eq.{profile_id}")],
        )
        return row_to_customer_profile(rows[0]) if rows else None

    async def save_customer_profile(
        self, profile: DispatchCustomerProfile
    ) -> DispatchCustomerProfile:
        row = await self._upsert_one(CUSTOMER_PROFILES_TABLE, customer_profile_to_row(profile))
        return row_to_customer_profile(row)
