"""
Dispatch API Routes
HTTP endpoints for jobs, employees, customer profiles, backups and migration.
"""

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from dispatch_engine.infrastructure.observability.logging import get_logger
from dispatch_engine.models.api.dispatch_request import (
    AssignJobRequest,
    CreateDispatchJobPayload,
    UpdateDispatchJobPayload,
    UpdateJobStatusRequest,
    UpsertDispatchCustomerProfilePayload,
    UpsertDispatchEmployeePayload,
    WeekWindowRequest,
)
from dispatch_engine.models.domain.dispatch_domain import (
    DispatchCustomerProfile,
    DispatchEmployee,
    DispatchJob,
    MigrationSummary,
)
from dispatch_engine.repositories.local_repository import LocalRepositoryError
from dispatch_engine.repositories.supabase_repository import (
    SupabaseConfigError,
    SupabaseRequestError,
)
from dispatch_engine.services.dispatch_service import (
    BackupFormatError,
    DispatchJobStore,
    DispatchNotFoundError,
    DispatchValidationError,
    dispatch_job_store,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/dispatch", tags=["dispatch"])


def get_job_store() -> DispatchJobStore:
    return dispatch_job_store


def _to_http_error(e: Exception) -> HTTPException:
    """Map job store failures onto HTTP status codes."""
    if isinstance(e, DispatchNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, DispatchValidationError):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, BackupFormatError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if isinstance(e, SupabaseConfigError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    if isinstance(e, SupabaseRequestError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    logger.error("Unexpected dispatch error", error=str(e), error_type=type(e).__name__)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Dispatch operation failed"
    )


_STORE_ERRORS = (
    DispatchNotFoundError,
    DispatchValidationError,
    BackupFormatError,
    SupabaseConfigError,
    SupabaseRequestError,
    LocalRepositoryError,
)


# ----------------------------------------------------------------------
# Jobs
# ----------------------------------------------------------------------


@router.post("/jobs", response_model=DispatchJob, status_code=status.HTTP_201_CREATED)
async def create_job(
    payload: CreateDispatchJobPayload, store: DispatchJobStore = Depends(get_job_store)
):
    try:
        return await store.create_job(payload)
    except _STORE_ERRORS as e:
        raise _to_http_error(e) from e


@router.get("/jobs", response_model=list[DispatchJob])
async def list_jobs(
    week_start: date | None = Query(default=None),
    week_end: date | None = Query(default=None),
    store: DispatchJobStore = Depends(get_job_store),
):
    """List jobs, optionally limited to an inclusive date window."""
    try:
        return await store.get_jobs(week_start, week_end)
    except _STORE_ERRORS as e:
        raise _to_http_error(e) from e


@router.get("/jobs/{job_id}", response_model=DispatchJob)
async def get_job(job_id: str, store: DispatchJobStore = Depends(get_job_store)):
    try:
        return await store.get_job(job_id)
    except _STORE_ERRORS as e:
        raise _to_http_error(e) from e


@router.patch("/jobs/{job_id}", response_model=DispatchJob)
async def update_job(
    job_id: str,
    patch: UpdateDispatchJobPayload,
    store: DispatchJobStore = Depends(get_job_store),
):
    try:
        return await store.update_job(job_id, patch)
    except _STORE_ERRORS as e:
        raise _to_http_error(e) from e


@router.post("/jobs/{job_id}/assign", response_model=DispatchJob)
async def assign_job(
    job_id: str,
    request: AssignJobRequest,
    store: DispatchJobStore = Depends(get_job_store),
):
    try:
        return await store.assign_job(job_id, request.employee_id)
    except _STORE_ERRORS as e:
        raise _to_http_error(e) from e


@router.post("/jobs/{job_id}/status", response_model=DispatchJob)
async def update_job_status(
    job_id: str,
    request: UpdateJobStatusRequest,
    store: DispatchJobStore = Depends(get_job_store),
):
    try:
        return await store.update_job_status(job_id, request.status)
    except _STORE_ERRORS as e:
        raise _to_http_error(e) from e


@router.delete("/jobs/{job_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_job(job_id: str, store: DispatchJobStore = Depends(get_job_store)):
    try:
        await store.delete_job(job_id)
    except _STORE_ERRORS as e:
        raise _to_http_error(e) from e
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/recurring-jobs", response_model=list[DispatchJob])
async def generate_recurring_jobs(
    window: WeekWindowRequest, store: DispatchJobStore = Depends(get_job_store)
):
    """Create this week's jobs for customers with recurring service."""
    try:
        return await store.create_jobs_from_recurring_profiles(window.week_start, window.week_end)
    except _STORE_ERRORS as e:
        raise _to_http_error(e) from e


# ----------------------------------------------------------------------
# Employees and customers
# ----------------------------------------------------------------------


@router.get("/employees", response_model=list[DispatchEmployee])
async def list_employees(store: DispatchJobStore = Depends(get_job_store)):
    try:
        return await store.get_employees()
    except _STORE_ERRORS as e:
        raise _to_http_error(e) from e


@router.post("/employees", response_model=DispatchEmployee)
async def upsert_employee(
    payload: UpsertDispatchEmployeePayload, store: DispatchJobStore = Depends(get_job_store)
):
    try:
        return await store.upsert_employee(payload)
    except _STORE_ERRORS as e:
        raise _to_http_error(e) from e


@router.get("/customers", response_model=list[DispatchCustomerProfile])
async def list_customer_profiles(store: DispatchJobStore = Depends(get_job_store)):
    try:
        return await store.get_customer_profiles()
    except _STORE_ERRORS as e:
        raise _to_http_error(e) from e


@router.post("/customers", response_model=DispatchCustomerProfile)
async def upsert_customer_profile(
    payload: UpsertDispatchCustomerProfilePayload,
    store: DispatchJobStore = Depends(get_job_store),
):
    try:
        return await store.upsert_customer_profile(payload)
    except _STORE_ERRORS as e:
        raise _to_http_error(e) from e


# ----------------------------------------------------------------------
# Backup and migration
# ----------------------------------------------------------------------


@router.get("/backup")
async def export_backup(store: DispatchJobStore = Depends(get_job_store)):
    backup = await store.export_backup()
    return Response(content=backup, media_type="application/json")


@router.post("/backup")
async def import_backup(request: Request, store: DispatchJobStore = Depends(get_job_store)):
    """Replace local dispatch data with an exported backup document."""
    raw_backup = (await request.body()).decode("utf-8", errors="replace")
    try:
        storage = await store.import_backup(raw_backup)
    except _STORE_ERRORS as e:
        raise _to_http_error(e) from e

    return {
        "restored": True,
        "jobs": len(storage.jobs),
        "employees": len(storage.employees),
        "schedules": len(storage.schedules),
        "customer_profiles": len(storage.customer_profiles),
    }


@router.post("/migrate", response_model=MigrationSummary)
async def migrate_to_supabase(store: DispatchJobStore = Depends(get_job_store)):
    try:
        return await store.migrate_local_people_to_supabase()
    except _STORE_ERRORS as e:
        raise _to_http_error(e) from e
