"""
FastAPI application for the dispatch engine.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from dispatch_engine.config import settings
from dispatch_engine.infrastructure.observability.logging import get_logger, setup_logging
from dispatch_engine.routes import calendar, dispatch, health, travel
from dispatch_engine.services.calendar.google_client import google_calendar_service
from dispatch_engine.services.dispatch_service import dispatch_job_store
from dispatch_engine.services.maps.google_maps_client import google_maps_service

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Close shared HTTP clients on shutdown."""
    logger.info(
        "Application starting",
        environment=settings.environment,
        storage_backend=settings.DISPATCH_STORAGE_BACKEND,
    )

    yield

    logger.info("Application shutting down")

    shutdown_errors = []
    for name, closer in (
        ("calendar", google_calendar_service.close),
        ("maps", google_maps_service.close),
        ("supabase", dispatch_job_store.close),
    ):
        try:
            await closer()
        except Exception as e:
            logger.error("Error closing client", client=name, error=str(e))
            shutdown_errors.append(f"{name}: {e}")

    if shutdown_errors:
        logger.warning("Some clients had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All clients closed successfully")


app = FastAPI(
    title="Dispatch Engine",
    description="Field-service dispatch store with Google Calendar reconciliation",
    version="0.1.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(health.router)
app.include_router(dispatch.router)
app.include_router(calendar.router)
app.include_router(travel.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="127.0.0.1", port=8000)
