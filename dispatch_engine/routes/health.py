"""
Health check endpoints.
"""

from fastapi import APIRouter

from dispatch_engine.config import settings

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check with integration configuration flags."""
    return {
        "status": "ok",
        "service": "dispatch-engine",
        "storage_backend": settings.DISPATCH_STORAGE_BACKEND,
        "integrations": {
            "google_calendar": settings.calendar_configured(),
            "google_maps": settings.maps_configured(),
            "supabase": settings.supabase_configured(),
        },
    }
