from pathlib import Path
from typing import Literal
from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parent.parent
ENV_PATH = PROJECT_ROOT / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Google Calendar OAuth settings
    GOOGLE_CALENDAR_CLIENT_ID: str | None = None
    GOOGLE_CALENDAR_CLIENT_SECRET: str | None = None
    GOOGLE_CALENDAR_ID: str = "primary"
    GOOGLE_OAUTH_LOOPBACK_PORT: int = 8765
    GOOGLE_OAUTH_FLOW_TIMEOUT: float = 300.0

    # Google Maps settings
    GOOGLE_MAPS_API_KEY: str | None = None
    MAPS_REQUEST_TIMEOUT: float = 10.0

    # Supabase settings
    SUPABASE_URL: str | None = None
    SUPABASE_ANON_KEY: str | None = None

    # Local storage settings
    DISPATCH_STORAGE_BACKEND: Literal["local", "supabase"] = "local"
    DISPATCH_STORAGE_PATH: str = str(PROJECT_ROOT / "data" / "dispatch_storage.json")
    DISPATCH_TIMEZONE: str | None = None

    # =================================================================
    # CALENDAR SYNC SETTINGS
    # =================================================================
    CALENDAR_REQUEST_TIMEOUT: float = 30.0
    CALENDAR_MAX_RETRIES: int = 3
    CALENDAR_RETRY_BACKOFF: float = 2.0
    CALENDAR_SYNC_MAX_CONCURRENCY: int = 4
    CALENDAR_SYNC_SKIP_UNCHANGED: bool = False

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def calendar_client_id(self) -> str | None:
        """Trimmed calendar client id, None when blank."""
        client_id = (self.GOOGLE_CALENDAR_CLIENT_ID or "").strip()
        return client_id or None

    def calendar_id(self) -> str:
        return (self.GOOGLE_CALENDAR_ID or "").strip() or "primary"

    def calendar_configured(self) -> bool:
        return self.calendar_client_id() is not None

    def maps_api_key(self) -> str:
        return (self.GOOGLE_MAPS_API_KEY or "").strip()

    def maps_configured(self) -> bool:
        return bool(self.maps_api_key())

    def supabase_configured(self) -> bool:
        return bool((self.SUPABASE_URL or "").strip() and (self.SUPABASE_ANON_KEY or "").strip())

    def sync_timezone(self) -> ZoneInfo | None:
        """
        IANA zone named by DISPATCH_TIMEZONE, or None for the host's local zone.

        Raises ZoneInfoNotFoundError (or ValueError for a malformed key) when
        the configured name does not resolve.
        """
        name = (self.DISPATCH_TIMEZONE or "").strip()
        if not name:
            return None
        return ZoneInfo(name)


settings = Settings()
