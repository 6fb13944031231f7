"""
Google Calendar API Service for managed dispatch events.
Low-level Calendar API client: list (tag-filtered, paginated), create, patch
and delete events with retry on transient failures.
"""

import asyncio
from datetime import datetime
from typing import Any
from urllib.parse import quote

import httpx

from dispatch_engine.config import settings
from dispatch_engine.infrastructure.observability.logging import get_logger
from dispatch_engine.models.domain.calendar_domain import (
    DISPATCH_SOURCE_KEY,
    DISPATCH_SOURCE_TAG,
    CalendarEvent,
)

logger = get_logger(__name__)

# Google Calendar API configuration
CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
CALENDAR_PRIMARY = "primary"

LIST_PAGE_SIZE = 2500
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}
ALREADY_GONE_STATUS_CODES = {404, 410}


class GoogleCalendarError(Exception):
    """Custom exception for Google Calendar API errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.status_code = status_code
        self.response_data = response_data or {}


class GoogleCalendarService:
    """
    Service for Google Calendar API event operations.

    Every call takes the bearer token explicitly; the service holds no
    credentials of its own.
    """

    def __init__(
        self,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_factor: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout if timeout is not None else settings.CALENDAR_REQUEST_TIMEOUT
        self.max_retries = max(1, max_retries if max_retries is not None else settings.CALENDAR_MAX_RETRIES)
        self.backoff_factor = (
            backoff_factor if backoff_factor is not None else settings.CALENDAR_RETRY_BACKOFF
        )
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                limits=httpx.Limits(max_keepalive_connections=20, max_connections=50),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request_with_retry(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Execute an HTTP request with capped retry and exponential backoff."""
        client = self._get_client()
        for attempt in range(1, self.max_retries + 1):
            try:
                response = await client.request(method, url, **kwargs)
                if response.status_code in RETRY_STATUS_CODES and attempt < self.max_retries:
                    backoff = self.backoff_factor * (2 ** (attempt - 1))
                    logger.debug(
                        "Calendar API retrying request",
                        method=method,
                        attempt=attempt,
                        status_code=response.status_code,
                        backoff_seconds=backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                return response
            except httpx.RequestError as e:
                if attempt >= self.max_retries:
                    raise
                backoff = self.backoff_factor * (2 ** (attempt - 1))
                logger.debug(
                    "Calendar API request error, retrying",
                    method=method,
                    attempt=attempt,
                    error=str(e),
                    backoff_seconds=backoff,
                )
                await asyncio.sleep(backoff)
        raise RuntimeError("Calendar API retry loop exhausted")

    def _get_auth_headers(self, access_token: str) -> dict:
        return {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _events_url(self, calendar_id: str, event_id: str | None = None) -> str:
        url = f"{CALENDAR_API_BASE_URL}/calendars/{quote(calendar_id, safe='')}/events"
        if event_id:
            url = f"{url}/{quote(event_id, safe='')}"
        return url

    def _handle_api_response(self, response: httpx.Response, operation: str) -> dict:
        """
        Handle and validate Calendar API response.

        Raises:
            GoogleCalendarError: If response contains errors
        """
        logger.debug(
            f"Calendar API {operation} response",
            status_code=response.status_code,
            response_size=len(response.text) if response.text else 0,
        )

        if response.is_success:
            try:
                return response.json() if response.text else {}
            except ValueError as e:
                logger.error(f"Failed to parse Calendar API {operation} response", error=str(e))
                raise GoogleCalendarError(f"Invalid response format: {e}") from e

        try:
            error_data = response.json() if response.text else {}
        except ValueError:
            logger.error(
                f"Calendar API {operation} failed with non-JSON response",
                status_code=response.status_code,
                response_text=response.text[:200] if response.text else "",
            )
            raise GoogleCalendarError(
                f"Calendar API error (HTTP {response.status_code})",
                status_code=response.status_code,
            ) from None

        error_info = error_data.get("error", {}) if isinstance(error_data, dict) else {}
        if not isinstance(error_info, dict):
            error_info = {"message": str(error_info)}
        error_code = str(error_info.get("code", response.status_code))
        error_message = error_info.get("message", "Unknown Calendar API error")

        logger.error(
            f"Calendar API {operation} failed",
            status_code=response.status_code,
            error_code=error_code,
            error_message=error_message,
        )
        raise GoogleCalendarError(
            self._map_calendar_error(error_code, error_message),
            error_code=error_code,
            status_code=response.status_code,
            response_data=error_data,
        )

    def _map_calendar_error(self, error_code: str, error_message: str) -> str:
        """Map Calendar API error codes to user-friendly messages."""
        error_mappings = {
            "403": "Calendar access denied. Please check permissions.",
            "404": "Calendar or event not found.",
            "400": "Invalid calendar request format.",
            "401": "Calendar authorization expired. Please reconnect.",
            "429": "Too many calendar requests. Please try again later.",
            "500": "Google Calendar service temporarily unavailable.",
        }
        return error_mappings.get(error_code, f"Calendar error: {error_message}")

    async def list_events(
        self,
        access_token: str,
        calendar_id: str = CALENDAR_PRIMARY,
        time_min: datetime | None = None,
        time_max: datetime | None = None,
        private_properties: dict[str, str] | None = None,
    ) -> list[CalendarEvent]:
        """
        List every event in the window, following nextPageToken to exhaustion.

        Args:
            access_token: Valid OAuth access token
            calendar_id: Calendar ID (default: primary)
            time_min: Inclusive lower bound on event end time
            time_max: Exclusive upper bound on event start time
            private_properties: Extended-property filter; defaults to the
                dispatch ownership tag

        Raises:
            GoogleCalendarError: If listing events fails
        """
        if private_properties is None:
            private_properties = {DISPATCH_SOURCE_KEY: DISPATCH_SOURCE_TAG}

        base_params: list[tuple[str, Any]] = [
            ("singleEvents", "true"),
            ("showDeleted", "false"),
            ("maxResults", LIST_PAGE_SIZE),
        ]
        if time_min:
            base_params.append(("timeMin", time_min.isoformat()))
        if time_max:
            base_params.append(("timeMax", time_max.isoformat()))
        for key, value in private_properties.items():
            base_params.append(("privateExtendedProperty", f"{key}={value}"))

        url = self._events_url(calendar_id)
        headers = self._get_auth_headers(access_token)
        events: list[CalendarEvent] = []
        page_token: str | None = None
        pages = 0

        try:
            while True:
                params = list(base_params)
                if page_token:
                    params.append(("pageToken", page_token))

                response = await self._request_with_retry("GET", url, headers=headers, params=params)
                data = self._handle_api_response(response, "list_events")
                events.extend(CalendarEvent(item) for item in data.get("items", []))
                pages += 1

                page_token = data.get("nextPageToken")
                if not page_token:
                    break

        except GoogleCalendarError:
            raise
        except Exception as e:
            logger.error("Unexpected error listing events", calendar_id=calendar_id, error=str(e))
            raise GoogleCalendarError(f"Failed to list events: {e}") from e

        logger.info(
            "Events listed successfully",
            calendar_id=calendar_id,
            event_count=len(events),
            pages=pages,
        )
        return events

    async def create_event(
        self, access_token: str, event_data: dict, calendar_id: str = CALENDAR_PRIMARY
    ) -> CalendarEvent:
        """
        Create a new calendar event.

        Raises:
            GoogleCalendarError: If creating event fails
        """
        try:
            response = await self._request_with_retry(
                "POST",
                self._events_url(calendar_id),
                headers=self._get_auth_headers(access_token),
                json=event_data,
            )
            event = CalendarEvent(self._handle_api_response(response, "create_event"))
        except GoogleCalendarError:
            raise
        except Exception as e:
            logger.error("Unexpected error creating event", calendar_id=calendar_id, error=str(e))
            raise GoogleCalendarError(f"Failed to create event: {e}") from e

        logger.info("Event created successfully", event_id=event.id, job_id=event.dispatch_job_id)
        return event

    async def update_event(
        self,
        access_token: str,
        event_id: str,
        event_data: dict,
        calendar_id: str = CALENDAR_PRIMARY,
    ) -> CalendarEvent:
        """
        Patch an existing calendar event. Fields absent from ``event_data`` are kept.

        Raises:
            GoogleCalendarError: If updating event fails
        """
        try:
            response = await self._request_with_retry(
                "PATCH",
                self._events_url(calendar_id, event_id),
                headers=self._get_auth_headers(access_token),
                json=event_data,
            )
            event = CalendarEvent(self._handle_api_response(response, "update_event"))
        except GoogleCalendarError:
            raise
        except Exception as e:
            logger.error("Unexpected error updating event", event_id=event_id, error=str(e))
            raise GoogleCalendarError(f"Failed to update event: {e}") from e

        logger.info("Event updated successfully", event_id=event_id)
        return event

    async def delete_event(
        self, access_token: str, event_id: str, calendar_id: str = CALENDAR_PRIMARY
    ) -> bool:
        """
        Delete a calendar event.

        Returns:
            bool: True if the event was deleted, False if it was already gone

        Raises:
            GoogleCalendarError: If deleting event fails
        """
        try:
            response = await self._request_with_retry(
                "DELETE",
                self._events_url(calendar_id, event_id),
                headers=self._get_auth_headers(access_token),
            )

            if response.status_code in ALREADY_GONE_STATUS_CODES:
                logger.info(
                    "Event already deleted",
                    event_id=event_id,
                    status_code=response.status_code,
                )
                return False

            self._handle_api_response(response, "delete_event")

        except GoogleCalendarError:
            raise
        except Exception as e:
            logger.error("Unexpected error deleting event", event_id=event_id, error=str(e))
            raise GoogleCalendarError(f"Failed to delete event: {e}") from e

        logger.info("Event deleted successfully", event_id=event_id)
        return True


# Singleton instance for application use
google_calendar_service = GoogleCalendarService()
