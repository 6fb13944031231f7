"""
Google Maps web service client.
Wraps the Geocoding and Distance Matrix REST endpoints used by the travel
estimator.
"""

import asyncio
from typing import Any

import httpx

from dispatch_engine.config import settings
from dispatch_engine.infrastructure.observability.logging import get_logger
from dispatch_engine.models.domain.travel_domain import GeoPoint

logger = get_logger(__name__)

GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
DISTANCE_MATRIX_URL = "https://maps.googleapis.com/maps/api/distancematrix/json"

# Google rejects more than 25 destinations per distance-matrix request
MAX_DESTINATIONS_PER_REQUEST = 25

MAX_RETRIES = 2
BACKOFF_FACTOR = 1
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


class GoogleMapsConfigError(Exception):
    """Raised when the Maps API key is missing."""


class GoogleMapsError(Exception):
    """Maps request failed or returned a non-OK top-level status."""

    def __init__(self, message: str, status: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.status = status
        self.status_code = status_code


class GoogleMapsService:
    def __init__(
        self,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = (api_key if api_key is not None else settings.maps_api_key()).strip()
        self.timeout = timeout if timeout is not None else settings.MAPS_REQUEST_TIMEOUT
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _get_client(self) -> httpx.AsyncClient:
        if not self.is_configured():
            raise GoogleMapsConfigError("Google Maps API key is missing (GOOGLE_MAPS_API_KEY)")
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout), transport=self._transport
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _get_json(self, url: str, params: dict[str, Any], operation: str) -> dict:
        client = self._get_client()
        params = {**params, "key": self.api_key}

        for attempt in range(1, MAX_RETRIES + 1):
            try:
                response = await client.get(url, params=params)
            except httpx.RequestError as e:
                if attempt >= MAX_RETRIES:
                    raise GoogleMapsError(f"Maps {operation} request failed: {e}") from e
                logger.debug("Maps request error, retrying", operation=operation, attempt=attempt)
                await asyncio.sleep(BACKOFF_FACTOR * attempt)
                continue

            if response.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                logger.debug(
                    "Maps transient status, retrying",
                    operation=operation,
                    status_code=response.status_code,
                    attempt=attempt,
                )
                await asyncio.sleep(BACKOFF_FACTOR * attempt)
                continue

            if not response.is_success:
                raise GoogleMapsError(
                    f"Maps {operation} failed (HTTP {response.status_code})",
                    status_code=response.status_code,
                )
            try:
                data = response.json()
            except ValueError as e:
                raise GoogleMapsError(f"Invalid Maps {operation} response: {e}") from e
            if not isinstance(data, dict):
                raise GoogleMapsError(f"Invalid Maps {operation} response: expected a JSON object")
            return data

        raise GoogleMapsError(f"Maps {operation} retry loop exhausted")

    async def geocode(self, address: str) -> GeoPoint | None:
        """
        Resolve an address to its first geocoding match.

        Returns None for ZERO_RESULTS and any other non-OK status.

        Raises:
            GoogleMapsConfigError: If no API key is configured
            GoogleMapsError: If the HTTP request fails or the result is malformed
        """
        data = await self._get_json(GEOCODE_URL, {"address": address}, "geocode")

        status = data.get("status")
        results = data.get("results") or []
        if status != "OK" or not results:
            logger.info("Address not geocoded", status=status)
            return None

        try:
            location = results[0]["geometry"]["location"]
            return GeoPoint(lat=float(location["lat"]), lng=float(location["lng"]))
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise GoogleMapsError("Malformed geocode result", status=status) from e

    async def distance_matrix(
        self, origin: GeoPoint, destinations: list[GeoPoint]
    ) -> list[dict[str, Any]]:
        """
        Driving distance matrix from one origin.

        Returns the raw element dicts, one per destination, in order.

        Raises:
            GoogleMapsConfigError: If no API key is configured
            GoogleMapsError: If the request fails or the top-level status is not OK
        """
        if len(destinations) > MAX_DESTINATIONS_PER_REQUEST:
            raise ValueError(
                f"At most {MAX_DESTINATIONS_PER_REQUEST} destinations per request"
            )

        params = {
            "origins": origin.as_param(),
            "destinations": "|".join(point.as_param() for point in destinations),
            "mode": "driving",
            "units": "metric",
        }
        data = await self._get_json(DISTANCE_MATRIX_URL, params, "distance_matrix")

        status = data.get("status")
        if status != "OK":
            raise GoogleMapsError(
                f"Distance matrix failed: {status}: {data.get('error_message', '')}".rstrip(": "),
                status=status,
            )

        rows = data.get("rows") or []
        if not rows:
            return []
        try:
            elements = rows[0]["elements"]
        except (KeyError, IndexError, TypeError) as e:
            raise GoogleMapsError("Malformed distance matrix rows", status=status) from e
        if not isinstance(elements, list):
            raise GoogleMapsError("Malformed distance matrix elements", status=status)
        return elements


# Singleton instance for application use
google_maps_service = GoogleMapsService()
