"""
Travel Estimator
Drive distance/duration between job sites. Falls back to a great-circle
estimate whenever Google Maps is unavailable, so callers always get a result.
"""

import math
from typing import Any
from urllib.parse import urlencode

from dispatch_engine.infrastructure.observability.logging import get_logger
from dispatch_engine.models.domain.travel_domain import (
    EstimateSource,
    GeoPoint,
    RouteLeg,
    TravelEstimate,
)
from dispatch_engine.services.maps.google_maps_client import (
    MAX_DESTINATIONS_PER_REQUEST,
    GoogleMapsConfigError,
    GoogleMapsError,
    GoogleMapsService,
    google_maps_service,
)

logger = get_logger(__name__)

EARTH_RADIUS_KM = 6371
FALLBACK_AVERAGE_SPEED_KMH = 35
NAVIGATION_BASE_URL = "https://www.google.com/maps/dir/"


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def format_distance(km: float) -> str:
    """``850 m`` below one kilometre, otherwise ``12.3 km``."""
    if km < 1:
        return f"{_round_half_up(km * 1000)} m"
    text = f"{round(km, 1):.1f}".rstrip("0").rstrip(".")
    return f"{text} km"


def format_duration(minutes: float) -> str:
    """``N mins`` below an hour (never less than 1), otherwise ``Hh`` or ``Hh Mm``."""
    if minutes < 60:
        return f"{max(1, _round_half_up(minutes))} mins"

    hours = int(minutes // 60)
    mins = _round_half_up(minutes % 60)
    if mins == 60:
        hours, mins = hours + 1, 0
    if mins == 0:
        return f"{hours}h"
    return f"{hours}h {mins}m"


def to_estimate(distance_km: float, duration_min: float, source: EstimateSource) -> TravelEstimate:
    return TravelEstimate(
        distance_km=round(distance_km, 3),
        duration_min=round(duration_min, 1),
        distance_text=format_distance(distance_km),
        duration_text=format_duration(duration_min),
        source=source,
    )


def haversine_distance_km(origin: GeoPoint, destination: GeoPoint) -> float:
    d_lat = math.radians(destination.lat - origin.lat)
    d_lng = math.radians(destination.lng - origin.lng)
    lat1 = math.radians(origin.lat)
    lat2 = math.radians(destination.lat)

    a = math.sin(d_lat / 2) ** 2 + math.sin(d_lng / 2) ** 2 * math.cos(lat1) * math.cos(lat2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def fallback_travel_estimate(origin: GeoPoint, destination: GeoPoint) -> TravelEstimate:
    distance_km = haversine_distance_km(origin, destination)
    duration_min = distance_km / FALLBACK_AVERAGE_SPEED_KMH * 60
    return to_estimate(distance_km, duration_min, "fallback")


def build_navigation_url(
    origin: GeoPoint, destination: GeoPoint, waypoints: list[GeoPoint] | None = None
) -> str:
    """Google Maps driving-directions deep link."""
    params = {
        "api": "1",
        "origin": origin.as_param(),
        "destination": destination.as_param(),
        "travelmode": "driving",
    }
    if waypoints:
        params["waypoints"] = "|".join(point.as_param() for point in waypoints)
    return f"{NAVIGATION_BASE_URL}?{urlencode(params)}"


def _element_estimate(element: Any, origin: GeoPoint, destination: GeoPoint) -> TravelEstimate:
    if not isinstance(element, dict) or element.get("status") != "OK":
        return fallback_travel_estimate(origin, destination)
    try:
        distance_km = float(element["distance"]["value"]) / 1000
        duration_min = float(element["duration"]["value"]) / 60
    except (KeyError, TypeError, ValueError):
        logger.warning("Malformed distance matrix element, using fallback estimate")
        return fallback_travel_estimate(origin, destination)
    return to_estimate(distance_km, duration_min, "google")


class TravelEstimator:
    """Geocoding and drive-time estimates with deterministic fallback."""

    def __init__(self, maps_client: GoogleMapsService | None = None):
        self.maps_client = maps_client or google_maps_service

    async def geocode_address(self, address: str) -> GeoPoint | None:
        """
        Resolve ``address`` to a point, or None when it cannot be resolved.

        Raises:
            GoogleMapsConfigError: If no Maps API key is configured
        """
        trimmed = (address or "").strip()
        if not trimmed:
            return None
        try:
            return await self.maps_client.geocode(trimmed)
        except GoogleMapsError as e:
            logger.warning("Geocoding failed", error=str(e), status_code=e.status_code)
            return None

    async def estimate_travel(self, origin: GeoPoint, destination: GeoPoint) -> TravelEstimate:
        estimates = await self._estimate_chunk(origin, [destination])
        return estimates[0]

    async def estimate_travel_batch(
        self, origin: GeoPoint, destinations: list[GeoPoint]
    ) -> list[TravelEstimate]:
        """
        Estimate from one origin to many destinations, preserving order.

        Destinations are sent in chunks of 25; each chunk falls back on its own.
        """
        estimates: list[TravelEstimate] = []
        for start in range(0, len(destinations), MAX_DESTINATIONS_PER_REQUEST):
            chunk = destinations[start : start + MAX_DESTINATIONS_PER_REQUEST]
            estimates.extend(await self._estimate_chunk(origin, chunk))
        return estimates

    async def _estimate_chunk(
        self, origin: GeoPoint, destinations: list[GeoPoint]
    ) -> list[TravelEstimate]:
        try:
            elements = await self.maps_client.distance_matrix(origin, destinations)
        except (GoogleMapsConfigError, GoogleMapsError) as e:
            logger.warning(
                "Distance matrix unavailable, using fallback estimate",
                error=str(e),
                destinations=len(destinations),
            )
            return [fallback_travel_estimate(origin, destination) for destination in destinations]

        return [
            _element_estimate(elements[index] if index < len(elements) else None, origin, destination)
            for index, destination in enumerate(destinations)
        ]

    async def estimate_route(self, origin: GeoPoint, stops: list[GeoPoint]) -> list[RouteLeg]:
        """Estimate consecutive legs origin -> stops[0] -> stops[1] ... in the given order."""
        legs: list[RouteLeg] = []
        current = origin
        for stop in stops:
            estimate = await self.estimate_travel(current, stop)
            legs.append(RouteLeg(origin=current, destination=stop, estimate=estimate))
            current = stop
        return legs


# Singleton instance for application use
travel_estimator = TravelEstimator()
