# dispatch_engine/models/domain/travel_domain.py
"""
Travel Domain Models
Geographic points and drive-time estimates used to sequence jobs.
"""

from typing import Literal

from pydantic import BaseModel

EstimateSource = Literal["google", "fallback"]


class GeoPoint(BaseModel):
    lat: float
    lng: float

    def as_param(self) -> str:
        """Format as ``lat,lng`` for Maps query strings."""
        return f"{self.lat},{self.lng}"


class TravelEstimate(BaseModel):
    """Drive distance and duration with the quality of the estimate."""

    distance_km: float
    duration_min: float
    distance_text: str
    duration_text: str
    source: EstimateSource


class RouteLeg(BaseModel):
    origin: GeoPoint
    destination: GeoPoint
    estimate: TravelEstimate
