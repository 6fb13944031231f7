# dispatch_engine/models/api/travel_request.py
"""
Travel estimate request/response models.
"""

from pydantic import BaseModel, Field

from dispatch_engine.models.domain.travel_domain import GeoPoint, RouteLeg


class GeocodeRequest(BaseModel):
    address: str = Field(..., min_length=1, max_length=500)


class GeocodeResponse(BaseModel):
    address: str
    location: GeoPoint | None = None
    resolved: bool


class TravelEstimateRequest(BaseModel):
    origin: GeoPoint
    destination: GeoPoint


class TravelBatchRequest(BaseModel):
    origin: GeoPoint
    destinations: list[GeoPoint] = Field(default_factory=list)


class RouteRequest(BaseModel):
    """Stops are visited in the order given."""

    origin: GeoPoint
    stops: list[GeoPoint] = Field(..., min_length=1)


class RouteResponse(BaseModel):
    legs: list[RouteLeg]
    total_distance_km: float
    total_duration_min: float
    navigation_url: str
