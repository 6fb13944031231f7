"""
Travel API Routes
Geocoding and drive-time estimates for job sequencing.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from dispatch_engine.models.api.travel_request import (
    GeocodeRequest,
    GeocodeResponse,
    RouteRequest,
    RouteResponse,
    TravelBatchRequest,
    TravelEstimateRequest,
)
from dispatch_engine.models.domain.travel_domain import TravelEstimate
from dispatch_engine.services.maps.google_maps_client import GoogleMapsConfigError
from dispatch_engine.services.travel_service import (
    TravelEstimator,
    build_navigation_url,
    travel_estimator,
)

router = APIRouter(prefix="/travel", tags=["travel"])


def get_travel_estimator() -> TravelEstimator:
    return travel_estimator


@router.post("/geocode", response_model=GeocodeResponse)
async def geocode(request: GeocodeRequest, estimator: TravelEstimator = Depends(get_travel_estimator)):
    try:
        location = await estimator.geocode_address(request.address)
    except GoogleMapsConfigError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)) from e
    return GeocodeResponse(address=request.address, location=location, resolved=location is not None)


@router.post("/estimate", response_model=TravelEstimate)
async def estimate(
    request: TravelEstimateRequest, estimator: TravelEstimator = Depends(get_travel_estimator)
):
    return await estimator.estimate_travel(request.origin, request.destination)


@router.post("/estimate-batch", response_model=list[TravelEstimate])
async def estimate_batch(
    request: TravelBatchRequest, estimator: TravelEstimator = Depends(get_travel_estimator)
):
    return await estimator.estimate_travel_batch(request.origin, request.destinations)


@router.post("/route", response_model=RouteResponse)
async def estimate_route(
    request: RouteRequest, estimator: TravelEstimator = Depends(get_travel_estimator)
):
    """Estimate legs in the given stop order and return a navigation link."""
    legs = await estimator.estimate_route(request.origin, request.stops)
    return RouteResponse(
        legs=legs,
        total_distance_km=round(sum(leg.estimate.distance_km for leg in legs), 3),
        total_duration_min=round(sum(leg.estimate.duration_min for leg in legs), 1),
        navigation_url=build_navigation_url(
            request.origin, request.stops[-1], waypoints=request.stops[:-1]
        ),
    )
