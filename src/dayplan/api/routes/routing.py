"""Route estimation endpoints."""

from __future__ import annotations

import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, status

from ...models.domain import Coordinates
from ...schemas.planning import RouteEstimateRequest, RouteEstimateResponse
from ...services.planning.orchestrator import PlanningOrchestrator
from ...services.routing import RouteLocation, RoutingPreferences
from .plans import get_orchestrator

router = APIRouter(prefix="/routes", tags=["routes"])


@router.post("/estimate", response_model=RouteEstimateResponse, status_code=status.HTTP_200_OK)
def estimate(
    payload: RouteEstimateRequest,
    orchestrator: PlanningOrchestrator = Depends(get_orchestrator),
) -> RouteEstimateResponse:
    """Distance and travel time along the locations in the order given."""
    engine = orchestrator.engine
    locations = [
        RouteLocation(
            id=location.id,
            coordinates=Coordinates(location.coordinates.latitude, location.coordinates.longitude),
        )
        for location in payload.locations
    ]
    preferences = RoutingPreferences(**payload.preferences.model_dump()) if payload.preferences else None
    try:
        summary = engine.calculate_route(locations, preferences)
    except Exception as exc:
        logging.exception(f"Error estimating route: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to estimate route: {str(exc)}",
        ) from exc
    return RouteEstimateResponse(
        total_distance=summary.total_distance,
        total_travel_time=summary.total_travel_time,
        segments=[asdict(segment) for segment in summary.segments],
        bounds=asdict(engine.bounds(locations)),
        centroid=asdict(engine.centroid(locations)),
    )
