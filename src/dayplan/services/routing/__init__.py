"""Route engine and travel-time estimation."""

from .engine import EngineConfig, RouteEngine
from .estimators import (
    EngineTravelEstimator,
    LegEstimate,
    SimulatedTravelEstimator,
    TravelTimeEstimator,
    get_estimator,
)
from .models import RouteLocation, RouteSegment, RouteSummary, RoutingPreferences

__all__ = [
    "RouteEngine",
    "EngineConfig",
    "TravelTimeEstimator",
    "EngineTravelEstimator",
    "SimulatedTravelEstimator",
    "LegEstimate",
    "get_estimator",
    "RouteLocation",
    "RouteSegment",
    "RouteSummary",
    "RoutingPreferences",
]
