"""Routing domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from ...models.domain import Coordinates


@dataclass(slots=True)
class RouteLocation:
    id: str
    coordinates: Coordinates


@dataclass(slots=True)
class RoutingPreferences:
    """Technician travel preferences.

    Accepted by the route engine but not yet applied: the travel buffer is the
    same constant with or without preferences.
    """

    default_buffer_minutes: int = 5
    traffic_multiplier: float = 1.0
    weather_multiplier: float = 1.0


@dataclass(slots=True)
class RouteSegment:
    from_id: str
    to_id: str
    distance: float
    travel_time: int


@dataclass(slots=True)
class RouteSummary:
    total_distance: float = 0.0
    total_travel_time: int = 0
    segments: List[RouteSegment] = field(default_factory=list)
