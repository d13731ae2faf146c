"""Straight-line route engine: Haversine distance and heuristic travel times."""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass
from typing import Optional, Sequence

from ...config import settings
from ...models.domain import Bounds, Coordinates, Job
from ..geospatial import centroid, coverage_bounds, haversine_km
from .models import RouteLocation, RouteSegment, RouteSummary, RoutingPreferences

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EngineConfig:
    local_speed_kmh: float = settings.local_speed_kmh
    highway_speed_kmh: float = settings.highway_speed_kmh
    local_distance_threshold_km: float = settings.local_distance_threshold_km
    travel_buffer_minutes: int = settings.travel_buffer_minutes
    fallback_latitude: float = settings.fallback_latitude
    fallback_longitude: float = settings.fallback_longitude
    fallback_jitter_degrees: float = settings.fallback_jitter_degrees


class RouteEngine:
    """Pure routing computations; holds configuration and a RNG for coordinate fallback only."""

    def __init__(self, config: EngineConfig | None = None, rng: random.Random | None = None) -> None:
        self.config = config or EngineConfig()
        self._rng = rng or random.Random()

    def distance(self, a: Coordinates, b: Coordinates) -> float:
        """Great-circle distance in kilometres."""
        if a == b:
            return 0.0
        return haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)

    def travel_time(
        self,
        a: Coordinates,
        b: Coordinates,
        preferences: Optional[RoutingPreferences] = None,
    ) -> int:
        """Estimated minutes between two points, rounded up.

        Short hops use the local speed, longer ones the highway speed. The
        buffer is the configured constant whether or not preferences are given.
        """
        distance_km = self.distance(a, b)
        if distance_km < self.config.local_distance_threshold_km:
            speed = self.config.local_speed_kmh
        else:
            speed = self.config.highway_speed_kmh
        minutes = distance_km / speed * 60.0
        # TODO: apply preferences.traffic_multiplier once product confirms the intended buffer rules
        return math.ceil(minutes + self.config.travel_buffer_minutes)

    def calculate_route(
        self,
        locations: Sequence[RouteLocation],
        preferences: Optional[RoutingPreferences] = None,
    ) -> RouteSummary:
        if len(locations) < 2:
            return RouteSummary()

        segments: list[RouteSegment] = []
        for origin, destination in zip(locations, locations[1:]):
            segments.append(
                RouteSegment(
                    from_id=origin.id,
                    to_id=destination.id,
                    distance=self.distance(origin.coordinates, destination.coordinates),
                    travel_time=self.travel_time(origin.coordinates, destination.coordinates, preferences),
                )
            )
        return RouteSummary(
            total_distance=sum(segment.distance for segment in segments),
            total_travel_time=sum(segment.travel_time for segment in segments),
            segments=segments,
        )

    def bounds(self, locations: Sequence[RouteLocation]) -> Bounds:
        return coverage_bounds([location.coordinates for location in locations])

    def centroid(self, locations: Sequence[RouteLocation]) -> Coordinates:
        return centroid([location.coordinates for location in locations])

    def resolve_coordinates(self, job: Job) -> Coordinates:
        """Return the job's coordinates, synthesising a nearby point when it has none."""
        if job.coordinates is not None:
            return job.coordinates
        spread = self.config.fallback_jitter_degrees
        synthesized = Coordinates(
            latitude=self.config.fallback_latitude + (self._rng.random() - 0.5) * spread,
            longitude=self.config.fallback_longitude + (self._rng.random() - 0.5) * spread,
        )
        logger.warning(
            f"Job {job.id} has no coordinates, using fallback "
            f"({synthesized.latitude:.6f}, {synthesized.longitude:.6f})"
        )
        return synthesized
