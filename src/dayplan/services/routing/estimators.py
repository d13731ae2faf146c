"""Travel-time estimation strategies used by the route stage."""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Optional, Protocol

from ...config import settings
from ...models.domain import Coordinates
from .engine import RouteEngine
from .models import RoutingPreferences


@dataclass(slots=True)
class LegEstimate:
    travel_minutes: int
    distance_km: float


class TravelTimeEstimator(Protocol):
    name: str

    def estimate_leg(self, origin: Coordinates, destination: Coordinates) -> LegEstimate:
        ...

    def buffer_minutes(self) -> int:
        ...


class EngineTravelEstimator:
    """Uses the route engine's Haversine distance and speed heuristic."""

    name = "engine"

    def __init__(
        self,
        engine: RouteEngine,
        *,
        buffer_minutes: Optional[int] = None,
        preferences: Optional[RoutingPreferences] = None,
    ) -> None:
        self.engine = engine
        self._buffer_minutes = (
            buffer_minutes if buffer_minutes is not None else settings.buffer_between_jobs_minutes
        )
        self.preferences = preferences

    def estimate_leg(self, origin: Coordinates, destination: Coordinates) -> LegEstimate:
        return LegEstimate(
            travel_minutes=self.engine.travel_time(origin, destination, self.preferences),
            distance_km=self.engine.distance(origin, destination),
        )

    def buffer_minutes(self) -> int:
        return self._buffer_minutes


class SimulatedTravelEstimator:
    """Random legs of 15-34 minutes and 3-13 km with a 5-14 minute buffer."""

    name = "simulated"

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def estimate_leg(self, origin: Coordinates, destination: Coordinates) -> LegEstimate:
        return LegEstimate(
            travel_minutes=15 + self._rng.randrange(20),
            distance_km=3 + self._rng.random() * 10,
        )

    def buffer_minutes(self) -> int:
        return 5 + self._rng.randrange(10)


def get_estimator(method: str, *, engine: RouteEngine | None = None, rng: random.Random | None = None) -> TravelTimeEstimator:
    match method:
        case "engine":
            return EngineTravelEstimator(engine or RouteEngine(rng=rng))
        case "simulated":
            return SimulatedTravelEstimator(rng=rng)
        case _:
            raise ValueError(f"Unknown travel estimator '{method}'.")
