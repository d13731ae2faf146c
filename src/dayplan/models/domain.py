"""Domain models for jobs, daily plans and stage outputs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional


class PlanStatus(str, Enum):
    PENDING = "pending"
    DISPATCH_COMPLETE = "dispatch_complete"
    ROUTE_COMPLETE = "route_complete"
    INVENTORY_COMPLETE = "inventory_complete"
    APPROVED = "approved"
    CANCELLED = "cancelled"
    ERROR = "error"


class PlanStep(str, Enum):
    DISPATCH = "dispatch"
    ROUTE = "route"
    INVENTORY = "inventory"
    COMPLETE = "complete"
    NONE = "none"


@dataclass(slots=True, frozen=True)
class Coordinates:
    latitude: float
    longitude: float


@dataclass(slots=True)
class Job:
    """A job record owned by the job store; the core only reads it and writes the schedule."""

    id: str
    coordinates: Optional[Coordinates] = None
    estimated_duration_minutes: Optional[int] = None
    priority: Optional[str] = None
    job_type: Optional[str] = None
    title: Optional[str] = None
    required_items: list[str] = field(default_factory=list)
    scheduled_start: Optional[datetime] = None
    scheduled_end: Optional[datetime] = None


@dataclass(slots=True)
class PrioritizedJob:
    job_id: str
    priority_rank: int
    priority_score: Optional[float] = None
    priority_reason: Optional[str] = None
    job_type: Optional[str] = None


@dataclass(slots=True)
class DispatchOutput:
    prioritized_jobs: list[PrioritizedJob]
    source: str
    unresolved_job_ids: list[str] = field(default_factory=list)
    dropped_job_ids: list[str] = field(default_factory=list)


@dataclass(slots=True)
class Waypoint:
    job_id: str
    sequence_number: int
    coordinates: Coordinates
    arrival_time: datetime
    departure_time: datetime
    duration_at_location_minutes: int
    travel_time_to_next_minutes: int = 0
    distance_to_next_km: float = 0.0


@dataclass(slots=True)
class Bounds:
    min_lat: float = 0.0
    max_lat: float = 0.0
    min_lng: float = 0.0
    max_lng: float = 0.0


@dataclass(slots=True)
class RouteOutput:
    waypoints: list[Waypoint]
    total_distance_km: float
    total_travel_time_minutes: int
    total_work_time_minutes: int
    skipped_job_ids: list[str] = field(default_factory=list)
    bounds: Bounds = field(default_factory=Bounds)
    estimator: str = "engine"


@dataclass(slots=True)
class InventoryOutput:
    requirements: dict[str, Any]
    source: str


@dataclass(slots=True)
class ErrorState:
    error_type: str
    error_message: str
    failed_step: str
    timestamp: datetime
    retry_suggested: bool
    diagnostic_info: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class PlanTransition:
    status: PlanStatus
    current_step: PlanStep
    at: datetime


@dataclass(slots=True)
class Plan:
    """The aggregate tracking one user's planning workflow for one day."""

    id: str
    user_id: str
    planned_date: date
    job_ids: tuple[str, ...]
    status: PlanStatus
    current_step: PlanStep
    created_at: datetime
    updated_at: datetime
    dispatch_output: Optional[DispatchOutput] = None
    route_output: Optional[RouteOutput] = None
    inventory_output: Optional[InventoryOutput] = None
    total_estimated_duration: Optional[int] = None
    total_distance: Optional[float] = None
    completed_at: Optional[datetime] = None
    retry_count: int = 0
    error_state: Optional[ErrorState] = None
    history: list[PlanTransition] = field(default_factory=list)

    @property
    def key(self) -> tuple[str, date]:
        return (self.user_id, self.planned_date)


@dataclass(slots=True)
class PlanningResult:
    """Summary returned to callers of the orchestrator entry points."""

    plan_id: Optional[str]
    status: PlanStatus
    current_step: PlanStep
    error: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None and self.status in (PlanStatus.APPROVED, PlanStatus.INVENTORY_COMPLETE)
