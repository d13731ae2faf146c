"""Planning request/response schemas."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..models.domain import PlanStatus, PlanStep


class PlanningRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    job_ids: List[str] = Field(..., description="Jobs selected for the day, in the technician's order.")
    plan_date: date


class PlanningResultModel(BaseModel):
    plan_id: Optional[str]
    status: PlanStatus
    current_step: PlanStep
    success: bool
    error: Optional[str] = None
    error_type: Optional[str] = None


class CoordinatesModel(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class PrioritizedJobModel(BaseModel):
    job_id: str
    priority_rank: int
    priority_score: Optional[float] = None
    priority_reason: Optional[str] = None
    job_type: Optional[str] = None


class DispatchOutputModel(BaseModel):
    prioritized_jobs: List[PrioritizedJobModel]
    source: str
    unresolved_job_ids: List[str]
    dropped_job_ids: List[str]


class WaypointModel(BaseModel):
    job_id: str
    sequence_number: int
    coordinates: CoordinatesModel
    arrival_time: datetime
    departure_time: datetime
    duration_at_location_minutes: int
    travel_time_to_next_minutes: int
    distance_to_next_km: float


class BoundsModel(BaseModel):
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float


class RouteOutputModel(BaseModel):
    waypoints: List[WaypointModel]
    total_distance_km: float
    total_travel_time_minutes: int
    total_work_time_minutes: int
    skipped_job_ids: List[str]
    bounds: BoundsModel
    estimator: str


class InventoryOutputModel(BaseModel):
    requirements: Dict[str, Any]
    source: str


class ErrorStateModel(BaseModel):
    error_type: str
    error_message: str
    failed_step: str
    timestamp: datetime
    retry_suggested: bool
    diagnostic_info: Dict[str, Any]


class PlanTransitionModel(BaseModel):
    status: PlanStatus
    current_step: PlanStep
    at: datetime


class PlanModel(BaseModel):
    id: str
    user_id: str
    planned_date: date
    job_ids: List[str]
    status: PlanStatus
    current_step: PlanStep
    created_at: datetime
    updated_at: datetime
    dispatch_output: Optional[DispatchOutputModel] = None
    route_output: Optional[RouteOutputModel] = None
    inventory_output: Optional[InventoryOutputModel] = None
    total_estimated_duration: Optional[int] = None
    total_distance: Optional[float] = None
    completed_at: Optional[datetime] = None
    retry_count: int = 0
    error_state: Optional[ErrorStateModel] = None
    history: List[PlanTransitionModel] = Field(default_factory=list)


class RouteLocationModel(BaseModel):
    id: str
    coordinates: CoordinatesModel


class RoutingPreferencesModel(BaseModel):
    default_buffer_minutes: int = Field(5, ge=0)
    traffic_multiplier: float = Field(1.0, gt=0)
    weather_multiplier: float = Field(1.0, gt=0)


class RouteEstimateRequest(BaseModel):
    locations: List[RouteLocationModel]
    preferences: Optional[RoutingPreferencesModel] = None


class RouteSegmentModel(BaseModel):
    from_id: str
    to_id: str
    distance: float
    travel_time: int


class RouteEstimateResponse(BaseModel):
    total_distance: float
    total_travel_time: int
    segments: List[RouteSegmentModel]
    bounds: BoundsModel
    centroid: CoordinatesModel
