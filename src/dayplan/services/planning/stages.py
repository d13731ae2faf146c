"""Pipeline stages: dispatch, route and inventory."""

from __future__ import annotations

import logging
import warnings
from abc import ABC, abstractmethod
from datetime import datetime, time, timedelta

from ...config import settings
from ...errors import PlanCancelledError, PlanningError, StageError, UnresolvedJobWarning
from ...models.domain import (
    DispatchOutput,
    InventoryOutput,
    Plan,
    PlanStatus,
    PlanStep,
    PrioritizedJob,
    RouteOutput,
    Waypoint,
)
from ...persistence.plans import PlanRepository
from ..routing.engine import RouteEngine
from ..routing.estimators import TravelTimeEstimator
from ..routing.models import RouteLocation
from .collaborators import InventorySource, JobStore, PrioritizationSource
from .lifecycle import advance

logger = logging.getLogger(__name__)


class PlanningStage(ABC):
    """One step of the planning pipeline.

    ``run`` refuses to start on a plan that is no longer stored or whose stored
    status has moved on, wraps any collaborator failure in a
    :class:`StageError`, and persists the mutated plan before returning so the
    next stage always starts from stored state.
    """

    step: PlanStep

    def __init__(self, repository: PlanRepository, job_store: JobStore) -> None:
        self.repository = repository
        self.job_store = job_store

    async def run(self, plan: Plan) -> Plan:
        started_from = plan.status
        stored = self.repository.get(plan.id)
        if stored is None or stored.status is not started_from:
            raise PlanCancelledError(plan.id)
        logger.info(f"Running {self.step.value} stage for plan {plan.id}")
        try:
            await self.execute(plan)
        except (StageError, PlanCancelledError):
            raise
        except PlanningError as exc:
            raise StageError(
                self.step.value,
                f"{self.step.value.capitalize()} stage failed: {exc}",
                diagnostic_info={"exception": type(exc).__name__},
            ) from exc
        except Exception as exc:
            logger.exception(f"Unexpected error in {self.step.value} stage for plan {plan.id}")
            raise StageError(
                self.step.value,
                f"{self.step.value.capitalize()} stage failed: {exc}",
                error_type="external_api_error",
                diagnostic_info={"exception": type(exc).__name__},
            ) from exc
        # compare-and-set: a plan cancelled or expired meanwhile is left as stored
        if not self.repository.update(plan, expected_status=started_from):
            raise PlanCancelledError(plan.id)
        return plan

    @abstractmethod
    async def execute(self, plan: Plan) -> None:
        raise NotImplementedError


class DispatchStage(PlanningStage):
    step = PlanStep.DISPATCH

    def __init__(self, repository: PlanRepository, job_store: JobStore, source: PrioritizationSource) -> None:
        super().__init__(repository, job_store)
        self.source = source

    async def execute(self, plan: Plan) -> None:
        jobs = await self.job_store.get_jobs(plan.job_ids)
        found = {job.id for job in jobs}
        unresolved = [job_id for job_id in plan.job_ids if job_id not in found]
        for job_id in unresolved:
            _warn_unresolved(job_id, plan.id)

        prioritized = await self.source.prioritize(jobs)
        if prioritized is None:
            raise StageError(
                self.step.value,
                f"Prioritization source '{self.source.name}' returned no data.",
                error_type="external_api_error",
            )
        if not prioritized and jobs:
            raise StageError(
                self.step.value,
                f"Prioritization source '{self.source.name}' returned an empty list for {len(jobs)} jobs.",
                diagnostic_info={"job_count": len(jobs)},
            )

        allowed = set(plan.job_ids)
        kept: list[PrioritizedJob] = []
        seen: set[str] = set()
        dropped: list[str] = []
        for entry in prioritized:
            if entry.job_id not in allowed or entry.job_id in seen:
                logger.warning(f"Dropping prioritized entry {entry.job_id}: not requested or duplicated")
                dropped.append(entry.job_id)
                continue
            seen.add(entry.job_id)
            kept.append(entry)

        plan.dispatch_output = DispatchOutput(
            prioritized_jobs=kept,
            source=self.source.name,
            unresolved_job_ids=unresolved,
            dropped_job_ids=dropped,
        )
        advance(plan, PlanStatus.DISPATCH_COMPLETE, PlanStep.ROUTE)


class RouteStage(PlanningStage):
    step = PlanStep.ROUTE

    def __init__(
        self,
        repository: PlanRepository,
        job_store: JobStore,
        engine: RouteEngine,
        estimator: TravelTimeEstimator,
        *,
        day_start_hour: int | None = None,
        default_duration_minutes: int | None = None,
    ) -> None:
        super().__init__(repository, job_store)
        self.engine = engine
        self.estimator = estimator
        self.day_start_hour = day_start_hour if day_start_hour is not None else settings.day_start_hour
        self.default_duration_minutes = (
            default_duration_minutes
            if default_duration_minutes is not None
            else settings.default_job_duration_minutes
        )

    async def execute(self, plan: Plan) -> None:
        if plan.dispatch_output is None:
            raise StageError(self.step.value, "Route stage requires a completed dispatch output.")
        prioritized = plan.dispatch_output.prioritized_jobs
        jobs = await self.job_store.get_jobs([entry.job_id for entry in prioritized])
        jobs_by_id = {job.id: job for job in jobs}

        clock = datetime.combine(plan.planned_date, time(hour=self.day_start_hour))
        waypoints: list[Waypoint] = []
        skipped: list[str] = []
        for entry in prioritized:
            job = jobs_by_id.get(entry.job_id)
            if job is None:
                _warn_unresolved(entry.job_id, plan.id)
                skipped.append(entry.job_id)
                continue

            coordinates = self.engine.resolve_coordinates(job)
            if waypoints:
                previous = waypoints[-1]
                leg = self.estimator.estimate_leg(previous.coordinates, coordinates)
                previous.travel_time_to_next_minutes = leg.travel_minutes
                previous.distance_to_next_km = leg.distance_km
                clock += timedelta(minutes=leg.travel_minutes)

            duration = (
                job.estimated_duration_minutes
                if job.estimated_duration_minutes is not None
                else self.default_duration_minutes
            )
            arrival = clock
            departure = arrival + timedelta(minutes=duration)
            waypoints.append(
                Waypoint(
                    job_id=job.id,
                    sequence_number=len(waypoints) + 1,
                    coordinates=coordinates,
                    arrival_time=arrival,
                    departure_time=departure,
                    duration_at_location_minutes=duration,
                )
            )
            await self.job_store.update_schedule(job.id, arrival, departure)
            # idle time between jobs, not travel
            clock = departure + timedelta(minutes=self.estimator.buffer_minutes())

        plan.route_output = RouteOutput(
            waypoints=waypoints,
            total_distance_km=sum(waypoint.distance_to_next_km for waypoint in waypoints),
            total_travel_time_minutes=sum(waypoint.travel_time_to_next_minutes for waypoint in waypoints),
            total_work_time_minutes=sum(waypoint.duration_at_location_minutes for waypoint in waypoints),
            skipped_job_ids=skipped,
            bounds=self.engine.bounds([RouteLocation(w.job_id, w.coordinates) for w in waypoints]),
            estimator=self.estimator.name,
        )
        logger.info(
            f"Routed {len(waypoints)} jobs for plan {plan.id}: "
            f"{plan.route_output.total_distance_km:.2f} km, "
            f"{plan.route_output.total_travel_time_minutes} min travel"
        )
        advance(plan, PlanStatus.ROUTE_COMPLETE, PlanStep.INVENTORY)


class InventoryStage(PlanningStage):
    step = PlanStep.INVENTORY

    def __init__(self, repository: PlanRepository, job_store: JobStore, source: InventorySource) -> None:
        super().__init__(repository, job_store)
        self.source = source

    async def execute(self, plan: Plan) -> None:
        if plan.route_output is None:
            raise StageError(self.step.value, "Inventory stage requires a completed route output.")
        ordered_ids = [waypoint.job_id for waypoint in plan.route_output.waypoints]
        jobs = await self.job_store.get_jobs(ordered_ids)
        requirements = await self.source.derive_requirements(jobs)
        if requirements is None:
            raise StageError(
                self.step.value,
                f"Inventory source '{self.source.name}' returned no requirements.",
                error_type="external_api_error",
            )
        plan.inventory_output = InventoryOutput(requirements=requirements, source=self.source.name)
        advance(plan, PlanStatus.INVENTORY_COMPLETE, PlanStep.COMPLETE)


def _warn_unresolved(job_id: str, plan_id: str) -> None:
    warning = UnresolvedJobWarning(job_id, plan_id)
    logger.warning(str(warning))
    warnings.warn(warning, stacklevel=3)
