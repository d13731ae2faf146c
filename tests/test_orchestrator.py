import asyncio
from datetime import date, datetime, timedelta

import pytest

from dayplan.data.jobs_repository import InMemoryJobStore
from dayplan.errors import NotFoundError, PlanStateError, UnresolvedJobWarning, ValidationError
from dayplan.models.domain import Coordinates, Job, PlanStatus, PlanStep
from dayplan.persistence.plans import PlanRepository
from dayplan.services.dispatch.priority import PriorityRankPrioritizer
from dayplan.services.inventory.requirements import CatalogInventorySource
from dayplan.services.planning import PlanningOrchestrator
from dayplan.services.planning.lifecycle import new_plan, utcnow
from dayplan.services.routing import EngineConfig, EngineTravelEstimator, RouteEngine

DAY = date(2024, 1, 15)


def _job(jid: str, lat: float | None = None, lon: float | None = None, duration: int | None = None, **kwargs) -> Job:
    coordinates = Coordinates(lat, lon) if lat is not None and lon is not None else None
    return Job(id=jid, coordinates=coordinates, estimated_duration_minutes=duration, **kwargs)


def _sf_jobs() -> list[Job]:
    return [
        _job("A", 37.7749, -122.4194, 60),
        _job("B", 37.7849, -122.4094, 90),
    ]


def _orchestrator(jobs=None, *, store=None, prioritizer=None, inventory=None, **kwargs) -> PlanningOrchestrator:
    engine = RouteEngine(
        EngineConfig(
            local_speed_kmh=30,
            highway_speed_kmh=80,
            local_distance_threshold_km=10,
            travel_buffer_minutes=5,
        )
    )
    kwargs.setdefault("auto_approve", True)
    kwargs.setdefault("max_retries", 3)
    return PlanningOrchestrator(
        repository=PlanRepository(),
        job_store=store or InMemoryJobStore(jobs or []),
        prioritizer=prioritizer or PriorityRankPrioritizer(),
        inventory_source=inventory or CatalogInventorySource(),
        engine=engine,
        estimator=EngineTravelEstimator(engine, buffer_minutes=10),
        day_start_hour=8,
        **kwargs,
    )


def _run(coro):
    return asyncio.run(asyncio.wait_for(coro, timeout=5))


class BlockingJobStore(InMemoryJobStore):
    """Holds the first get_jobs call until released; build it inside a running loop."""

    def __init__(self, jobs):
        super().__init__(jobs)
        self.entered = asyncio.Event()
        self.release = asyncio.Event()
        self.block = True

    async def get_jobs(self, ids):
        if self.block:
            self.block = False
            self.entered.set()
            await self.release.wait()
        return await super().get_jobs(ids)


class FlakyInventory:
    name = "flaky"

    def __init__(self, failures: int = 1) -> None:
        self.failures = failures

    async def derive_requirements(self, jobs):
        if self.failures:
            self.failures -= 1
            return None
        return {"parts_manifest": [], "shopping_list": [], "inventory_alerts": []}


def test_two_job_day_is_scheduled_and_approved():
    store = InMemoryJobStore(_sf_jobs())
    orchestrator = _orchestrator(store=store)

    result = _run(orchestrator.start_planning("tech-1", ["A", "B"], DAY))

    assert result.success
    assert result.status is PlanStatus.APPROVED
    assert result.current_step is PlanStep.COMPLETE
    plan = orchestrator.get_plan(result.plan_id)
    first, second = plan.route_output.waypoints
    assert first.arrival_time == datetime(2024, 1, 15, 8, 0)
    assert first.departure_time == datetime(2024, 1, 15, 9, 0)
    assert first.travel_time_to_next_minutes == 8
    assert first.distance_to_next_km == pytest.approx(1.417, abs=0.01)
    assert second.arrival_time == datetime(2024, 1, 15, 9, 18)
    assert second.departure_time == datetime(2024, 1, 15, 10, 48)
    assert plan.route_output.total_work_time_minutes == 150
    assert plan.route_output.total_travel_time_minutes == 8
    assert plan.total_estimated_duration == 158
    assert plan.total_distance == pytest.approx(plan.route_output.total_distance_km)
    assert plan.completed_at is not None
    assert store.get("B").scheduled_start == datetime(2024, 1, 15, 9, 18)
    assert store.get("B").scheduled_end == datetime(2024, 1, 15, 10, 48)


def test_history_records_every_stage():
    orchestrator = _orchestrator(_sf_jobs())

    result = _run(orchestrator.start_planning("tech-1", ["A", "B"], DAY))
    history = orchestrator.get_plan(result.plan_id).history

    assert [(entry.status, entry.current_step) for entry in history] == [
        (PlanStatus.PENDING, PlanStep.DISPATCH),
        (PlanStatus.DISPATCH_COMPLETE, PlanStep.ROUTE),
        (PlanStatus.ROUTE_COMPLETE, PlanStep.INVENTORY),
        (PlanStatus.INVENTORY_COMPLETE, PlanStep.COMPLETE),
        (PlanStatus.APPROVED, PlanStep.COMPLETE),
    ]


def test_empty_job_list_is_approved_with_empty_route():
    orchestrator = _orchestrator()

    result = _run(orchestrator.start_planning("tech-1", [], DAY))

    plan = orchestrator.get_plan(result.plan_id)
    assert result.status is PlanStatus.APPROVED
    assert plan.route_output.waypoints == []
    assert plan.route_output.total_distance_km == 0.0
    assert plan.total_estimated_duration == 0


def test_unresolved_job_is_skipped_with_warning():
    jobs = [_job("A", 37.7749, -122.4194, 30), _job("C", 37.7649, -122.4294, 45)]
    orchestrator = _orchestrator(jobs)

    with pytest.warns(UnresolvedJobWarning):
        result = _run(orchestrator.start_planning("tech-1", ["A", "missing", "C"], DAY))

    plan = orchestrator.get_plan(result.plan_id)
    assert result.status is PlanStatus.APPROVED
    assert [w.job_id for w in plan.route_output.waypoints] == ["A", "C"]
    assert plan.dispatch_output.unresolved_job_ids == ["missing"]


def test_sequence_numbers_and_arrivals_increase():
    jobs = [
        _job("J1", 37.7749, -122.4194, 30),
        _job("J2", 37.7849, -122.4094, 30),
        _job("J3", 37.7949, -122.3994, 30),
    ]
    orchestrator = _orchestrator(jobs)

    result = _run(orchestrator.start_planning("tech-1", ["J1", "J2", "J3"], DAY))
    waypoints = orchestrator.get_plan(result.plan_id).route_output.waypoints

    assert [w.sequence_number for w in waypoints] == [1, 2, 3]
    arrivals = [w.arrival_time for w in waypoints]
    assert arrivals == sorted(arrivals)
    assert len(set(arrivals)) == 3
    assert all(w.departure_time >= w.arrival_time for w in waypoints)
    assert waypoints[-1].travel_time_to_next_minutes == 0


def test_emergency_jobs_are_routed_first():
    jobs = [
        _job("routine", 37.7749, -122.4194, 30, job_type="maintenance", priority="low"),
        _job("leak", 37.7849, -122.4094, 30, job_type="emergency", priority="urgent"),
    ]
    orchestrator = _orchestrator(jobs)

    result = _run(orchestrator.start_planning("tech-1", ["routine", "leak"], DAY))
    plan = orchestrator.get_plan(result.plan_id)

    assert [w.job_id for w in plan.route_output.waypoints] == ["leak", "routine"]
    assert plan.dispatch_output.prioritized_jobs[0].priority_rank == 1


def test_missing_duration_uses_default():
    orchestrator = _orchestrator([_job("A", 37.7749, -122.4194)])

    result = _run(orchestrator.start_planning("tech-1", ["A"], DAY))
    waypoint = orchestrator.get_plan(result.plan_id).route_output.waypoints[0]

    assert waypoint.duration_at_location_minutes == 60


def test_job_ids_are_deduplicated_in_order():
    orchestrator = _orchestrator(_sf_jobs())

    result = _run(orchestrator.start_planning("tech-1", ["B", "A", "B"], "2024-01-15"))

    assert orchestrator.get_plan(result.plan_id).job_ids == ("B", "A")


@pytest.mark.parametrize(
    "user_id, job_ids, plan_date",
    [
        ("", ["A"], DAY),
        ("tech-1", None, DAY),
        ("tech-1", "A", DAY),
        ("tech-1", ["A"], None),
        ("tech-1", ["A"], "15/01/2024"),
    ],
)
def test_invalid_requests_raise_before_creating_plan(user_id, job_ids, plan_date):
    orchestrator = _orchestrator(_sf_jobs())

    with pytest.raises(ValidationError):
        _run(orchestrator.start_planning(user_id, job_ids, plan_date))

    assert len(orchestrator.repository) == 0


def test_stage_failure_keeps_earlier_outputs():
    orchestrator = _orchestrator(_sf_jobs(), inventory=FlakyInventory())

    result = _run(orchestrator.start_planning("tech-1", ["A", "B"], DAY))

    plan = orchestrator.get_plan(result.plan_id)
    assert not result.success
    assert result.status is PlanStatus.ERROR
    assert result.error
    assert plan.error_state.failed_step == "inventory"
    assert plan.error_state.retry_suggested is True
    assert plan.dispatch_output is not None
    assert plan.route_output is not None
    assert plan.inventory_output is None


def test_collaborator_exception_becomes_error_state():
    class BrokenPrioritizer:
        name = "broken"

        async def prioritize(self, jobs):
            raise ConnectionError("upstream down")

    orchestrator = _orchestrator(_sf_jobs(), prioritizer=BrokenPrioritizer())

    result = _run(orchestrator.start_planning("tech-1", ["A", "B"], DAY))

    plan = orchestrator.get_plan(result.plan_id)
    assert result.status is PlanStatus.ERROR
    assert result.error_type == "external_api_error"
    assert plan.error_state.failed_step == "dispatch"
    assert plan.error_state.diagnostic_info["exception"] == "ConnectionError"


def test_empty_prioritization_for_real_jobs_fails_dispatch():
    class EmptyPrioritizer:
        name = "empty"

        async def prioritize(self, jobs):
            return []

    orchestrator = _orchestrator(_sf_jobs(), prioritizer=EmptyPrioritizer())

    result = _run(orchestrator.start_planning("tech-1", ["A", "B"], DAY))

    assert result.status is PlanStatus.ERROR
    assert orchestrator.get_plan(result.plan_id).dispatch_output is None


def test_unrequested_prioritized_entries_are_dropped():
    class ChattyPrioritizer(PriorityRankPrioritizer):
        async def prioritize(self, jobs):
            ranked = await super().prioritize(jobs)
            extra = await super().prioritize([_job("Z")])
            return ranked + extra

    orchestrator = _orchestrator(_sf_jobs(), prioritizer=ChattyPrioritizer())

    result = _run(orchestrator.start_planning("tech-1", ["A", "B"], DAY))
    plan = orchestrator.get_plan(result.plan_id)

    assert plan.dispatch_output.dropped_job_ids == ["Z"]
    assert [w.job_id for w in plan.route_output.waypoints] == ["A", "B"]


def test_job_removed_between_stages_is_skipped():
    store = InMemoryJobStore(_sf_jobs())

    class RemovingPrioritizer(PriorityRankPrioritizer):
        async def prioritize(self, jobs):
            ranked = await super().prioritize(jobs)
            store.remove("B")
            return ranked

    orchestrator = _orchestrator(store=store, prioritizer=RemovingPrioritizer())

    with pytest.warns(UnresolvedJobWarning):
        result = _run(orchestrator.start_planning("tech-1", ["A", "B"], DAY))

    route = orchestrator.get_plan(result.plan_id).route_output
    assert route.skipped_job_ids == ["B"]
    assert [w.job_id for w in route.waypoints] == ["A"]


def test_cancel_removes_plan():
    orchestrator = _orchestrator(_sf_jobs(), inventory=FlakyInventory())
    result = _run(orchestrator.start_planning("tech-1", ["A", "B"], DAY))

    orchestrator.cancel_planning(result.plan_id)

    with pytest.raises(NotFoundError):
        orchestrator.get_plan(result.plan_id)
    with pytest.raises(NotFoundError):
        orchestrator.get_active_plan_for_date("tech-1", DAY)


def test_cancel_rejects_approved_plan():
    orchestrator = _orchestrator(_sf_jobs())
    result = _run(orchestrator.start_planning("tech-1", ["A", "B"], DAY))

    with pytest.raises(PlanStateError):
        orchestrator.cancel_planning(result.plan_id)
    with pytest.raises(NotFoundError):
        orchestrator.cancel_planning("plan_unknown")


def test_retry_replaces_failed_plan():
    orchestrator = _orchestrator(_sf_jobs(), inventory=FlakyInventory(failures=1))
    failed = _run(orchestrator.start_planning("tech-1", ["A", "B"], DAY))

    retried = _run(orchestrator.retry_planning(failed.plan_id))

    assert retried.plan_id != failed.plan_id
    assert retried.status is PlanStatus.APPROVED
    plan = orchestrator.get_plan(retried.plan_id)
    assert plan.job_ids == ("A", "B")
    assert plan.retry_count == 1
    assert (plan.history[0].status, plan.history[0].current_step) == (PlanStatus.PENDING, PlanStep.DISPATCH)
    with pytest.raises(NotFoundError):
        orchestrator.get_plan(failed.plan_id)


def test_retry_limit_is_enforced():
    orchestrator = _orchestrator(_sf_jobs(), inventory=FlakyInventory(failures=5), max_retries=1)
    failed = _run(orchestrator.start_planning("tech-1", ["A", "B"], DAY))
    retried = _run(orchestrator.retry_planning(failed.plan_id))

    with pytest.raises(PlanStateError):
        _run(orchestrator.retry_planning(retried.plan_id))


def test_manual_approval():
    orchestrator = _orchestrator(_sf_jobs(), auto_approve=False)
    result = _run(orchestrator.start_planning("tech-1", ["A", "B"], DAY))

    assert result.success
    assert result.status is PlanStatus.INVENTORY_COMPLETE
    assert orchestrator.get_plan(result.plan_id).total_estimated_duration is None

    plan = orchestrator.approve_plan(result.plan_id)

    assert plan.status is PlanStatus.APPROVED
    assert plan.total_estimated_duration == 158
    with pytest.raises(PlanStateError):
        orchestrator.approve_plan(result.plan_id)


def test_new_request_replaces_plan_for_same_day():
    orchestrator = _orchestrator(_sf_jobs())
    first = _run(orchestrator.start_planning("tech-1", ["A"], DAY))
    second = _run(orchestrator.start_planning("tech-1", ["B"], DAY))

    assert orchestrator.get_active_plan_for_date("tech-1", DAY).id == second.plan_id
    assert len(orchestrator.list_plans("tech-1")) == 1
    with pytest.raises(NotFoundError):
        orchestrator.get_plan(first.plan_id)


def test_in_flight_plan_is_superseded():
    async def scenario():
        store = BlockingJobStore(_sf_jobs())
        orchestrator = _orchestrator(store=store)
        first = asyncio.create_task(orchestrator.start_planning("tech-1", ["A"], DAY))
        await store.entered.wait()
        second = asyncio.create_task(orchestrator.start_planning("tech-1", ["A", "B"], DAY))
        await asyncio.sleep(0)
        store.release.set()
        return orchestrator, await first, await second

    orchestrator, first, second = _run(scenario())

    assert first.status is PlanStatus.CANCELLED
    assert second.status is PlanStatus.APPROVED
    assert orchestrator.get_active_plan_for_date("tech-1", DAY).id == second.plan_id
    assert len(orchestrator.repository) == 1


def test_queued_request_is_superseded_by_newer_one():
    class CountingPrioritizer(PriorityRankPrioritizer):
        calls = 0

        async def prioritize(self, jobs):
            CountingPrioritizer.calls += 1
            return await super().prioritize(jobs)

    async def scenario():
        store = BlockingJobStore(_sf_jobs())
        orchestrator = _orchestrator(store=store, prioritizer=CountingPrioritizer())
        first = asyncio.create_task(orchestrator.start_planning("tech-1", ["A"], DAY))
        await store.entered.wait()
        second = asyncio.create_task(orchestrator.start_planning("tech-1", ["B"], DAY))
        await asyncio.sleep(0)
        third = asyncio.create_task(orchestrator.start_planning("tech-1", ["A", "B"], DAY))
        await asyncio.sleep(0)
        store.release.set()
        return orchestrator, await first, await second, await third

    orchestrator, first, second, third = _run(scenario())

    assert first.status is PlanStatus.CANCELLED
    assert second.status is PlanStatus.CANCELLED
    assert second.plan_id is None
    assert third.status is PlanStatus.APPROVED
    assert CountingPrioritizer.calls == 2
    assert orchestrator.get_active_plan_for_date("tech-1", DAY).id == third.plan_id
    assert orchestrator.get_plan(third.plan_id).job_ids == ("A", "B")


def test_cancel_during_running_stage():
    async def scenario():
        store = BlockingJobStore(_sf_jobs())
        orchestrator = _orchestrator(store=store)
        task = asyncio.create_task(orchestrator.start_planning("tech-1", ["A", "B"], DAY))
        await store.entered.wait()
        plan_id = orchestrator.get_active_plan_for_date("tech-1", DAY).id
        orchestrator.cancel_planning(plan_id)
        store.release.set()
        return orchestrator, store, plan_id, await task

    orchestrator, store, plan_id, result = _run(scenario())

    assert result.plan_id == plan_id
    assert result.status is PlanStatus.CANCELLED
    assert result.error_type == "cancelled"
    with pytest.raises(NotFoundError):
        orchestrator.get_plan(plan_id)
    assert store.get("A").scheduled_start is None


def test_expiry_during_running_stage_is_not_overwritten():
    async def scenario():
        store = BlockingJobStore(_sf_jobs())
        orchestrator = _orchestrator(store=store, stale_after_minutes=30)
        task = asyncio.create_task(orchestrator.start_planning("tech-1", ["A", "B"], DAY))
        await store.entered.wait()
        expired = orchestrator.expire_stale_plans(now=utcnow() + timedelta(hours=2))
        store.release.set()
        return orchestrator, expired, await task

    orchestrator, expired, result = _run(scenario())

    assert expired == [result.plan_id]
    assert result.status is PlanStatus.ERROR
    assert result.error_type == "timeout"
    plan = orchestrator.get_plan(result.plan_id)
    assert plan.status is PlanStatus.ERROR
    assert plan.error_state.error_type == "timeout"
    assert plan.dispatch_output is None
    assert plan.completed_at is None


def test_key_slots_are_released_after_runs():
    orchestrator = _orchestrator(_sf_jobs())

    async def scenario():
        return await asyncio.gather(
            orchestrator.start_planning("tech-1", ["A"], DAY),
            orchestrator.start_planning("tech-1", ["B"], DAY),
            orchestrator.start_planning("tech-2", ["A"], DAY),
        )

    _run(scenario())

    assert orchestrator._key_slots == {}


def test_other_users_are_independent():
    orchestrator = _orchestrator(_sf_jobs())

    async def scenario():
        return await asyncio.gather(
            orchestrator.start_planning("tech-1", ["A"], DAY),
            orchestrator.start_planning("tech-2", ["B"], DAY),
        )

    results = _run(scenario())

    assert all(result.status is PlanStatus.APPROVED for result in results)
    assert len(orchestrator.repository) == 2


def test_clear_plan_for_date():
    orchestrator = _orchestrator(_sf_jobs())
    result = _run(orchestrator.start_planning("tech-1", ["A"], DAY))

    removed = orchestrator.clear_plan_for_date("tech-1", "2024-01-15")

    assert removed.id == result.plan_id
    assert orchestrator.clear_plan_for_date("tech-1", DAY) is None


def test_expire_stale_plans():
    orchestrator = _orchestrator(stale_after_minutes=30)
    stuck = new_plan("tech-1", DAY, ["A"], now=utcnow() - timedelta(hours=1))
    fresh = new_plan("tech-2", DAY, ["B"])
    orchestrator.repository.add(stuck)
    orchestrator.repository.add(fresh)

    expired = orchestrator.expire_stale_plans()

    assert expired == [stuck.id]
    plan = orchestrator.get_plan(stuck.id)
    assert plan.status is PlanStatus.ERROR
    assert plan.error_state.error_type == "timeout"
    assert orchestrator.get_plan(fresh.id).status is PlanStatus.PENDING
