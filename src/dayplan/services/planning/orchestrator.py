"""Planning orchestration service."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Union

from ...config import settings
from ...errors import (
    NotFoundError,
    PlanCancelledError,
    PlanStateError,
    StageError,
    ValidationError,
)
from ...models.domain import Plan, PlanningResult, PlanStatus, PlanStep
from ...persistence.plans import PlanRepository
from ..routing.engine import RouteEngine
from ..routing.estimators import TravelTimeEstimator, get_estimator
from .collaborators import InventorySource, JobStore, PrioritizationSource
from .lifecycle import (
    IN_PROGRESS_STATUSES,
    approve,
    can_transition,
    mark_error,
    new_plan,
    utcnow,
)
from .stages import DispatchStage, InventoryStage, PlanningStage, RouteStage

logger = logging.getLogger(__name__)

DateLike = Union[date, str]


@dataclass(slots=True)
class _KeySlot:
    """Per-key lock plus the ticket of the newest request for that key."""

    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    generation: int = 0
    users: int = 0


def _coerce_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as exc:
        raise ValidationError(f"Invalid plan date '{value}', expected YYYY-MM-DD.") from exc


class PlanningOrchestrator:
    """Drives dispatch, route and inventory stages and owns the plan lifecycle.

    Requests for the same ``(user_id, planned_date)`` are serialised with a
    per-key lock under a last-writer-wins policy: a new request removes the
    current plan for the key straight away, so a run still in flight stops at
    its next stage boundary, and then waits for the key to become free. A
    request still queued on the lock when a newer one arrives never runs.
    """

    def __init__(
        self,
        *,
        repository: PlanRepository,
        job_store: JobStore,
        prioritizer: PrioritizationSource,
        inventory_source: InventorySource,
        engine: RouteEngine | None = None,
        estimator: TravelTimeEstimator | None = None,
        auto_approve: bool | None = None,
        max_retries: int | None = None,
        stale_after_minutes: int | None = None,
        day_start_hour: int | None = None,
    ) -> None:
        self.repository = repository
        self.job_store = job_store
        self.engine = engine or RouteEngine()
        self.estimator = estimator or get_estimator(settings.travel_estimator, engine=self.engine)
        self.auto_approve = settings.auto_approve if auto_approve is None else auto_approve
        self.max_retries = settings.max_plan_retries if max_retries is None else max_retries
        self.stale_after = timedelta(
            minutes=settings.stale_plan_minutes if stale_after_minutes is None else stale_after_minutes
        )
        self.stages: list[PlanningStage] = [
            DispatchStage(repository, job_store, prioritizer),
            RouteStage(repository, job_store, self.engine, self.estimator, day_start_hour=day_start_hour),
            InventoryStage(repository, job_store, inventory_source),
        ]
        self._key_slots: dict[tuple[str, date], _KeySlot] = {}

    @classmethod
    def from_settings(
        cls,
        *,
        job_store: JobStore,
        prioritizer: PrioritizationSource,
        inventory_source: InventorySource,
        repository: PlanRepository | None = None,
        rng: random.Random | None = None,
    ) -> "PlanningOrchestrator":
        engine = RouteEngine(rng=rng)
        return cls(
            repository=repository or PlanRepository(),
            job_store=job_store,
            prioritizer=prioritizer,
            inventory_source=inventory_source,
            engine=engine,
            estimator=get_estimator(settings.travel_estimator, engine=engine, rng=rng),
        )

    # Entry points ----------------------------------------------------------------

    async def start_planning(
        self,
        user_id: str,
        job_ids: Optional[Iterable[str]],
        plan_date: Optional[DateLike],
    ) -> PlanningResult:
        if not user_id or not str(user_id).strip():
            raise ValidationError("Missing required field: user_id")
        if job_ids is None or isinstance(job_ids, str):
            raise ValidationError("Missing required field: job_ids (expected a list of job ids)")
        if plan_date is None or (isinstance(plan_date, str) and not plan_date.strip()):
            raise ValidationError("Missing required field: plan_date")
        planned_date = _coerce_date(plan_date)
        # ordered set: keep the first occurrence of each id
        unique_ids = tuple(dict.fromkeys(str(job_id) for job_id in job_ids))
        logger.info(f"Planning {len(unique_ids)} jobs for user {user_id} on {planned_date.isoformat()}")
        return await self._plan(str(user_id), unique_ids, planned_date)

    def get_plan(self, plan_id: str) -> Plan:
        plan = self.repository.get(plan_id)
        if plan is None:
            raise NotFoundError(f"Plan '{plan_id}' not found.")
        return plan

    def get_active_plan_for_date(self, user_id: str, plan_date: DateLike) -> Plan:
        planned_date = _coerce_date(plan_date)
        plan = self.repository.get_by_key(user_id, planned_date)
        if plan is None:
            raise NotFoundError(f"No plan for user '{user_id}' on {planned_date.isoformat()}.")
        return plan

    def list_plans(self, user_id: str) -> list[Plan]:
        return self.repository.list_for_user(user_id)

    async def retry_planning(self, plan_id: str) -> PlanningResult:
        """Discard the plan and run the whole pipeline again with the same jobs."""
        plan = self.get_plan(plan_id)
        if plan.retry_count >= self.max_retries:
            raise PlanStateError(
                f"Plan {plan_id} has already been retried {plan.retry_count} times (limit {self.max_retries})."
            )
        logger.info(f"Retrying plan {plan_id} (status {plan.status.value}, attempt {plan.retry_count + 1})")
        return await self._plan(
            plan.user_id, plan.job_ids, plan.planned_date, retry_count=plan.retry_count + 1
        )

    def cancel_planning(self, plan_id: str) -> None:
        with self.repository.transaction():
            plan = self.get_plan(plan_id)
            if not can_transition(plan.status, PlanStatus.CANCELLED):
                raise PlanStateError(f"Plan {plan_id} is '{plan.status.value}' and cannot be cancelled.")
            self.repository.delete(plan_id)
        logger.info(f"Cancelled plan {plan_id} ({plan.status.value})")

    def approve_plan(self, plan_id: str) -> Plan:
        with self.repository.transaction():
            plan = approve(self.get_plan(plan_id))
            self.repository.update(plan)
        logger.info(f"Plan {plan_id} approved")
        return plan

    def clear_plan_for_date(self, user_id: str, plan_date: DateLike) -> Optional[Plan]:
        """Remove whatever plan holds the key, whatever its status."""
        removed = self.repository.delete_by_key(user_id, _coerce_date(plan_date))
        if removed is not None:
            logger.info(f"Cleared plan {removed.id} for user {user_id} on {removed.planned_date.isoformat()}")
        return removed

    def expire_stale_plans(self, now: Optional[datetime] = None) -> list[str]:
        """Fail plans stuck mid-pipeline for longer than the stale threshold."""
        now = now or utcnow()
        minutes = int(self.stale_after.total_seconds() // 60)
        expired: list[str] = []
        with self.repository.transaction():
            for plan in self.repository.list_all():
                if plan.status not in IN_PROGRESS_STATUSES or now - plan.updated_at <= self.stale_after:
                    continue
                mark_error(
                    plan,
                    StageError(
                        plan.current_step.value,
                        f"Plan execution timed out after {minutes} minutes",
                        error_type="timeout",
                        diagnostic_info={"reason": "stale_plan_cleanup"},
                    ),
                    now=now,
                )
                self.repository.update(plan)
                expired.append(plan.id)
        if expired:
            logger.warning(f"Expired {len(expired)} stale plans: {expired}")
        return expired

    # Pipeline --------------------------------------------------------------------

    async def _plan(
        self,
        user_id: str,
        job_ids: tuple[str, ...],
        planned_date: date,
        *,
        retry_count: int = 0,
    ) -> PlanningResult:
        key = (user_id, planned_date)
        slot = self._key_slots.get(key)
        if slot is None:
            slot = self._key_slots[key] = _KeySlot()
        slot.generation += 1
        ticket = slot.generation
        slot.users += 1
        superseded = self.repository.delete_by_key(user_id, planned_date)
        if superseded is not None:
            logger.info(f"Superseding plan {superseded.id} ({superseded.status.value})")
        try:
            async with slot.lock:
                if slot.generation != ticket:
                    logger.info(
                        f"Planning request for user {user_id} on {planned_date.isoformat()} "
                        "superseded while queued"
                    )
                    return PlanningResult(
                        None,
                        PlanStatus.CANCELLED,
                        PlanStep.NONE,
                        error="Superseded by a newer planning request",
                        error_type="cancelled",
                    )
                plan = new_plan(user_id, planned_date, job_ids, retry_count=retry_count)
                evicted = self.repository.add(plan)
                if evicted is not None:
                    logger.info(f"Superseding plan {evicted.id} ({evicted.status.value})")
                logger.info(f"Created plan {plan.id}")
                return await self._run_pipeline(plan)
        finally:
            slot.users -= 1
            if slot.users == 0:
                del self._key_slots[key]

    async def _run_pipeline(self, plan: Plan) -> PlanningResult:
        try:
            for stage in self.stages:
                plan = await stage.run(plan)
            if not self.auto_approve:
                return PlanningResult(plan.id, plan.status, plan.current_step)
            approve(plan)
            if not self.repository.update(plan, expected_status=PlanStatus.INVENTORY_COMPLETE):
                raise PlanCancelledError(plan.id)
        except PlanCancelledError as exc:
            return self._stopped(plan, exc)
        except StageError as exc:
            return self._fail(plan, exc)
        logger.info(f"Plan {plan.id} approved and ready for execution")
        return PlanningResult(plan.id, plan.status, plan.current_step)

    def _fail(self, plan: Plan, error: StageError) -> PlanningResult:
        logger.error(f"Plan {plan.id} failed during {error.step}: {error.message}")
        previous = plan.status
        mark_error(plan, error)
        if not self.repository.update(plan, expected_status=previous):
            return self._stopped(plan, PlanCancelledError(plan.id))
        return PlanningResult(
            plan.id, plan.status, plan.current_step, error=error.message, error_type=error.error_type
        )

    def _stopped(self, plan: Plan, exc: PlanCancelledError) -> PlanningResult:
        """Report a run whose plan was removed, or moved on by someone else, mid-flight."""
        stored = self.repository.get(plan.id)
        if stored is None:
            logger.info(str(exc))
            return PlanningResult(
                plan.id, PlanStatus.CANCELLED, PlanStep.NONE, error=str(exc), error_type="cancelled"
            )
        logger.warning(f"Plan {plan.id} left as '{stored.status.value}' by a concurrent operation")
        error_state = stored.error_state
        return PlanningResult(
            stored.id,
            stored.status,
            stored.current_step,
            error=error_state.error_message if error_state else str(exc),
            error_type=error_state.error_type if error_state else "cancelled",
        )
