"""Plan lifecycle: creation, legal transitions, failure and approval."""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Optional, Sequence

from ...errors import PlanStateError, StageError
from ...models.domain import ErrorState, Plan, PlanStatus, PlanStep, PlanTransition

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[PlanStatus, frozenset[PlanStatus]] = {
    PlanStatus.PENDING: frozenset(
        {PlanStatus.DISPATCH_COMPLETE, PlanStatus.ERROR, PlanStatus.CANCELLED}
    ),
    PlanStatus.DISPATCH_COMPLETE: frozenset(
        {PlanStatus.ROUTE_COMPLETE, PlanStatus.ERROR, PlanStatus.CANCELLED}
    ),
    PlanStatus.ROUTE_COMPLETE: frozenset(
        {PlanStatus.INVENTORY_COMPLETE, PlanStatus.ERROR, PlanStatus.CANCELLED}
    ),
    PlanStatus.INVENTORY_COMPLETE: frozenset(
        {PlanStatus.APPROVED, PlanStatus.ERROR, PlanStatus.CANCELLED}
    ),
    # error only leaves through cancellation; a retry builds a new plan
    PlanStatus.ERROR: frozenset({PlanStatus.CANCELLED}),
    PlanStatus.APPROVED: frozenset(),
    PlanStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset({PlanStatus.APPROVED, PlanStatus.CANCELLED})
IN_PROGRESS_STATUSES = frozenset(
    {PlanStatus.PENDING, PlanStatus.DISPATCH_COMPLETE, PlanStatus.ROUTE_COMPLETE}
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def can_transition(current: PlanStatus, target: PlanStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def new_plan(
    user_id: str,
    planned_date: date,
    job_ids: Sequence[str],
    *,
    retry_count: int = 0,
    now: Optional[datetime] = None,
) -> Plan:
    timestamp = now or utcnow()
    return Plan(
        id=f"plan_{uuid.uuid4().hex}",
        user_id=user_id,
        planned_date=planned_date,
        job_ids=tuple(job_ids),
        status=PlanStatus.PENDING,
        current_step=PlanStep.DISPATCH,
        created_at=timestamp,
        updated_at=timestamp,
        retry_count=retry_count,
        history=[PlanTransition(PlanStatus.PENDING, PlanStep.DISPATCH, timestamp)],
    )


def advance(plan: Plan, status: PlanStatus, step: PlanStep, *, now: Optional[datetime] = None) -> Plan:
    if not can_transition(plan.status, status):
        raise PlanStateError(
            f"Plan {plan.id} cannot move from '{plan.status.value}' to '{status.value}'."
        )
    timestamp = now or utcnow()
    plan.status = status
    plan.current_step = step
    plan.updated_at = timestamp
    plan.history.append(PlanTransition(status, step, timestamp))
    logger.info(f"Plan {plan.id} -> {status.value} (next step: {step.value})")
    return plan


def mark_error(plan: Plan, error: StageError, *, now: Optional[datetime] = None) -> Plan:
    """Move the plan to ``error``; outputs of completed stages stay in place."""
    timestamp = now or utcnow()
    plan.error_state = ErrorState(
        error_type=error.error_type,
        error_message=error.message,
        failed_step=error.step,
        timestamp=timestamp,
        retry_suggested=error.retry_suggested,
        diagnostic_info=dict(error.diagnostic_info),
    )
    return advance(plan, PlanStatus.ERROR, plan.current_step, now=timestamp)


def approve(plan: Plan, *, now: Optional[datetime] = None) -> Plan:
    if plan.status is not PlanStatus.INVENTORY_COMPLETE:
        raise PlanStateError(
            f"Plan {plan.id} is '{plan.status.value}'; only plans with inventory complete can be approved."
        )
    route = plan.route_output
    if route is not None:
        plan.total_estimated_duration = route.total_work_time_minutes + route.total_travel_time_minutes
        plan.total_distance = route.total_distance_km
    else:
        plan.total_estimated_duration = 0
        plan.total_distance = 0.0
    timestamp = now or utcnow()
    plan.completed_at = timestamp
    return advance(plan, PlanStatus.APPROVED, PlanStep.COMPLETE, now=timestamp)
