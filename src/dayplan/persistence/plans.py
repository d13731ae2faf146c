"""In-memory plan storage keyed by plan id and by (user, date)."""

from __future__ import annotations

import copy
import contextlib
import threading
from datetime import date
from typing import Iterator, Optional

from ..models.domain import Plan, PlanStatus


class PlanRepository:
    """Single source of truth for plans.

    Every operation runs under one re-entrant lock and hands out deep copies,
    so callers never share mutable plan state. Each ``(user_id, planned_date)``
    key holds at most one plan.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._plans: dict[str, Plan] = {}
        self._keys: dict[tuple[str, date], str] = {}

    @contextlib.contextmanager
    def transaction(self) -> Iterator["PlanRepository"]:
        """Hold the store lock across several calls for a read-modify-write."""
        with self._lock:
            yield self

    def exists(self, plan_id: str) -> bool:
        with self._lock:
            return plan_id in self._plans

    def get(self, plan_id: str) -> Optional[Plan]:
        with self._lock:
            plan = self._plans.get(plan_id)
            return copy.deepcopy(plan) if plan is not None else None

    def get_by_key(self, user_id: str, planned_date: date) -> Optional[Plan]:
        with self._lock:
            plan_id = self._keys.get((user_id, planned_date))
            return self.get(plan_id) if plan_id is not None else None

    def add(self, plan: Plan) -> Optional[Plan]:
        """Store a new plan, evicting whatever plan held the same key. Returns the evicted plan."""
        with self._lock:
            if plan.id in self._plans:
                raise ValueError(f"Plan '{plan.id}' already exists.")
            evicted = self.delete_by_key(plan.user_id, plan.planned_date)
            self._plans[plan.id] = copy.deepcopy(plan)
            self._keys[plan.key] = plan.id
            return evicted

    def update(self, plan: Plan, *, expected_status: Optional[PlanStatus] = None) -> bool:
        """Replace a stored plan.

        Returns False when the plan was removed meanwhile, or when
        ``expected_status`` is given and the stored plan has moved on from it.
        """
        with self._lock:
            stored = self._plans.get(plan.id)
            if stored is None:
                return False
            if expected_status is not None and stored.status is not expected_status:
                return False
            self._plans[plan.id] = copy.deepcopy(plan)
            return True

    def delete(self, plan_id: str) -> Optional[Plan]:
        with self._lock:
            plan = self._plans.pop(plan_id, None)
            if plan is None:
                return None
            if self._keys.get(plan.key) == plan_id:
                del self._keys[plan.key]
            return plan

    def delete_by_key(self, user_id: str, planned_date: date) -> Optional[Plan]:
        with self._lock:
            plan_id = self._keys.get((user_id, planned_date))
            return self.delete(plan_id) if plan_id is not None else None

    def list_for_user(self, user_id: str) -> list[Plan]:
        with self._lock:
            plans = [copy.deepcopy(plan) for plan in self._plans.values() if plan.user_id == user_id]
        return sorted(plans, key=lambda plan: plan.planned_date)

    def list_all(self) -> list[Plan]:
        with self._lock:
            return [copy.deepcopy(plan) for plan in self._plans.values()]

    def clear(self) -> None:
        with self._lock:
            self._plans.clear()
            self._keys.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._plans)
