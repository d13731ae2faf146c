"""Error taxonomy for the planning workflow."""

from __future__ import annotations

from typing import Any, Optional


class PlanningError(Exception):
    """Base class for every error raised by the planning core."""


class NotFoundError(PlanningError, LookupError):
    """A referenced plan or job does not exist."""


class ValidationError(PlanningError, ValueError):
    """Required input is missing; raised before any plan is created."""


class PlanStateError(PlanningError):
    """The requested operation is not valid for the plan's current status."""


class StageError(PlanningError):
    """A pipeline stage could not produce its output.

    Carries enough context to be recorded on the plan's error state and to
    support a manual retry.
    """

    def __init__(
        self,
        step: str,
        message: str,
        *,
        error_type: str = "agent_failure",
        retry_suggested: bool = True,
        diagnostic_info: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.step = step
        self.message = message
        self.error_type = error_type
        self.retry_suggested = retry_suggested
        self.diagnostic_info = diagnostic_info or {}


class UnresolvedJobWarning(UserWarning):
    """A job id referenced by the plan is missing from the job store."""

    def __init__(self, job_id: str, plan_id: str) -> None:
        super().__init__(f"Job {job_id} not found in job store, skipping it for plan {plan_id}")
        self.job_id = job_id
        self.plan_id = plan_id


class PlanCancelledError(PlanningError):
    """The plan was cancelled or superseded while its workflow was running."""

    def __init__(self, plan_id: str) -> None:
        super().__init__(f"Plan {plan_id} was cancelled or superseded.")
        self.plan_id = plan_id
