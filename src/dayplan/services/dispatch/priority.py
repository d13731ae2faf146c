"""Default prioritization source: safety first, then urgency."""

from __future__ import annotations

from typing import Sequence

from ...models.domain import Job, PrioritizedJob

JOB_TYPE_WEIGHTS = {
    "emergency": 100.0,
    "demand": 60.0,
    "maintenance": 30.0,
}
DEFAULT_JOB_TYPE_WEIGHT = 40.0

PRIORITY_WEIGHTS = {
    "urgent": 40.0,
    "high": 30.0,
    "medium": 20.0,
    "low": 10.0,
}
DEFAULT_PRIORITY_WEIGHT = 20.0


def score_job(job: Job) -> float:
    type_weight = JOB_TYPE_WEIGHTS.get(job.job_type or "", DEFAULT_JOB_TYPE_WEIGHT)
    priority_weight = PRIORITY_WEIGHTS.get(job.priority or "", DEFAULT_PRIORITY_WEIGHT)
    return type_weight + priority_weight


def _reason(job: Job) -> str:
    if job.job_type == "emergency" or job.priority == "urgent":
        return "Safety or emergency work scheduled first"
    if job.job_type == "demand":
        return "Customer demand job ahead of routine maintenance"
    if job.job_type == "maintenance":
        return "Routine maintenance"
    return "Standard priority"


class PriorityRankPrioritizer:
    """Orders jobs by job type and priority; ties keep the caller's order."""

    name = "priority_rank"

    async def prioritize(self, jobs: Sequence[Job]) -> list[PrioritizedJob]:
        ranked = sorted(enumerate(jobs), key=lambda item: (-score_job(item[1]), item[0]))
        return [
            PrioritizedJob(
                job_id=job.id,
                priority_rank=rank,
                priority_score=score_job(job),
                priority_reason=_reason(job),
                job_type=job.job_type,
            )
            for rank, (_, job) in enumerate(ranked, start=1)
        ]
