"""Contracts of the external collaborators the planning core awaits."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol, Sequence

from ...models.domain import Job, PrioritizedJob


class JobStore(Protocol):
    async def get_jobs(self, ids: Sequence[str]) -> list[Job]:
        """Return the jobs that exist among ``ids``; unknown ids are omitted."""
        ...

    async def update_schedule(self, job_id: str, start: datetime, end: datetime) -> None:
        ...


class PrioritizationSource(Protocol):
    name: str

    async def prioritize(self, jobs: Sequence[Job]) -> Optional[list[PrioritizedJob]]:
        ...


class InventorySource(Protocol):
    name: str

    async def derive_requirements(self, jobs: Sequence[Job]) -> Optional[dict[str, Any]]:
        ...
