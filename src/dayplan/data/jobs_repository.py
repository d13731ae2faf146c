"""Data access helpers for loading job records and serving them to the planner."""

from __future__ import annotations

import copy
import csv
import functools
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional, Sequence

from ..config import settings
from ..errors import NotFoundError
from ..models.domain import Coordinates, Job

logger = logging.getLogger(__name__)


def _coerce_float(value: Optional[str]) -> Optional[float]:
    if value is None or value.strip() == "":
        return None
    try:
        return float(value.replace(",", ""))
    except ValueError as exc:
        raise ValueError(f"Unable to parse float from value '{value}'") from exc


def _coerce_int(value: Optional[str]) -> Optional[int]:
    parsed = _coerce_float(value)
    return int(parsed) if parsed is not None else None


@functools.lru_cache(maxsize=1)
def load_jobs(source: Optional[Path] = None) -> tuple[Job, ...]:
    """Load jobs from the configured CSV file.

    Rows without coordinates are kept; the route engine synthesises a location
    for them at planning time.
    """

    csv_path = source or settings.jobs_file
    if csv_path is None:
        return tuple()
    if not csv_path.exists():
        raise FileNotFoundError(f"Jobs file not found: {csv_path}")

    jobs: list[Job] = []
    with csv_path.open(mode="r", encoding="utf-8-sig", newline="") as handle:
        reader = csv.DictReader(handle)
        if not reader.fieldnames:
            raise ValueError(f"Jobs file '{csv_path}' is missing a header row.")
        for row in reader:
            job_id = (row.get("id") or row.get("job_id") or "").strip()
            if not job_id:
                continue
            lat = _coerce_float(row.get("latitude"))
            lon = _coerce_float(row.get("longitude"))
            items = (row.get("required_items") or "").strip()
            jobs.append(
                Job(
                    id=job_id,
                    coordinates=Coordinates(lat, lon) if lat is not None and lon is not None else None,
                    estimated_duration_minutes=_coerce_int(row.get("estimated_duration")),
                    priority=(row.get("priority") or "").strip().lower() or None,
                    job_type=(row.get("job_type") or "").strip().lower() or None,
                    title=(row.get("title") or "").strip() or None,
                    required_items=[item.strip() for item in items.split(";") if item.strip()],
                )
            )
    logger.info(f"Loaded {len(jobs)} jobs from {csv_path}")
    return tuple(jobs)


class InMemoryJobStore:
    """Job store backed by a dict; satisfies the planner's job store contract."""

    def __init__(self, jobs: Iterable[Job] = ()) -> None:
        self._lock = threading.Lock()
        self._jobs: dict[str, Job] = {job.id: copy.deepcopy(job) for job in jobs}

    async def get_jobs(self, ids: Sequence[str]) -> list[Job]:
        with self._lock:
            return [copy.deepcopy(self._jobs[job_id]) for job_id in ids if job_id in self._jobs]

    async def update_schedule(self, job_id: str, start: datetime, end: datetime) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise NotFoundError(f"Job '{job_id}' not found.")
            job.scheduled_start = start
            job.scheduled_end = end

    def add(self, job: Job) -> None:
        with self._lock:
            self._jobs[job.id] = copy.deepcopy(job)

    def remove(self, job_id: str) -> None:
        with self._lock:
            self._jobs.pop(job_id, None)

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job is not None else None
