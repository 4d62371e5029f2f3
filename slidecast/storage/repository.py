from __future__ import annotations

from datetime import datetime
from threading import Lock
from typing import Dict, List
from uuid import UUID

from slidecast.models.domain import Job


class JobRepository:
    """In-memory job table keyed by job id.

    Reads hand out deep copies so callers can never mutate a stored record
    behind the orchestrator's back.
    """

    def __init__(self) -> None:
        self._jobs: Dict[UUID, Job] = {}
        self._lock = Lock()

    def create(self, job: Job) -> Job:
        with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"job {job.id} already exists")
            self._jobs[job.id] = job.model_copy(deep=True)
        return job

    def get(self, job_id: UUID) -> Job | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    def update(self, job: Job) -> bool:
        with self._lock:
            if job.id not in self._jobs:
                return False
            self._jobs[job.id] = job.model_copy(deep=True)
        return True

    def evict(self, older_than: datetime, stale_older_than: datetime | None = None) -> List[UUID]:
        """Drop terminal jobs created before ``older_than``.

        Jobs that never reached a terminal state are dropped only once they
        are older than ``stale_older_than``.
        """
        with self._lock:
            expired = [
                job_id
                for job_id, job in self._jobs.items()
                if (job.created_at < older_than and job.state.terminal)
                or (stale_older_than is not None and job.created_at < stale_older_than)
            ]
            for job_id in expired:
                del self._jobs[job_id]
        return expired

    def list(self) -> List[Job]:
        with self._lock:
            return [job.model_copy(deep=True) for job in self._jobs.values()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)
