"""In-memory record store for generation jobs.

Jobs are keyed by their upstream id. Every mutation goes through
``update()``, which enforces the job invariants:

- a job in a terminal state (completed/failed) is never modified again
- ``result_url`` is set if and only if the status is ``completed``

``update()`` contains no ``await``, so under asyncio it is atomic with respect
to other coroutines touching the same job.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from cinegen.errors import DuplicateJobError, InvalidTransitionError, JobNotFoundError
from cinegen.jobs.models import GenerationJob, GenerationStatus

logger = logging.getLogger(__name__)

_PATCHABLE_FIELDS = {"status", "result_url", "attempts", "failure_reason", "error"}


class GenerationRecordStore:
    """Keyed collection of generation jobs, listed newest first."""

    def __init__(self):
        self._jobs: Dict[str, GenerationJob] = {}

    def append(self, job: GenerationJob) -> GenerationJob:
        if job.id in self._jobs:
            raise DuplicateJobError(job.id)
        if job.status != GenerationStatus.PENDING or job.result_url is not None:
            job = job.model_copy(
                update={"status": GenerationStatus.PENDING, "result_url": None}
            )
        self._jobs[job.id] = job
        logger.debug(f"Stored job {job.id} ({job.kind.value})")
        return job

    def update(self, job_id: str, **patch: Any) -> GenerationJob:
        """Apply a partial update and return the new job snapshot."""
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)

        unknown = set(patch) - _PATCHABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")

        if job.status.is_terminal:
            raise InvalidTransitionError(
                f"Job '{job_id}' is already {job.status.value}"
            )

        changes = dict(patch)
        if "status" in changes:
            changes["status"] = GenerationStatus(changes["status"])
        new_status = changes.get("status", job.status)
        new_url = changes.get("result_url", job.result_url)

        if new_status == GenerationStatus.COMPLETED and not new_url:
            raise InvalidTransitionError(
                f"Job '{job_id}' cannot complete without a result URL"
            )
        if new_status != GenerationStatus.COMPLETED and new_url:
            raise InvalidTransitionError(
                f"Job '{job_id}' can only carry a result URL once completed"
            )
        if new_status.is_terminal:
            changes["completed_at"] = datetime.utcnow()

        updated = job.model_copy(update=changes)
        self._jobs[job_id] = updated
        return updated

    def get(self, job_id: str) -> Optional[GenerationJob]:
        return self._jobs.get(job_id)

    def list(self) -> List[GenerationJob]:
        return list(reversed(self._jobs.values()))

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._jobs
