"""In-memory ledger of solve jobs, updated by folding orchestrator patches.

This is the caller side of the patch channel: the orchestrator never touches
these records, it only produces ``JobPatch`` objects that ``apply_patch``
merges into ``SolveJob`` snapshots.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from astro_solve.models import ACTIVE_STATUSES, JobPatch, JobStatus, SolveJob, utc_now

logger = logging.getLogger(__name__)


def new_job(
    file_name: str,
    *,
    file_id: str | None = None,
    job_id: str | None = None,
    now: datetime | None = None,
) -> SolveJob:
    created = now or utc_now()
    return SolveJob(
        id=job_id or str(uuid.uuid4()),
        file_id=file_id,
        file_name=file_name,
        created_at=created,
        updated_at=created,
    )


def apply_patch(job: SolveJob, patch: JobPatch) -> SolveJob:
    """Return ``job`` with ``patch`` applied.

    Terminal jobs are frozen, status never moves backwards, and a lower
    progress value is ignored.
    """
    if patch.job_id != job.id:
        raise ValueError(f"Patch for job {patch.job_id} applied to job {job.id}")
    if job.is_terminal:
        logger.debug(f"Ignoring patch for finished job {job.id}")
        return job

    changes = patch.changes()
    status = changes.get("status")
    if status is not None and status.rank < job.status.rank:
        changes.pop("status")
    progress = changes.get("progress")
    if progress is not None and progress < job.progress:
        changes.pop("progress")
    if job.result is not None:
        changes.pop("result", None)

    changes["updated_at"] = patch.emitted_at
    return job.model_copy(update=changes)


class JobBoard:
    def __init__(self) -> None:
        self._jobs: dict[str, SolveJob] = {}

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._jobs

    def add(self, job: SolveJob) -> SolveJob:
        if job.id in self._jobs:
            raise ValueError(f"Job {job.id} already exists")
        self._jobs[job.id] = job
        return job

    def get(self, job_id: str) -> SolveJob | None:
        return self._jobs.get(job_id)

    def remove(self, job_id: str) -> SolveJob | None:
        return self._jobs.pop(job_id, None)

    def apply(self, patch: JobPatch) -> SolveJob | None:
        """Fold ``patch`` into its job; patches for unknown jobs are dropped."""
        job = self._jobs.get(patch.job_id)
        if job is None:
            logger.debug(f"Dropping patch for unknown job {patch.job_id}")
            return None
        updated = apply_patch(job, patch)
        self._jobs[job.id] = updated
        return updated

    def jobs(self) -> list[SolveJob]:
        """All jobs, newest first."""
        return sorted(self._jobs.values(), key=lambda j: j.created_at, reverse=True)

    def jobs_for_file(self, file_id: str) -> list[SolveJob]:
        return [j for j in self.jobs() if j.file_id == file_id]

    def active(self) -> list[SolveJob]:
        return [j for j in self.jobs() if j.status in ACTIVE_STATUSES]

    def completed(self) -> list[SolveJob]:
        return [j for j in self.jobs() if j.status is JobStatus.SUCCESS]

    def failed(self) -> list[SolveJob]:
        return [j for j in self.jobs() if j.status is JobStatus.FAILURE]

    def clear_completed(self) -> int:
        finished = [job_id for job_id, j in self._jobs.items() if j.is_terminal]
        for job_id in finished:
            del self._jobs[job_id]
        return len(finished)

    def clear(self) -> None:
        self._jobs.clear()

    def reset_for_retry(self, job_id: str) -> SolveJob | None:
        """Put a finished job back to ``pending`` with remote state cleared."""
        job = self._jobs.get(job_id)
        if job is None:
            return None
        reset = job.model_copy(
            update={
                "status": JobStatus.PENDING,
                "progress": 0,
                "error": None,
                "submission_id": None,
                "remote_job_id": None,
                "result": None,
                "updated_at": utc_now(),
            }
        )
        self._jobs[job_id] = reset
        return reset


__all__ = ["JobBoard", "apply_patch", "new_job"]
