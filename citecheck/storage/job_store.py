"""
Validation Job Records.

In-process registry of validation jobs. Each check points at its most recent
job; starting a new run for the same check supersedes the previous record
rather than overwriting it.
"""

import uuid

from citecheck.errors import NotFoundError
from citecheck.validation.schemas import ValidationJob


def new_job_id() -> str:
    return f"job_{uuid.uuid4().hex[:12]}"


class JobStore:
    """
    Job records keyed by job ID, plus the latest job per check.

    All methods are synchronous; callers mutate job records only through
    ``put`` so a read-modify-write never spans an await.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, ValidationJob] = {}
        self._latest_by_check: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._jobs)

    def register(self, job: ValidationJob) -> ValidationJob:
        """Store a new job, linking it to the job it supersedes for the same check."""
        previous = self._latest_by_check.get(job.check_id)
        if previous is not None and previous != job.job_id:
            job = job.model_copy(update={"supersedes": previous})

        self._jobs[job.job_id] = job
        self._latest_by_check[job.check_id] = job.job_id
        return job.model_copy(deep=True)

    def put(self, job: ValidationJob) -> None:
        if job.job_id not in self._jobs:
            raise NotFoundError(f"Job not found: {job.job_id}")
        self._jobs[job.job_id] = job

    def get(self, job_id: str) -> ValidationJob:
        """
        Raises:
            NotFoundError: If the job does not exist
        """
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError(f"Job not found: {job_id}")
        return job.model_copy(deep=True)

    def latest_for(self, check_id: str) -> ValidationJob | None:
        job_id = self._latest_by_check.get(check_id)
        return self.get(job_id) if job_id else None
