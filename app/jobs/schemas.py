"""
Pydantic schemas for the jobs API.

Job records are never returned as-is: artifact references stay internal
and a result URL is exposed instead.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from headshot_core.jobs.models import Job, JobStatus, Style


class JobErrorBody(BaseModel):
    kind: str
    message: str


class JobCreatedResponse(BaseModel):
    """Response model for job submission."""

    job_id: str
    status: JobStatus
    message: str


class JobResponse(BaseModel):
    """Response model for job status."""

    job_id: str
    client_id: str
    style: Style
    status: JobStatus
    attempt: int
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    error: JobErrorBody | None = None
    result_url: str | None = None

    @classmethod
    def from_job(cls, job: Job) -> "JobResponse":
        return cls(
            job_id=job.id,
            client_id=job.client_id,
            style=job.style,
            status=job.status,
            attempt=job.attempt,
            created_at=job.created_at,
            updated_at=job.updated_at,
            expires_at=job.expires_at,
            error=JobErrorBody(kind=job.error.kind.value, message=job.error.message)
            if job.error
            else None,
            result_url=f"/jobs/{job.id}/result" if job.status == JobStatus.COMPLETED else None,
        )
