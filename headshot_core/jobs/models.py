"""
Job domain model and status state machine.

A Job is one requested portrait transformation. Its status only moves
along ALLOWED_TRANSITIONS; terminal statuses have no outgoing edges.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from headshot_core.runtime.errors import ErrorKind


class Style(str, Enum):
    """Supported portrait styles."""
    CORPORATE_CLASSIC = "corporate_classic"
    CREATIVE_PROFESSIONAL = "creative_professional"
    EXECUTIVE_PORTRAIT = "executive_portrait"


class JobStatus(str, Enum):
    """Lifecycle states of a job."""
    QUEUED = "queued"
    DISPATCHED = "dispatched"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.EXPIRED, JobStatus.CANCELLED}
)

ACTIVE_STATUSES = frozenset({JobStatus.QUEUED, JobStatus.DISPATCHED, JobStatus.RETRYING})

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.DISPATCHED, JobStatus.EXPIRED, JobStatus.CANCELLED}),
    JobStatus.DISPATCHED: frozenset(
        {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.RETRYING, JobStatus.EXPIRED}
    ),
    JobStatus.RETRYING: frozenset({JobStatus.DISPATCHED, JobStatus.EXPIRED, JobStatus.CANCELLED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.EXPIRED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


def can_transition(current: JobStatus, new: JobStatus) -> bool:
    return new in ALLOWED_TRANSITIONS[current]


class JobError(BaseModel):
    """Failure recorded on a failed job. `message` is safe to display."""
    kind: ErrorKind
    message: str

    model_config = {"frozen": True}


class Job(BaseModel):
    """
    Snapshot of one job record.

    The JobStore hands out copies; mutating a snapshot never changes the
    stored record.
    """
    id: str = Field(..., description="Opaque unique identifier")
    client_id: str = Field(..., description="Requesting client, used for rate limiting")
    source_ref: str = Field(..., description="ArtifactStore reference of the uploaded image")
    style: Style
    status: JobStatus = JobStatus.QUEUED
    attempt: int = Field(0, ge=0, description="Transform attempts made so far")
    result_ref: Optional[str] = None
    error: Optional[JobError] = None
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    resume_at: Optional[datetime] = Field(None, description="Earliest re-dispatch time while retrying")
    sequence: int = Field(0, description="Creation order, used for FIFO admission")

    @model_validator(mode="after")
    def _check_outcome_fields(self) -> "Job":
        if self.status == JobStatus.COMPLETED:
            if self.result_ref is None or self.error is not None:
                raise ValueError("completed job must carry result_ref and no error")
        elif self.status == JobStatus.FAILED:
            if self.error is None or self.result_ref is not None:
                raise ValueError("failed job must carry error and no result_ref")
        elif self.status in ACTIVE_STATUSES:
            if self.result_ref is not None or self.error is not None:
                raise ValueError(f"{self.status.value} job cannot carry a result or error")
        return self

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at
