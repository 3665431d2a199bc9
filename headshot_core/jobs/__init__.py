"""
Job records and the status state machine.

Exports:
    - Job, JobError: Job snapshot and its failure payload
    - JobStatus, Style: Enumerations
    - JobStore / InMemoryJobStore: CAS-guarded job table
"""

from headshot_core.jobs.models import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    Job,
    JobError,
    JobStatus,
    Style,
    can_transition,
)
from headshot_core.jobs.store import InMemoryJobStore, JobListener, JobStore

__all__ = [
    "ALLOWED_TRANSITIONS",
    "TERMINAL_STATUSES",
    "InMemoryJobStore",
    "Job",
    "JobError",
    "JobListener",
    "JobStatus",
    "JobStore",
    "Style",
    "can_transition",
]
