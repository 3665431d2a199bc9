"""Job orchestration core for AI headshot generation."""

from headshot_core.factory import build_job_service, get_job_service
from headshot_core.jobs.models import Job, JobStatus, Style
from headshot_core.service import JobService, ResultImage

__all__ = [
    "Job",
    "JobService",
    "JobStatus",
    "ResultImage",
    "Style",
    "build_job_service",
    "get_job_service",
]
