"""
JobStore: source of truth for job status.

Every status change goes through `transition`, which is a compare-and-swap
on the job's current status: of two concurrent callers moving a job out of
the same prior status, exactly one succeeds and the other gets a
TransitionConflictError.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import uuid
from collections import Counter
from datetime import datetime
from typing import Any, Awaitable, Callable, Protocol, Union, runtime_checkable

from loguru import logger

from headshot_core.jobs.models import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    Job,
    JobStatus,
    Style,
    can_transition,
)
from headshot_core.runtime.clock import Clock, utcnow
from headshot_core.runtime.errors import JobNotFoundError, TransitionConflictError

JobListener = Callable[[Job], Union[Awaitable[None], None]]


@runtime_checkable
class JobStore(Protocol):
    """Abstract job table used by the service, dispatcher and janitor."""

    async def create(
        self, client_id: str, source_ref: str, style: Style, expires_at: datetime
    ) -> Job:
        """Insert a new queued job with attempt 0."""
        ...

    async def get(self, job_id: str) -> Job:
        """Return a snapshot; raises JobNotFoundError."""
        ...

    async def transition(
        self,
        job_id: str,
        new_status: JobStatus,
        expected: JobStatus | None = None,
        **fields: Any,
    ) -> Job:
        """Atomically move a job to `new_status`; raises TransitionConflictError."""
        ...

    async def list_expirable(self, now: datetime) -> list[Job]:
        """Non-terminal jobs whose expires_at has passed."""
        ...

    async def list_eligible(self, now: datetime) -> list[Job]:
        """Unexpired queued jobs and due retrying jobs, in creation order."""
        ...

    async def next_resume_at(self) -> datetime | None:
        """Earliest resume time among retrying jobs."""
        ...

    async def purge_terminal(self, cutoff: datetime) -> int:
        """Delete terminal jobs whose expires_at is at or before cutoff."""
        ...

    def add_listener(self, listener: JobListener) -> None:
        """Register a callback invoked with each new snapshot after a change."""
        ...

    def remove_listener(self, listener: JobListener) -> None:
        """Unregister a callback; unknown callbacks are ignored."""
        ...


class InMemoryJobStore:
    """
    Dictionary-backed job table guarded by an asyncio.Lock.

    Note: Does not persist across restarts.

    Usage:
        store = InMemoryJobStore()
        job = await store.create("client-1", ref, Style.CORPORATE_CLASSIC, expires_at)
        job = await store.transition(job.id, JobStatus.DISPATCHED, expected=JobStatus.QUEUED)
    """

    def __init__(self, clock: Clock = utcnow):
        self._clock = clock
        self._jobs: dict[str, Job] = {}
        self._lock = asyncio.Lock()
        self._sequence = itertools.count(1)
        self._listeners: list[JobListener] = []

    def add_listener(self, listener: JobListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: JobListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _notify(self, job: Job) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(job.model_copy())
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"[{job.id}] Job listener failed")

    async def create(
        self, client_id: str, source_ref: str, style: Style, expires_at: datetime
    ) -> Job:
        now = self._clock()
        async with self._lock:
            job = Job(
                id=uuid.uuid4().hex,
                client_id=client_id,
                source_ref=source_ref,
                style=style,
                status=JobStatus.QUEUED,
                attempt=0,
                created_at=now,
                updated_at=now,
                expires_at=expires_at,
                sequence=next(self._sequence),
            )
            self._jobs[job.id] = job

        logger.info(f"[{job.id}] Created job for client {client_id} (style={style.value})")
        await self._notify(job)
        return job.model_copy()

    async def get(self, job_id: str) -> Job:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            return job.model_copy()

    async def transition(
        self,
        job_id: str,
        new_status: JobStatus,
        expected: JobStatus | None = None,
        **fields: Any,
    ) -> Job:
        """
        Move a job to a new status.

        Entering DISPATCHED increments `attempt`; leaving RETRYING clears
        `resume_at`. Any other record fields may be set through `fields`.

        Args:
            job_id: The job to move.
            new_status: Target status.
            expected: If given, the status the caller last observed; the
                move fails if the job has since changed.
            **fields: Additional fields to set (result_ref, error, resume_at, expires_at).

        Returns:
            Job: Snapshot after the transition.

        Raises:
            JobNotFoundError: The job does not exist (or was purged).
            TransitionConflictError: Status differs from `expected`, or the
                move is not allowed from the current status.
        """
        async with self._lock:
            current = self._jobs.get(job_id)
            if current is None:
                raise JobNotFoundError(job_id)

            if expected is not None and current.status != expected:
                raise TransitionConflictError(
                    job_id, current.status.value, new_status.value, expected.value
                )
            if not can_transition(current.status, new_status):
                raise TransitionConflictError(job_id, current.status.value, new_status.value)

            if "attempt" in fields and fields["attempt"] < current.attempt:
                raise ValueError("attempt can never decrease")

            updates = current.model_dump()
            updates.update(fields)
            updates["status"] = new_status
            updates["updated_at"] = self._clock()
            if new_status == JobStatus.DISPATCHED:
                updates["attempt"] = current.attempt + 1
            if new_status != JobStatus.RETRYING:
                updates["resume_at"] = None

            job = Job.model_validate(updates)
            self._jobs[job_id] = job

        logger.debug(
            f"[{job_id}] {current.status.value} -> {new_status.value} (attempt={job.attempt})"
        )
        await self._notify(job)
        return job.model_copy()

    async def list_expirable(self, now: datetime) -> list[Job]:
        async with self._lock:
            return [
                job.model_copy()
                for job in self._jobs.values()
                if job.status in ACTIVE_STATUSES and job.is_expired(now)
            ]

    async def list_eligible(self, now: datetime) -> list[Job]:
        async with self._lock:
            eligible = [
                job
                for job in self._jobs.values()
                if not job.is_expired(now)
                and (
                    job.status == JobStatus.QUEUED
                    or (
                        job.status == JobStatus.RETRYING
                        and job.resume_at is not None
                        and job.resume_at <= now
                    )
                )
            ]
        eligible.sort(key=lambda job: job.sequence)
        return [job.model_copy() for job in eligible]

    async def next_resume_at(self) -> datetime | None:
        async with self._lock:
            times = [
                job.resume_at
                for job in self._jobs.values()
                if job.status == JobStatus.RETRYING and job.resume_at is not None
            ]
        return min(times) if times else None

    async def purge_terminal(self, cutoff: datetime) -> int:
        async with self._lock:
            doomed = [
                job_id
                for job_id, job in self._jobs.items()
                if job.status in TERMINAL_STATUSES and job.expires_at <= cutoff
            ]
            for job_id in doomed:
                del self._jobs[job_id]

        if doomed:
            logger.info(f"Purged {len(doomed)} terminal job records")
        return len(doomed)

    async def count_by_status(self) -> dict[str, int]:
        async with self._lock:
            counts = Counter(job.status.value for job in self._jobs.values())
        return dict(counts)
