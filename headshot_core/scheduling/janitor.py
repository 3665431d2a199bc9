"""
Janitor: periodic expiry of artifacts and job records.

Each sweep
1. purges artifacts past their own expiry,
2. moves non-terminal jobs past `expires_at` to EXPIRED,
3. deletes terminal job records once their `expires_at` is older than the
   record grace period.

Sweeps are best-effort and idempotent: a second sweep right after the
first changes nothing.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

from loguru import logger
from pydantic import BaseModel

from headshot_core.artifacts.store import ArtifactStore
from headshot_core.jobs.models import JobStatus
from headshot_core.jobs.store import JobStore
from headshot_core.runtime.clock import Clock, utcnow
from headshot_core.runtime.errors import (
    JobNotFoundError,
    ServiceError,
    TransitionConflictError,
)


class SweepReport(BaseModel):
    """Counts of what one sweep changed."""

    swept_at: datetime
    artifacts_purged: int = 0
    jobs_expired: int = 0
    jobs_purged: int = 0


class JanitorSweeper:
    """
    Periodic retention enforcer.

    Usage:
        janitor = JanitorSweeper(jobs, artifacts, interval=60)
        await janitor.start()
        ...
        await janitor.stop()
    """

    def __init__(
        self,
        jobs: JobStore,
        artifacts: ArtifactStore,
        *,
        interval: float = 60.0,
        record_grace: float = 86400.0,
        clock: Clock = utcnow,
    ):
        """
        Initialize the janitor.

        Args:
            jobs: Job table to expire and purge.
            artifacts: Artifact store to purge.
            interval: Seconds between sweeps.
            record_grace: Seconds a terminal job record outlives its expires_at.
            clock: Source of the current time.
        """
        self.jobs = jobs
        self.artifacts = artifacts
        self.interval = interval
        self.record_grace = record_grace
        self._clock = clock
        self._task: asyncio.Task | None = None

    async def sweep(self) -> SweepReport:
        """Run one sweep and report what changed."""
        now = self._clock()
        report = SweepReport(swept_at=now)

        try:
            report.artifacts_purged = await self.artifacts.purge_expired()
        except ServiceError as e:
            logger.warning(f"Artifact purge skipped: {e}")

        for job in await self.jobs.list_expirable(now):
            try:
                await self.jobs.transition(job.id, JobStatus.EXPIRED, expected=job.status)
            except (TransitionConflictError, JobNotFoundError) as e:
                logger.debug(f"[{job.id}] Skipped expiry: {e.message_safe}")
                continue
            report.jobs_expired += 1
            logger.info(f"[{job.id}] Expired while {job.status.value}")

        cutoff = now - timedelta(seconds=self.record_grace)
        report.jobs_purged = await self.jobs.purge_terminal(cutoff)

        if report.artifacts_purged or report.jobs_expired or report.jobs_purged:
            logger.info(
                f"Sweep complete: artifacts_purged={report.artifacts_purged}, "
                f"jobs_expired={report.jobs_expired}, jobs_purged={report.jobs_purged}"
            )
        return report

    async def run_forever(self) -> None:
        """Sweep every `interval` seconds until cancelled."""
        while True:
            try:
                await self.sweep()
            except Exception:
                logger.exception("Janitor sweep failed")
            await asyncio.sleep(self.interval)

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self.run_forever(), name="janitor")
            logger.info(f"Janitor started (interval={self.interval}s)")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.info("Janitor stopped")
