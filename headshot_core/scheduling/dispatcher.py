"""
Dispatcher: the bounded worker pool that runs transform jobs.

The dispatcher is the only component that moves jobs out of QUEUED or
RETRYING. Each worker repeatedly:

1. Claims the oldest eligible job whose client still has budget
   (rate limiter, in-flight cap, no pending denial backoff).
2. Reads the source artifact and calls the provider under a hard timeout.
3. Routes the outcome: COMPLETED, RETRYING (with a resume time from the
   retry policy) or FAILED.

Claiming is serialized by a lock that never spans an external call.
Losing a race against the janitor or a cancellation is a normal outcome
and only logged.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from datetime import datetime, timedelta

from loguru import logger

from headshot_core.artifacts.store import ArtifactStore
from headshot_core.jobs.models import Job, JobError, JobStatus
from headshot_core.jobs.store import JobStore
from headshot_core.providers.base import (
    TransformFailure,
    TransformProvider,
    TransformResult,
    TransformSuccess,
)
from headshot_core.runtime.clock import Clock, utcnow
from headshot_core.runtime.errors import (
    ArtifactExpiredError,
    ArtifactNotFoundError,
    ErrorKind,
    JobNotFoundError,
    ServiceError,
    StorageUnavailableError,
    TransitionConflictError,
)
from headshot_core.runtime.rate_limiter import GLOBAL_SCOPE, RateLimiter
from headshot_core.runtime.retry import RetryPolicy


class Dispatcher:
    """
    Concurrency-bounded executor for queued jobs.

    Usage:
        dispatcher = Dispatcher(jobs, artifacts, provider, limiter, RetryPolicy())
        await dispatcher.start()
        dispatcher.notify()  # after submitting a job
        ...
        await dispatcher.stop()
    """

    def __init__(
        self,
        jobs: JobStore,
        artifacts: ArtifactStore,
        provider: TransformProvider,
        rate_limiter: RateLimiter,
        retry_policy: RetryPolicy,
        *,
        max_concurrency: int = 4,
        max_inflight_per_client: int = 2,
        provider_timeout: float = 30.0,
        completed_retention: float = 86400.0,
        orphan_retention: float = 300.0,
        poll_interval: float = 1.0,
        clock: Clock = utcnow,
    ):
        """
        Initialize the dispatcher.

        Args:
            jobs: Job table shared with the service and the janitor.
            artifacts: Store holding source and result images.
            provider: Backend performing the transformation.
            rate_limiter: Per-client and global admission budget.
            retry_policy: Decides retry vs give-up after a failed attempt.
            max_concurrency: Number of worker tasks.
            max_inflight_per_client: Jobs one client may have dispatched at once.
            provider_timeout: Hard wall-clock limit for each provider call, in seconds.
            completed_retention: Seconds a result (and its source) is kept.
            orphan_retention: Seconds a stored result is kept before its job is
                recorded as completed.
            poll_interval: Longest idle wait before rescanning, in seconds.
            clock: Source of the current time.
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

        self.jobs = jobs
        self.artifacts = artifacts
        self.provider = provider
        self.rate_limiter = rate_limiter
        self.retry_policy = retry_policy
        self.max_concurrency = max_concurrency
        self.max_inflight_per_client = max_inflight_per_client
        self.provider_timeout = provider_timeout
        self.completed_retention = completed_retention
        self.orphan_retention = orphan_retention
        self.poll_interval = poll_interval
        self._clock = clock

        self._claim_lock = asyncio.Lock()
        self._wakeup = asyncio.Event()
        self._inflight: Counter[str] = Counter()
        self._client_backoff: dict[str, datetime] = {}
        self._global_backoff: datetime | None = None
        self._workers: list[asyncio.Task] = []

    # --- lifecycle ---

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def inflight(self) -> int:
        return sum(self._inflight.values())

    async def start(self) -> None:
        """Spawn the worker tasks. Calling it twice is a no-op."""
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(n), name=f"dispatcher-{n}")
            for n in range(self.max_concurrency)
        ]
        logger.info(f"Dispatcher started with {self.max_concurrency} workers")

    async def stop(self) -> None:
        """Cancel the worker tasks and wait for them to exit."""
        workers, self._workers = self._workers, []
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        if workers:
            logger.info("Dispatcher stopped")

    def notify(self) -> None:
        """Wake idle workers; call after new work may have become eligible."""
        self._wakeup.set()

    # --- worker loop ---

    async def _worker(self, index: int) -> None:
        while True:
            self._wakeup.clear()
            try:
                job = await self._claim_next()
            except Exception:
                logger.exception(f"Dispatcher worker {index} failed to claim a job")
                job = None

            if job is None:
                await self._idle_wait()
                continue

            try:
                await self.process(job)
            except Exception:
                logger.exception(f"[{job.id}] Unhandled error while processing")
                await self._recover(job)
            finally:
                self._release(job.client_id)

    async def _recover(self, job: Job) -> None:
        """Move a job out of DISPATCHED after an unclassified error."""
        try:
            await self._handle_failure(
                job,
                TransformFailure(
                    kind=ErrorKind.PROVIDER_TRANSIENT,
                    message="An internal error interrupted processing",
                ),
            )
        except Exception:
            logger.exception(f"[{job.id}] Could not record processing failure")

    async def _idle_wait(self) -> None:
        timeout = self.poll_interval
        now = self._clock()
        # Past-due times are excluded; those jobs are held by a cap and a release wakes us
        candidates = [
            until
            for until in (
                self._global_backoff,
                await self.jobs.next_resume_at(),
                *self._client_backoff.values(),
            )
            if until is not None and until > now
        ]
        if candidates:
            soonest = (min(candidates) - now).total_seconds()
            timeout = min(max(soonest, 0.005), self.poll_interval)

        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout)
        except asyncio.TimeoutError:
            pass

    def _release(self, client_id: str) -> None:
        self._inflight[client_id] -= 1
        if self._inflight[client_id] <= 0:
            del self._inflight[client_id]
        self.notify()

    # --- admission ---

    async def _claim_next(self) -> Job | None:
        """
        Claim the next admissible job, or None if nothing can run now.

        Jobs are scanned in creation order. Once one of a client's jobs is
        skipped, the rest of that client's jobs are skipped too, so a
        client's jobs are admitted in the order they were created.
        """
        async with self._claim_lock:
            now = self._clock()
            if self._global_backoff is not None:
                if now < self._global_backoff:
                    return None
                self._global_backoff = None
            self._client_backoff = {
                client: until for client, until in self._client_backoff.items() if until > now
            }

            blocked: set[str] = set()
            for job in await self.jobs.list_eligible(now):
                client = job.client_id
                if client in blocked:
                    continue
                if client in self._client_backoff:
                    blocked.add(client)
                    continue
                if self._inflight[client] >= self.max_inflight_per_client:
                    blocked.add(client)
                    continue

                # Re-read just before spending a token; a claim lost after
                # this point still consumes it.
                try:
                    current = await self.jobs.get(job.id)
                except JobNotFoundError:
                    continue
                if current.status != job.status or current.is_expired(now):
                    continue

                decision = self.rate_limiter.try_acquire(client)
                if not decision.allowed:
                    until = now + timedelta(seconds=decision.retry_after)
                    if decision.scope == GLOBAL_SCOPE:
                        self._global_backoff = until
                        return None
                    self._client_backoff[client] = until
                    blocked.add(client)
                    continue

                try:
                    claimed = await self.jobs.transition(
                        job.id, JobStatus.DISPATCHED, expected=job.status
                    )
                except (TransitionConflictError, JobNotFoundError) as e:
                    logger.debug(f"[{job.id}] Lost claim race: {e.message_safe}")
                    continue

                self._inflight[client] += 1
                logger.info(
                    f"[{claimed.id}] Dispatched attempt {claimed.attempt} "
                    f"(client={client}, style={claimed.style.value})"
                )
                return claimed

        return None

    # --- execution ---

    async def process(self, job: Job) -> None:
        """Run one dispatched job to its next state."""
        try:
            meta = await self.artifacts.stat(job.source_ref)
            source = await self.artifacts.get(job.source_ref)
        except (ArtifactNotFoundError, ArtifactExpiredError):
            await self._handle_failure(
                job,
                TransformFailure(
                    kind=ErrorKind.EXPIRED,
                    message="The uploaded image is no longer available",
                ),
            )
            return
        except StorageUnavailableError as e:
            await self._handle_failure(
                job, TransformFailure(kind=e.kind, message=e.message_safe)
            )
            return

        result = await self._call_provider(job, source, meta.mime_type)
        if isinstance(result, TransformSuccess):
            await self._complete(job, result)
        else:
            await self._handle_failure(job, result)

    async def _call_provider(self, job: Job, source: bytes, mime_type: str) -> TransformResult:
        try:
            return await asyncio.wait_for(
                self.provider.transform(source, mime_type, job.style, self.provider_timeout),
                timeout=self.provider_timeout,
            )
        except asyncio.TimeoutError:
            return TransformFailure(
                kind=ErrorKind.PROVIDER_TIMEOUT,
                message=f"The image provider did not respond within {self.provider_timeout:.0f}s",
            )
        except Exception:
            logger.exception(f"[{job.id}] Provider raised an unexpected error")
            return TransformFailure(
                kind=ErrorKind.PROVIDER_TRANSIENT,
                message="The image provider failed unexpectedly",
            )

    async def _complete(self, job: Job, result: TransformSuccess) -> None:
        if job.is_expired(self._clock()):
            logger.info(f"[{job.id}] Expired while in flight, discarding result")
            await self._transition(job, JobStatus.EXPIRED)
            return

        # Short-lived until the job is recorded as completed
        try:
            result_ref = await self.artifacts.put(
                result.data, result.mime_type, ttl=self.orphan_retention
            )
        except StorageUnavailableError as e:
            await self._handle_failure(job, TransformFailure(kind=e.kind, message=e.message_safe))
            return

        expires_at = max(
            job.expires_at, self._clock() + timedelta(seconds=self.completed_retention)
        )
        done = await self._transition(
            job, JobStatus.COMPLETED, result_ref=result_ref, expires_at=expires_at
        )
        if done is None:
            return

        for ref in (result_ref, job.source_ref):
            try:
                await self.artifacts.extend_ttl(ref, self.completed_retention)
            except ServiceError as e:
                logger.warning(f"[{job.id}] Could not extend retention of {ref[:12]}: {e}")
        logger.info(f"[{job.id}] Completed on attempt {done.attempt}")

    async def _handle_failure(self, job: Job, failure: TransformFailure) -> None:
        decision = self.retry_policy.decide(job.attempt, failure.kind, failure.retry_after)

        if decision.retry:
            resume_at = self._clock() + timedelta(seconds=decision.delay)
            logger.info(
                f"[{job.id}] Attempt {job.attempt} failed ({failure.kind.value}), "
                f"retrying in {decision.delay:.2f}s"
            )
            await self._transition(job, JobStatus.RETRYING, resume_at=resume_at)
            return

        logger.warning(
            f"[{job.id}] Failed after {job.attempt} attempt(s): "
            f"{failure.kind.value}: {failure.message}"
        )
        await self._transition(
            job, JobStatus.FAILED, error=JobError(kind=failure.kind, message=failure.message)
        )

    async def _transition(self, job: Job, status: JobStatus, **fields) -> Job | None:
        try:
            return await self.jobs.transition(
                job.id, status, expected=JobStatus.DISPATCHED, **fields
            )
        except (TransitionConflictError, JobNotFoundError) as e:
            logger.info(f"[{job.id}] Discarding {status.value} outcome: {e.message_safe}")
            return None
