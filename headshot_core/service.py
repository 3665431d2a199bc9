"""
JobService: the boundary of the orchestration core.

Callers (the HTTP adapter, scripts, tests) only ever talk to this class.
It validates input, records jobs, wakes the dispatcher and translates job
state into results or typed errors. It never calls the provider itself.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import AsyncIterator, Iterable

from loguru import logger
from pydantic import BaseModel

from headshot_core.artifacts.store import ArtifactStore
from headshot_core.jobs.models import Job, JobStatus, Style
from headshot_core.jobs.store import JobStore
from headshot_core.runtime.clock import Clock, utcnow
from headshot_core.runtime.errors import (
    ArtifactExpiredError,
    ArtifactNotFoundError,
    ErrorKind,
    InvalidInputError,
    JobExpiredError,
    JobFailedError,
    ResultNotReadyError,
)
from headshot_core.scheduling.dispatcher import Dispatcher
from headshot_core.scheduling.janitor import JanitorSweeper


class ResultImage(BaseModel):
    """Generated image returned by fetch_result."""

    data: bytes
    mime_type: str

    model_config = {"frozen": True}


class JobService:
    """
    Facade over the job store, artifact store, dispatcher and janitor.

    Usage:
        service = build_job_service()
        await service.start()
        ref = await service.upload_source("client-1", data, "image/png")
        job_id = await service.submit_job("client-1", ref, Style.CORPORATE_CLASSIC)
        async for snapshot in service.watch(job_id):
            ...
        image = await service.fetch_result(job_id)
    """

    def __init__(
        self,
        jobs: JobStore,
        artifacts: ArtifactStore,
        dispatcher: Dispatcher,
        janitor: JanitorSweeper,
        *,
        pending_retention: float = 3600.0,
        max_upload_bytes: int = 10 * 1024 * 1024,
        allowed_image_types: Iterable[str] = ("image/jpeg", "image/png", "image/webp"),
        clock: Clock = utcnow,
    ):
        self.jobs = jobs
        self.artifacts = artifacts
        self.dispatcher = dispatcher
        self.janitor = janitor
        self.pending_retention = pending_retention
        self.max_upload_bytes = max_upload_bytes
        self.allowed_image_types = frozenset(allowed_image_types)
        self._clock = clock

    # --- lifecycle ---

    async def start(self) -> None:
        await self.dispatcher.start()
        await self.janitor.start()

    async def stop(self) -> None:
        await self.janitor.stop()
        await self.dispatcher.stop()
        close = getattr(self.dispatcher.provider, "close", None)
        if close is not None:
            await close()

    # --- commands ---

    async def upload_source(self, client_id: str, data: bytes, mime_type: str) -> str:
        """
        Store an uploaded image and return its artifact reference.

        Raises:
            InvalidInputError: Missing client id, unsupported type, empty or
                oversized image.
        """
        _require_client(client_id)
        if mime_type not in self.allowed_image_types:
            raise InvalidInputError(
                f"Unsupported image type: {mime_type or 'unknown'}",
                message_debug=f"allowed={sorted(self.allowed_image_types)}",
            )
        if not data:
            raise InvalidInputError("Uploaded image is empty")
        if len(data) > self.max_upload_bytes:
            raise InvalidInputError(
                f"Uploaded image exceeds {self.max_upload_bytes} bytes",
                message_debug=f"size={len(data)}",
            )

        ref = await self.artifacts.put(data, mime_type, ttl=self.pending_retention)
        logger.info(f"Stored upload {ref[:12]} for client {client_id} ({len(data)} bytes)")
        return ref

    async def submit_job(self, client_id: str, source_ref: str, style: Style | str) -> str:
        """
        Create a queued job for an uploaded image.

        Returns the job id immediately; processing happens in the background.

        Raises:
            InvalidInputError: Missing client id, unknown style, or a source
                reference that does not resolve to a live artifact.
        """
        _require_client(client_id)
        try:
            style = Style(style)
        except ValueError:
            raise InvalidInputError(f"Unknown style: {style}") from None

        try:
            await self.artifacts.stat(source_ref)
        except (ArtifactNotFoundError, ArtifactExpiredError) as e:
            raise InvalidInputError(
                "Source image not found or no longer available", message_debug=str(e)
            ) from e

        # The source must outlive the job that references it
        await self.artifacts.extend_ttl(source_ref, self.pending_retention)

        expires_at = self._clock() + timedelta(seconds=self.pending_retention)
        job = await self.jobs.create(client_id, source_ref, style, expires_at)
        self.dispatcher.notify()
        return job.id

    async def cancel_job(self, job_id: str) -> Job:
        """
        Cancel a job that has not started running.

        Raises:
            JobNotFoundError: Unknown job.
            TransitionConflictError: The job is dispatched or already terminal.
        """
        job = await self.jobs.get(job_id)
        cancelled = await self.jobs.transition(job_id, JobStatus.CANCELLED, expected=job.status)
        logger.info(f"[{job_id}] Cancelled while {job.status.value}")
        return cancelled

    # --- queries ---

    async def get_job_status(self, job_id: str) -> Job:
        return await self.jobs.get(job_id)

    async def fetch_result(self, job_id: str) -> ResultImage:
        """
        Return the generated image of a completed job.

        Raises:
            JobNotFoundError: Unknown (or purged) job.
            ResultNotReadyError: The job is still queued, dispatched or retrying.
            JobExpiredError: The job expired, or its result has been swept.
            JobFailedError: The job failed or was cancelled.
        """
        job = await self.jobs.get(job_id)
        now = self._clock()

        if job.status == JobStatus.EXPIRED:
            raise JobExpiredError(job_id)
        if job.status == JobStatus.FAILED:
            raise JobFailedError(job_id, job.error.kind, job.error.message)
        if job.status == JobStatus.CANCELLED:
            raise JobFailedError(job_id, ErrorKind.CONFLICT, "Job was cancelled before processing")
        if job.is_expired(now):
            raise JobExpiredError(job_id)
        if job.status != JobStatus.COMPLETED:
            raise ResultNotReadyError(job_id, job.status.value)

        try:
            meta = await self.artifacts.stat(job.result_ref)
            data = await self.artifacts.get(job.result_ref)
        except (ArtifactNotFoundError, ArtifactExpiredError):
            raise JobExpiredError(job_id) from None
        return ResultImage(data=data, mime_type=meta.mime_type)

    async def watch(self, job_id: str) -> AsyncIterator[Job]:
        """
        Yield snapshots of a job as it changes, ending at a terminal status.

        The first snapshot is the current state. Raises JobNotFoundError if
        the job does not exist.
        """
        updates: asyncio.Queue[Job] = asyncio.Queue()

        def on_change(job: Job) -> None:
            if job.id == job_id:
                updates.put_nowait(job)

        self.jobs.add_listener(on_change)
        try:
            snapshot = await self.jobs.get(job_id)
            last = None
            while True:
                key = (snapshot.status, snapshot.attempt, snapshot.updated_at)
                if last is None or (key != last and snapshot.updated_at >= last[2]):
                    yield snapshot
                    last = key
                    if snapshot.status.is_terminal:
                        return
                snapshot = await updates.get()
        finally:
            self.jobs.remove_listener(on_change)


def _require_client(client_id: str) -> None:
    if not client_id or not client_id.strip():
        raise InvalidInputError("A client id is required")
