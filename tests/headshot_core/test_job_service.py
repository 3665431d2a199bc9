"""Tests for the JobService boundary."""

import asyncio
from datetime import timedelta

import pytest

from headshot_core.artifacts.store import InMemoryArtifactStore
from headshot_core.jobs.models import JobError, JobStatus, Style
from headshot_core.jobs.store import InMemoryJobStore
from headshot_core.runtime.errors import (
    ErrorKind,
    InvalidInputError,
    JobExpiredError,
    JobFailedError,
    JobNotFoundError,
    ResultNotReadyError,
    TransitionConflictError,
)
from headshot_core.runtime.rate_limiter import RateLimiter
from headshot_core.runtime.retry import RetryPolicy
from headshot_core.scheduling.dispatcher import Dispatcher
from headshot_core.scheduling.janitor import JanitorSweeper
from headshot_core.service import JobService, ResultImage
from tests.fakes import PNG_BYTES, ManualClock, ScriptedTransformProvider, success, wait_for_status


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def service(clock):
    jobs = InMemoryJobStore(clock=clock)
    artifacts = InMemoryArtifactStore(clock=clock)
    dispatcher = Dispatcher(
        jobs, artifacts, ScriptedTransformProvider(), RateLimiter(), RetryPolicy(), clock=clock
    )
    janitor = JanitorSweeper(jobs, artifacts, clock=clock)
    return JobService(
        jobs,
        artifacts,
        dispatcher,
        janitor,
        pending_retention=3600,
        max_upload_bytes=1024,
        allowed_image_types=("image/png", "image/jpeg"),
        clock=clock,
    )


async def submit(service, client_id="client-1"):
    ref = await service.upload_source(client_id, PNG_BYTES, "image/png")
    return await service.submit_job(client_id, ref, Style.CREATIVE_PROFESSIONAL)


class TestUploadSource:
    @pytest.mark.asyncio
    async def test_stores_image(self, service):
        ref = await service.upload_source("client-1", PNG_BYTES, "image/png")
        assert await service.artifacts.get(ref) == PNG_BYTES

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "client_id,data,mime_type",
        [
            ("", PNG_BYTES, "image/png"),
            ("client-1", PNG_BYTES, "application/pdf"),
            ("client-1", b"", "image/png"),
            ("client-1", b"x" * 1025, "image/png"),
        ],
    )
    async def test_rejects_bad_uploads(self, service, client_id, data, mime_type):
        with pytest.raises(InvalidInputError):
            await service.upload_source(client_id, data, mime_type)


class TestSubmitJob:
    @pytest.mark.asyncio
    async def test_creates_queued_job(self, service, clock):
        job_id = await submit(service)

        job = await service.get_job_status(job_id)
        assert job.status == JobStatus.QUEUED
        assert job.style == Style.CREATIVE_PROFESSIONAL
        assert job.expires_at == clock.now + timedelta(seconds=3600)

    @pytest.mark.asyncio
    async def test_accepts_style_by_value(self, service):
        ref = await service.upload_source("client-1", PNG_BYTES, "image/png")
        job_id = await service.submit_job("client-1", ref, "executive_portrait")

        assert (await service.get_job_status(job_id)).style == Style.EXECUTIVE_PORTRAIT

    @pytest.mark.asyncio
    async def test_rejects_unknown_style(self, service):
        ref = await service.upload_source("client-1", PNG_BYTES, "image/png")
        with pytest.raises(InvalidInputError):
            await service.submit_job("client-1", ref, "watercolour")

    @pytest.mark.asyncio
    async def test_rejects_unknown_source(self, service):
        with pytest.raises(InvalidInputError):
            await service.submit_job("client-1", "0" * 64, Style.CORPORATE_CLASSIC)

    @pytest.mark.asyncio
    async def test_rejects_expired_source(self, service, clock):
        ref = await service.upload_source("client-1", PNG_BYTES, "image/png")
        clock.advance(3600)

        with pytest.raises(InvalidInputError):
            await service.submit_job("client-1", ref, Style.CORPORATE_CLASSIC)


class TestFetchResult:
    @pytest.mark.asyncio
    async def test_unknown_job(self, service):
        with pytest.raises(JobNotFoundError):
            await service.fetch_result("nope")

    @pytest.mark.asyncio
    async def test_not_ready_while_queued(self, service):
        job_id = await submit(service)

        with pytest.raises(ResultNotReadyError):
            await service.fetch_result(job_id)

    @pytest.mark.asyncio
    async def test_returns_result_image(self, service):
        job_id = await submit(service)
        result_ref = await service.artifacts.put(b"portrait", "image/jpeg", ttl=60)
        await service.jobs.transition(job_id, JobStatus.DISPATCHED)
        await service.jobs.transition(job_id, JobStatus.COMPLETED, result_ref=result_ref)

        result = await service.fetch_result(job_id)

        assert result == ResultImage(data=b"portrait", mime_type="image/jpeg")

    @pytest.mark.asyncio
    async def test_swept_result_is_expired(self, service, clock):
        job_id = await submit(service)
        result_ref = await service.artifacts.put(b"portrait", "image/png", ttl=60)
        await service.jobs.transition(job_id, JobStatus.DISPATCHED)
        await service.jobs.transition(job_id, JobStatus.COMPLETED, result_ref=result_ref)
        clock.advance(61)
        await service.artifacts.purge_expired()

        with pytest.raises(JobExpiredError):
            await service.fetch_result(job_id)

    @pytest.mark.asyncio
    async def test_failed_job_raises_with_its_error(self, service):
        job_id = await submit(service)
        await service.jobs.transition(job_id, JobStatus.DISPATCHED)
        await service.jobs.transition(
            job_id,
            JobStatus.FAILED,
            error=JobError(kind=ErrorKind.PROVIDER_PERMANENT, message="No face detected"),
        )

        with pytest.raises(JobFailedError) as exc_info:
            await service.fetch_result(job_id)

        assert exc_info.value.failure_kind == ErrorKind.PROVIDER_PERMANENT
        assert exc_info.value.message_safe == "No face detected"

    @pytest.mark.asyncio
    async def test_active_job_past_expiry_is_expired(self, service, clock):
        job_id = await submit(service)
        clock.advance(3600)

        with pytest.raises(JobExpiredError):
            await service.fetch_result(job_id)


class TestCancelJob:
    @pytest.mark.asyncio
    async def test_cancels_queued_job(self, service):
        job_id = await submit(service)

        job = await service.cancel_job(job_id)

        assert job.status == JobStatus.CANCELLED
        with pytest.raises(JobFailedError) as exc_info:
            await service.fetch_result(job_id)
        assert exc_info.value.kind == ErrorKind.CONFLICT

    @pytest.mark.asyncio
    async def test_cannot_cancel_dispatched_job(self, service):
        job_id = await submit(service)
        await service.jobs.transition(job_id, JobStatus.DISPATCHED)

        with pytest.raises(TransitionConflictError):
            await service.cancel_job(job_id)


class TestWatch:
    @pytest.mark.asyncio
    async def test_yields_until_terminal(self, service):
        job_id = await submit(service)
        seen = []

        async def consume():
            async for snapshot in service.watch(job_id):
                seen.append(snapshot.status)

        consumer = asyncio.create_task(consume())
        await asyncio.sleep(0)
        await service.jobs.transition(job_id, JobStatus.DISPATCHED)
        result_ref = await service.artifacts.put(b"portrait", "image/png", ttl=60)
        await service.jobs.transition(job_id, JobStatus.COMPLETED, result_ref=result_ref)
        await asyncio.wait_for(consumer, timeout=1)

        assert seen == [JobStatus.QUEUED, JobStatus.DISPATCHED, JobStatus.COMPLETED]
        assert service.jobs._listeners == []

    @pytest.mark.asyncio
    async def test_terminal_job_yields_once(self, service):
        job_id = await submit(service)
        await service.cancel_job(job_id)

        seen = [snapshot.status async for snapshot in service.watch(job_id)]

        assert seen == [JobStatus.CANCELLED]

    @pytest.mark.asyncio
    async def test_unknown_job(self, service):
        with pytest.raises(JobNotFoundError):
            async for _ in service.watch("nope"):
                pass


@pytest.mark.asyncio
async def test_end_to_end_with_running_workers():
    provider = ScriptedTransformProvider(success(b"styled", "image/webp"))
    jobs = InMemoryJobStore()
    artifacts = InMemoryArtifactStore()
    dispatcher = Dispatcher(jobs, artifacts, provider, RateLimiter(), RetryPolicy(), poll_interval=0.05)
    service = JobService(jobs, artifacts, dispatcher, JanitorSweeper(jobs, artifacts))

    await service.start()
    try:
        job_id = await submit(service)
        await wait_for_status(jobs, job_id, JobStatus.COMPLETED)
        result = await service.fetch_result(job_id)
    finally:
        await service.stop()

    assert result.data == b"styled"
    assert result.mime_type == "image/webp"
