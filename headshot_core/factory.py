"""
Factory for the job service and its collaborators.

All wiring from Settings happens here so the components themselves only
take explicit constructor arguments.
"""

from __future__ import annotations

from loguru import logger

from headshot_core.artifacts.models import ArtifactBackend
from headshot_core.artifacts.store import ArtifactStore, InMemoryArtifactStore, LocalArtifactStore
from headshot_core.config import Settings, settings as default_settings
from headshot_core.jobs.store import InMemoryJobStore
from headshot_core.providers.base import TransformProvider
from headshot_core.providers.echo import EchoTransformProvider
from headshot_core.providers.http import HttpTransformProvider
from headshot_core.runtime.clock import Clock, utcnow
from headshot_core.runtime.rate_limiter import RateLimiter
from headshot_core.runtime.retry import RetryPolicy
from headshot_core.scheduling.dispatcher import Dispatcher
from headshot_core.scheduling.janitor import JanitorSweeper
from headshot_core.service import JobService

_job_service: JobService | None = None


def build_artifact_store(config: Settings, clock: Clock = utcnow) -> ArtifactStore:
    """Create the artifact store selected by ARTIFACT_BACKEND."""
    backend = ArtifactBackend(config.ARTIFACT_BACKEND.lower())
    if backend == ArtifactBackend.LOCAL:
        return LocalArtifactStore(config.ARTIFACT_DIR, clock=clock)
    return InMemoryArtifactStore(clock=clock)


def build_provider(config: Settings) -> TransformProvider:
    if not config.PROVIDER_BASE_URL:
        logger.warning("PROVIDER_BASE_URL is not set, using the echo provider")
        return EchoTransformProvider()
    return HttpTransformProvider(config.PROVIDER_BASE_URL, api_key=config.PROVIDER_API_KEY)


def build_job_service(
    config: Settings | None = None,
    provider: TransformProvider | None = None,
    clock: Clock = utcnow,
) -> JobService:
    """
    Build a fully wired JobService.

    Args:
        config: Settings to use (defaults to the global settings).
        provider: Transform provider override (tests, scripts).
        clock: Source of the current time shared by every component.

    Returns:
        JobService: Not yet started.
    """
    config = config or default_settings

    jobs = InMemoryJobStore(clock=clock)
    artifacts = build_artifact_store(config, clock=clock)
    rate_limiter = RateLimiter(
        client_limit=config.CLIENT_RATE_LIMIT,
        global_limit=config.PROVIDER_RATE_LIMIT,
    )
    retry_policy = RetryPolicy(
        max_attempts=config.RETRY_MAX_ATTEMPTS,
        base_delay=config.RETRY_BASE_DELAY,
        max_delay=config.RETRY_MAX_DELAY,
    )

    dispatcher = Dispatcher(
        jobs,
        artifacts,
        provider or build_provider(config),
        rate_limiter,
        retry_policy,
        max_concurrency=config.MAX_GLOBAL_CONCURRENCY,
        max_inflight_per_client=config.MAX_INFLIGHT_PER_CLIENT,
        provider_timeout=config.PROVIDER_TIMEOUT_SECONDS,
        completed_retention=config.COMPLETED_RETENTION_SECONDS,
        orphan_retention=config.ORPHAN_RESULT_RETENTION_SECONDS,
        poll_interval=config.DISPATCH_POLL_INTERVAL_SECONDS,
        clock=clock,
    )
    janitor = JanitorSweeper(
        jobs,
        artifacts,
        interval=config.JANITOR_INTERVAL_SECONDS,
        record_grace=config.JOB_RECORD_GRACE_SECONDS,
        clock=clock,
    )

    return JobService(
        jobs,
        artifacts,
        dispatcher,
        janitor,
        pending_retention=config.PENDING_RETENTION_SECONDS,
        max_upload_bytes=config.MAX_UPLOAD_BYTES,
        allowed_image_types=config.ALLOWED_IMAGE_TYPES,
        clock=clock,
    )


def get_job_service() -> JobService:
    """Get or create the process-wide JobService."""
    global _job_service
    if _job_service is None:
        _job_service = build_job_service()
    return _job_service
