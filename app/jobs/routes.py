"""
Headshot job routes.

This module exposes the JobService boundary over HTTP:
- Submit an image for transformation
- Check job status
- Download the generated portrait
- Cancel a job that has not started
"""

from fastapi import APIRouter, Depends, File, Form, Header, Request, Response, UploadFile
from loguru import logger

from app.jobs.schemas import JobCreatedResponse, JobResponse
from app.limiter import limiter
from headshot_core.config import settings
from headshot_core.jobs.models import JobStatus
from headshot_core.service import JobService

router = APIRouter()


def get_service(request: Request) -> JobService:
    return request.app.state.job_service


@router.post("/jobs", response_model=JobCreatedResponse, status_code=202)
@limiter.limit(settings.UPLOAD_RATE_LIMIT)
async def submit_job(
    request: Request,
    image: UploadFile = File(...),
    style: str = Form(...),
    x_client_id: str = Header(..., alias="X-Client-Id"),
    service: JobService = Depends(get_service),
):
    """
    Upload a portrait and queue it for transformation.

    Processing happens in the background; poll `GET /jobs/{job_id}` or
    fetch `GET /jobs/{job_id}/result` once it has completed.
    """
    # One byte past the cap is enough for upload_source to reject it
    data = await image.read(service.max_upload_bytes + 1)
    content_type = image.content_type or "application/octet-stream"

    source_ref = await service.upload_source(x_client_id, data, content_type)
    job_id = await service.submit_job(x_client_id, source_ref, style)
    logger.info(f"[{job_id}] Accepted upload {image.filename!r} from {x_client_id}")

    return JobCreatedResponse(
        job_id=job_id,
        status=JobStatus.QUEUED,
        message="Job queued for processing",
    )


@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(job_id: str, service: JobService = Depends(get_service)):
    job = await service.get_job_status(job_id)
    return JobResponse.from_job(job)


@router.get("/jobs/{job_id}/result")
async def get_job_result(job_id: str, service: JobService = Depends(get_service)):
    """Download the generated image. Errors are mapped by the app's ServiceError handler."""
    result = await service.fetch_result(job_id)
    return Response(content=result.data, media_type=result.mime_type)


@router.delete("/jobs/{job_id}", response_model=JobResponse)
async def cancel_job(job_id: str, service: JobService = Depends(get_service)):
    job = await service.cancel_job(job_id)
    return JobResponse.from_job(job)
