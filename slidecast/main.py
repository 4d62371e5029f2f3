from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from fastapi import Body, Depends, FastAPI, HTTPException, Request, status

from slidecast.config import get_settings
from slidecast.models.adapters import from_n8n_payload
from slidecast.models.api import JobListResponse, JobRequest, JobResponse, LegacyJobAccepted
from slidecast.queue.queue import LocalQueue
from slidecast.services.video_service import VideoService
from slidecast.storage.repository import JobRepository

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

log = logging.getLogger(__name__)


def build_video_service() -> VideoService:
    settings = get_settings()
    service = VideoService(repo=JobRepository(), settings=settings)
    service.bind_queue(LocalQueue(processor=service.process_job, max_concurrent=settings.max_concurrent_jobs))
    return service


@asynccontextmanager
async def lifespan(app: FastAPI):
    service = build_video_service()
    app.state.video_service = service
    sweeper = asyncio.create_task(service.run_eviction(), name="job-eviction")
    log.info("video service started")
    try:
        yield
    finally:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper
        log.info("video service stopped")


app = FastAPI(title="slidecast", lifespan=lifespan)


def get_video_service(request: Request) -> VideoService:
    service = getattr(request.app.state, "video_service", None)
    if service is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="service is starting")
    return service


@app.get("/health")
async def health() -> dict[str, str]:
    return {
        "status": "healthy",
        "service": get_settings().app_name,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.post("/videos", response_model=JobResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_video(
    payload: JobRequest,
    service: VideoService = Depends(get_video_service),
) -> JobResponse:
    job = service.create_job(payload)
    return JobResponse(job=job)


@app.get("/videos", response_model=JobListResponse)
async def list_videos(service: VideoService = Depends(get_video_service)) -> JobListResponse:
    return JobListResponse(items=service.list_jobs())


@app.get("/videos/{job_id}", response_model=JobResponse)
async def get_video(job_id: UUID, service: VideoService = Depends(get_video_service)) -> JobResponse:
    try:
        job = service.get_job(job_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return JobResponse(job=job)


@app.post("/process-n8n-data", response_model=LegacyJobAccepted, status_code=status.HTTP_202_ACCEPTED)
async def process_n8n_data(
    body: Any = Body(...),
    service: VideoService = Depends(get_video_service),
) -> LegacyJobAccepted:
    try:
        payload = from_n8n_payload(body)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    job = service.create_job(payload)
    return LegacyJobAccepted(message="Video generation started; result will be sent to the webhook", job_id=str(job.id))
