"""Jobs router: create footer processing jobs, read them, and stream their progress.

A thin HTTP layer over `FooterJobTracker`; each request gets its own tracker.
"""
from __future__ import annotations

import asyncio
import json
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse

from ..config import get_settings
from ..deps import get_change_feed, get_job_store, get_pipeline_trigger, get_user_id
from ..models import CreateJobParams, FooterJob, JobCreatedResponse
from ..services.orchestration.job_tracker import JOB_NOT_FOUND, FooterJobTracker

router = APIRouter(tags=["jobs"])


def _tracker(user_id: Optional[str] = None, **callbacks) -> FooterJobTracker:
    async def current_user() -> Optional[str]:
        return user_id

    return FooterJobTracker(
        get_job_store(),
        get_change_feed(),
        get_pipeline_trigger(),
        current_user,
        **callbacks,
    )


@router.post(
    "/jobs",
    response_model=JobCreatedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def create_job(params: CreateJobParams, user_id: Optional[str] = Depends(get_user_id)) -> JobCreatedResponse:
    """Create a footer processing job and kick off slicing."""
    if not user_id:
        raise HTTPException(status_code=401, detail="User not authenticated")
    tracker = _tracker(user_id)
    try:
        job_id = await tracker.create_job(params)
    finally:
        tracker.close()
    if not job_id:
        raise HTTPException(status_code=503, detail=tracker.error or "Failed to create job")
    return JobCreatedResponse(jobId=job_id, status="processing")


@router.get("/jobs/{job_id}", response_model=FooterJob)
async def get_job(job_id: str) -> FooterJob:
    tracker = _tracker()
    job = await tracker.fetch_job(job_id)
    tracker.close()
    if job is None:
        code = 404 if tracker.error == JOB_NOT_FOUND else 503
        raise HTTPException(status_code=code, detail=tracker.error or "Failed to load job")
    return job


@router.post("/jobs/{job_id}/complete")
async def complete_job(job_id: str) -> dict:
    """Accept a reviewed job."""
    tracker = _tracker()
    try:
        if await tracker.fetch_job(job_id) is None:
            raise HTTPException(status_code=404, detail=tracker.error or "Job not found")
        if not await tracker.complete_job():
            raise HTTPException(status_code=503, detail=tracker.error or "Failed to complete job")
    finally:
        tracker.close()
    return {"jobId": job_id, "status": "completed"}


_KEEPALIVE = ": keepalive\n\n"


def _sse(job: FooterJob) -> str:
    return f"event: job\ndata: {json.dumps(job.model_dump(mode='json'))}\n\n"


@router.get("/jobs/{job_id}/events")
async def stream_job_events(job_id: str) -> StreamingResponse:
    """Server-sent events with every job update until the job completes or fails.

    The feed subscription is opened before the first read so no update lands
    in between. While waiting, the record is re-read every
    EVENTS_POLL_INTERVAL_S; an unchanged record yields a keepalive comment.
    """
    poll_interval = get_settings().EVENTS_POLL_INTERVAL_S
    queue: asyncio.Queue[FooterJob] = asyncio.Queue()
    tracker = _tracker(on_update=queue.put_nowait)
    tracker.track(job_id)
    job = await tracker.fetch_job(job_id)
    if job is None:
        tracker.close()
        code = 404 if tracker.error == JOB_NOT_FOUND else 503
        raise HTTPException(status_code=code, detail=tracker.error or "Job not found")

    async def events() -> AsyncIterator[str]:
        try:
            current = job
            yield _sse(current)
            while current.status == "processing":
                try:
                    current = await asyncio.wait_for(queue.get(), timeout=poll_interval)
                except asyncio.TimeoutError:
                    latest = await tracker.fetch_job(job_id)
                    if latest is None and tracker.error == JOB_NOT_FOUND:
                        return
                    if latest is None or latest == current:
                        yield _KEEPALIVE
                        continue
                    current = latest
                yield _sse(current)
        finally:
            tracker.close()

    return StreamingResponse(events(), media_type="text/event-stream")
