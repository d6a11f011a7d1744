"""Tasks worker endpoint (thin HTTP layer).

Delegates the slicing pipeline to `TaskPipelineService`:
load job -> fetch image -> slice -> normalise legal section -> finalize.
"""
from __future__ import annotations

from typing import Any, Dict
import logging

from fastapi import APIRouter, Depends, HTTPException

from ..deps import get_job_store, verify_oidc_token
from ..exceptions import NotFoundError
from ..services.orchestration.task_pipeline import TaskPipelineService

router = APIRouter(prefix="/tasks", tags=["tasks"])  # mounted under /api
logger = logging.getLogger(__name__)


@router.post("/process")
async def process_task(
    payload: Dict[str, Any],
    decoded_token: dict = Depends(verify_oidc_token),
) -> Dict[str, Any]:
    """Process a job: expects JSON { jobId }.

    In production with Cloud Tasks, this endpoint verifies the OIDC audience.
    For local development (TASKS_EMULATE=true), calls can be made directly without auth.
    """
    job_id = (payload or {}).get("jobId")
    if not job_id:
        raise HTTPException(status_code=400, detail="jobId is required")

    logger.info("[%s] starting processing", job_id)
    pipeline = TaskPipelineService(store=get_job_store())
    try:
        return await pipeline.process_footer_job(job_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
