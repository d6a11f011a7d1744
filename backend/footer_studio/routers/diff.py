"""Comparison endpoints: one-shot visual diff and the full refinement loop."""
from __future__ import annotations

from fastapi import APIRouter, HTTPException

from ..exceptions import ExternalServiceError
from ..models import DiffRequest, DiffResponse, RefineRequest
from ..pipeline.visual_diff import compute_differences, format_differences_for_prompt
from ..services.llm import CorrectionService
from ..services.orchestration.refinement import FooterRefinementService, RefinementPolicy
from ..services.render import RenderCaptureService
from ..services.slicer import SlicerService
from ..services.vision import VisionExtractionService

router = APIRouter(tags=["diff"])


@router.post("/diff", response_model=DiffResponse)
async def diff(payload: DiffRequest) -> DiffResponse:
    """Directives describing how the candidate deviates from the reference."""
    differences = compute_differences(payload.reference, payload.candidate)
    return DiffResponse(differences=differences, prompt=format_differences_for_prompt(differences))


@router.post("/refine")
async def refine(payload: RefineRequest) -> dict:
    """Render, diff and correct `html` until it matches the reference image or the policy stops it."""
    defaults = RefinementPolicy.from_settings()
    try:
        policy = RefinementPolicy(
            max_attempts=payload.maxAttempts or defaults.max_attempts,
            min_improvement=(
                payload.minImprovement if payload.minImprovement is not None else defaults.min_improvement
            ),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    extractor = VisionExtractionService()
    try:
        image = await SlicerService().fetch_image(payload.referenceImageUrl)
        reference = await extractor.describe(image)
        service = FooterRefinementService(RenderCaptureService(), extractor, CorrectionService(), policy)
        result = await service.refine(reference, payload.html)
    except ExternalServiceError as exc:
        raise HTTPException(status_code=503, detail=str(exc))

    return {
        "html": result.html,
        "differences": result.directives,
        "converged": result.converged,
        "stopReason": result.stop_reason,
        "attempts": [
            {"attempt": a.attempt, "differences": a.directives} for a in result.attempts
        ],
    }
