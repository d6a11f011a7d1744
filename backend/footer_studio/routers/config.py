"""Runtime config endpoint for frontend consumption."""
from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter

from ..config import get_settings
from ..pipeline.visual_diff import THRESHOLDS

router = APIRouter(tags=["config"])


@router.get("/config")
async def get_config() -> dict:
    """Expose comparison thresholds and the default refinement policy."""
    settings = get_settings()
    return {
        "thresholds": asdict(THRESHOLDS),
        "refinement": {
            "maxAttempts": settings.REFINE_MAX_ATTEMPTS,
            "minImprovement": settings.REFINE_MIN_IMPROVEMENT,
        },
        "renderWidth": settings.RENDER_WIDTH,
    }
