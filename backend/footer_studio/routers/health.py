"""Health and readiness endpoints."""
from __future__ import annotations

from datetime import datetime, timezone
from fastapi import APIRouter

from ..config import get_settings

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def healthz() -> dict:
    """Liveness probe endpoint."""
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.APP_NAME,
        "tasksEmulated": settings.TASKS_EMULATE,
        "time": datetime.now(timezone.utc).isoformat(),
    }
