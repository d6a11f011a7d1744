from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ...config import get_settings
from ...exceptions import ExternalServiceError, NotFoundError, PersistenceError
from ...models import LegalSection
from ...services.firestore import FirestoreJobStore
from ...services.slicer import SlicerService

logger = logging.getLogger(__name__)

NOT_ON_IMAGE_HOST_MESSAGE = "Image must be uploaded to Cloudinary first. Please re-upload your image."


class TaskPipelineService:
    """Owns the execution of a single footer job's slicing pipeline.

    Writes progress onto the job record as it goes; readers follow those
    writes through the change feed.
    """

    def __init__(self, store=None, slicer: Optional[SlicerService] = None) -> None:
        self.settings = get_settings()
        self.store = store or FirestoreJobStore()
        self.slicer = slicer or SlicerService()

    async def _progress(self, job_id: str, step: Optional[str], percent: int) -> None:
        updates: Dict[str, Any] = {"processing_percent": percent}
        if step:
            updates["processing_step"] = step
        try:
            await self.store.update_job(job_id, updates)
        except PersistenceError as exc:
            # Progress is advisory; the final write decides the outcome.
            logger.error("[%s] failed to update progress: %s", job_id, exc)

    async def _fail(self, job_id: str, message: str) -> Dict[str, Any]:
        await self.store.update_job(job_id, {"status": "failed", "error_message": message[:2000]})
        return {"ok": False, "jobId": job_id, "error": message}

    async def process_footer_job(self, job_id: str) -> Dict[str, Any]:
        job = await self.store.get_job(job_id)
        if not job:
            raise NotFoundError("Job not found")

        image_url: str = job.get("image_url") or ""
        if self.settings.IMAGE_HOST_MARKER not in image_url:
            logger.error("[%s] image must be hosted on %s: %s", job_id, self.settings.IMAGE_HOST_MARKER, image_url[:80])
            return await self._fail(job_id, NOT_ON_IMAGE_HOST_MESSAGE)

        try:
            await self._progress(job_id, "fetching_image", 5)
            try:
                image = await self.slicer.fetch_image(image_url)
            except Exception as exc:  # noqa: BLE001
                logger.error("[%s] image fetch failed: %s", job_id, exc)
                return await self._fail(job_id, "Failed to fetch image")
            logger.info("[%s] fetched image (%d bytes)", job_id, len(image))
            await self._progress(job_id, None, 10)

            await self._progress(job_id, "slicing_footer", 15)
            result = await self.slicer.slice_footer(image_url, job.get("image_width"), job.get("image_height"))
            logger.info("[%s] sliced footer into %d slices", job_id, len(result.slices))
            await self._progress(job_id, None, 40)

            await self._progress(job_id, "processing_fine_print", 45)
            height = job.get("image_height") or result.height
            legal = normalize_legal_section(result.legal_section, height)
            await self._progress(job_id, None, 50)

            await self._progress(job_id, "finalizing", 90)
            await self.store.update_job(
                job_id,
                {
                    "status": "pending_review",
                    "processing_step": "complete",
                    "processing_percent": 100,
                    "processing_completed_at": datetime.now(timezone.utc),
                    "slices": [s.model_dump(mode="json") for s in result.slices],
                    "legal_section": legal.model_dump(mode="json") if legal else None,
                    "legal_cutoff_y": legal.yStart if legal else None,
                },
            )
            return {"ok": True, "jobId": job_id, "status": "pending_review", "slices": len(result.slices)}

        except ExternalServiceError as exc:
            logger.error("[%s] upstream error: %s", job_id, exc)
            return await self._fail(job_id, str(exc) or "Upstream service error")
        except PersistenceError:
            logger.exception("[%s] job store error", job_id)
            raise
        except Exception:
            logger.exception("[%s] unexpected error", job_id)
            return await self._fail(job_id, "Unexpected internal error")


def normalize_legal_section(legal: Optional[LegalSection], image_height: Optional[float]) -> Optional[LegalSection]:
    """Fill in yStartPercent from the image height when the slicer left it empty."""
    if legal is None:
        return None
    if not legal.yStartPercent and image_height:
        return legal.model_copy(update={"yStartPercent": round(legal.yStart / float(image_height) * 100, 2)})
    return legal
