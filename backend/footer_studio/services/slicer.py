"""HTTP client for the external footer slicing service and image downloads."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_random_exponential,
)

from ..config import get_settings
from ..exceptions import ExternalServiceError
from ..models import FooterSlice, LegalSection
from .llm import _is_retryable

logger = logging.getLogger(__name__)


@dataclass
class SliceResult:
    slices: List[FooterSlice]
    legal_section: Optional[LegalSection]
    width: Optional[int] = None
    height: Optional[int] = None
    debug: Dict[str, Any] = field(default_factory=dict)


class SlicerService:
    """Calls the slicing endpoint: visual slices above the legal cutoff plus legal metadata."""

    def __init__(self) -> None:
        self.settings = get_settings()

    @retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_random_exponential(multiplier=0.2, max=5),
        retry=retry_if_exception(_is_retryable),
    )
    async def _download(self, image_url: str) -> bytes:
        limit = self.settings.MAX_IMAGE_MB * 1024 * 1024
        t = httpx.Timeout(self.settings.IMAGE_FETCH_TIMEOUT_S, connect=5.0)
        async with httpx.AsyncClient(timeout=t, follow_redirects=True) as client:
            async with client.stream("GET", image_url) as resp:
                resp.raise_for_status()
                chunks: List[bytes] = []
                total = 0
                async for chunk in resp.aiter_bytes():
                    total += len(chunk)
                    if total > limit:
                        raise ExternalServiceError("Image exceeds size limit")
                    chunks.append(chunk)
        return b"".join(chunks)

    async def fetch_image(self, image_url: str) -> bytes:
        """Download an image, stopping as soon as it exceeds MAX_IMAGE_MB."""
        try:
            return await self._download(image_url)
        except httpx.HTTPError as exc:
            logger.error("Image fetch failed for %s: %s", image_url[:80], exc)
            raise ExternalServiceError("Failed to fetch image") from exc

    @retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_random_exponential(multiplier=0.2, max=5),
        retry=retry_if_exception(_is_retryable),
    )
    async def _post_json(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self.settings.SLICER_API_KEY:
            headers["Authorization"] = f"Bearer {self.settings.SLICER_API_KEY}"
        t = httpx.Timeout(120.0, connect=5.0)
        async with httpx.AsyncClient(timeout=t) as client:
            resp = await client.post(self.settings.SLICER_URL, headers=headers, json=payload)
            resp.raise_for_status()
            return resp.json()

    async def slice_footer(self, image_url: str, image_width: int | None, image_height: int | None) -> SliceResult:
        if not self.settings.SLICER_URL:
            raise ExternalServiceError("SLICER_URL is not configured")
        try:
            data = await self._post_json(
                {"imageUrl": image_url, "imageWidth": image_width, "imageHeight": image_height}
            )
        except httpx.HTTPError as exc:
            logger.error("Slicing call failed: %s", exc)
            raise ExternalServiceError("Slicing service error") from exc

        if not data.get("success", True):
            raise ExternalServiceError(data.get("error") or "Slicing failed")
        try:
            slices = [FooterSlice.model_validate(s) for s in data.get("slices") or []]
            legal = data.get("legalSection")
            legal_section = LegalSection.model_validate(legal) if legal else None
        except ValidationError as exc:
            logger.error("Slicing response schema mismatch: %s", exc)
            raise ExternalServiceError("Slicing service returned an invalid payload") from exc

        dims = data.get("dimensions") or {}
        return SliceResult(
            slices=slices,
            legal_section=legal_section,
            width=dims.get("width"),
            height=dims.get("height"),
            debug=data.get("debug") or {},
        )
