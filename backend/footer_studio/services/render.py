"""Render capture of HTML footer candidates using Playwright.

Renders the candidate in headless Chromium at the email content width and
returns a PNG of the footer element (or the full page when no table wraps it).
"""
from __future__ import annotations

import logging
from typing import Optional

from playwright.async_api import async_playwright

from ..config import get_settings
from ..exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

BASE_STYLES = """
<style>
    body {
        margin: 0;
        padding: 0;
    }
</style>
"""


def wrap_footer_html(html: str) -> str:
    """Place a footer fragment in a minimal document; full documents pass through."""
    if "<html" in html.lower():
        return html
    return f"<!DOCTYPE html><html><head><meta charset=\"utf-8\">{BASE_STYLES}</head><body>{html}</body></html>"


class RenderCaptureService:
    """Headless Chromium screenshots of footer HTML."""

    def __init__(self, width: Optional[int] = None, timeout_ms: Optional[int] = None) -> None:
        settings = get_settings()
        self.width = width or settings.RENDER_WIDTH
        self.timeout_ms = timeout_ms or settings.RENDER_TIMEOUT_MS

    async def capture(self, html: str) -> bytes:
        try:
            async with async_playwright() as p:
                browser = await p.chromium.launch(headless=True)
                try:
                    page = await browser.new_page(viewport={"width": self.width, "height": 800})
                    await page.set_content(
                        wrap_footer_html(html), wait_until="networkidle", timeout=self.timeout_ms
                    )
                    footer = await page.query_selector("body > table")
                    if footer is not None:
                        png = await footer.screenshot(type="png")
                    else:
                        png = await page.screenshot(type="png", full_page=True)
                finally:
                    await browser.close()
        except Exception as exc:  # noqa: BLE001
            logger.error("Render capture failed: %s", exc)
            raise ExternalServiceError("Render capture failed") from exc
        logger.info("Captured render (%d bytes)", len(png))
        return png
