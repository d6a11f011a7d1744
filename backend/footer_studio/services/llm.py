"""Correction service: Gemini primary, OpenRouter fallback, returning revised HTML.

Async implementation using httpx so the FastAPI event loop is not blocked
while waiting on upstream LLM APIs. Includes lightweight retries via tenacity
for transient network and 429/5xx responses.
"""
from __future__ import annotations

import logging
import os
import re
from typing import Any, Dict, List, Optional

import httpx
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_random_exponential,
)

from ..config import get_settings
from ..exceptions import ExternalServiceError
from ..pipeline.visual_diff import format_differences_for_prompt

logger = logging.getLogger(__name__)


# Retry predicate: network errors, timeouts, and 429/5xx HTTP errors
def _is_retryable(exc: Exception) -> bool:  # pragma: no cover - simple predicate
    if isinstance(exc, (httpx.RequestError, httpx.TimeoutException)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or 500 <= status < 600
    return False


# Default prompt (v1). Additional versions can be added to PROMPTS below.
FOOTER_REFINEMENT_RULES = (
    """### ROLE ###
You are an expert email developer refining a branded footer for email campaigns.

### OBJECTIVE ###
Revise the current HTML footer so that its rendering matches the reference
design. You are given a numbered list of MEASURED differences between the
reference and the current render. Fix every listed difference and change
nothing else.

### REQUIREMENTS ###
1. Use table-based layout (not flexbox/grid) for email compatibility.
2. All styles must be inline (no external CSS except a dark mode media query
   in a <style> tag).
3. Total width must be exactly 600px.
4. Use web-safe fonts: -apple-system, BlinkMacSystemFont, 'Segoe UI', Arial,
   sans-serif.
5. Maintain the existing structure unless a difference requires a change.
6. Keep social icons as <img> tags with explicit dimensions.
7. Match EXACT hex values when a colour mismatch is reported.

### OUTPUT ###
Return ONLY the refined HTML code. Do **not** wrap it in markdown code fences
and do **not** add any explanatory text.
"""
)


# Registry of prompts by version label. Extendable without code churn elsewhere.
PROMPTS = {
    "v1": FOOTER_REFINEMENT_RULES,
}

_FENCE_RE = re.compile(r"```(?:html)?\n?")


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text or "").strip()


def build_correction_prompt(
    current_html: str, directives: List[str], brand_context: Optional[Dict[str, Any]] = None
) -> str:
    prompt = f"Here is the current footer HTML:\n\n{current_html}\n\n"
    prompt += "Measured differences from the reference:\n"
    prompt += format_differences_for_prompt(directives) + "\n"
    if brand_context:
        colors = brand_context.get("colors") or {}
        prompt += (
            "\nBrand context:\n"
            f"- Name: {brand_context.get('name', 'N/A')}\n"
            f"- Primary: {colors.get('primary', 'N/A')}\n"
            f"- Background: {colors.get('background', 'N/A')}\n"
            f"- Text: {colors.get('textPrimary', 'N/A')}\n"
        )
    prompt += "\nReturn the refined HTML code. Only output the HTML, no explanations."
    return prompt


class CorrectionService:
    def __init__(self) -> None:
        self.settings = get_settings()
        # Read max output tokens from env without modifying global settings
        try:
            mot = int(os.getenv("LLM_MAX_OUTPUT_TOKENS", "8192"))
            # Clamp to a reasonable range to avoid provider errors
            self.max_output_tokens = max(256, min(16384, mot))
        except Exception:
            self.max_output_tokens = 8192
        # Select prompt by version (defaults to v1)
        self.prompt_version = (self.settings.LLM_PROMPT_VERSION or "v1").strip()
        self.instructions = PROMPTS.get(self.prompt_version, FOOTER_REFINEMENT_RULES)

    def _gemini_url(self) -> str:
        model = self.settings.GEMINI_MODEL or "gemini-2.5-flash"
        return f"https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent?key={self.settings.GEMINI_API_KEY}"

    def _openrouter_url(self) -> str:
        return "https://openrouter.ai/api/v1/chat/completions"

    @retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_random_exponential(multiplier=0.2, max=5),
        retry=retry_if_exception(_is_retryable),
    )
    async def _post_json(self, url: str, *, headers: Optional[Dict[str, str]] = None, payload: Dict[str, Any], timeout: float = 90.0) -> Dict[str, Any]:
        """HTTP POST JSON with retries. Raises httpx.HTTPStatusError on non-2xx.

        Returns parsed JSON dict.
        """
        t = httpx.Timeout(timeout, connect=5.0)
        async with httpx.AsyncClient(timeout=t) as client:
            resp = await client.post(url, headers=headers, json=payload)
            resp.raise_for_status()
            return resp.json()

    async def correct_with_gemini_async(self, prompt: str) -> str:
        if not self.settings.GEMINI_API_KEY:
            raise RuntimeError("Missing GEMINI_API_KEY")
        payload = {
            "systemInstruction": {"parts": [{"text": self.instructions}]},
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": 0.2,
                "maxOutputTokens": self.max_output_tokens,
                "responseMimeType": "text/plain",
            },
        }
        data = await self._post_json(self._gemini_url(), payload=payload)
        try:
            text_out = data["candidates"][0]["content"]["parts"][0].get("text", "")
        except Exception as e:  # noqa: BLE001
            logger.exception("Gemini unexpected response: %s", data)
            raise RuntimeError(f"Gemini parse error: {e}")
        html = strip_code_fences(text_out)
        if not html:
            raise RuntimeError("Gemini returned empty HTML")
        return html

    async def correct_with_openrouter_async(self, prompt: str) -> str:
        if not self.settings.OPENROUTER_API_KEY:
            raise RuntimeError("Missing OPENROUTER_API_KEY")
        headers = {
            "Authorization": f"Bearer {self.settings.OPENROUTER_API_KEY}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.settings.OPENROUTER_MODEL or "meta-llama/llama-3.3-70b-instruct:free",
            "messages": [
                {"role": "system", "content": self.instructions},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0.2,
            "max_tokens": self.max_output_tokens,
        }
        data = await self._post_json(self._openrouter_url(), headers=headers, payload=payload)
        try:
            content = data["choices"][0]["message"]["content"]
        except Exception as e:  # noqa: BLE001
            logger.exception("OpenRouter unexpected response: %s", data)
            raise RuntimeError(f"OpenRouter parse error: {e}")
        html = strip_code_fences(content)
        if not html:
            raise RuntimeError("OpenRouter returned empty HTML")
        return html

    async def correct(
        self,
        current_html: str,
        directives: List[str],
        brand_context: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Try Gemini, fallback to OpenRouter, returning revised footer HTML."""
        prompt = build_correction_prompt(current_html, directives, brand_context)
        try:
            return await self.correct_with_gemini_async(prompt)
        except Exception as e:
            logger.warning("Gemini failed: %s", e)
        try:
            return await self.correct_with_openrouter_async(prompt)
        except Exception as e:
            logger.error("OpenRouter failed: %s", e)
            raise ExternalServiceError("HTML correction failed on all providers") from e
