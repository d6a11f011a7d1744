"""Iterative render/diff/correct loop for footer HTML.

Each attempt renders the current candidate, extracts its visual description,
and diffs it against the reference. The loop stops when nothing is left to
fix, when the attempt budget is spent, or when an attempt did not remove
enough directives to justify another correction.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Protocol

from ...config import get_settings
from ...models import VisualDescription
from ...pipeline.visual_diff import compute_differences

logger = logging.getLogger(__name__)

StopReason = Literal["converged", "stalled", "budget_exhausted"]


class Renderer(Protocol):
    async def capture(self, html: str) -> bytes: ...


class Extractor(Protocol):
    async def describe(self, image_bytes: bytes) -> VisualDescription: ...


class Corrector(Protocol):
    async def correct(
        self, current_html: str, directives: List[str], brand_context: Optional[Dict[str, Any]] = None
    ) -> str: ...


@dataclass(frozen=True)
class RefinementPolicy:
    max_attempts: int = 3
    min_improvement: int = 1

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.min_improvement < 0:
            raise ValueError("min_improvement must be >= 0")

    @classmethod
    def from_settings(cls) -> "RefinementPolicy":
        settings = get_settings()
        return cls(max_attempts=settings.REFINE_MAX_ATTEMPTS, min_improvement=settings.REFINE_MIN_IMPROVEMENT)


@dataclass
class RefinementAttempt:
    attempt: int
    html: str
    directives: List[str]


@dataclass
class RefinementResult:
    html: str
    directives: List[str]
    attempts: List[RefinementAttempt] = field(default_factory=list)
    stop_reason: StopReason = "converged"

    @property
    def converged(self) -> bool:
        return self.stop_reason == "converged"


class FooterRefinementService:
    def __init__(
        self,
        renderer: Renderer,
        extractor: Extractor,
        corrector: Corrector,
        policy: Optional[RefinementPolicy] = None,
    ) -> None:
        self.renderer = renderer
        self.extractor = extractor
        self.corrector = corrector
        self.policy = policy or RefinementPolicy.from_settings()

    async def _measure(self, reference: VisualDescription, html: str) -> List[str]:
        png = await self.renderer.capture(html)
        candidate = await self.extractor.describe(png)
        return compute_differences(reference, candidate)

    async def refine(
        self,
        reference: VisualDescription,
        html: str,
        brand_context: Optional[Dict[str, Any]] = None,
    ) -> RefinementResult:
        attempts: List[RefinementAttempt] = []
        stop_reason: StopReason = "budget_exhausted"

        for number in range(1, self.policy.max_attempts + 1):
            directives = await self._measure(reference, html)
            attempts.append(RefinementAttempt(attempt=number, html=html, directives=directives))
            logger.info("Refinement attempt %d: %d directive(s)", number, len(directives))

            if not directives:
                stop_reason = "converged"
                break
            if number == self.policy.max_attempts:
                break
            if len(attempts) > 1:
                improvement = len(attempts[-2].directives) - len(directives)
                if improvement < self.policy.min_improvement:
                    stop_reason = "stalled"
                    break
            html = await self.corrector.correct(html, directives, brand_context)

        # min() keeps the earliest attempt on ties
        best = min(attempts, key=lambda a: len(a.directives))
        logger.info(
            "Refinement stopped (%s) after %d attempt(s); best has %d directive(s)",
            stop_reason, len(attempts), len(best.directives),
        )
        return RefinementResult(
            html=best.html,
            directives=best.directives,
            attempts=attempts,
            stop_reason=stop_reason,
        )
