"""Visual description extraction for footer images.

Layers:
- Text geometry per paragraph from Google Cloud Vision document OCR.
- Logos from Cloud Vision logo detection.
- Horizontal colour edges from per-row average colours (Pillow).
- A background/text/accent palette from a sampled, quantised pixel histogram.

The same extractor is used for the reference design and for rendered
candidates so that both sides of a comparison are measured the same way.
"""
from __future__ import annotations

import asyncio
import io
import logging
import math
from collections import Counter
from typing import List, Optional, Tuple

from google.cloud import vision_v1 as vision
from PIL import Image

from ..config import get_settings
from ..exceptions import ExternalServiceError
from ..models import Bounds, ColorPalette, Dimensions, Edge, Logo, TextBlock, VisualDescription

logger = logging.getLogger(__name__)

RGB = Tuple[int, int, int]

DEFAULT_PALETTE = ColorPalette(background="#ffffff", text="#000000", accent="#0066cc")


def rgb_to_hex(r: float, g: float, b: float) -> str:
    def clamp(v: float) -> int:
        return max(0, min(255, int(round(v))))

    return "#" + "".join(f"{clamp(x):02x}" for x in (r, g, b))


def _distance(c1: RGB, c2: RGB) -> float:
    return math.sqrt(sum((a - b) ** 2 for a, b in zip(c1, c2)))


def _vertex_bounds(vertices) -> Optional[Bounds]:
    xs = [getattr(v, "x", 0) or 0 for v in vertices]
    ys = [getattr(v, "y", 0) or 0 for v in vertices]
    if not xs or not ys:
        return None
    return Bounds(xLeft=min(xs), xRight=max(xs), yTop=min(ys), yBottom=max(ys))


def detect_horizontal_edges(
    image: Image.Image, threshold: float = 35.0, min_strength: float = 0.3
) -> List[Edge]:
    """Rows where the average colour jumps relative to the previous row."""
    rgb = image.convert("RGB")
    width, height = rgb.size
    if width == 0 or height < 2:
        return []
    # A 1px-wide resize gives the per-row average colour.
    rows = list(rgb.resize((1, height), Image.BOX).getdata())

    edges: List[Edge] = []
    previous = rows[0]
    for y in range(1, height):
        current = rows[y]
        diff = _distance(previous, current)
        if diff > threshold:
            strength = min(diff / 100.0, 1.0)
            if strength > min_strength:
                edges.append(
                    Edge(
                        y=y,
                        colorAbove=rgb_to_hex(*previous),
                        colorBelow=rgb_to_hex(*current),
                        strength=strength,
                    )
                )
        previous = current
    edges.sort(key=lambda e: e.y)
    return edges


def extract_color_palette(image: Image.Image, step: int = 10) -> ColorPalette:
    """Most frequent quantised colours: background, readable text, saturated accent."""
    rgb = image.convert("RGB")
    width, height = rgb.size
    counts: Counter = Counter()
    for y in range(0, height, step):
        for x in range(0, width, step):
            r, g, b = rgb.getpixel((x, y))
            quantised = tuple(min(240, (c // 16) * 16) for c in (r, g, b))
            counts[quantised] += 1
    if not counts:
        return DEFAULT_PALETTE

    ranked = [c for c, _ in counts.most_common()]
    background = ranked[0]
    is_dark_background = sum(background) / 3 < 128

    if is_dark_background:
        text_candidates = [c for c in ranked if sum(c) / 3 > 180]
        text = rgb_to_hex(*text_candidates[0]) if text_candidates else "#ffffff"
    else:
        text_candidates = [c for c in ranked if sum(c) / 3 < 80]
        text = rgb_to_hex(*text_candidates[0]) if text_candidates else "#000000"

    def saturation(c: RGB) -> float:
        hi, lo = max(c), min(c)
        return 0.0 if hi == 0 else (hi - lo) / hi

    accents = [c for c in ranked if c != background and saturation(c) > 0.3]
    accent = rgb_to_hex(*accents[0]) if accents else "#0066cc"
    return ColorPalette(background=rgb_to_hex(*background), text=text, accent=accent)


class VisionExtractionService:
    """Builds a `VisualDescription` for PNG/JPEG bytes."""

    def __init__(self, client: Optional[vision.ImageAnnotatorClient] = None) -> None:
        self.settings = get_settings()
        self._vision = client or vision.ImageAnnotatorClient()

    async def describe(self, image_bytes: bytes) -> VisualDescription:
        return await asyncio.to_thread(self.describe_sync, image_bytes)

    def describe_sync(self, image_bytes: bytes) -> VisualDescription:
        try:
            image = Image.open(io.BytesIO(image_bytes))
            image.load()
        except Exception as exc:  # noqa: BLE001
            raise ExternalServiceError(f"Unreadable image: {exc}") from exc

        width, height = image.size
        text_blocks = self._extract_text_geometry(image_bytes)
        logos = self._detect_logos(image_bytes)

        try:
            edges = detect_horizontal_edges(
                image, self.settings.EDGE_COLOR_THRESHOLD, self.settings.EDGE_MIN_STRENGTH
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("Edge detection failed: %s", exc)
            edges = []
        try:
            palette = extract_color_palette(image)
        except Exception as exc:  # noqa: BLE001
            logger.error("Color palette extraction failed: %s", exc)
            palette = DEFAULT_PALETTE

        logger.info(
            "Described image %dx%d: %d text blocks, %d logos, %d edges",
            width, height, len(text_blocks), len(logos), len(edges),
        )
        return VisualDescription(
            dimensions=Dimensions(width=width, height=height),
            textBlocks=text_blocks,
            logos=logos,
            horizontalEdges=edges,
            colorPalette=palette,
        )

    # --- extractors ---

    def _extract_text_geometry(self, image_bytes: bytes) -> List[TextBlock]:
        response = self._vision.document_text_detection(image=vision.Image(content=image_bytes))
        if response.error.message:
            raise ExternalServiceError(f"Vision OCR error: {response.error.message}")

        annotation = response.full_text_annotation
        blocks: List[TextBlock] = []
        for page in annotation.pages:
            for block in page.blocks:
                for paragraph in block.paragraphs:
                    vertices = list(paragraph.bounding_box.vertices)
                    if len(vertices) < 4:
                        continue
                    bounds = _vertex_bounds(vertices)
                    if bounds is None:
                        continue
                    text = " ".join(
                        "".join(symbol.text for symbol in word.symbols) for word in paragraph.words
                    ).strip()
                    block_height = bounds.yBottom - bounds.yTop
                    blocks.append(
                        TextBlock(
                            text=text,
                            bounds=bounds,
                            width=bounds.xRight - bounds.xLeft,
                            height=block_height,
                            estimatedFontSize=round(block_height / 1.2),
                            confidence=paragraph.confidence or 0.9,
                        )
                    )
        return blocks

    def _detect_logos(self, image_bytes: bytes) -> List[Logo]:
        try:
            response = self._vision.logo_detection(
                image=vision.Image(content=image_bytes), max_results=10
            )
        except Exception as exc:  # noqa: BLE001
            # Logos are optional in a description; OCR failures are not.
            logger.error("Logo detection failed: %s", exc)
            return []

        logos: List[Logo] = []
        for annotation in response.logo_annotations:
            bounds = _vertex_bounds(list(annotation.bounding_poly.vertices))
            if bounds is None:
                continue
            logos.append(
                Logo(
                    name=annotation.description,
                    bounds=bounds,
                    width=bounds.xRight - bounds.xLeft,
                    height=bounds.yBottom - bounds.yTop,
                    score=annotation.score,
                )
            )
        return logos
