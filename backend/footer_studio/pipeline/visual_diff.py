"""Numeric differences between a reference footer and a rendered candidate.

Both sides are `VisualDescription`s extracted by the vision layer. The output
is a flat list of human-readable directives that the correction prompt can act
on. Everything here is pure: no I/O, no randomness, no exceptions on missing
data.
"""
from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from ..models import TextBlock, VisualDescription

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ThresholdTable:
    """Tolerances below which a deviation is ignored (pixels unless noted)."""

    height_diff: float = 10
    logo_size_diff: float = 8
    logo_position_diff: float = 15
    font_size_diff: float = 3
    text_y_diff: float = 10
    color_diff: float = 30  # RGB distance
    section_y_diff: float = 15


THRESHOLDS = ThresholdTable()

NO_DIFFERENCES_MESSAGE = (
    "No significant mathematical differences detected - the render closely matches the reference."
)

MIN_TEXT_FONT_SIZE = 10
MIN_TEXT_LENGTH = 3
MAX_TEXT_BLOCKS = 8
MATCH_PREFIX_LEN = 15

_HEX_RE = re.compile(r"^#?([0-9a-fA-F]{6}|[0-9a-fA-F]{3})$")


def _num(value: float) -> str:
    """Render a measurement unrounded, without a trailing .0 (12, 10.04)."""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return str(value)


def parse_hex_color(value: Optional[str]) -> Optional[Tuple[int, int, int]]:
    """Parse '#rrggbb' (or shorthand '#rgb') into an RGB tuple; None if malformed."""
    if not value:
        return None
    m = _HEX_RE.match(value.strip())
    if not m:
        return None
    digits = m.group(1)
    if len(digits) == 3:
        digits = "".join(ch * 2 for ch in digits)
    return int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16)


def color_rgb_distance(hex1: Optional[str], hex2: Optional[str]) -> Optional[float]:
    """Euclidean distance between two hex colours, or None when either is malformed."""
    c1 = parse_hex_color(hex1)
    c2 = parse_hex_color(hex2)
    if c1 is None or c2 is None:
        return None
    return math.sqrt(sum((a - b) ** 2 for a, b in zip(c1, c2)))


def find_matching_text_block(ref: TextBlock, blocks: List[TextBlock]) -> Optional[TextBlock]:
    """Find the candidate block for a reference block.

    Exact case-insensitive text wins; otherwise a 15-character prefix of either
    side contained in the other. Only the first match is returned.
    """
    ref_lower = ref.text.lower()
    for block in blocks:
        if block.text.lower() == ref_lower:
            return block

    search = ref_lower[:MATCH_PREFIX_LEN]
    if len(search) < MIN_TEXT_LENGTH:
        return None

    for block in blocks:
        cand_lower = block.text.lower()
        if not cand_lower:
            continue
        if search in cand_lower or cand_lower[:MATCH_PREFIX_LEN] in search:
            return block
    return None


def _height_differences(reference: VisualDescription, candidate: VisualDescription) -> List[str]:
    if reference.dimensions is None or candidate.dimensions is None:
        return []
    ref_h = reference.dimensions.height
    cand_h = candidate.dimensions.height
    delta = cand_h - ref_h
    if abs(delta) <= THRESHOLDS.height_diff:
        return []
    if delta > 0:
        return [
            f"Footer is {_num(delta)}px TALLER than reference ({_num(cand_h)}px vs {_num(ref_h)}px)"
            " - reduce padding/spacing"
        ]
    return [
        f"Footer is {_num(abs(delta))}px SHORTER than reference ({_num(cand_h)}px vs {_num(ref_h)}px)"
        " - increase padding/spacing"
    ]


def _logo_differences(reference: VisualDescription, candidate: VisualDescription) -> List[str]:
    if not reference.logos:
        return []
    ref_logo = reference.logos[0]
    if not candidate.logos:
        return [
            "Logo NOT DETECTED in render - ensure logo is visible and sized correctly "
            f"(reference: {_num(ref_logo.width)}x{_num(ref_logo.height)}px)"
        ]
    cand_logo = candidate.logos[0]
    diffs: List[str] = []

    width_diff = cand_logo.width - ref_logo.width
    if abs(width_diff) > THRESHOLDS.logo_size_diff:
        sizes = f"({_num(cand_logo.width)}px vs {_num(ref_logo.width)}px)"
        if width_diff < 0:
            diffs.append(f"Logo is {_num(abs(width_diff))}px NARROWER than reference {sizes} - INCREASE logo width")
        else:
            diffs.append(f"Logo is {_num(width_diff)}px WIDER than reference {sizes} - decrease logo width")

    height_diff = cand_logo.height - ref_logo.height
    if abs(height_diff) > THRESHOLDS.logo_size_diff:
        sizes = f"({_num(cand_logo.height)}px vs {_num(ref_logo.height)}px)"
        if height_diff < 0:
            diffs.append(f"Logo is {_num(abs(height_diff))}px SHORTER than reference {sizes} - INCREASE logo height")
        else:
            diffs.append(f"Logo is {_num(height_diff)}px TALLER than reference {sizes} - decrease logo height")

    y_diff = cand_logo.bounds.yTop - ref_logo.bounds.yTop
    if abs(y_diff) > THRESHOLDS.logo_position_diff:
        if y_diff > 0:
            diffs.append(f"Logo is {_num(y_diff)}px LOWER than reference - move logo UP (reduce top padding)")
        else:
            diffs.append(f"Logo is {_num(abs(y_diff))}px HIGHER than reference - move logo DOWN (increase top padding)")
    return diffs


def _text_differences(reference: VisualDescription, candidate: VisualDescription) -> List[str]:
    significant = [
        t
        for t in reference.textBlocks
        if t.estimatedFontSize >= MIN_TEXT_FONT_SIZE and len(t.text) >= MIN_TEXT_LENGTH
    ]
    diffs: List[str] = []
    for ref_text in significant[:MAX_TEXT_BLOCKS]:
        match = find_matching_text_block(ref_text, candidate.textBlocks)
        if match is None:
            # whitespace-heavy fragments are not worth a directive
            if len(ref_text.text.strip()) > 5:
                diffs.append(
                    f'Text "{ref_text.text[:25]}..." not found in render at expected position '
                    f"y={_num(ref_text.bounds.yTop)}px"
                )
            continue

        preview = ref_text.text[:20]
        font_diff = match.estimatedFontSize - ref_text.estimatedFontSize
        if abs(font_diff) > THRESHOLDS.font_size_diff:
            sizes = f"({_num(match.estimatedFontSize)}px vs {_num(ref_text.estimatedFontSize)}px)"
            if font_diff < 0:
                diffs.append(f'"{preview}": font is {_num(abs(font_diff))}px SMALLER {sizes} - INCREASE font-size')
            else:
                diffs.append(f'"{preview}": font is {_num(font_diff)}px LARGER {sizes} - decrease font-size')

        y_diff = match.bounds.yTop - ref_text.bounds.yTop
        if abs(y_diff) > THRESHOLDS.text_y_diff:
            if y_diff > 0:
                diffs.append(f'"{preview}": is {_num(y_diff)}px LOWER than reference - move UP')
            else:
                diffs.append(f'"{preview}": is {_num(abs(y_diff))}px HIGHER than reference - move DOWN')
    return diffs


def _color_differences(reference: VisualDescription, candidate: VisualDescription) -> List[str]:
    if reference.colorPalette is None or candidate.colorPalette is None:
        return []
    diffs: List[str] = []
    for label, attr in (("Background", "background"), ("Text", "text")):
        ref_color = getattr(reference.colorPalette, attr)
        cand_color = getattr(candidate.colorPalette, attr)
        distance = color_rgb_distance(ref_color, cand_color)
        if distance is None:
            logger.warning("Skipping %s colour check: malformed value(s) %r / %r", attr, ref_color, cand_color)
            continue
        if distance > THRESHOLDS.color_diff:
            diffs.append(
                f"{label} color mismatch: render={cand_color} vs reference={ref_color} - use exact reference color"
            )
    return diffs


def _edge_differences(reference: VisualDescription, candidate: VisualDescription) -> List[str]:
    # Only the first edge is compared; it is taken as the main section boundary.
    if not reference.horizontalEdges or not candidate.horizontalEdges:
        return []
    ref_edge = reference.horizontalEdges[0]
    cand_edge = candidate.horizontalEdges[0]
    y_diff = cand_edge.y - ref_edge.y
    if abs(y_diff) <= THRESHOLDS.section_y_diff:
        return []
    return [
        f"Main section boundary at y={_num(cand_edge.y)}px vs reference y={_num(ref_edge.y)}px "
        f"({_num(abs(y_diff))}px off)"
    ]


def compute_differences(reference: VisualDescription, candidate: VisualDescription) -> List[str]:
    """Compute the ordered directives describing how `candidate` deviates from `reference`.

    Order: height, logo, text blocks (reference order), colours, main edge.
    """
    diffs: List[str] = []
    diffs.extend(_height_differences(reference, candidate))
    diffs.extend(_logo_differences(reference, candidate))
    diffs.extend(_text_differences(reference, candidate))
    diffs.extend(_color_differences(reference, candidate))
    diffs.extend(_edge_differences(reference, candidate))
    return diffs


def format_differences_for_prompt(diffs: List[str]) -> str:
    """Format directives as a 1-indexed block for the correction prompt."""
    if not diffs:
        return NO_DIFFERENCES_MESSAGE
    return "\n".join(f"{i}. {d}" for i, d in enumerate(diffs, start=1))
