"""
Shared pytest fixtures: in-memory job store, change feed and trigger fakes,
plus sample visual descriptions.
"""

from __future__ import annotations

import copy
from typing import Any, Callable, Dict, List, Optional

import pytest

from footer_studio.exceptions import PersistenceError
from footer_studio.models import (
    Bounds,
    ColorPalette,
    CreateJobParams,
    Dimensions,
    Edge,
    Logo,
    TextBlock,
    VisualDescription,
)


# ============================================================================
# Orchestration fakes
# ============================================================================


class FakeJobStore:
    """Dict-backed job store that records every call."""

    def __init__(self) -> None:
        self.records: Dict[str, Dict[str, Any]] = {}
        self.calls: List[tuple] = []
        self.fail_insert = False
        self.fail_update = False
        self.fail_get = False

    async def insert_job(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append(("insert", doc))
        if self.fail_insert:
            raise PersistenceError("insert failed")
        self.records[doc["id"]] = dict(doc)
        return copy.deepcopy(self.records[doc["id"]])

    async def update_job(self, job_id: str, updates: Dict[str, Any]) -> None:
        self.calls.append(("update", job_id, updates))
        if self.fail_update:
            raise PersistenceError("update failed")
        self.records.setdefault(job_id, {}).update(updates)

    async def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        self.calls.append(("get", job_id))
        if self.fail_get:
            raise PersistenceError("select failed")
        record = self.records.get(job_id)
        return copy.deepcopy(record) if record else None


class FakeChangeFeed:
    """Keeps handlers per job id; `emit` delivers an update like the real feed."""

    def __init__(self) -> None:
        self.handlers: Dict[str, Callable[[str, Dict[str, Any]], None]] = {}
        self.opened: List[str] = []
        self.closed: List[str] = []

    def register_listener(self, job_id: str, handler):
        self.opened.append(job_id)
        self.handlers[job_id] = handler

        def unsubscribe() -> None:
            self.closed.append(job_id)
            self.handlers.pop(job_id, None)

        return unsubscribe

    def emit(self, job_id: str, record: Dict[str, Any]) -> None:
        handler = self.handlers.get(job_id)
        if handler:
            handler(job_id, record)

    def emit_stale(self, handler, job_id: str, record: Dict[str, Any]) -> None:
        """Deliver through a handler that has already been unsubscribed."""
        handler(job_id, record)


class FakeTrigger:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.invoked: List[str] = []

    async def invoke(self, job_id: str) -> None:
        self.invoked.append(job_id)
        if self.fail:
            raise RuntimeError("trigger unavailable")


@pytest.fixture
def store() -> FakeJobStore:
    return FakeJobStore()


@pytest.fixture
def feed() -> FakeChangeFeed:
    return FakeChangeFeed()


@pytest.fixture
def trigger() -> FakeTrigger:
    return FakeTrigger()


@pytest.fixture
def user_id() -> str:
    return "3f1c2b7e-9a4d-4e21-8b55-0c6f1d2a9e10"


@pytest.fixture
def create_params() -> CreateJobParams:
    return CreateJobParams(
        brandId="brand-1",
        source="upload",
        imageUrl="https://res.cloudinary.com/demo/image/upload/footer.png",
        cloudinaryPublicId="footer",
        imageWidth=600,
        imageHeight=420,
    )


def job_record(job_id: str, **overrides: Any) -> Dict[str, Any]:
    """A persisted job record as the store would return it."""
    record: Dict[str, Any] = {
        "id": job_id,
        "user_id": "3f1c2b7e-9a4d-4e21-8b55-0c6f1d2a9e10",
        "brand_id": "brand-1",
        "source": "upload",
        "source_url": None,
        "image_url": "https://res.cloudinary.com/demo/image/upload/footer.png",
        "cloudinary_public_id": "footer",
        "image_width": 600,
        "image_height": 420,
        "status": "processing",
        "processing_step": "queued",
        "processing_percent": 0,
    }
    record.update(overrides)
    return record


# ============================================================================
# Visual description fixtures
# ============================================================================


def text_block(text: str, y_top: float, font: float = 14, x_left: float = 40) -> TextBlock:
    height = round(font * 1.2)
    return TextBlock(
        text=text,
        bounds=Bounds(xLeft=x_left, xRight=x_left + 200, yTop=y_top, yBottom=y_top + height),
        width=200,
        height=height,
        estimatedFontSize=font,
    )


@pytest.fixture
def reference() -> VisualDescription:
    """A dark footer with a logo, three text rows and one section boundary."""
    return VisualDescription(
        dimensions=Dimensions(width=600, height=400),
        textBlocks=[
            text_block("Follow us on social", 120, font=16),
            text_block("Unsubscribe here", 300, font=12),
            text_block("123 Main Street, Springfield", 330, font=11),
        ],
        logos=[
            Logo(
                name="Acme",
                bounds=Bounds(xLeft=250, xRight=350, yTop=30, yBottom=70),
                width=100,
                height=40,
            )
        ],
        horizontalEdges=[Edge(y=280, colorAbove="#111111", colorBelow="#222222")],
        colorPalette=ColorPalette(background="#111111", text="#ffffff", accent="#0066cc"),
    )
