"""Pydantic models for visual descriptions, footer jobs, and API payloads."""
from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


JobStatus = Literal["processing", "pending_review", "completed", "failed"]
JobSource = Literal["upload", "figma"]
LegalElementType = Literal["unsubscribe", "preferences", "address", "org_name", "copyright"]

COMPLETION_STATUSES = frozenset({"pending_review", "completed"})
TERMINAL_STATUSES = frozenset({"completed", "failed"})


# --- visual descriptions ---


class Bounds(BaseModel):
    xLeft: float = 0
    xRight: float = 0
    yTop: float = 0
    yBottom: float = 0


class Dimensions(BaseModel):
    width: float
    height: float


class TextBlock(BaseModel):
    """A paragraph of detected text with its geometry."""

    text: str = ""
    bounds: Bounds = Field(default_factory=Bounds)
    width: float = 0
    height: float = 0
    estimatedFontSize: float = 0
    confidence: Optional[float] = None


class Logo(BaseModel):
    name: str = ""
    bounds: Bounds = Field(default_factory=Bounds)
    width: float = 0
    height: float = 0
    score: Optional[float] = None


class Edge(BaseModel):
    """A horizontal colour boundary between two rows."""

    y: float
    colorAbove: str
    colorBelow: str
    strength: Optional[float] = None


class ColorPalette(BaseModel):
    background: str = "#ffffff"
    text: str = "#000000"
    accent: str = "#0066cc"


class VisualDescription(BaseModel):
    """Structured description of one image (reference or rendered candidate).

    Every collection defaults to empty so partially extracted data can still
    be compared.
    """

    dimensions: Optional[Dimensions] = None
    textBlocks: List[TextBlock] = Field(default_factory=list)
    logos: List[Logo] = Field(default_factory=list)
    horizontalEdges: List[Edge] = Field(default_factory=list)
    colorPalette: Optional[ColorPalette] = None


# --- footer jobs ---


class SliceColumn(BaseModel):
    imageUrl: str
    link: str
    altText: str
    xStart: float
    xEnd: float


class FooterSlice(BaseModel):
    """One horizontal band of the footer image."""

    model_config = ConfigDict(extra="ignore")

    id: str
    imageUrl: str
    yTop: float
    yBottom: float
    yTopPercent: float = 0
    yBottomPercent: float = 0
    altText: str = ""
    link: Optional[str] = None
    isClickable: bool = False
    columns: Optional[List[SliceColumn]] = None


class LegalElement(BaseModel):
    type: LegalElementType
    text: str
    yPosition: float


class LegalSection(BaseModel):
    """Fine-print region at the bottom of the footer."""

    model_config = ConfigDict(extra="ignore")

    yStart: float
    yStartPercent: float = 0
    backgroundColor: str = "#ffffff"
    textColor: str = "#000000"
    detectedElements: List[LegalElement] = Field(default_factory=list)
    rawText: str = ""


class FooterJob(BaseModel):
    """Persisted footer processing job (snake_case mirrors the stored record)."""

    model_config = ConfigDict(extra="ignore")

    id: str
    user_id: str
    brand_id: str
    source: JobSource
    source_url: Optional[str] = None
    image_url: str
    cloudinary_public_id: Optional[str] = None
    image_width: Optional[int] = None
    image_height: Optional[int] = None
    slices: Optional[List[FooterSlice]] = None
    legal_section: Optional[LegalSection] = None
    legal_cutoff_y: Optional[float] = None
    status: JobStatus = "processing"
    processing_step: Optional[str] = None
    processing_percent: int = Field(default=0, ge=0, le=100)
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    processing_completed_at: Optional[datetime] = None


class CreateJobParams(BaseModel):
    """Parameters for creating a footer processing job."""

    brandId: str
    source: JobSource
    sourceUrl: Optional[str] = None
    imageUrl: str
    cloudinaryPublicId: Optional[str] = None
    imageWidth: int = Field(gt=0)
    imageHeight: int = Field(gt=0)


# --- API payloads ---


class JobCreatedResponse(BaseModel):
    jobId: str
    status: JobStatus


class DiffRequest(BaseModel):
    reference: VisualDescription
    candidate: VisualDescription


class DiffResponse(BaseModel):
    differences: List[str]
    prompt: str


class RefineRequest(BaseModel):
    """Refine an HTML candidate against a reference image."""

    referenceImageUrl: str
    html: str
    maxAttempts: Optional[int] = Field(default=None, ge=1)
    minImprovement: Optional[int] = Field(default=None, ge=0)
