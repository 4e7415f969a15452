"""
Pydantic data models for the mask vectorisation API.

Masks travel as flat row‑major lists of per‑pixel scores together with
their width and height.  Photos and stickers travel as base64 strings
(raw or ``data:`` URIs).
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class MaskPayload(BaseModel):
    """A mask returned by the segmentation model."""

    data: List[float] = Field(..., description="Row-major per-pixel scores; values > 0 are foreground")
    width: int = Field(..., gt=0, description="Mask width in pixels")
    height: int = Field(..., gt=0, description="Mask height in pixels")


class ScaleInfo(BaseModel):
    """Coordinate space ratios of an uploaded photo."""

    width: int = Field(..., gt=0, description="Photo width in model space")
    height: int = Field(..., gt=0, description="Photo height in model space")
    scale: float = Field(..., gt=0, description="Display ratio")
    uploadScale: float = Field(..., gt=0, description="Upload ratio (model space to mask space)")


class ScaleRequest(BaseModel):
    """Request body for deriving the scale of a photo."""

    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    maxCanvasArea: Optional[int] = Field(
        default=None, gt=0, description="Override for the canvas pixel area cap"
    )


class ScaleResponse(ScaleInfo):
    """Derived ratios and canvas dimensions for a photo."""

    onnxScale: float
    maskWidth: int
    maskHeight: int
    canvasScale: float
    canvasWidth: int
    canvasHeight: int


class TraceRequest(BaseModel):
    mask: MaskPayload
    maxRegionSize: int = Field(default=100, ge=0, description="Regions at or below this area are dropped")


class TraceResponse(BaseModel):
    paths: List[str] = Field(..., description="SVG path strings, one per region")
    areas: List[int] = Field(..., description="Signed area of each path")
    regionCount: int


class Point2D(BaseModel):
    x: float
    y: float


class CentroidRequest(BaseModel):
    mask: MaskPayload
    scale: Optional[ScaleInfo] = Field(
        default=None, description="When given, the centroid is also returned in canvas space"
    )


class CentroidResponse(BaseModel):
    mask: Point2D = Field(..., description="Centroid in mask (upload) space")
    canvas: Optional[Point2D] = Field(default=None, description="Centroid in canvas space")


class BoundingBoxModel(BaseModel):
    x: float
    y: float
    width: float
    height: float


class CropRequest(BaseModel):
    image: str = Field(..., description="Photo as base64 or data URI")
    paths: List[str] = Field(..., min_length=1, description="Path strings in mask space")
    width: int = Field(..., gt=0, description="Photo width in model space")
    height: int = Field(..., gt=0, description="Photo height in model space")
    uploadScale: float = Field(..., gt=0)


class CropResponse(BaseModel):
    sticker: str = Field(..., description="PNG data URI of the cutout")
    bbox: BoundingBoxModel


class SegmentStoreRequest(BaseModel):
    mask: MaskPayload
    result: Dict[str, Any] = Field(..., description="Opaque payload to reuse for similar masks")


class SegmentStoreResponse(BaseModel):
    id: str


class SegmentMatchRequest(BaseModel):
    mask: MaskPayload
    similarityThreshold: float = Field(default=0.9, ge=0.0, le=1.0)


class SegmentMatch(BaseModel):
    id: str
    iou: float
    result: Any = None


class SegmentMatchResponse(BaseModel):
    match: Optional[SegmentMatch] = None
    lookupMs: Optional[float] = None


class HoverRequest(BaseModel):
    """Request body for the hover pipeline."""

    mask: MaskPayload
    image: str = Field(..., description="Photo in model space as base64 or data URI")
    scale: ScaleInfo
    similarityThreshold: float = Field(default=0.9, ge=0.0, le=1.0)


class HoverResponse(BaseModel):
    id: Optional[str] = Field(None, description="Cache record id; null when the mask had no foreground")
    cached: bool
    iou: float
    paths: List[str]
    sticker: Optional[str] = None
    center: Point2D
    description: Optional[str] = None
