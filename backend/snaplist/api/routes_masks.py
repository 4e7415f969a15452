"""
API routes for mask tracing and geometry.

These endpoints expose the contour tracer and the geometric helpers so
that the editor can turn a model mask into clip paths, a centroid and a
sticker without caching.  Contract violations such as a mask whose
length disagrees with its dimensions are reported as HTTP 422; other
invalid inputs (for example an undecodable photo) as HTTP 400.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException

from .models import (
    BoundingBoxModel,
    CentroidRequest,
    CentroidResponse,
    CropRequest,
    CropResponse,
    Point2D,
    ScaleRequest,
    ScaleResponse,
    TraceRequest,
    TraceResponse,
)
from ..services.contour_tracer import area_of_svg_polygon, trace_mask_to_svg
from ..services.geometry import (
    MAX_CANVAS_AREA,
    ModelScale,
    canvas_dimensions,
    canvas_scale_for,
    compute_model_scale,
    crop_image_by_path,
    get_bounding_box,
    get_mask_center,
    mask_to_canvas,
    parse_path_data,
)
from ..services.image_codec import base64_to_image, image_to_base64_png
from ..services.masks import DimensionMismatchError

logger = logging.getLogger(__name__)

router = APIRouter()


def http_error(exc: Exception) -> HTTPException:
    """Map a service exception onto an HTTP error."""
    if isinstance(exc, DimensionMismatchError):
        return HTTPException(status_code=422, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


@router.post("/masks/trace", response_model=TraceResponse)
async def trace_mask(body: TraceRequest) -> TraceResponse:
    """Trace a mask into SVG paths, dropping regions below ``maxRegionSize``."""
    mask = body.mask
    try:
        paths = trace_mask_to_svg(mask.data, mask.width, mask.height, body.maxRegionSize)
    except ValueError as exc:
        logger.warning("trace failed for %dx%d mask: %s", mask.width, mask.height, exc)
        raise http_error(exc)
    return TraceResponse(
        paths=paths,
        areas=[area_of_svg_polygon(p) for p in paths],
        regionCount=len(paths),
    )


@router.post("/masks/centroid", response_model=CentroidResponse)
async def mask_centroid(body: CentroidRequest) -> CentroidResponse:
    """Return the mask centroid, optionally converted to canvas space."""
    mask = body.mask
    try:
        x, y = get_mask_center(mask.data, mask.width, mask.height)
    except ValueError as exc:
        raise http_error(exc)
    canvas = None
    if body.scale is not None:
        scale = ModelScale(
            width=body.scale.width,
            height=body.scale.height,
            scale=body.scale.scale,
            upload_scale=body.scale.uploadScale,
        )
        cx, cy = mask_to_canvas((x, y), scale, canvas_scale_for(scale.width, scale.height))
        canvas = Point2D(x=cx, y=cy)
    return CentroidResponse(mask=Point2D(x=x, y=y), canvas=canvas)


@router.post("/masks/crop", response_model=CropResponse)
async def crop_mask(body: CropRequest) -> CropResponse:
    """Cut the photo along the given paths and return the sticker as PNG."""
    try:
        image = base64_to_image(body.image)
        sticker = crop_image_by_path(image, body.paths, body.width, body.height, body.uploadScale)
        factor = 1.0 / body.uploadScale
        points = [p for sp in parse_path_data(" ".join(body.paths), factor, factor) for p in sp]
        bbox = get_bounding_box(points)
    except ValueError as exc:
        logger.exception("crop failed: %s", exc)
        raise http_error(exc)
    return CropResponse(
        sticker=image_to_base64_png(sticker),
        bbox=BoundingBoxModel(x=bbox.x, y=bbox.y, width=bbox.width, height=bbox.height),
    )


@router.post("/scale", response_model=ScaleResponse)
async def derive_scale(body: ScaleRequest) -> ScaleResponse:
    """Derive display, upload and canvas ratios for a photo."""
    max_area = body.maxCanvasArea or MAX_CANVAS_AREA
    scale = compute_model_scale(body.width, body.height)
    canvas_width, canvas_height = canvas_dimensions(scale.width, scale.height, max_area)
    return ScaleResponse(
        width=scale.width,
        height=scale.height,
        scale=scale.scale,
        uploadScale=scale.upload_scale,
        onnxScale=scale.onnx_scale,
        maskWidth=scale.mask_width,
        maskHeight=scale.mask_height,
        canvasScale=canvas_scale_for(scale.width, scale.height, max_area),
        canvasWidth=canvas_width,
        canvasHeight=canvas_height,
    )
