"""
API routes for the approximate segment cache.

The cache instance lives on ``app.state`` and is injected into each
route through :func:`get_segment_cache`, so separate applications (and
separate tests) never share records.

Endpoints:

- ``POST /segments`` – store an opaque result for a mask.
- ``POST /segments/match`` – best cached match for a mask, if any.
- ``POST /segments/hover`` – full hover pipeline with caching.
- ``GET /segments/stats`` – cache diagnostics.
- ``DELETE /segments`` – drop every record.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request

from .models import (
    HoverRequest,
    HoverResponse,
    Point2D,
    SegmentMatch,
    SegmentMatchRequest,
    SegmentMatchResponse,
    SegmentStoreRequest,
    SegmentStoreResponse,
)
from .routes_masks import http_error
from ..services.geometry import ModelScale, canvas_scale_for
from ..services.image_codec import base64_to_image, image_to_base64_png
from ..services.masks import as_mask_buffer
from ..services.pipeline import SegmentResult, process_hover_mask
from ..services.segment_cache import LSHMaskCache

logger = logging.getLogger(__name__)

router = APIRouter()


def get_segment_cache(request: Request) -> LSHMaskCache:
    """Return the segment cache owned by the running application."""
    cache = getattr(request.app.state, "segment_cache", None)
    if cache is None:
        raise HTTPException(status_code=503, detail="Segment cache is not configured")
    return cache


def _serialize_result(result: Any) -> Any:
    if isinstance(result, SegmentResult):
        return {
            "paths": result.paths,
            "center": {"x": result.center[0], "y": result.center[1]},
            "description": result.description,
            "sticker": image_to_base64_png(result.sticker) if result.sticker is not None else None,
        }
    return result


@router.post("/segments", response_model=SegmentStoreResponse, status_code=201)
async def store_segment(
    body: SegmentStoreRequest,
    cache: LSHMaskCache = Depends(get_segment_cache),
) -> SegmentStoreResponse:
    """Store an opaque result for a mask and return the record id."""
    mask = body.mask
    try:
        buf = as_mask_buffer(mask.data, mask.width, mask.height)
        record_id = cache.store(buf, body.result, dims=(mask.width, mask.height))
    except ValueError as exc:
        raise http_error(exc)
    return SegmentStoreResponse(id=record_id)


@router.post("/segments/match", response_model=SegmentMatchResponse)
async def match_segment(
    body: SegmentMatchRequest,
    cache: LSHMaskCache = Depends(get_segment_cache),
) -> SegmentMatchResponse:
    """Return the best cached match for a mask, or ``match: null`` on a miss."""
    mask = body.mask
    try:
        buf = as_mask_buffer(mask.data, mask.width, mask.height)
        best = cache.find_best_match(buf, body.similarityThreshold)
    except ValueError as exc:
        logger.warning("segment lookup failed: %s", exc)
        raise http_error(exc)
    if best is None:
        return SegmentMatchResponse(match=None, lookupMs=cache.last_lookup_ms)
    return SegmentMatchResponse(
        match=SegmentMatch(
            id=best.record.id,
            iou=best.iou,
            result=_serialize_result(best.record.result),
        ),
        lookupMs=cache.last_lookup_ms,
    )


@router.post("/segments/hover", response_model=HoverResponse)
async def hover_segment(
    body: HoverRequest,
    request: Request,
    cache: LSHMaskCache = Depends(get_segment_cache),
) -> HoverResponse:
    """Run the hover pipeline: cache lookup, then trace, crop and store on a miss."""
    mask = body.mask
    scale = ModelScale(
        width=body.scale.width,
        height=body.scale.height,
        scale=body.scale.scale,
        upload_scale=body.scale.uploadScale,
    )
    try:
        image = base64_to_image(body.image)
        outcome = process_hover_mask(
            cache,
            mask.data,
            mask.width,
            mask.height,
            image,
            scale,
            canvas_scale_for(scale.width, scale.height),
            enrich=getattr(request.app.state, "enrich", None),
            similarity_threshold=body.similarityThreshold,
        )
    except ValueError as exc:
        logger.exception("hover pipeline failed: %s", exc)
        raise http_error(exc)
    result = outcome.result
    return HoverResponse(
        id=outcome.record_id,
        cached=outcome.cached,
        iou=outcome.iou,
        paths=result.paths,
        sticker=image_to_base64_png(result.sticker) if result.sticker is not None else None,
        center=Point2D(x=result.center[0], y=result.center[1]),
        description=result.description,
    )


@router.get("/segments/stats")
async def segment_stats(cache: LSHMaskCache = Depends(get_segment_cache)) -> dict:
    return cache.stats()


@router.delete("/segments", status_code=204)
async def clear_segments(cache: LSHMaskCache = Depends(get_segment_cache)) -> None:
    cache.clear()
