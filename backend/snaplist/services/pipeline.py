"""
Hover pipeline: from a raw model mask to a cached sticker.

The pipeline looks the mask up in the segment cache first.  On a miss
it traces the mask, clips the photo by the traced paths, locates the
mask centroid on the canvas, runs the optional enrichment hook (for
example a vision model describing the sticker) and stores the outcome
so that near‑identical hovers reuse it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from PIL import Image

from .contour_tracer import DEFAULT_MAX_REGION_SIZE, trace_mask_to_svg
from .geometry import (
    ModelScale,
    crop_image_by_path,
    get_mask_center,
    mask_to_canvas,
    resize_to_max_size,
)
from .masks import MaskBuffer, as_mask_buffer
from .segment_cache import DEFAULT_SIMILARITY_THRESHOLD, LSHMaskCache, SegmentRecord

logger = logging.getLogger(__name__)


@dataclass
class SegmentResult:
    """Everything derived from one hover mask.

    Attributes:
        paths: Traced SVG path strings in upload space.
        sticker: Photo cutout, transparent outside the paths.
        center: Mask centroid in canvas space.
        description: Output of the enrichment hook, if one ran.
    """

    paths: List[str]
    sticker: Optional[Image.Image]
    center: Tuple[float, float]
    description: Optional[str] = None


@dataclass
class HoverResult:
    record_id: Optional[str]
    result: SegmentResult
    cached: bool
    iou: float = 1.0


def build_segment(
    mask: MaskBuffer,
    width: int,
    height: int,
    image: Image.Image,
    scale: ModelScale,
    canvas_scale: float,
    max_region_size: int = DEFAULT_MAX_REGION_SIZE,
) -> SegmentResult:
    """Trace, crop and locate a mask without consulting any cache."""
    paths = trace_mask_to_svg(mask, width, height, max_region_size)
    sticker: Optional[Image.Image] = None
    if paths:
        sticker = crop_image_by_path(image, paths, scale.width, scale.height, scale.upload_scale)
    center = mask_to_canvas(get_mask_center(mask, width, height), scale, canvas_scale)
    return SegmentResult(paths=paths, sticker=sticker, center=center)


def _is_segment_record(record: SegmentRecord) -> bool:
    return isinstance(record.result, SegmentResult)


def process_hover_mask(
    cache: LSHMaskCache[SegmentResult],
    mask: MaskBuffer,
    width: int,
    height: int,
    image: Image.Image,
    scale: ModelScale,
    canvas_scale: float,
    enrich: Optional[Callable[[Image.Image], str]] = None,
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> HoverResult:
    """Return the segment for ``mask``, reusing a cached one when similar.

    Records whose result is not a :class:`SegmentResult` (stored by other
    callers of the same cache) never match.  A mask without foreground
    is traced but not stored, since its IoU with any mask is zero and it
    could never be reused; its ``record_id`` is ``None``.

    Args:
        cache: Segment cache shared by the caller.
        mask: Mask in upload space, ``width * height`` values.
        width: Mask width.
        height: Mask height.
        image: The photo in model space.
        scale: Ratios of the photo's coordinate spaces.
        canvas_scale: Display down‑scaling factor of the canvas.
        enrich: Optional hook called with the (size limited) sticker on
            a cache miss; its return value becomes the description.
        similarity_threshold: Minimum IoU for a cached record to be reused.

    Raises:
        DimensionMismatchError: If ``mask`` does not hold ``width * height`` values.
    """
    buf = as_mask_buffer(mask, width, height)
    match = cache.find_best_match(buf, similarity_threshold, accept=_is_segment_record)
    if match is not None:
        logger.info("Reusing segment %s (IoU=%.3f)", match.record.id, match.iou)
        return HoverResult(record_id=match.record.id, result=match.record.result, cached=True, iou=match.iou)

    result = build_segment(buf, width, height, image, scale, canvas_scale)
    if enrich is not None and result.sticker is not None:
        result.description = enrich(resize_to_max_size(result.sticker))
    if not result.paths:
        logger.info("Hover mask has no foreground, not caching it")
        return HoverResult(record_id=None, result=result, cached=False)
    record_id = cache.store(buf, result, dims=(width, height))
    logger.info("Computed segment %s with %d regions", record_id, len(result.paths))
    return HoverResult(record_id=record_id, result=result, cached=False)
