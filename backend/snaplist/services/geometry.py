"""
Geometric helpers for masks, coordinate spaces and stickers.

Three coordinate spaces are involved when a hover mask is turned into a
sticker:

- *model space*: the resolution the original photo was decoded at
  (``ModelScale.width`` x ``ModelScale.height``);
- *upload space*: the resized image sent to the segmentation model.  The
  masks it returns are expressed in this space;
- *canvas space*: the resolution the photo is displayed at.  Large
  photos are scaled down so the canvas never exceeds
  ``MAX_CANVAS_AREA`` pixels.

Conversions between spaces are plain multiplications by the ratios held
in :class:`ModelScale` and the canvas scale.  Every helper below says
which space it expects and which it returns; nothing converts
implicitly.

Functions defined here:

- ``get_mask_center(mask, width, height)`` – centroid of the foreground.
- ``compute_model_scale(width, height)`` – derive the display/upload
  ratios for a freshly uploaded photo.
- ``canvas_scale_for(width, height)`` / ``canvas_dimensions(...)`` –
  canvas down‑scaling for very large photos.
- ``mask_to_canvas``, ``canvas_to_model``, ``model_to_onnx`` – explicit
  point conversions.
- ``parse_path_data``, ``get_bounding_box``, ``even_odd_clip``,
  ``crop_image_by_path`` – clip a photo by traced paths and crop the
  result to its bounds.
- ``resize_to_max_size``, ``mask_to_rgba`` – preview helpers.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import List, Sequence, Tuple, Union

import numpy as np
from PIL import Image

from .masks import MaskBuffer, as_mask_buffer, foreground

logger = logging.getLogger(__name__)

PointF = Tuple[float, float]

# Shorter side of the photo in model space is scaled to this size for display.
IMAGE_SIZE: int = 500
# Longer side of the photo is scaled to this size before upload to the model.
UPLOAD_IMAGE_SIZE: int = 1024
# Upper bound on canvas pixel area; larger photos are scaled down.
MAX_CANVAS_AREA: int = 1677721
# Stickers are downscaled to this size before enrichment.
STICKER_MAX_SIZE: int = 720

DEFAULT_MASK_COLOR: Tuple[int, int, int, int] = (0, 114, 189, 255)

_COMMAND_RE = re.compile(r"([A-Za-z])([^A-Za-z]*)")
_ARG_SPLIT_RE = re.compile(r"[\s,]+")


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up (``2.5 -> 3``)."""
    return int(math.floor(value + 0.5))


def get_mask_center(mask: MaskBuffer, width: int, height: int) -> PointF:
    """Return the unweighted centroid of the foreground pixels.

    The mask is indexed row‑major.  Mean coordinates are rounded half‑up
    to whole pixels.  A mask without foreground returns the image
    centre ``(width / 2, height / 2)``.

    Args:
        mask: Mask buffer in upload space.
        width: Mask width in pixels.
        height: Mask height in pixels.

    Returns:
        ``(x, y)`` in the same space as the mask.
    """
    buf = as_mask_buffer(mask, width, height)
    ys, xs = np.nonzero(foreground(buf).reshape(height, width))
    if xs.size == 0:
        return (width / 2, height / 2)
    return (round_half_up(float(xs.mean())), round_half_up(float(ys.mean())))


@dataclass(frozen=True)
class ModelScale:
    """Ratios relating the model, upload and display spaces of one photo.

    Attributes:
        width: Photo width in model space.
        height: Photo height in model space.
        scale: Display ratio (model space -> display size).
        upload_scale: Upload ratio (model space -> upload space).
    """

    width: int
    height: int
    scale: float
    upload_scale: float

    @property
    def onnx_scale(self) -> float:
        return self.scale / self.upload_scale

    @property
    def mask_width(self) -> int:
        return round_half_up(self.width * self.upload_scale)

    @property
    def mask_height(self) -> int:
        return round_half_up(self.height * self.upload_scale)


def compute_model_scale(
    width: int,
    height: int,
    image_size: int = IMAGE_SIZE,
    upload_size: int = UPLOAD_IMAGE_SIZE,
) -> ModelScale:
    """Derive the :class:`ModelScale` for a photo of ``width`` x ``height``.

    The shorter side is scaled to ``image_size`` for display and the
    longer side to ``upload_size`` for the segmentation model.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Image dimensions must be positive, got {width}x{height}")
    if height < width:
        scale = image_size / height
        upload_scale = upload_size / width
    else:
        scale = image_size / width
        upload_scale = upload_size / height
    return ModelScale(width=width, height=height, scale=scale, upload_scale=upload_scale)


def canvas_scale_for(width: int, height: int, max_area: int = MAX_CANVAS_AREA) -> float:
    """Return ``min(1, sqrt(max_area / area))`` for a ``width`` x ``height`` canvas."""
    area = width * height
    if area <= max_area:
        return 1.0
    return math.sqrt(max_area / area)


def canvas_dimensions(width: int, height: int, max_area: int = MAX_CANVAS_AREA) -> Tuple[int, int]:
    """Return the (floored) canvas width and height for a photo."""
    s = canvas_scale_for(width, height, max_area)
    return int(math.floor(width * s)), int(math.floor(height * s))


def mask_to_canvas(point: PointF, scale: ModelScale, canvas_scale: float) -> PointF:
    """Convert a point from upload (mask) space to canvas space."""
    x, y = point
    return (x / scale.upload_scale * canvas_scale, y / scale.upload_scale * canvas_scale)


def canvas_to_model(point: PointF, scale: ModelScale, canvas_scale: float) -> PointF:
    """Convert a pointer position on the canvas to model display coordinates."""
    x, y = point
    return (x * scale.scale / canvas_scale, y * scale.scale / canvas_scale)


def model_to_onnx(point: PointF, scale: ModelScale) -> PointF:
    """Convert a model display coordinate to the model's prompt coordinates."""
    x, y = point
    return (x / scale.onnx_scale, y / scale.onnx_scale)


def parse_path_data(path_data: str, scale_x: float = 1.0, scale_y: float = 1.0) -> List[List[PointF]]:
    """Parse ``M``/``L`` path data into scaled subpaths.

    Every ``M`` command opens a new subpath.  Other commands are ignored
    since the tracer only emits moves and lines.
    """
    subpaths: List[List[PointF]] = []
    for cmd, raw_args in _COMMAND_RE.findall(path_data):
        args = [float(a) for a in _ARG_SPLIT_RE.split(raw_args.strip()) if a]
        if cmd == "M":
            if len(args) < 2:
                continue
            subpaths.append([(args[0] * scale_x, args[1] * scale_y)])
            # Extra pairs after a move are implicit line‑tos.
            args = args[2:]
        elif cmd != "L" or not subpaths:
            continue
        for i in range(0, len(args) - 1, 2):
            subpaths[-1].append((args[i] * scale_x, args[i + 1] * scale_y))
    return subpaths


@dataclass(frozen=True)
class BoundingBox:
    """Axis‑aligned bounding box in pixel space."""

    x: float
    y: float
    width: float
    height: float


def get_bounding_box(points: Sequence[PointF]) -> BoundingBox:
    """Return the bounding box of ``points``.

    Raises:
        ValueError: If ``points`` is empty.
    """
    if not points:
        raise ValueError("Cannot compute the bounding box of an empty point set")
    arr = np.asarray(points, dtype=float)
    min_x, min_y = arr.min(axis=0)
    max_x, max_y = arr.max(axis=0)
    return BoundingBox(
        x=float(min_x),
        y=float(min_y),
        width=float(max_x - min_x),
        height=float(max_y - min_y),
    )


def even_odd_clip(subpaths: Sequence[Sequence[PointF]], width: int, height: int) -> np.ndarray:
    """Return a ``(height, width)`` mask of pixels inside ``subpaths``.

    A pixel is inside when a ray cast from its centre ``(x + 0.5, y + 0.5)``
    crosses the subpath edges an odd number of times.  Pixels are never
    filled just because an edge touches them, so a clip built from
    traced lattice paths reproduces the traced mask exactly, holes and
    diagonal contacts included.
    """
    inside = np.zeros((height, width), dtype=bool)
    centres_x = np.arange(width, dtype=float) + 0.5
    for sp in subpaths:
        m = len(sp)
        if m < 3:
            continue
        for i in range(m):
            x0, y0 = sp[i]
            x1, y1 = sp[(i + 1) % m]
            if y0 == y1:
                continue
            # Rows whose centre satisfies min(y0, y1) <= yc < max(y0, y1).
            lo = max(0, math.ceil(min(y0, y1) - 0.5))
            hi = min(height, math.ceil(max(y0, y1) - 0.5))
            if lo >= hi:
                continue
            centres_y = np.arange(lo, hi, dtype=float) + 0.5
            x_int = x0 + (centres_y - y0) * (x1 - x0) / (y1 - y0)
            inside[lo:hi] ^= centres_x[None, :] < x_int[:, None]
    return inside


def crop_image_by_path(
    image: Image.Image,
    paths: Union[str, Sequence[str]],
    width: int,
    height: int,
    upload_scale: float,
) -> Image.Image:
    """Clip ``image`` by the traced ``paths`` and crop to their bounds.

    Args:
        image: Source photo.  It is resized to ``width`` x ``height``
            when its size differs.
        paths: Path string(s) in upload space, as returned by
            :func:`~snaplist.services.contour_tracer.trace_mask_to_svg`.
        width: Photo width in model space.
        height: Photo height in model space.
        upload_scale: Ratio from model space to upload space.

    Returns:
        An RGBA image the size of the paths' bounding box, transparent
        outside the clip region.  Subpaths are combined with the
        even‑odd rule, so holes stay transparent.

    Raises:
        ValueError: If the paths contain no points.
    """
    path_data = paths if isinstance(paths, str) else " ".join(paths)
    scale_x = width / (width * upload_scale)
    scale_y = height / (height * upload_scale)
    subpaths = parse_path_data(path_data, scale_x, scale_y)
    points = [p for sp in subpaths for p in sp]
    bbox = get_bounding_box(points)

    source = image.convert("RGBA")
    if source.size != (width, height):
        source = source.resize((width, height))

    clip = even_odd_clip(subpaths, width, height)
    alpha = np.asarray(source.getchannel("A"))
    source.putalpha(Image.fromarray(np.where(clip, alpha, 0).astype(np.uint8)))

    box = (
        int(math.floor(bbox.x)),
        int(math.floor(bbox.y)),
        int(math.ceil(bbox.x + bbox.width)),
        int(math.ceil(bbox.y + bbox.height)),
    )
    logger.debug("Cropping sticker to %s from %dx%d", box, width, height)
    return source.crop(box)


def resize_to_max_size(image: Image.Image, max_size: int = STICKER_MAX_SIZE) -> Image.Image:
    """Downscale ``image`` so neither side exceeds ``max_size``.

    Images already within bounds are returned as‑is.
    """
    w, h = image.size
    if w <= max_size and h <= max_size:
        return image
    factor = min(max_size / w, max_size / h)
    return image.resize((max(1, round_half_up(w * factor)), max(1, round_half_up(h * factor))))


def mask_to_rgba(
    mask: MaskBuffer,
    width: int,
    height: int,
    color: Tuple[int, int, int, int] = DEFAULT_MASK_COLOR,
) -> Image.Image:
    """Render the foreground of ``mask`` as a coloured RGBA overlay."""
    buf = as_mask_buffer(mask, width, height)
    fg = foreground(buf).reshape(height, width)
    rgba = np.zeros((height, width, 4), dtype=np.uint8)
    rgba[fg] = color
    return Image.fromarray(rgba)
