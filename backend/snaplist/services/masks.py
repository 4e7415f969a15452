"""
Mask buffer helpers shared by the tracer, the geometry helpers and the
segment cache.

A mask is a flat numeric buffer of ``width * height`` per‑pixel scores
as produced by the segmentation model.  A pixel is *foreground* when its
value is strictly greater than zero; :func:`foreground` is the only
place that predicate is spelled out.  Geometric operations index the
buffer in row‑major order (``index = y * width + x``).

The helpers in this module normalise whatever the inference layer hands
us (lists, bytes, float tensors) into a one‑dimensional ``numpy`` array
and validate its length against the declared dimensions.  A mismatch is
a contract violation and raises :class:`DimensionMismatchError`.
"""

from __future__ import annotations

from typing import Any, Optional

import numpy as np


class DimensionMismatchError(ValueError):
    """Raised when mask lengths disagree with each other or with their dimensions."""


# Alias used in annotations.  Masks are always one‑dimensional.
MaskBuffer = np.ndarray


def as_mask_buffer(
    data: Any,
    width: Optional[int] = None,
    height: Optional[int] = None,
) -> MaskBuffer:
    """Convert ``data`` into a flat mask buffer.

    Args:
        data: Any array‑like of numeric scores.  Nested sequences and
            2‑D arrays are flattened in row‑major order.
        width: Optional mask width in pixels.
        height: Optional mask height in pixels.

    Returns:
        A one‑dimensional ``numpy`` array.  No copy is made when ``data``
        is already a flat array.

    Raises:
        DimensionMismatchError: If dimensions are given and do not match
            the number of values, or if they are not positive.
    """
    if isinstance(data, (bytes, bytearray, memoryview)):
        arr = np.frombuffer(data, dtype=np.uint8)
    else:
        arr = np.asarray(data)
    if arr.ndim != 1:
        arr = arr.reshape(-1)
    if width is not None or height is not None:
        check_dimensions(arr, width, height)
    return arr


def check_dimensions(mask: MaskBuffer, width: Optional[int], height: Optional[int]) -> None:
    """Validate that ``mask`` holds exactly ``width * height`` values."""
    if width is None or height is None:
        raise DimensionMismatchError("Both width and height are required")
    if width <= 0 or height <= 0:
        raise DimensionMismatchError(
            f"Mask dimensions must be positive, got {width}x{height}"
        )
    expected = int(width) * int(height)
    if len(mask) != expected:
        raise DimensionMismatchError(
            f"Mask has {len(mask)} values but {width}x{height} requires {expected}"
        )


def foreground(mask: MaskBuffer) -> np.ndarray:
    """Return a boolean array that is ``True`` where ``mask > 0``."""
    return np.asarray(mask) > 0


def calculate_iou(mask1: MaskBuffer, mask2: MaskBuffer) -> float:
    """Intersection over union of the foreground pixels of two masks.

    Both masks are binarised with :func:`foreground` before comparison.
    Two masks without any foreground pixel have an empty union; the IoU
    is reported as ``0.0`` in that case.

    Raises:
        DimensionMismatchError: If the masks have different lengths.
    """
    a = foreground(as_mask_buffer(mask1))
    b = foreground(as_mask_buffer(mask2))
    if a.shape != b.shape:
        raise DimensionMismatchError(
            f"Masks must have the same dimensions ({a.size} != {b.size})"
        )
    union = int(np.count_nonzero(a | b))
    if union == 0:
        return 0.0
    intersection = int(np.count_nonzero(a & b))
    return intersection / union
