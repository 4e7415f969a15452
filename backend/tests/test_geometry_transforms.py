"""
Tests for mask centroids, coordinate scaling and path parsing in
geometry.py.
"""

from __future__ import annotations

import math
import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from snaplist.services.geometry import (  # noqa: E402
    MAX_CANVAS_AREA,
    ModelScale,
    canvas_dimensions,
    canvas_scale_for,
    canvas_to_model,
    compute_model_scale,
    get_bounding_box,
    get_mask_center,
    mask_to_canvas,
    model_to_onnx,
    parse_path_data,
)
from snaplist.services.masks import DimensionMismatchError  # noqa: E402


def test_center_of_empty_mask_is_image_center() -> None:
    assert get_mask_center(np.zeros(7 * 4), 7, 4) == (3.5, 2.0)


def test_center_of_single_pixel() -> None:
    width, height = 9, 6
    mask = np.zeros(width * height, dtype=np.uint8)
    mask[4 * width + 7] = 255
    assert get_mask_center(mask, width, height) == (7, 4)


def test_center_rounds_half_up() -> None:
    """The 4x4 scenario: mean (2.5, 0.5) rounds to (3, 1)."""
    mask = [0, 0, 1, 1, 0, 0, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0]
    assert get_mask_center(mask, 4, 4) == (3, 1)


def test_center_ignores_non_positive_values() -> None:
    mask = np.array([-1.0, 0.0, 0.0, 0.7])
    assert get_mask_center(mask, 2, 2) == (1, 1)


def test_center_rejects_mismatched_length() -> None:
    with pytest.raises(DimensionMismatchError):
        get_mask_center([0, 1, 0], 2, 2)


def test_compute_model_scale_landscape() -> None:
    scale = compute_model_scale(2000, 1000)
    assert scale.scale == pytest.approx(0.5)
    assert scale.upload_scale == pytest.approx(1024 / 2000)
    assert scale.onnx_scale == pytest.approx(0.5 / (1024 / 2000))
    assert scale.mask_width == 1024
    assert scale.mask_height == 512


def test_compute_model_scale_portrait() -> None:
    scale = compute_model_scale(800, 1600)
    assert scale.scale == pytest.approx(500 / 800)
    assert scale.upload_scale == pytest.approx(1024 / 1600)
    assert scale.mask_height == 1024


def test_canvas_scale_caps_large_images() -> None:
    assert canvas_scale_for(1000, 1000) == 1.0
    s = canvas_scale_for(4000, 3000)
    assert s == pytest.approx(math.sqrt(MAX_CANVAS_AREA / 12_000_000))
    w, h = canvas_dimensions(4000, 3000)
    assert w * h <= MAX_CANVAS_AREA
    assert (w, h) == (math.floor(4000 * s), math.floor(3000 * s))


def test_point_conversions_are_explicit_multiplications() -> None:
    scale = ModelScale(width=2000, height=1000, scale=0.5, upload_scale=0.25)
    assert mask_to_canvas((10.0, 20.0), scale, 0.5) == pytest.approx((20.0, 40.0))
    assert canvas_to_model((10.0, 20.0), scale, 0.5) == pytest.approx((10.0, 20.0))
    assert model_to_onnx((10.0, 20.0), scale) == pytest.approx((5.0, 10.0))


def test_parse_path_data_splits_subpaths_and_scales() -> None:
    subpaths = parse_path_data("M0 0 L0 2 2 2 2 0 M5 5 L5 6 6 6", 2.0, 3.0)
    assert subpaths == [
        [(0.0, 0.0), (0.0, 6.0), (4.0, 6.0), (4.0, 0.0)],
        [(10.0, 15.0), (10.0, 18.0), (12.0, 18.0)],
    ]


def test_bounding_box() -> None:
    bbox = get_bounding_box([(1.0, 5.0), (4.0, 2.0), (3.0, 9.0)])
    assert (bbox.x, bbox.y, bbox.width, bbox.height) == (1.0, 2.0, 3.0, 7.0)
    with pytest.raises(ValueError):
        get_bounding_box([])
