"""Tests for sticker cropping and preview rendering with Pillow."""

from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

sys.path.append(str(Path(__file__).resolve().parents[1]))

from snaplist.services.contour_tracer import trace_mask_to_svg  # noqa: E402
from snaplist.services.geometry import (  # noqa: E402
    crop_image_by_path,
    even_odd_clip,
    mask_to_rgba,
    resize_to_max_size,
)


def _photo(width: int, height: int) -> Image.Image:
    rgb = np.zeros((height, width, 3), dtype=np.uint8)
    rgb[..., 0] = 200
    rgb[..., 1] = np.arange(width, dtype=np.uint8)[None, :]
    return Image.fromarray(rgb)


def test_crop_is_sized_to_path_bounds() -> None:
    """A rectangle path yields a cutout exactly the size of its bounding box."""
    photo = _photo(60, 40)
    sticker = crop_image_by_path(photo, ["M10 5 L10 25 40 25 40 5"], 60, 40, 1.0)
    assert sticker.mode == "RGBA"
    assert sticker.size == (30, 20)
    alpha = np.asarray(sticker.getchannel("A"))
    assert alpha[10, 15] == 255


def test_crop_rescales_from_upload_space() -> None:
    """Path coordinates are divided by the upload scale before clipping."""
    photo = _photo(80, 80)
    sticker = crop_image_by_path(photo, "M5 5 L5 15 15 15 15 5", 80, 80, 0.5)
    assert sticker.size == (20, 20)


def test_crop_is_transparent_outside_polygon() -> None:
    photo = _photo(50, 50)
    triangle = "M0 0 L0 40 40 40"
    sticker = crop_image_by_path(photo, triangle, 50, 50, 1.0)
    alpha = np.asarray(sticker.getchannel("A"))
    assert alpha[35, 5] == 255
    assert alpha[2, 35] == 0


def test_crop_keeps_holes_transparent() -> None:
    mask = np.ones((40, 40), dtype=np.uint8)
    mask[12:28, 12:28] = 0
    paths = trace_mask_to_svg(mask.reshape(-1), 40, 40)
    assert len(paths) == 2
    sticker = crop_image_by_path(_photo(40, 40), paths, 40, 40, 1.0)
    alpha = np.asarray(sticker.getchannel("A"))
    assert alpha[20, 20] == 0
    assert alpha[5, 5] == 255


def test_crop_resizes_source_to_model_size() -> None:
    photo = _photo(30, 20)
    sticker = crop_image_by_path(photo, "M0 0 L0 40 60 40 60 0", 60, 40, 1.0)
    assert sticker.size == (60, 40)


def test_crop_without_points_raises() -> None:
    with pytest.raises(ValueError):
        crop_image_by_path(_photo(10, 10), [], 10, 10, 1.0)


def test_resize_to_max_size() -> None:
    img = Image.new("RGBA", (1440, 360))
    assert resize_to_max_size(img).size == (720, 180)
    small = Image.new("RGBA", (100, 50))
    assert resize_to_max_size(small) is small


def test_mask_to_rgba_paints_foreground() -> None:
    overlay = mask_to_rgba([0, 1, 0, 0, 0, 0], 3, 2)
    assert overlay.size == (3, 2)
    assert overlay.getpixel((1, 0)) == (0, 114, 189, 255)
    assert overlay.getpixel((0, 1)) == (0, 0, 0, 0)


def _traced_alpha(grid: np.ndarray) -> np.ndarray:
    height, width = grid.shape
    paths = trace_mask_to_svg(grid.reshape(-1), width, height)
    sticker = crop_image_by_path(_photo(width, height), paths, width, height, 1.0)
    return np.asarray(sticker.getchannel("A")) > 0


def test_clip_matches_mask_for_notched_ring() -> None:
    """Inner right and bottom edges neither leak nor lose pixels."""
    grid = np.zeros((30, 30), dtype=np.uint8)
    grid[5:25, 5:25] = 1
    grid[10:20, 10:20] = 0
    grid[12:17, 20:25] = 0  # notch through the right wall into the hole
    grid[22:25, 12:15] = 0  # notch into the bottom wall
    assert np.array_equal(_traced_alpha(grid), grid[5:25, 5:25] > 0)


def test_clip_matches_mask_for_diagonal_blocks() -> None:
    grid = np.zeros((30, 30), dtype=np.uint8)
    grid[:15, :15] = 1
    grid[15:, 15:] = 1
    assert np.array_equal(_traced_alpha(grid), grid > 0)


def test_even_odd_clip_uses_pixel_centres() -> None:
    clip = even_odd_clip([[(1, 1), (1, 3), (4, 3), (4, 1)]], 6, 5)
    expected = np.zeros((5, 6), dtype=bool)
    expected[1:3, 1:4] = True
    assert np.array_equal(clip, expected)
