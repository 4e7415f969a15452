"""Tests for the cached hover pipeline in pipeline.py."""

from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
from PIL import Image

sys.path.append(str(Path(__file__).resolve().parents[1]))

from snaplist.services.geometry import ModelScale  # noqa: E402
from snaplist.services.pipeline import SegmentResult, process_hover_mask  # noqa: E402
from snaplist.services.segment_cache import LSHMaskCache  # noqa: E402

# Photo in model space is 80x60; the model works at half resolution.
SCALE = ModelScale(width=80, height=60, scale=1.0, upload_scale=0.5)
MASK_W, MASK_H = 40, 30


def _mask() -> np.ndarray:
    grid = np.zeros((MASK_H, MASK_W), dtype=np.float32)
    grid[5:20, 10:30] = 1.0
    return grid.reshape(-1)


def test_miss_then_hit_reuses_result() -> None:
    cache: LSHMaskCache[SegmentResult] = LSHMaskCache()
    photo = Image.new("RGB", (80, 60), (10, 20, 30))
    calls: list[tuple[int, int]] = []

    def describe(sticker: Image.Image) -> str:
        calls.append(sticker.size)
        return "a blue box"

    first = process_hover_mask(cache, _mask(), MASK_W, MASK_H, photo, SCALE, 1.0, enrich=describe)
    assert first.cached is False
    assert first.result.description == "a blue box"
    assert len(first.result.paths) == 1
    # 20x15 mask pixels become 40x30 photo pixels
    assert first.result.sticker.size == (40, 30)
    # Centroid (19.5 -> 20, 12) in mask space, doubled for the canvas
    assert first.result.center == (40.0, 24.0)

    perturbed = _mask().reshape(MASK_H, MASK_W)
    perturbed[5, 10:15] = 0
    second = process_hover_mask(
        cache, perturbed.reshape(-1), MASK_W, MASK_H, photo, SCALE, 1.0, enrich=describe
    )
    assert second.cached is True
    assert second.record_id == first.record_id
    assert second.result is first.result
    assert len(calls) == 1


def test_empty_mask_is_not_cached() -> None:
    cache: LSHMaskCache[SegmentResult] = LSHMaskCache()
    photo = Image.new("RGB", (80, 60))
    outcome = process_hover_mask(
        cache, np.zeros(MASK_W * MASK_H), MASK_W, MASK_H, photo, SCALE, 0.5
    )
    assert outcome.cached is False
    assert outcome.record_id is None
    assert len(cache) == 0
    assert outcome.result.paths == []
    assert outcome.result.sticker is None
    # Image centre (20, 15) in mask space; upload and canvas scales cancel out
    assert outcome.result.center == (20.0, 15.0)


def test_foreign_records_never_match() -> None:
    """Results stored by other cache users are skipped in favour of a fresh segment."""
    cache: LSHMaskCache = LSHMaskCache()
    foreign_id = cache.store(_mask(), {"title": "chair"})
    photo = Image.new("RGB", (80, 60))

    first = process_hover_mask(cache, _mask(), MASK_W, MASK_H, photo, SCALE, 1.0)
    assert first.cached is False
    assert first.record_id != foreign_id
    assert isinstance(first.result, SegmentResult)

    second = process_hover_mask(cache, _mask(), MASK_W, MASK_H, photo, SCALE, 1.0)
    assert second.cached is True
    assert second.record_id == first.record_id
