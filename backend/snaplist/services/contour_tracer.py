"""
Contour tracing for segmentation masks.

This module converts a raster mask into closed vector polygons expressed
as SVG path strings.  Tracing happens in four stages:

1. The mask is run‑length encoded in *column‑major* order (every column
   top to bottom, columns left to right) starting from an implicit
   background run.  See :func:`mask_to_column_rle`.
2. The run lengths are decoded into per‑column foreground spans and fed
   column by column to a :class:`BoundaryTracer`.  The tracer emits
   boundary edges on the pixel‑corner lattice and chains them into
   closed polygons, one per connected component and one per hole.
3. Each polygon is serialised as ``"M<x0> <y0> L<x1> <y1> <x2> <y2> ..."``.
4. Regions whose absolute area does not exceed ``max_region_size`` are
   discarded, except that at least one region is always kept for a
   non‑empty mask.  See :func:`filter_small_svg_regions`.

Coordinates are in mask space with the origin at the top‑left corner
and ``y`` increasing downwards.  Edges are oriented so that the
foreground lies to the left of the direction of travel as seen on
screen.  With :func:`area_under_line` this makes outer contours positive
and holes negative.  Pixels that only touch diagonally belong to
different regions (4‑connectivity).
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .masks import DimensionMismatchError, MaskBuffer, as_mask_buffer, foreground

logger = logging.getLogger(__name__)

Point = Tuple[int, int]
Span = Tuple[int, int]

# Regions enclosing this many square pixels or fewer are treated as noise.
DEFAULT_MAX_REGION_SIZE: int = 100

_NUMBER_RE = re.compile(r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")


def mask_to_column_rle(mask: MaskBuffer, width: int, height: int) -> List[int]:
    """Run‑length encode ``mask`` in column‑major order.

    Runs alternate between background and foreground, starting with
    background.  When the first visited pixel is foreground the first
    run therefore has length zero.

    Args:
        mask: Row‑major mask buffer of ``width * height`` values.
        width: Mask width in pixels.
        height: Mask height in pixels.

    Returns:
        A list of run lengths summing to ``width * height``.
    """
    width, height = int(width), int(height)
    buf = as_mask_buffer(mask, width, height)
    # Transposing the (height, width) raster gives the column‑major order.
    flat = foreground(buf).reshape(height, width).T.reshape(-1)
    changes = np.flatnonzero(flat[1:] != flat[:-1]) + 1
    bounds = np.concatenate(([0], changes, [flat.size]))
    runs = np.diff(bounds).tolist()
    if flat[0]:
        runs.insert(0, 0)
    return [int(r) for r in runs]


def rle_to_column_spans(rle: Sequence[int], width: int, height: int) -> List[List[Span]]:
    """Decode a column‑major RLE into foreground spans per column.

    Each span is a half‑open interval ``(y0, y1)`` of foreground rows.
    Foreground runs that wrap from the bottom of one column into the top
    of the next are split at the column boundary.

    Raises:
        DimensionMismatchError: If the runs do not cover exactly
            ``width * height`` pixels.
    """
    width, height = int(width), int(height)
    rle = [int(r) for r in rle]
    total = sum(rle)
    if total != width * height:
        raise DimensionMismatchError(
            f"RLE covers {total} pixels but {width}x{height} requires {width * height}"
        )
    spans: List[List[Span]] = [[] for _ in range(width)]
    pos = 0
    for idx, run in enumerate(rle):
        start, end = pos, pos + run
        pos = end
        if idx % 2 == 0:
            continue
        while start < end:
            col = start // height
            seg_end = min(end, (col + 1) * height)
            spans[col].append((start - col * height, seg_end - col * height))
            start = seg_end
    return spans


def _subtract_spans(spans: Sequence[Span], other: Sequence[Span]) -> List[Span]:
    """Return the parts of ``spans`` not covered by ``other``."""
    result: List[Span] = []
    for a, b in spans:
        cur = a
        for c, d in other:
            if d <= cur:
                continue
            if c >= b:
                break
            if c > cur:
                result.append((cur, c))
            cur = max(cur, d)
            if cur >= b:
                break
        if cur < b:
            result.append((cur, b))
    return result


class BoundaryTracer:
    """Row‑scan boundary follower over column spans.

    The tracer is an explicit state machine.  Its state is the table of
    open (not yet chained) boundary edges, keyed by start vertex, and
    the pen position and heading while a polygon is being closed.

    Usage::

        tracer = BoundaryTracer(width, height)
        for x, column in enumerate(spans):
            tracer.feed_column(x, column, left, right)
        polygons = tracer.close_polygons()
    """

    def __init__(self, width: int, height: int) -> None:
        self.width = width
        self.height = height
        self.open_edges: Dict[Point, List[Point]] = {}
        self.pen: Optional[Point] = None
        self.heading: Optional[Tuple[int, int]] = None

    def add_edge(self, start: Point, end: Point) -> None:
        self.open_edges.setdefault(start, []).append(end)

    def feed_column(
        self,
        x: int,
        spans: Sequence[Span],
        left: Sequence[Span],
        right: Sequence[Span],
    ) -> None:
        """Emit the boundary edges contributed by column ``x``.

        Args:
            x: Column index.
            spans: Foreground spans of column ``x``.
            left: Foreground spans of column ``x - 1`` (empty at the border).
            right: Foreground spans of column ``x + 1`` (empty at the border).
        """
        for y0, y1 in spans:
            # Top edge runs right to left, bottom edge left to right.
            self.add_edge((x + 1, y0), (x, y0))
            self.add_edge((x, y1), (x + 1, y1))
        for y0, y1 in _subtract_spans(spans, left):
            self.add_edge((x, y0), (x, y1))
        for y0, y1 in _subtract_spans(spans, right):
            self.add_edge((x + 1, y1), (x + 1, y0))

    def _take_edge(self) -> Point:
        assert self.pen is not None
        targets = self.open_edges[self.pen]
        choice = 0
        if len(targets) > 1 and self.heading is not None:
            # Pinch vertex: turn towards the foreground so that diagonal
            # neighbours end up in separate polygons.
            dx, dy = self.heading
            preference = [(dy, -dx), (dx, dy), (-dy, dx)]

            def rank(target: Point) -> int:
                step = (_sign(target[0] - self.pen[0]), _sign(target[1] - self.pen[1]))
                return preference.index(step) if step in preference else len(preference)

            choice = min(range(len(targets)), key=lambda i: rank(targets[i]))
        target = targets.pop(choice)
        if not targets:
            del self.open_edges[self.pen]
        return target

    def close_polygons(self) -> List[List[Point]]:
        """Chain all open edges into closed polygons.

        Polygons are returned in order of their smallest ``(x, y)``
        vertex, which is also the first vertex of each polygon.
        Collinear vertices are dropped.
        """
        polygons: List[List[Point]] = []
        while self.open_edges:
            start = min(self.open_edges)
            self.pen = start
            self.heading = None
            points = [start]
            while True:
                prev = self.pen
                self.pen = self._take_edge()
                self.heading = (_sign(self.pen[0] - prev[0]), _sign(self.pen[1] - prev[1]))
                if self.pen == start:
                    break
                points.append(self.pen)
            polygons.append(_drop_collinear(points))
        self.pen = None
        self.heading = None
        return polygons


def _sign(v: int) -> int:
    return int(v > 0) - int(v < 0)


def _drop_collinear(points: List[Point]) -> List[Point]:
    n = len(points)
    kept: List[Point] = []
    for i in range(n):
        px, py = points[i - 1]
        cx, cy = points[i]
        nx, ny = points[(i + 1) % n]
        if (_sign(cx - px), _sign(cy - py)) != (_sign(nx - cx), _sign(ny - cy)):
            kept.append(points[i])
    return kept


def generate_polygon_segments(rle: Sequence[int], width: int, height: int) -> List[List[Point]]:
    """Build closed boundary polygons from a column‑major RLE.

    Returns:
        A list of polygons, each an ordered list of integer corner
        points.  An all‑background mask yields an empty list.
    """
    width, height = int(width), int(height)
    spans = rle_to_column_spans(rle, width, height)
    tracer = BoundaryTracer(width, height)
    empty: List[Span] = []
    for x, column in enumerate(spans):
        if not column:
            continue
        left = spans[x - 1] if x > 0 else empty
        right = spans[x + 1] if x + 1 < width else empty
        tracer.feed_column(x, column, left, right)
    return tracer.close_polygons()


def convert_segments_to_svg(polygons: Sequence[Sequence[Point]]) -> List[str]:
    """Serialise polygons as ``"M<x0> <y0> L<x1> <y1> ..."`` path strings."""
    paths: List[str] = []
    for poly in polygons:
        if not poly:
            continue
        (x0, y0), rest = poly[0], poly[1:]
        path = f"M{x0} {y0}"
        if rest:
            path += " L" + " ".join(f"{x} {y}" for x, y in rest)
        paths.append(path)
    return paths


def area_under_line(x0: int, y0: int, x1: int, y1: int) -> int:
    """Signed area between the edge ``(x0, y0) -> (x1, y1)`` and ``y = 0``.

    Vertical edges contribute nothing.  The triangular part is truncated
    towards zero rather than rounded.
    """
    if x0 == x1:
        return 0
    dx = x1 - x0
    ymin = min(y0, y1)
    ymax = max(y0, y1)
    square = dx * ymin
    tri = dx * (ymax - ymin)
    triangle = tri // 2 if tri >= 0 else -((-tri) // 2)
    return square + triangle


def _path_coords(path: str) -> List[int]:
    # Truncate like integer parsing of each token would.
    return [int(float(tok)) for tok in _NUMBER_RE.findall(path)]


def area_of_svg_polygon(path: str) -> int:
    """Signed area of a single ``M``/``L`` path string.

    The polygon is closed implicitly by starting from its last point.
    Paths with fewer than two points, or an odd number of coordinates,
    have zero area.
    """
    coords = _path_coords(path)
    if len(coords) < 4 or len(coords) % 2:
        return 0
    area = 0
    old_x, old_y = coords[-2], coords[-1]
    for i in range(0, len(coords), 2):
        new_x, new_y = coords[i], coords[i + 1]
        area += area_under_line(old_x, old_y, new_x, new_y)
        old_x, old_y = new_x, new_y
    return area


def filter_small_svg_regions(
    paths: Sequence[str],
    max_region_size: int = DEFAULT_MAX_REGION_SIZE,
) -> List[str]:
    """Drop regions enclosing ``max_region_size`` square pixels or fewer.

    Both outer contours and holes are filtered by absolute area.  If no
    region survives, the one with the greatest signed area is returned
    on its own so the object never disappears.  An empty input is
    returned unchanged.
    """
    paths = list(paths)
    if not paths:
        return paths
    areas = [area_of_svg_polygon(p) for p in paths]
    kept = [p for p, a in zip(paths, areas) if abs(a) > max_region_size]
    if kept:
        return kept
    best = areas.index(max(areas))
    logger.debug(
        "All %d regions at or below %d px; keeping largest (area=%d)",
        len(paths),
        max_region_size,
        areas[best],
    )
    return [paths[best]]


def trace_mask_to_svg(
    mask: MaskBuffer,
    width: int,
    height: int,
    max_region_size: int = DEFAULT_MAX_REGION_SIZE,
) -> List[str]:
    """Trace ``mask`` into filtered SVG path strings.

    Args:
        mask: Row‑major mask buffer; values ``> 0`` are foreground.
        width: Mask width in pixels.
        height: Mask height in pixels.
        max_region_size: Area threshold passed to
            :func:`filter_small_svg_regions`.

    Returns:
        One path string per retained region.

    Raises:
        DimensionMismatchError: If ``mask`` does not hold
            ``width * height`` values.
    """
    buf = as_mask_buffer(mask, width, height)
    rle = mask_to_column_rle(buf, width, height)
    polygons = generate_polygon_segments(rle, width, height)
    paths = filter_small_svg_regions(convert_segments_to_svg(polygons), max_region_size)
    logger.debug(
        "Traced %dx%d mask: %d runs, %d polygons, %d kept",
        width,
        height,
        len(rle),
        len(polygons),
        len(paths),
    )
    return paths
