"""
SVG path helpers for edges and flow bands.

Paths are plain SVG "d" strings with one decimal place, ready for a
renderer to drop into a <path> element.
"""

import math
from typing import Tuple

Point = Tuple[float, float]


def _fmt(value: float) -> str:
    return "{:.1f}".format(value)


def cubic_point(x1, y1, c1x, c1y, c2x, c2y, x2, y2, t):
    u = 1.0 - t
    tt = t * t
    uu = u * u
    uuu = uu * u
    ttt = tt * t
    x = uuu * x1 + 3 * uu * t * c1x + 3 * u * tt * c2x + ttt * x2
    y = uuu * y1 + 3 * uu * t * c1y + 3 * u * tt * c2y + ttt * y2
    return x, y


def horizontal_band_controls(x0: float, y0: float, x1: float, y1: float) -> Tuple[float, float, float, float]:
    """Control points of a flow band: both handles sit on the horizontal midline."""
    xm = (x0 + x1) / 2
    return xm, y0, xm, y1


def horizontal_band_path(x0: float, y0: float, x1: float, y1: float) -> str:
    """Band centreline from a source's right edge (x0, y0) to a target's left edge (x1, y1)."""
    c1x, c1y, c2x, c2y = horizontal_band_controls(x0, y0, x1, y1)
    return f"M{_fmt(x0)},{_fmt(y0)} C{_fmt(c1x)},{_fmt(c1y)} {_fmt(c2x)},{_fmt(c2y)} {_fmt(x1)},{_fmt(y1)}"


def boundary_points(source: Point, target: Point, source_radius: float, target_radius: float) -> Tuple[Point, Point]:
    """Where the straight line between two circle centres crosses each circle."""
    angle = math.atan2(target[1] - source[1], target[0] - source[0])
    start = (source[0] + math.cos(angle) * source_radius, source[1] + math.sin(angle) * source_radius)
    end = (target[0] - math.cos(angle) * target_radius, target[1] - math.sin(angle) * target_radius)
    return start, end


def node_edge_path(source: Point, target: Point, source_radius: float, target_radius: float) -> str:
    """
    Edge between two circular nodes of the hierarchical layout.

    Mostly vertical edges get an S-curve whose bend grows with the horizontal
    offset (capped); mostly horizontal edges get a shallow quadratic arch.
    """
    (sx, sy), (tx, ty) = boundary_points(source, target, source_radius, target_radius)
    dx = tx - sx
    dy = ty - sy

    if abs(dy) > abs(dx):
        strength = min(abs(dx) * 0.8, 50) + 20
        bend = strength if dx > 0 else -strength
        c1x, c1y = sx + bend, sy + abs(dy) * 0.25
        c2x, c2y = tx - bend, ty - abs(dy) * 0.25
        return f"M{_fmt(sx)},{_fmt(sy)} C{_fmt(c1x)},{_fmt(c1y)} {_fmt(c2x)},{_fmt(c2y)} {_fmt(tx)},{_fmt(ty)}"

    mid_x = (sx + tx) / 2
    arch = min(abs(dx) * 0.15, 30)
    mid_y = (sy + ty) / 2 - arch
    return f"M{_fmt(sx)},{_fmt(sy)} Q{_fmt(mid_x)},{_fmt(mid_y)} {_fmt(tx)},{_fmt(ty)}"
