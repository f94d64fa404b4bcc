"""Utility helpers shared across navcore modules.

Purpose:
- Planar distance and compass-bearing math used by routing and fusion.
- Convert node sequences to JSON-safe payload types.
"""

from __future__ import annotations

import math
from typing import Iterable, Protocol


class _Point(Protocol):
    x: float
    y: float


def euclidean(ax: float, ay: float, bx: float, by: float) -> float:
    """Return straight-line distance between `(ax, ay)` and `(bx, by)`."""
    return math.hypot(bx - ax, by - ay)


def squared_distance(ax: float, ay: float, bx: float, by: float) -> float:
    """Return squared planar distance; compare against squared radii only."""
    dx = bx - ax
    dy = by - ay
    return dx * dx + dy * dy


def normalize_heading(degrees: float) -> float:
    """Wrap a heading into `[0, 360)`."""
    value = math.fmod(float(degrees), 360.0)
    if value < 0:
        value += 360.0
    # fmod(-1e-15) + 360 rounds to 360.0
    return 0.0 if value >= 360.0 else value


def bearing(ax: float, ay: float, bx: float, by: float) -> float:
    """Compass bearing from A to B in degrees (0 = north / +y, 90 = east / +x)."""
    return normalize_heading(math.degrees(math.atan2(bx - ax, by - ay)))


def angle_difference(from_deg: float, to_deg: float) -> float:
    """Signed smallest rotation from `from_deg` to `to_deg`, in `(-180, 180]`."""
    diff = math.fmod(to_deg - from_deg + 180.0, 360.0)
    if diff < 0:
        diff += 360.0
    diff -= 180.0
    return 180.0 if diff == -180.0 else diff


def move_along_heading(x: float, y: float, heading_deg: float, distance: float) -> tuple[float, float]:
    """Advance `(x, y)` by `distance` along a compass heading."""
    radians = math.radians(heading_deg)
    return x + distance * math.sin(radians), y + distance * math.cos(radians)


def to_serializable_path(nodes: Iterable[_Point]) -> list[dict[str, object]]:
    """Convert path nodes to JSON-friendly dictionary objects."""
    return [
        {
            "id": getattr(node, "id", None),
            "x": float(node.x),
            "y": float(node.y),
            "floor_id": getattr(node, "floor_id", None),
        }
        for node in nodes
    ]
