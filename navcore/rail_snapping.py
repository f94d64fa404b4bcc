"""Rail snapping: keep estimated positions on walkable graph geometry.

Every function here is pure. Positions are projected onto the nearest
non-blocked edge of the current floor, headings are pulled onto the edge
bearing when they deviate too far, and off-path drift is detected.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping

from shapely.geometry import LineString, Point

from navcore.graph import Edge, Node
from navcore.utils import angle_difference, bearing, euclidean

MAX_DEVIATION_DEG = 20.0
MAX_EDGE_DISTANCE = 3.0
_TIE_EPS = 1e-9


@dataclass(frozen=True, slots=True)
class EdgeProjection:
    """Closest point on the nearest edge and the distance to it."""

    edge: Edge
    x: float
    y: float
    distance: float


def _project(px: float, py: float, a: Node, b: Node) -> tuple[float, float, float]:
    """Clamped point-to-segment projection, returning `(x, y, distance)`."""
    if a.x == b.x and a.y == b.y:
        return a.x, a.y, euclidean(px, py, a.x, a.y)

    segment = LineString([(a.x, a.y), (b.x, b.y)])
    point = Point(px, py)
    # project() is clamped to [0, length] so the result stays on the segment.
    snapped = segment.interpolate(segment.project(point))
    return float(snapped.x), float(snapped.y), float(segment.distance(point))


def _endpoints(edge: Edge, nodes: Mapping[str, Node], floor_id: str | None) -> tuple[Node, Node] | None:
    a = nodes.get(edge.from_node_id)
    b = nodes.get(edge.to_node_id)
    if a is None or b is None:
        return None
    if floor_id is not None and (a.floor_id != floor_id or b.floor_id != floor_id):
        return None
    return a, b


def nearest_edge(
    x: float,
    y: float,
    edges: Iterable[Edge],
    nodes: Mapping[str, Node],
    floor_id: str | None = None,
    heading: float | None = None,
) -> EdgeProjection | None:
    """Find the non-blocked edge geometrically closest to `(x, y)`.

    Args:
        x: Raw x coordinate.
        y: Raw y coordinate.
        edges: Candidate edges, typically those of the current floor.
        nodes: Node lookup by id.
        floor_id: Skip edges not fully on this floor when set.
        heading: When set, equally distant edges (e.g. the two direction
            records of one corridor) resolve to the one best aligned with it.
            Otherwise the first encountered wins.

    Returns:
        Projection on the nearest valid edge, or None when no edge qualifies.
    """
    best: EdgeProjection | None = None
    best_alignment = float("inf")
    for edge in edges:
        if edge.is_blocked:
            continue
        ends = _endpoints(edge, nodes, floor_id)
        if ends is None:
            continue

        sx, sy, dist = _project(x, y, ends[0], ends[1])
        if best is not None and dist > best.distance + _TIE_EPS:
            continue

        alignment = 0.0
        if heading is not None:
            alignment = abs(angle_difference(heading, bearing(ends[0].x, ends[0].y, ends[1].x, ends[1].y)))

        if best is None or dist < best.distance - _TIE_EPS or alignment < best_alignment:
            best = EdgeProjection(edge=edge, x=sx, y=sy, distance=dist)
            best_alignment = alignment
    return best


def edge_bearing(edge: Edge, nodes: Mapping[str, Node]) -> float | None:
    """Bearing of the edge from its `from` node to its `to` node, in `[0, 360)`."""
    a = nodes.get(edge.from_node_id)
    b = nodes.get(edge.to_node_id)
    if a is None or b is None:
        return None
    return bearing(a.x, a.y, b.x, b.y)


def snap_heading(
    heading: float,
    edge: Edge,
    nodes: Mapping[str, Node],
    force: bool = False,
    max_deviation: float = MAX_DEVIATION_DEG,
) -> float:
    """Replace `heading` with the edge bearing when it deviates by more than `max_deviation`."""
    target = edge_bearing(edge, nodes)
    if target is None:
        return heading
    if force or abs(angle_difference(heading, target)) > max_deviation:
        return target
    return heading


def heading_deviation(heading: float, edge: Edge, nodes: Mapping[str, Node]) -> float:
    """Absolute angle between `heading` and the edge bearing (0 when endpoints are unknown)."""
    target = edge_bearing(edge, nodes)
    if target is None:
        return 0.0
    return abs(angle_difference(heading, target))


def is_off_path(
    x: float,
    y: float,
    edges: Iterable[Edge],
    nodes: Mapping[str, Node],
    floor_id: str | None = None,
    max_distance: float = MAX_EDGE_DISTANCE,
) -> bool:
    """True when no valid edge exists or the nearest one is farther than `max_distance`."""
    nearest = nearest_edge(x, y, edges, nodes, floor_id)
    if nearest is None:
        return True
    return nearest.distance > max_distance


def snap_position(
    x: float,
    y: float,
    edges: Iterable[Edge],
    nodes: Mapping[str, Node],
    floor_id: str | None = None,
    max_distance: float = MAX_EDGE_DISTANCE,
) -> tuple[float, float]:
    """Pull a point back onto the nearest edge only once it has drifted past `max_distance`."""
    nearest = nearest_edge(x, y, edges, nodes, floor_id)
    if nearest is None or nearest.distance <= max_distance:
        return x, y
    return nearest.x, nearest.y
