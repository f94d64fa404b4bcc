"""A* pathfinding over the indoor navigation graph.

Purpose:
- Compute shortest walkable routes between graph nodes.
- Discourage gratuitous floor switching with a fixed floor-change penalty.
- Avoid edges currently blocked in the navigation graph.

Usage example:
    >>> from navcore.graph import NavigationGraph, Node
    >>> from navcore.pathfinding import astar
    >>> graph = NavigationGraph()
    >>> graph.load_nodes([Node("a", 0, 0, "g", ("b",)), Node("b", 10, 0, "g")])
    >>> [n.id for n in astar(graph.get_node("a"), graph.get_node("b"), graph.node_map, graph)]
    ['a', 'b']
"""

from __future__ import annotations

import heapq
import itertools
from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence

from navcore.graph import NavigationGraph, Node
from navcore.utils import euclidean

FLOOR_CHANGE_PENALTY = 50.0
WALKING_SPEED_MPS = 1.4


@dataclass(frozen=True, slots=True)
class Path:
    """Ordered route from origin to destination; empty nodes means no route."""

    nodes: tuple[Node, ...]
    total_distance: float
    estimated_time_s: int = 0
    crosses_floors: bool = False

    @classmethod
    def empty(cls) -> "Path":
        return cls(nodes=(), total_distance=0.0)

    @property
    def is_valid(self) -> bool:
        return bool(self.nodes)

    @property
    def step_count(self) -> int:
        return len(self.nodes)

    @property
    def origin(self) -> Node | None:
        return self.nodes[0] if self.nodes else None

    @property
    def destination(self) -> Node | None:
        return self.nodes[-1] if self.nodes else None

    @property
    def coordinates(self) -> list[tuple[float, float]]:
        return [(node.x, node.y) for node in self.nodes]

    @property
    def estimated_time_minutes(self) -> float:
        return self.estimated_time_s / 60.0

    @property
    def formatted_time(self) -> str:
        if self.estimated_time_s < 60:
            return "< 1 min"
        return f"{round(self.estimated_time_s / 60)} min"

    @property
    def formatted_distance(self) -> str:
        if self.total_distance < 1000:
            return f"{round(self.total_distance)} m"
        return f"{self.total_distance / 1000:.1f} km"


def _heuristic(a: Node, b: Node) -> float:
    """Straight-line distance; admissible because step cost is never below it."""
    return euclidean(a.x, a.y, b.x, b.y)


def step_cost(a: Node, b: Node, floor_change_penalty: float = FLOOR_CHANGE_PENALTY) -> float:
    """Traversal cost between adjacent nodes: distance plus penalty on floor change."""
    cost = euclidean(a.x, a.y, b.x, b.y)
    if a.floor_id != b.floor_id:
        cost += floor_change_penalty
    return cost


def _neighbor_ids(node: Node, graph: NavigationGraph | None) -> Iterable[str]:
    if graph is not None:
        return graph.adjacent_node_ids(node.id)
    return node.connected_node_ids


def astar(
    start: Node,
    goal: Node,
    nodes: Mapping[str, Node],
    graph: NavigationGraph | None = None,
    floor_id: str | None = None,
    floor_change_penalty: float = FLOOR_CHANGE_PENALTY,
) -> list[Node]:
    """Compute shortest node route via A*.

    Args:
        start: Origin node.
        goal: Destination node.
        nodes: Node lookup by id.
        graph: Optional navigation graph; supplies adjacency and blocked-edge state.
        floor_id: Confine the search to one floor when set.
        floor_change_penalty: Extra cost for each edge joining two floors.

    Returns:
        Nodes from start to goal inclusive. Empty list if no route exists.

    Raises:
        ValueError: If start or goal is not part of the node map.
    """
    if start.id not in nodes:
        raise ValueError(f"Start node '{start.id}' is not in the graph")
    if goal.id not in nodes:
        raise ValueError(f"Goal node '{goal.id}' is not in the graph")

    if start.id == goal.id:
        return [nodes[start.id]]

    # Counter breaks f-score ties by insertion order, keeping results deterministic.
    counter = itertools.count()
    open_heap: list[tuple[float, int, str]] = []
    heapq.heappush(open_heap, (_heuristic(start, goal), next(counter), start.id))

    came_from: dict[str, str] = {}
    g_score: dict[str, float] = {start.id: 0.0}
    closed: set[str] = set()

    while open_heap:
        _, _, current_id = heapq.heappop(open_heap)

        if current_id in closed:
            continue

        if current_id == goal.id:
            return _reconstruct(came_from, current_id, nodes)

        closed.add(current_id)
        current = nodes[current_id]

        for neighbor_id in _neighbor_ids(current, graph):
            if neighbor_id in closed:
                continue

            neighbor = nodes.get(neighbor_id)
            if neighbor is None or not neighbor.is_walkable:
                continue
            if floor_id is not None and neighbor.floor_id != floor_id:
                continue
            if graph is not None and graph.is_edge_blocked(current_id, neighbor_id):
                continue

            tentative_g = g_score[current_id] + step_cost(current, neighbor, floor_change_penalty)
            if tentative_g < g_score.get(neighbor_id, float("inf")):
                came_from[neighbor_id] = current_id
                g_score[neighbor_id] = tentative_g
                f = tentative_g + _heuristic(neighbor, goal)
                heapq.heappush(open_heap, (f, next(counter), neighbor_id))

    return []


def _reconstruct(came_from: dict[str, str], goal_id: str, nodes: Mapping[str, Node]) -> list[Node]:
    path = [nodes[goal_id]]
    current = goal_id
    while current in came_from:
        current = came_from[current]
        path.append(nodes[current])
    path.reverse()
    return path


def path_distance(nodes: Sequence[Node]) -> float:
    """Sum of Euclidean leg lengths along a node sequence."""
    return sum(euclidean(a.x, a.y, b.x, b.y) for a, b in zip(nodes, nodes[1:]))


def estimate_time_s(distance: float, walking_speed: float = WALKING_SPEED_MPS) -> int:
    """Estimated traversal time in whole seconds."""
    if walking_speed <= 0:
        raise ValueError("walking_speed must be > 0")
    return int(round(distance / walking_speed))


def build_path(nodes: Sequence[Node], walking_speed: float = WALKING_SPEED_MPS) -> Path:
    """Wrap a node route into a Path with aggregate distance/time."""
    if not nodes:
        return Path.empty()
    distance = path_distance(nodes)
    return Path(
        nodes=tuple(nodes),
        total_distance=distance,
        estimated_time_s=estimate_time_s(distance, walking_speed),
        crosses_floors=len({node.floor_id for node in nodes}) > 1,
    )
