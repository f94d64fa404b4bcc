"""In-memory navigation graph with floor partitioning and edge blocking.

Purpose:
- Store immutable nodes and directed edge records for undirected connections.
- Block/unblock connections for dynamic rerouting (both directions at once).
- Answer floor-scoped spatial queries used by routing and positioning.

Usage example:
    >>> graph = NavigationGraph()
    >>> graph.load_nodes([Node("a", 0, 0, "g", ("b",)), Node("b", 10, 0, "g", ("a",))])
    >>> graph.block_edge("a", "b", "Wet floor")
    >>> graph.is_edge_blocked("b", "a")
    True
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping

from navcore.utils import euclidean, squared_distance

logger = logging.getLogger(__name__)


class NodeType(str, Enum):
    """Classification of nodes for routing and instruction text."""

    ENTRY = "entry"
    CHECKPOINT = "checkpoint"
    FLOOR_CONNECTOR = "floor_connector"
    DESTINATION = "destination"
    HALLWAY = "hallway"


@dataclass(frozen=True, slots=True)
class Node:
    """Navigable point in the building graph."""

    id: str
    x: float
    y: float
    floor_id: str
    connected_node_ids: tuple[str, ...] = ()
    location_id: str | None = None
    is_walkable: bool = True
    is_stairs: bool = False
    is_elevator: bool = False
    label: str | None = None
    node_type: NodeType = NodeType.CHECKPOINT
    # Connectors sharing a link group are the same physical stairs/elevator.
    link_group: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.connected_node_ids, tuple):
            object.__setattr__(self, "connected_node_ids", tuple(self.connected_node_ids))

    @property
    def position(self) -> tuple[float, float]:
        return self.x, self.y

    @property
    def is_floor_connector(self) -> bool:
        return self.is_stairs or self.is_elevator or self.node_type is NodeType.FLOOR_CONNECTOR

    def __str__(self) -> str:
        suffix = f" - {self.label}" if self.label else ""
        return f"Node({self.id}{suffix} at {self.x}, {self.y})"


def edge_id(from_id: str, to_id: str) -> str:
    """Identifier of the directed edge record `from_id -> to_id`."""
    return f"{from_id}_to_{to_id}"


@dataclass(frozen=True, slots=True)
class Edge:
    """Walkable connection between two nodes."""

    id: str
    from_node_id: str
    to_node_id: str
    distance: float
    is_blocked: bool = False
    label: str | None = None
    blocked_at: datetime | None = None
    block_reason: str | None = None

    @classmethod
    def between(cls, from_id: str, to_id: str, distance: float, label: str | None = None) -> "Edge":
        return cls(id=edge_id(from_id, to_id), from_node_id=from_id, to_node_id=to_id, distance=float(distance), label=label)

    def block(self, reason: str) -> "Edge":
        return replace(self, is_blocked=True, blocked_at=datetime.now(timezone.utc), block_reason=reason)

    def unblock(self) -> "Edge":
        return replace(self, is_blocked=False, blocked_at=None, block_reason=None)

    def connects(self, a: str, b: str) -> bool:
        """True when the edge joins `a` and `b` in either direction."""
        return {self.from_node_id, self.to_node_id} == {a, b}

    def __str__(self) -> str:
        flag = " [BLOCKED]" if self.is_blocked else ""
        return f"Edge({self.from_node_id} -> {self.to_node_id}, {self.distance:.1f}m{flag})"


class NavigationGraph:
    """Node registry, undirected adjacency list and directed edge registry.

    Every id in the adjacency list has a node, and every edge endpoint exists.
    Connections declared towards nodes that are not loaded yet stay pending until
    the target node is added.
    """

    def __init__(self) -> None:
        self._nodes: dict[str, Node] = {}
        self._adjacency: dict[str, list[str]] = {}
        self._edges: dict[str, Edge] = {}
        self._blocked: set[str] = set()
        self._pending: dict[str, list[str]] = {}
        self._linked_pairs: set[frozenset[str]] = set()
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def add_node(self, node: Node) -> None:
        """Register a node and the connections it declares."""
        if not node.id:
            raise ValueError("Node id must be a non-empty string")

        self._nodes[node.id] = node
        self._adjacency.setdefault(node.id, [])

        for waiting_id in self._pending.pop(node.id, []):
            if waiting_id in self._nodes:
                self.add_edge(waiting_id, node.id)

        for connected_id in node.connected_node_ids:
            if connected_id == node.id:
                continue
            if connected_id in self._nodes:
                self.add_edge(node.id, connected_id)
            else:
                self._pending.setdefault(connected_id, []).append(node.id)

    def load_nodes(self, nodes: Iterable[Node]) -> None:
        for node in nodes:
            self.add_node(node)
        if self._pending:
            logger.warning("Graph has connections to unknown nodes: %s", sorted(self._pending))

    def add_edge(self, from_id: str, to_id: str, distance: float | None = None, label: str | None = None) -> Edge:
        """Register the connection `from_id <-> to_id` and its directed edge record.

        Raises:
            ValueError: If an endpoint is unknown, the edge is a loop, or distance is negative.
        """
        if from_id not in self._nodes or to_id not in self._nodes:
            raise ValueError(f"Cannot connect unknown nodes '{from_id}' and '{to_id}'")
        if from_id == to_id:
            raise ValueError("Edge endpoints must differ")
        if distance is not None and distance < 0:
            raise ValueError("Edge distance must be >= 0")

        a = self._nodes[from_id]
        b = self._nodes[to_id]
        weight = euclidean(a.x, a.y, b.x, b.y) if distance is None else float(distance)
        edge = Edge.between(from_id, to_id, weight, label=label)
        return self.add_edge_object(edge)

    def add_edge_object(self, edge: Edge) -> Edge:
        """Register a prebuilt edge record, keeping current block state in sync."""
        if edge.from_node_id not in self._nodes or edge.to_node_id not in self._nodes:
            raise ValueError(f"Edge '{edge.id}' references unknown nodes")

        with self._lock:
            if edge.is_blocked:
                self._blocked.add(edge.id)
            elif edge.id in self._blocked:
                edge = edge.block(self._reason_for(edge.from_node_id, edge.to_node_id))
            self._edges[edge.id] = edge

        for src, dst in ((edge.from_node_id, edge.to_node_id), (edge.to_node_id, edge.from_node_id)):
            neighbors = self._adjacency.setdefault(src, [])
            if dst not in neighbors:
                neighbors.append(dst)
        return edge

    def link_connectors(self, a_id: str, b_id: str) -> None:
        """Declare two connector nodes as the same physical stairs/elevator."""
        for node_id in (a_id, b_id):
            node = self._nodes.get(node_id)
            if node is None:
                raise ValueError(f"Unknown connector node '{node_id}'")
            if not node.is_floor_connector:
                raise ValueError(f"Node '{node_id}' is not a floor connector")
        self._linked_pairs.add(frozenset((a_id, b_id)))

    def clear(self) -> None:
        with self._lock:
            self._nodes.clear()
            self._adjacency.clear()
            self._edges.clear()
            self._blocked.clear()
            self._pending.clear()
            self._linked_pairs.clear()

    # ------------------------------------------------------------------
    # Blocking
    # ------------------------------------------------------------------

    def block_edge(self, from_id: str, to_id: str, reason: str) -> None:
        """Block the logical connection between two nodes (both directions).

        Blocking an already-blocked edge only refreshes its reason and timestamp.
        """
        forward, reverse = edge_id(from_id, to_id), edge_id(to_id, from_id)
        with self._lock:
            self._blocked.update((forward, reverse))
            for key in (forward, reverse):
                if key in self._edges:
                    self._edges[key] = self._edges[key].block(reason)
        logger.info("Blocked connection %s <-> %s: %s", from_id, to_id, reason)

    def unblock_edge(self, from_id: str, to_id: str) -> None:
        forward, reverse = edge_id(from_id, to_id), edge_id(to_id, from_id)
        with self._lock:
            self._blocked.difference_update((forward, reverse))
            for key in (forward, reverse):
                if key in self._edges:
                    self._edges[key] = self._edges[key].unblock()
        logger.info("Unblocked connection %s <-> %s", from_id, to_id)

    def is_edge_blocked(self, from_id: str, to_id: str) -> bool:
        """Blocked status of the traversal `from_id -> to_id`."""
        with self._lock:
            return edge_id(from_id, to_id) in self._blocked

    def blocked_edges(self) -> list[Edge]:
        """Edge records currently blocked (one per registered direction)."""
        with self._lock:
            return [edge for edge in self._edges.values() if edge.is_blocked]

    def _reason_for(self, from_id: str, to_id: str) -> str:
        reverse = self._edges.get(edge_id(to_id, from_id))
        if reverse is not None and reverse.block_reason:
            return reverse.block_reason
        return "blocked"

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_node(self, node_id: str) -> Node | None:
        return self._nodes.get(node_id)

    def get_edge(self, from_id: str, to_id: str) -> Edge | None:
        return self._edges.get(edge_id(from_id, to_id))

    @property
    def all_nodes(self) -> list[Node]:
        return list(self._nodes.values())

    @property
    def all_edges(self) -> list[Edge]:
        with self._lock:
            return list(self._edges.values())

    @property
    def node_map(self) -> Mapping[str, Node]:
        """Read-only node lookup used by the pathfinder and rail snapping."""
        return MappingProxyType(self._nodes)

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    @property
    def edge_count(self) -> int:
        """Number of logical (undirected) connections."""
        return sum(len(ids) for ids in self._adjacency.values()) // 2

    def nodes_by_floor(self, floor_id: str) -> list[Node]:
        return [node for node in self._nodes.values() if node.floor_id == floor_id]

    def edges_by_floor(self, floor_id: str) -> list[Edge]:
        """Edge records whose origin node is on `floor_id`."""
        with self._lock:
            return [
                edge
                for edge in self._edges.values()
                if self._nodes[edge.from_node_id].floor_id == floor_id
            ]

    def adjacent_node_ids(self, node_id: str) -> list[str]:
        return list(self._adjacency.get(node_id, []))

    def adjacent_nodes(self, node_id: str) -> list[Node]:
        return [self._nodes[nid] for nid in self._adjacency.get(node_id, []) if nid in self._nodes]

    def available_floors(self) -> list[str]:
        return sorted({node.floor_id for node in self._nodes.values()})

    def find_closest_node(self, x: float, y: float, floor_id: str) -> Node | None:
        """Nearest walkable node on `floor_id`; ties keep the first encountered."""
        closest: Node | None = None
        best = float("inf")
        for node in self._nodes.values():
            if node.floor_id != floor_id or not node.is_walkable:
                continue
            d2 = squared_distance(node.x, node.y, x, y)
            if d2 < best:
                best = d2
                closest = node
        return closest

    def find_node_by_location_id(self, location_id: str) -> Node | None:
        for node in self._nodes.values():
            if node.location_id == location_id:
                return node
        return None

    def floor_connectors(self, floor_id: str) -> list[Node]:
        return [node for node in self._nodes.values() if node.floor_id == floor_id and node.is_floor_connector]

    def are_connectors_linked(self, a: Node, b: Node) -> bool:
        """True when two connectors represent the same physical stairs/elevator.

        Connectors are linked by an explicit pair registration, a shared
        `link_group`, or an open graph edge between them.
        """
        if a.id == b.id:
            return False
        if frozenset((a.id, b.id)) in self._linked_pairs:
            return True
        if a.link_group and a.link_group == b.link_group:
            return True
        if not (a.is_floor_connector and b.is_floor_connector):
            return False
        joined = edge_id(a.id, b.id) in self._edges or edge_id(b.id, a.id) in self._edges
        return joined and not self.is_edge_blocked(a.id, b.id)
