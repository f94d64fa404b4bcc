"""Multi-floor routing by stitching same-floor legs through linked connectors.

Connector linkage is explicit: two connector nodes are the same physical
stairs/elevator when they share a `link_group`, were registered with
`NavigationGraph.link_connectors`, or are joined by an open graph edge.
A blocked edge between two connectors closes that transfer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from navcore.graph import NavigationGraph, Node
from navcore.pathfinding import FLOOR_CHANGE_PENALTY, WALKING_SPEED_MPS, Path, astar, build_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FloorTransition:
    """Floor change along a path, located at `node_index`."""

    from_floor_id: str
    to_floor_id: str
    transition_node: Node
    node_index: int

    @property
    def transition_type(self) -> str:
        return "stairs" if self.transition_node.is_stairs else "elevator"

    @property
    def instruction(self) -> str:
        action = "Take stairs" if self.transition_node.is_stairs else "Take elevator"
        return f"{action} from {self.from_floor_id} to {self.to_floor_id}"


class FloorManager:
    """Route planner aware of floor connectors."""

    def __init__(
        self,
        graph: NavigationGraph,
        walking_speed: float = WALKING_SPEED_MPS,
        floor_change_penalty: float = FLOOR_CHANGE_PENALTY,
    ) -> None:
        self._graph = graph
        self._walking_speed = walking_speed
        self._floor_change_penalty = floor_change_penalty
        self._current_floor_id = ""

    @property
    def current_floor_id(self) -> str:
        return self._current_floor_id

    def set_current_floor(self, floor_id: str) -> None:
        self._current_floor_id = floor_id

    def available_floors(self) -> list[str]:
        return self._graph.available_floors()

    def current_floor_connectors(self) -> list[Node]:
        if not self._current_floor_id:
            return []
        return self._graph.floor_connectors(self._current_floor_id)

    def _leg(self, start: Node, goal: Node, floor_id: str | None = None) -> list[Node]:
        return astar(
            start,
            goal,
            self._graph.node_map,
            graph=self._graph,
            floor_id=floor_id,
            floor_change_penalty=self._floor_change_penalty,
        )

    def route(self, start: Node, goal: Node) -> Path:
        """Shortest route between two nodes on the same or different floors.

        Returns:
            Path covering start to goal, or an empty Path when unreachable.
        """
        if start.floor_id == goal.floor_id:
            return build_path(self._leg(start, goal), self._walking_speed)
        return self._route_across_floors(start, goal)

    def _route_across_floors(self, start: Node, goal: Node) -> Path:
        start_connectors = self._graph.floor_connectors(start.floor_id)
        goal_connectors = self._graph.floor_connectors(goal.floor_id)
        if not start_connectors or not goal_connectors:
            logger.info("No floor connectors between %s and %s", start.floor_id, goal.floor_id)
            return Path.empty()

        best = Path.empty()
        # Each start leg is shared by every goal connector it links to.
        to_connector: dict[str, list[Node]] = {}
        from_connector: dict[str, list[Node]] = {}

        for start_conn in start_connectors:
            for goal_conn in goal_connectors:
                if not self._graph.are_connectors_linked(start_conn, goal_conn):
                    continue
                if not (start_conn.is_walkable and goal_conn.is_walkable):
                    continue
                if self._transfer_blocked(start_conn, goal_conn):
                    continue

                if start_conn.id not in to_connector:
                    to_connector[start_conn.id] = self._leg(start, start_conn, start.floor_id)
                first = to_connector[start_conn.id]
                if not first:
                    continue

                if goal_conn.id not in from_connector:
                    from_connector[goal_conn.id] = self._leg(goal_conn, goal, goal.floor_id)
                second = from_connector[goal_conn.id]
                if not second:
                    continue

                candidate = build_path(first + second, self._walking_speed)
                if not best.is_valid or candidate.total_distance < best.total_distance:
                    best = candidate

        if not best.is_valid:
            logger.info("No linked connector route from %s to %s", start.id, goal.id)
        return best

    def _transfer_blocked(self, start_conn: Node, goal_conn: Node) -> bool:
        """True when the connectors are joined by a graph edge that is blocked."""
        has_edge = (
            self._graph.get_edge(start_conn.id, goal_conn.id) is not None
            or self._graph.get_edge(goal_conn.id, start_conn.id) is not None
        )
        return has_edge and self._graph.is_edge_blocked(start_conn.id, goal_conn.id)

    @staticmethod
    def path_crosses_floors(path: Path) -> bool:
        return len({node.floor_id for node in path.nodes}) > 1

    @staticmethod
    def floor_transitions(path: Path) -> list[FloorTransition]:
        transitions: list[FloorTransition] = []
        for idx, (current, nxt) in enumerate(zip(path.nodes, path.nodes[1:]), start=1):
            if current.floor_id != nxt.floor_id:
                transitions.append(
                    FloorTransition(
                        from_floor_id=current.floor_id,
                        to_floor_id=nxt.floor_id,
                        transition_node=nxt,
                        node_index=idx,
                    )
                )
        return transitions
