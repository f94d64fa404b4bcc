"""Navigation engine: route state machine, arrival detection and rerouting.

State machine:
    IDLE -> CALCULATING -> {NAVIGATING | ERROR}
    NAVIGATING -> {REROUTING | ARRIVED | ERROR}
    REROUTING -> {NAVIGATING | ERROR}
    ARRIVED, ERROR -> CALCULATING (new request only)
    any -> IDLE (stop; a new request while navigating stops first)

The engine owns the graph, floor manager, fusion engine and positioning
manager; it reacts to their outputs and never decides sensor-to-position logic.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable

from navcore import rail_snapping
from navcore.demo import DemoSimulator, DemoState
from navcore.events import Broadcaster
from navcore.floors import FloorManager
from navcore.fusion import FusedPosition, FusionEngine
from navcore.graph import Edge, NavigationGraph, Node
from navcore.pathfinding import Path
from navcore.positioning import PositioningManager
from navcore.sensors import SensorSource, SensorState
from navcore.settings import NavigationSettings
from navcore.utils import euclidean, squared_distance

logger = logging.getLogger(__name__)


class NavigationStatus(str, Enum):
    IDLE = "idle"
    CALCULATING = "calculating"
    NAVIGATING = "navigating"
    REROUTING = "rerouting"
    ARRIVED = "arrived"
    ERROR = "error"


TRANSITIONS: dict[NavigationStatus, frozenset[NavigationStatus]] = {
    NavigationStatus.IDLE: frozenset({NavigationStatus.CALCULATING}),
    NavigationStatus.CALCULATING: frozenset({NavigationStatus.NAVIGATING, NavigationStatus.ERROR}),
    NavigationStatus.NAVIGATING: frozenset(
        {NavigationStatus.REROUTING, NavigationStatus.ARRIVED, NavigationStatus.ERROR}
    ),
    NavigationStatus.REROUTING: frozenset({NavigationStatus.NAVIGATING, NavigationStatus.ERROR}),
    NavigationStatus.ARRIVED: frozenset({NavigationStatus.CALCULATING}),
    NavigationStatus.ERROR: frozenset({NavigationStatus.CALCULATING}),
}


class InvalidTransitionError(RuntimeError):
    """Raised when code attempts a transition missing from TRANSITIONS."""


@dataclass(frozen=True, slots=True)
class CurrentPosition:
    x: float
    y: float
    floor_id: str
    heading: float = 0.0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_fused(cls, fused: FusedPosition) -> "CurrentPosition":
        return cls(x=fused.x, y=fused.y, floor_id=fused.floor_id, heading=fused.heading, timestamp=fused.timestamp)


@dataclass(frozen=True, slots=True)
class Destination:
    """Directory location the user wants to reach."""

    id: str
    x: float
    y: float
    floor_id: str
    name: str = ""


@dataclass(frozen=True, slots=True)
class NavigationInstruction:
    text: str
    distance: float
    icon: str | None = None
    is_floor_change: bool = False


@dataclass(frozen=True, slots=True)
class NavigationUpdate:
    """Snapshot published on the navigation stream."""

    status: NavigationStatus
    path: Path | None
    step_index: int
    instruction: NavigationInstruction | None


class NavigationEngine:
    """Top-level orchestrator exposing the navigation state machine."""

    def __init__(
        self,
        graph: NavigationGraph | None = None,
        sensors: SensorSource | None = None,
        settings: NavigationSettings | None = None,
    ) -> None:
        self.settings = settings or NavigationSettings()
        self.graph = graph if graph is not None else NavigationGraph()
        self.sensors = sensors if sensors is not None else SensorState()
        self.floor_manager = FloorManager(
            self.graph,
            walking_speed=self.settings.walking_speed_mps,
            floor_change_penalty=self.settings.floor_change_penalty,
        )
        self.fusion = FusionEngine(
            self.graph,
            step_length=self.settings.step_length_m,
            landmark_min_score=self.settings.landmark_min_score,
            max_heading_deviation=self.settings.max_heading_deviation,
        )
        self.positioning = PositioningManager(
            self.sensors,
            self.fusion,
            max_tilt_deg=self.settings.max_tilt_deg,
            max_corrections=self.settings.max_corrections,
            correction_window_s=self.settings.correction_window_s,
            landmark_min_score=self.settings.landmark_min_score,
        )
        self.dynamic_rerouting = self.settings.dynamic_rerouting

        self._status = NavigationStatus.IDLE
        self._path: Path | None = None
        self._step_index = 0
        self._position: CurrentPosition | None = None
        self._destination: Destination | None = None
        self._demo: DemoSimulator | None = None

        self.navigation_stream: Broadcaster[NavigationUpdate] = Broadcaster("navigation")

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def status(self) -> NavigationStatus:
        return self._status

    @property
    def current_path(self) -> Path | None:
        return self._path

    @property
    def current_step_index(self) -> int:
        return self._step_index

    @property
    def current_position(self) -> CurrentPosition | None:
        return self._position

    @property
    def destination(self) -> Destination | None:
        return self._destination

    def blocked_edges(self) -> list[Edge]:
        return self.graph.blocked_edges()

    def is_off_path(self) -> bool:
        """True when the last position is farther than `max_edge_distance` from any open edge."""
        position = self._position
        if position is None:
            return False
        return rail_snapping.is_off_path(
            position.x,
            position.y,
            self.graph.edges_by_floor(position.floor_id),
            self.graph.node_map,
            floor_id=position.floor_id,
            max_distance=self.settings.max_edge_distance,
        )

    # ------------------------------------------------------------------
    # Graph
    # ------------------------------------------------------------------

    def initialize_graph(self, nodes: Iterable[Node]) -> None:
        """Replace the graph contents; any active navigation is stopped."""
        if self._status is not NavigationStatus.IDLE:
            self.stop_navigation()
        self.graph.clear()
        self.graph.load_nodes(nodes)
        self.fusion.reset()
        logger.info("Graph loaded: %d nodes, %d connections", self.graph.node_count, self.graph.edge_count)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _transition(self, target: NavigationStatus) -> None:
        if target is self._status:
            return
        if target not in TRANSITIONS[self._status]:
            raise InvalidTransitionError(f"Cannot go from {self._status.value} to {target.value}")
        logger.debug("Navigation %s -> %s", self._status.value, target.value)
        self._status = target

    def _publish(self) -> None:
        self.navigation_stream.publish(
            NavigationUpdate(
                status=self._status,
                path=self._path,
                step_index=self._step_index,
                instruction=self.current_instruction(),
            )
        )

    def _fail(self, reason: str) -> None:
        logger.info("Navigation error: %s", reason)
        self._path = None
        self._step_index = 0
        self._transition(NavigationStatus.ERROR)
        self._publish()

    def start_navigation(self, position: CurrentPosition, destination: Destination) -> Path | None:
        """Compute a route to `destination` and start navigating.

        Returns:
            The new Path, or None when resolution or routing failed (status ERROR).
        """
        if self._status is NavigationStatus.NAVIGATING:
            self.stop_navigation()
        if self._status is not NavigationStatus.REROUTING:
            self._transition(NavigationStatus.CALCULATING)
        self._stop_demo()
        self._destination = destination
        self._position = position

        start = self.graph.find_closest_node(position.x, position.y, position.floor_id)
        if start is None:
            self._fail(f"no walkable node near ({position.x}, {position.y}) on {position.floor_id}")
            return None

        goal = self.graph.find_node_by_location_id(destination.id)
        if goal is None:
            goal = self.graph.find_closest_node(destination.x, destination.y, destination.floor_id)
        if goal is None:
            self._fail(f"destination '{destination.id}' is not on the graph")
            return None

        path = self.floor_manager.route(start, goal)
        if not path.is_valid:
            self._fail(f"no route from {start.id} to {goal.id}")
            return None

        self._path = path
        self._step_index = 0
        self._transition(NavigationStatus.NAVIGATING)
        logger.info(
            "Navigating %s -> %s: %d nodes, %s, %s",
            start.id,
            goal.id,
            path.step_count,
            path.formatted_distance,
            path.formatted_time,
        )
        self._publish()
        return path

    def update_position(self, position: CurrentPosition) -> NavigationStatus:
        """Record a new position, advance the step index and detect arrival."""
        self._position = position
        self.floor_manager.set_current_floor(position.floor_id)
        if self._status is not NavigationStatus.NAVIGATING or self._path is None:
            return self._status

        destination = self._path.destination
        if destination is None:
            return self._status

        step_before = self._step_index
        self._advance_step(position)

        d2 = squared_distance(position.x, position.y, destination.x, destination.y)
        if position.floor_id == destination.floor_id and d2 < self.settings.arrival_radius ** 2:
            self._step_index = len(self._path.nodes) - 1
            self._transition(NavigationStatus.ARRIVED)
            logger.info("Arrived at %s", destination.id)
            self._publish()
        elif self._step_index != step_before:
            self._publish()
        return self._status

    def _advance_step(self, position: CurrentPosition) -> None:
        assert self._path is not None
        nodes = self._path.nodes
        radius_sq = self.settings.waypoint_radius ** 2
        while self._step_index < len(nodes) - 1:
            nxt = nodes[self._step_index + 1]
            if nxt.floor_id != position.floor_id:
                break
            if squared_distance(position.x, position.y, nxt.x, nxt.y) > radius_sq:
                break
            self._step_index += 1

    def recalculate_route(self) -> Path | None:
        """Reroute from the last known position to the same destination."""
        if self._position is None or self._destination is None:
            return None
        if self._status is not NavigationStatus.NAVIGATING:
            return None
        self._transition(NavigationStatus.REROUTING)
        self._publish()
        return self.start_navigation(self._position, self._destination)

    def block_path_and_reroute(self, from_id: str, to_id: str, reason: str) -> Path | None:
        """Block a connection and, when navigating, reroute around it."""
        self.graph.block_edge(from_id, to_id, reason)
        if self._status is NavigationStatus.NAVIGATING and self.dynamic_rerouting:
            return self.recalculate_route()
        return self._path

    def unblock_path(self, from_id: str, to_id: str) -> None:
        self.graph.unblock_edge(from_id, to_id)

    def stop_navigation(self) -> None:
        self._stop_demo()
        self._status = NavigationStatus.IDLE
        self._path = None
        self._step_index = 0
        self._destination = None
        self._publish()

    # ------------------------------------------------------------------
    # Positioning
    # ------------------------------------------------------------------

    def tick(self, dt_s: float | None = None) -> FusedPosition | None:
        """Run one positioning tick and feed the result into navigation.

        While a demo walk is running it replaces the sensor pipeline and is
        advanced by `dt_s` (default: the configured tick interval).
        """
        if self._demo is not None and self._demo.state is DemoState.RUNNING:
            return self.advance_demo(self.settings.tick_interval_s if dt_s is None else dt_s)
        fused = self.positioning.tick()
        if fused is not None:
            self.update_position(CurrentPosition.from_fused(fused))
        return fused

    # ------------------------------------------------------------------
    # Demo walk
    # ------------------------------------------------------------------

    @property
    def demo(self) -> DemoSimulator | None:
        return self._demo

    def start_demo(self, speed_multiplier: float = 1.0) -> FusedPosition | None:
        """Walk the current route with a simulated user.

        Raises:
            ValueError: If no route is being navigated.
        """
        if self._status is not NavigationStatus.NAVIGATING or self._path is None:
            raise ValueError("Demo walk requires an active route")
        self._stop_demo()
        self._demo = DemoSimulator(
            self._path,
            self.fusion,
            walking_speed=self.settings.walking_speed_mps,
            speed_multiplier=speed_multiplier,
        )
        return self._feed(self._demo.start())

    def advance_demo(self, dt_s: float) -> FusedPosition | None:
        """Move the demo walker forward by `dt_s` seconds of simulated time."""
        if self._demo is None:
            return None
        return self._feed(self._demo.advance(dt_s))

    def _stop_demo(self) -> None:
        if self._demo is not None:
            self._demo.stop()
            self._demo = None

    def _feed(self, fused: FusedPosition | None) -> FusedPosition | None:
        if fused is not None:
            self.update_position(CurrentPosition.from_fused(fused))
        return fused

    # ------------------------------------------------------------------
    # Instructions
    # ------------------------------------------------------------------

    def current_instruction(self) -> NavigationInstruction | None:
        path = self._path
        if path is None or not path.nodes:
            return None

        if self._status is NavigationStatus.ARRIVED or self._step_index >= len(path.nodes) - 1:
            return NavigationInstruction(text="You have arrived at your destination", distance=0.0, icon="flag")

        current = path.nodes[self._step_index]
        nxt = path.nodes[self._step_index + 1]
        if current.floor_id != nxt.floor_id:
            action, icon = ("Take stairs", "stairs") if nxt.is_stairs else ("Take elevator", "elevator")
            return NavigationInstruction(
                text=f"{action} to {nxt.floor_id}",
                distance=0.0,
                icon=icon,
                is_floor_change=True,
            )

        distance = euclidean(current.x, current.y, nxt.x, nxt.y)
        target = f" towards {nxt.label}" if nxt.label else ""
        return NavigationInstruction(
            text=f"Continue forward{target} for {distance:.0f} m",
            distance=distance,
            icon="arrow_forward",
        )

    def close(self) -> None:
        self.navigation_stream.close()
        self.positioning.close()
        self.fusion.close()
