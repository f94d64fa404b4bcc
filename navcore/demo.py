"""Simulated walk along a computed path, used for demos without sensors."""

from __future__ import annotations

import logging
from enum import Enum

from navcore.fusion import FusedPosition, FusionEngine, SimulatedFix
from navcore.graph import Node
from navcore.pathfinding import WALKING_SPEED_MPS, Path
from navcore.utils import bearing, euclidean

logger = logging.getLogger(__name__)

MIN_SPEED_MULTIPLIER = 0.5
MAX_SPEED_MULTIPLIER = 5.0


class DemoState(str, Enum):
    READY = "ready"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"
    FINISHED = "finished"


class DemoSimulator:
    """Move a virtual walker along `path` and feed each position into fusion.

    Floor-change legs are traversed instantly; only same-floor legs consume
    walking time.
    """

    def __init__(
        self,
        path: Path,
        fusion: FusionEngine,
        walking_speed: float = WALKING_SPEED_MPS,
        speed_multiplier: float = 1.0,
    ) -> None:
        if not path.is_valid:
            raise ValueError("Demo requires a non-empty path")
        if walking_speed <= 0:
            raise ValueError("walking_speed must be > 0")
        self._path = path
        self._fusion = fusion
        self._walking_speed = walking_speed
        self._multiplier = 1.0
        self.speed_multiplier = speed_multiplier

        self._legs = self._leg_lengths(path.nodes)
        self._total = sum(self._legs)
        self._travelled = 0.0
        self._state = DemoState.READY

    @staticmethod
    def _leg_lengths(nodes: tuple[Node, ...]) -> list[float]:
        legs: list[float] = []
        for a, b in zip(nodes, nodes[1:]):
            legs.append(0.0 if a.floor_id != b.floor_id else euclidean(a.x, a.y, b.x, b.y))
        return legs

    @property
    def speed_multiplier(self) -> float:
        return self._multiplier

    @speed_multiplier.setter
    def speed_multiplier(self, value: float) -> None:
        self._multiplier = min(MAX_SPEED_MULTIPLIER, max(MIN_SPEED_MULTIPLIER, float(value)))

    @property
    def state(self) -> DemoState:
        return self._state

    @property
    def progress(self) -> float:
        """Fraction of the walking distance covered, in `[0, 1]`."""
        if self._total <= 0:
            return 1.0 if self._state is DemoState.FINISHED else 0.0
        return min(1.0, self._travelled / self._total)

    @property
    def is_finished(self) -> bool:
        return self._state is DemoState.FINISHED

    def start(self) -> FusedPosition | None:
        """Place the walker on the path origin."""
        self._travelled = 0.0
        self._state = DemoState.RUNNING
        logger.info("Demo walk started over %.1f m at x%.1f", self._total, self._multiplier)
        return self._emit()

    def pause(self) -> None:
        if self._state is DemoState.RUNNING:
            self._state = DemoState.PAUSED

    def resume(self) -> None:
        if self._state is DemoState.PAUSED:
            self._state = DemoState.RUNNING

    def stop(self) -> None:
        if self._state is not DemoState.FINISHED:
            self._state = DemoState.STOPPED

    def advance(self, dt_s: float) -> FusedPosition | None:
        """Advance simulated time by `dt_s` seconds.

        Returns:
            The fused position produced by the step, or None when not running.
        """
        if dt_s < 0:
            raise ValueError("dt_s must be >= 0")
        if self._state is not DemoState.RUNNING:
            return None

        self._travelled = min(self._total, self._travelled + self._walking_speed * self._multiplier * dt_s)
        if self._travelled >= self._total:
            self._state = DemoState.FINISHED
            logger.info("Demo walk finished")
        return self._emit()

    def _emit(self) -> FusedPosition | None:
        x, y, floor_id, heading = self._locate(self._travelled)
        return self._fusion.apply(SimulatedFix(x=x, y=y, floor_id=floor_id, heading=heading))

    def _locate(self, distance: float) -> tuple[float, float, str, float]:
        nodes = self._path.nodes
        if len(nodes) == 1:
            only = nodes[0]
            return only.x, only.y, only.floor_id, 0.0

        remaining = distance
        for index, length in enumerate(self._legs):
            a, b = nodes[index], nodes[index + 1]
            if length <= 0:
                continue
            heading = bearing(a.x, a.y, b.x, b.y)
            if remaining <= length:
                t = remaining / length
                return a.x + (b.x - a.x) * t, a.y + (b.y - a.y) * t, a.floor_id, heading
            remaining -= length

        last, before = nodes[-1], nodes[-2]
        heading = bearing(before.x, before.y, last.x, last.y) if before.floor_id == last.floor_id else 0.0
        return last.x, last.y, last.floor_id, heading
