"""Priority-based position fusion with explicit confidence accounting.

Input priority (highest first):
1. QR scan - absolute ground truth.
2. Visual landmark - accepted only with a match score >= 0.8.
3. Dead reckoning - steps along a smoothed compass heading.
4. Manual override - explicit user correction.
5. Simulated fix - demo walk along a computed path.
6. Rail-snap refinement - correction pass applied after the others.

All state lives in one FusionEngine and changes only through `apply`, so
each update is atomic and the priority rule can be tested in isolation.
"""

from __future__ import annotations

import logging
import math
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import ClassVar, Iterable, Union

import numpy as np

from navcore.events import Broadcaster
from navcore.graph import NavigationGraph, Node
from navcore.rail_snapping import MAX_DEVIATION_DEG, EdgeProjection, heading_deviation, nearest_edge, snap_heading
from navcore.sensors import SensorConfidence, WalkingState
from navcore.utils import move_along_heading, normalize_heading

logger = logging.getLogger(__name__)

STEP_LENGTH_M = 0.7
LANDMARK_MIN_SCORE = 0.8
DRIFT_DECAY = 0.98
SNAP_RECOVERY = 1.05
HEADING_WINDOW = 5

SENSOR_TIER_SCORES: dict[SensorConfidence, float] = {
    SensorConfidence.HIGH: 0.9,
    SensorConfidence.MEDIUM: 0.7,
    SensorConfidence.LOW: 0.4,
}


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def from_score(cls, score: float) -> "Confidence":
        """Map a combined score in `[0, 1]` onto the HIGH/MEDIUM/LOW tiers."""
        if score >= 0.8:
            return cls.HIGH
        if score >= 0.5:
            return cls.MEDIUM
        return cls.LOW

    @property
    def percent(self) -> int:
        return {"high": 90, "medium": 65, "low": 30}[self.value]


class PositioningSource(str, Enum):
    """Provenance of a position estimate; diagnostics only."""

    QR_SCAN = "qr_scan"
    VISUAL_LANDMARK = "visual_landmark"
    SENSOR_FUSION = "sensor_fusion"
    MANUAL_OVERRIDE = "manual_override"
    RAIL_SNAP = "rail_snap"
    DEMO_MODE = "demo_mode"


@dataclass(frozen=True, slots=True)
class FusedPosition:
    x: float
    y: float
    floor_id: str
    heading: float
    confidence: Confidence
    source: PositioningSource
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def confidence_percent(self) -> int:
        return self.confidence.percent

    def __str__(self) -> str:
        return f"FusedPosition({self.x:.2f}, {self.y:.2f}) on {self.floor_id}, {self.confidence_percent}% [{self.source.value}]"


@dataclass(frozen=True, slots=True)
class QrReset:
    node: Node
    heading: float | None = None
    priority: ClassVar[int] = 0


@dataclass(frozen=True, slots=True)
class LandmarkReset:
    node: Node
    score: float
    priority: ClassVar[int] = 1


@dataclass(frozen=True, slots=True)
class DeadReckoning:
    steps: int
    heading: float
    heading_confidence: SensorConfidence = SensorConfidence.MEDIUM
    walking_state: WalkingState = WalkingState.WALKING
    priority: ClassVar[int] = 2


@dataclass(frozen=True, slots=True)
class ManualOverride:
    x: float
    y: float
    floor_id: str
    heading: float | None = None
    priority: ClassVar[int] = 3


@dataclass(frozen=True, slots=True)
class SimulatedFix:
    x: float
    y: float
    floor_id: str
    heading: float
    priority: ClassVar[int] = 4


@dataclass(frozen=True, slots=True)
class RailSnapRefinement:
    priority: ClassVar[int] = 5


PositionUpdate = Union[QrReset, LandmarkReset, DeadReckoning, ManualOverride, SimulatedFix, RailSnapRefinement]


@dataclass(frozen=True, slots=True)
class SnapOutcome:
    """What the latest rail-snap pass changed."""

    projection: EdgeProjection
    heading_before: float
    heading_after: float
    deviation: float

    @property
    def heading_corrected(self) -> bool:
        return self.heading_before != self.heading_after


def smooth_heading(history: Iterable[float]) -> float:
    """Linearly weighted circular mean; the most recent reading weighs the most."""
    values = np.asarray(list(history), dtype=float)
    if values.size == 0:
        raise ValueError("history must not be empty")
    weights = np.arange(1, values.size + 1, dtype=float)
    radians = np.radians(values)
    sin_sum = float(np.dot(weights, np.sin(radians)))
    cos_sum = float(np.dot(weights, np.cos(radians)))
    return normalize_heading(math.degrees(math.atan2(sin_sum, cos_sum)))


class FusionEngine:
    """Owner of the single current FusedPosition and its confidence factors."""

    def __init__(
        self,
        graph: NavigationGraph,
        step_length: float = STEP_LENGTH_M,
        landmark_min_score: float = LANDMARK_MIN_SCORE,
        max_heading_deviation: float = MAX_DEVIATION_DEG,
    ) -> None:
        if step_length <= 0:
            raise ValueError("step_length must be > 0")
        self._graph = graph
        self._step_length = step_length
        self._landmark_min_score = landmark_min_score
        self._max_heading_deviation = max_heading_deviation

        self._position: FusedPosition | None = None
        self._sensor_factor = 0.7
        self._drift_factor = 1.0
        self._heading_history: deque[float] = deque(maxlen=HEADING_WINDOW)
        self._last_snap: SnapOutcome | None = None
        self._lock = threading.RLock()

        self.position_stream: Broadcaster[FusedPosition] = Broadcaster("fused-position")

    @property
    def current_position(self) -> FusedPosition | None:
        with self._lock:
            return self._position

    @property
    def sensor_factor(self) -> float:
        return self._sensor_factor

    @property
    def drift_factor(self) -> float:
        return self._drift_factor

    @property
    def overall_confidence(self) -> Confidence:
        return Confidence.from_score(self._sensor_factor * self._drift_factor)

    @property
    def last_snap(self) -> SnapOutcome | None:
        return self._last_snap

    # ------------------------------------------------------------------
    # Single update entry point
    # ------------------------------------------------------------------

    def apply(self, update: PositionUpdate) -> FusedPosition | None:
        """Apply one update atomically.

        Returns:
            The new position, or None when the update was dropped.
        """
        with self._lock:
            if isinstance(update, QrReset):
                result = self._apply_qr(update)
            elif isinstance(update, LandmarkReset):
                result = self._apply_landmark(update)
            elif isinstance(update, DeadReckoning):
                result = self._apply_dead_reckoning(update)
            elif isinstance(update, ManualOverride):
                result = self._apply_manual(update)
            elif isinstance(update, SimulatedFix):
                result = self._apply_simulated(update)
            elif isinstance(update, RailSnapRefinement):
                result = self._apply_rail_snap()
            else:
                raise TypeError(f"Unsupported position update: {type(update).__name__}")

            if result is not None:
                self._position = result

        if result is not None:
            self.position_stream.publish(result)
        return result

    def apply_batch(self, updates: Iterable[PositionUpdate]) -> FusedPosition | None:
        """Resolve updates that arrived within the same tick.

        The highest-priority positional update wins and the other positional
        updates are dropped; rail-snap refinement then runs as a correction pass.
        """
        pending = list(updates)
        positional = sorted(
            (u for u in pending if not isinstance(u, RailSnapRefinement)),
            key=lambda u: u.priority,
        )
        wants_snap = any(isinstance(u, RailSnapRefinement) for u in pending)

        result: FusedPosition | None = None
        if positional:
            winner, dropped = positional[0], positional[1:]
            for update in dropped:
                logger.debug("Dropped %s superseded by %s", type(update).__name__, type(winner).__name__)
            result = self.apply(winner)

        if wants_snap:
            snapped = self.apply(RailSnapRefinement())
            result = snapped if snapped is not None else result
        return result

    # ------------------------------------------------------------------
    # Convenience wrappers
    # ------------------------------------------------------------------

    def update_from_qr(self, node: Node, heading: float | None = None) -> FusedPosition | None:
        return self.apply(QrReset(node=node, heading=heading))

    def update_from_visual_landmark(self, node: Node, score: float) -> FusedPosition | None:
        return self.apply(LandmarkReset(node=node, score=score))

    def update_from_sensors(
        self,
        steps: int,
        heading: float,
        heading_confidence: SensorConfidence = SensorConfidence.MEDIUM,
        walking_state: WalkingState = WalkingState.WALKING,
    ) -> FusedPosition | None:
        return self.apply(
            DeadReckoning(
                steps=steps,
                heading=heading,
                heading_confidence=heading_confidence,
                walking_state=walking_state,
            )
        )

    def update_from_manual(
        self, x: float, y: float, floor_id: str, heading: float | None = None
    ) -> FusedPosition | None:
        return self.apply(ManualOverride(x=x, y=y, floor_id=floor_id, heading=heading))

    def apply_rail_snapping(self) -> FusedPosition | None:
        """Snap onto the nearest edge; returns the current position when nothing snaps."""
        snapped = self.apply(RailSnapRefinement())
        return snapped if snapped is not None else self.current_position

    def reset(self) -> None:
        with self._lock:
            self._position = None
            self._sensor_factor = 0.7
            self._drift_factor = 1.0
            self._heading_history.clear()
            self._last_snap = None

    def close(self) -> None:
        self.position_stream.close()

    # ------------------------------------------------------------------
    # Update rules
    # ------------------------------------------------------------------

    def _current_heading(self, fallback: float | None = None) -> float:
        if fallback is not None:
            return normalize_heading(fallback)
        return self._position.heading if self._position is not None else 0.0

    def _apply_qr(self, update: QrReset) -> FusedPosition:
        node = update.node
        self._sensor_factor = 1.0
        self._drift_factor = 1.0
        self._heading_history.clear()
        logger.info("QR reset to %s on %s", node.label or node.id, node.floor_id)
        return FusedPosition(
            x=node.x,
            y=node.y,
            floor_id=node.floor_id,
            heading=self._current_heading(update.heading),
            confidence=Confidence.HIGH,
            source=PositioningSource.QR_SCAN,
        )

    def _apply_landmark(self, update: LandmarkReset) -> FusedPosition | None:
        if update.score < self._landmark_min_score:
            logger.debug("Landmark %s rejected (score %.2f)", update.node.id, update.score)
            return None

        node = update.node
        self._sensor_factor = 0.9
        self._drift_factor = 0.9
        return FusedPosition(
            x=node.x,
            y=node.y,
            floor_id=node.floor_id,
            heading=self._current_heading(),
            confidence=Confidence.HIGH,
            source=PositioningSource.VISUAL_LANDMARK,
        )

    def _apply_dead_reckoning(self, update: DeadReckoning) -> FusedPosition | None:
        current = self._position
        if current is None:
            # No absolute fix yet to advance from.
            return None
        if update.walking_state is not WalkingState.WALKING or update.steps <= 0:
            return None

        self._heading_history.append(normalize_heading(update.heading))
        heading = smooth_heading(self._heading_history)
        x, y = move_along_heading(current.x, current.y, heading, update.steps * self._step_length)

        self._sensor_factor = SENSOR_TIER_SCORES[update.heading_confidence]
        self._drift_factor *= DRIFT_DECAY
        return FusedPosition(
            x=x,
            y=y,
            floor_id=current.floor_id,
            heading=heading,
            confidence=self.overall_confidence,
            source=PositioningSource.SENSOR_FUSION,
        )

    def _apply_manual(self, update: ManualOverride) -> FusedPosition:
        self._sensor_factor = 0.7
        self._drift_factor = 0.9
        return FusedPosition(
            x=float(update.x),
            y=float(update.y),
            floor_id=update.floor_id,
            heading=self._current_heading(update.heading),
            confidence=Confidence.MEDIUM,
            source=PositioningSource.MANUAL_OVERRIDE,
        )

    def _apply_simulated(self, update: SimulatedFix) -> FusedPosition:
        self._sensor_factor = 1.0
        self._drift_factor = 1.0
        self._heading_history.clear()
        return FusedPosition(
            x=float(update.x),
            y=float(update.y),
            floor_id=update.floor_id,
            heading=normalize_heading(update.heading),
            confidence=Confidence.HIGH,
            source=PositioningSource.DEMO_MODE,
        )

    def _apply_rail_snap(self) -> FusedPosition | None:
        current = self._position
        if current is None:
            return None

        nodes = self._graph.node_map
        projection = nearest_edge(
            current.x,
            current.y,
            self._graph.edges_by_floor(current.floor_id),
            nodes,
            floor_id=current.floor_id,
            heading=current.heading,
        )
        if projection is None:
            return None

        heading = snap_heading(
            current.heading,
            projection.edge,
            nodes,
            max_deviation=self._max_heading_deviation,
        )
        self._last_snap = SnapOutcome(
            projection=projection,
            heading_before=current.heading,
            heading_after=heading,
            deviation=heading_deviation(current.heading, projection.edge, nodes),
        )
        self._drift_factor = min(1.0, max(0.0, self._drift_factor * SNAP_RECOVERY))
        return FusedPosition(
            x=projection.x,
            y=projection.y,
            floor_id=current.floor_id,
            heading=heading,
            confidence=self.overall_confidence,
            source=PositioningSource.RAIL_SNAP,
        )
