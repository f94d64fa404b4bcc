"""Hybrid positioning pipeline driven by a periodic tick.

Pipeline for one Smart-mode tick:
1. Read the walking state; freeze while still.
2. While walking, consume new steps along the compass heading (the last known
   heading replaces the compass when the device is tilted past the limit).
3. Apply rail snapping and count heading corrections.
4. Advise Manual mode after too many corrections within the rolling window.

Assisted mode only snaps; Manual mode changes position only through explicit
calls. Sensor instability forces Smart -> Assisted.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from enum import Enum
from typing import Any, Callable

from navcore.events import Broadcaster, PositioningEvent, PositioningEventLog
from navcore.fusion import LANDMARK_MIN_SCORE, FusedPosition, FusionEngine, RailSnapRefinement
from navcore.graph import Node
from navcore.sensors import SensorSource, WalkingState

logger = logging.getLogger(__name__)

MAX_TILT_DEG = 45.0
MAX_CORRECTIONS = 5
CORRECTION_WINDOW_S = 120.0


class PositioningMode(str, Enum):
    SMART = "smart"
    ASSISTED = "assisted"
    MANUAL = "manual"


class PositioningManager:
    """Mode owner and tick pipeline on top of a FusionEngine."""

    def __init__(
        self,
        sensors: SensorSource,
        fusion: FusionEngine,
        max_tilt_deg: float = MAX_TILT_DEG,
        max_corrections: int = MAX_CORRECTIONS,
        correction_window_s: float = CORRECTION_WINDOW_S,
        landmark_min_score: float = LANDMARK_MIN_SCORE,
        clock: Callable[[], float] = time.monotonic,
        event_log: PositioningEventLog | None = None,
    ) -> None:
        if max_corrections <= 0:
            raise ValueError("max_corrections must be > 0")
        if correction_window_s <= 0:
            raise ValueError("correction_window_s must be > 0")

        self._sensors = sensors
        self._fusion = fusion
        self._max_tilt = max_tilt_deg
        self._max_corrections = max_corrections
        self._correction_window = correction_window_s
        self._landmark_min_score = landmark_min_score
        self._clock = clock

        self._mode = PositioningMode.SMART
        self._last_step_count = sensors.step_count()
        self._last_walking_state: WalkingState | None = None
        self._corrections: deque[float] = deque()

        self.event_log = event_log if event_log is not None else PositioningEventLog()
        self.event_stream: Broadcaster[PositioningEvent] = Broadcaster("positioning-events")

    @property
    def mode(self) -> PositioningMode:
        return self._mode

    @property
    def current_position(self) -> FusedPosition | None:
        return self._fusion.current_position

    @property
    def correction_count(self) -> int:
        return len(self._corrections)

    # ------------------------------------------------------------------
    # Tick pipeline
    # ------------------------------------------------------------------

    def tick(self) -> FusedPosition | None:
        """Run one pipeline step for the current mode."""
        if self._mode is PositioningMode.SMART:
            return self._tick_smart()
        if self._mode is PositioningMode.ASSISTED:
            return self._tick_assisted()
        return self._fusion.current_position

    def _tick_smart(self) -> FusedPosition | None:
        state = self._sensors.walking_state()
        if state is not self._last_walking_state:
            self._on_walking_state_changed(state)

        if state is WalkingState.STILL:
            frozen = self._fusion.current_position
            if frozen is not None:
                self._fusion.position_stream.publish(frozen)
            return frozen

        if state is WalkingState.WALKING:
            self._consume_steps()

        snapped = self._fusion.apply(RailSnapRefinement())
        outcome = self._fusion.last_snap
        if snapped is not None and outcome is not None and outcome.heading_corrected:
            self._log(
                "HEADING_SNAP",
                "Heading corrected to corridor direction",
                {"deviation": round(outcome.deviation, 1), "edge": outcome.projection.edge.id},
            )
            self._record_correction()

        return self._fusion.current_position

    def _tick_assisted(self) -> FusedPosition | None:
        if self._fusion.current_position is None:
            return None
        return self._fusion.apply_rail_snapping()

    def _consume_steps(self) -> None:
        total = self._sensors.step_count()
        new_steps = total - self._last_step_count
        if new_steps <= 0:
            return

        heading = self._sensors.compass_heading()
        tilt = self._sensors.device_tilt()
        if tilt > self._max_tilt:
            current = self._fusion.current_position
            if current is not None:
                heading = current.heading
            self._log("TILT_OVERRIDE", "Device tilted, using last known heading", {"tilt": round(tilt, 1)})

        self._fusion.update_from_sensors(
            steps=new_steps,
            heading=heading,
            heading_confidence=self._sensors.heading_confidence(),
            walking_state=WalkingState.WALKING,
        )
        self._last_step_count = total

    def _record_correction(self) -> None:
        now = self._clock()
        while self._corrections and now - self._corrections[0] > self._correction_window:
            self._corrections.popleft()
        self._corrections.append(now)

        if len(self._corrections) >= self._max_corrections:
            self._log(
                "SUGGEST_MANUAL",
                "Multiple corrections needed. Consider switching to Manual mode.",
                {"corrections": len(self._corrections)},
            )
            self._corrections.clear()

    def _on_walking_state_changed(self, state: WalkingState) -> None:
        self._last_walking_state = state
        if state is WalkingState.STILL:
            self._log("STATE_CHANGE", "User stopped moving")
        elif state is WalkingState.WALKING:
            self._log("STATE_CHANGE", "User started walking")

    # ------------------------------------------------------------------
    # Mode switching
    # ------------------------------------------------------------------

    def set_mode(self, mode: PositioningMode) -> None:
        if mode is self._mode:
            return
        previous = self._mode
        self._mode = mode
        self._corrections.clear()
        if mode is PositioningMode.SMART:
            # Steps counted outside Smart mode are not replayed.
            self._last_step_count = self._sensors.step_count()
        self._log("MODE_SWITCH", f"Changed from {previous.value} to {mode.value}")

    def handle_sensor_instability(self) -> bool:
        """Downgrade Smart -> Assisted; returns True when the mode changed."""
        if self._mode is not PositioningMode.SMART:
            return False
        self.set_mode(PositioningMode.ASSISTED)
        self._log("AUTO_SWITCH", "Sensors unstable, switched to Assisted mode")
        return True

    # ------------------------------------------------------------------
    # Absolute resets
    # ------------------------------------------------------------------

    def reset_from_qr(self, node: Node, heading: float | None = None) -> FusedPosition | None:
        position = self._fusion.update_from_qr(node, heading)
        self._last_step_count = self._sensors.step_count()
        self._corrections.clear()
        self._log("QR_RESET", f"Position synced to {node.label or node.id}")
        return position

    def reset_from_visual_landmark(self, node: Node, score: float) -> FusedPosition | None:
        if score < self._landmark_min_score:
            self._log("LANDMARK_REJECTED", f"Visual match confidence too low: {score * 100:.0f}%")
            return None

        position = self._fusion.update_from_visual_landmark(node, score)
        self._last_step_count = self._sensors.step_count()
        self._log("LANDMARK_RESET", f"Position synced to {node.label or node.id} ({score * 100:.0f}% confidence)")
        return position

    def set_manual_position(
        self, x: float, y: float, floor_id: str, heading: float | None = None
    ) -> FusedPosition | None:
        position = self._fusion.update_from_manual(x, y, floor_id, heading)
        self._last_step_count = self._sensors.step_count()
        self._log("MANUAL_OVERRIDE", "Position manually set")
        return position

    def change_floor(self, floor_id: str) -> FusedPosition | None:
        current = self._fusion.current_position
        if current is None:
            return None
        position = self._fusion.update_from_manual(current.x, current.y, floor_id, current.heading)
        self._log("FLOOR_CHANGE", f"Floor changed to {floor_id}")
        return position

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _log(self, event_type: str, message: str, data: dict[str, Any] | None = None) -> None:
        event = PositioningEvent(type=event_type, message=message, data=data)
        self.event_log.record(event)
        logger.info("%s", event)
        self.event_stream.publish(event)

    def close(self) -> None:
        self.event_stream.close()


class PeriodicTicker:
    """Cooperative asyncio timer calling `callback` every `interval_s` seconds."""

    def __init__(self, callback: Callable[[], Any], interval_s: float) -> None:
        if interval_s <= 0:
            raise ValueError("interval_s must be > 0")
        self._callback = callback
        self._interval = interval_s
        self._task: asyncio.Task[None] | None = None
        self._stop: asyncio.Event | None = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task[None]:
        """Schedule the loop on the running event loop."""
        if self.running:
            assert self._task is not None
            return self._task
        self._stop = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    async def stop(self) -> None:
        if self._stop is not None:
            self._stop.set()
        if self._task is not None:
            await self._task
        self._task = None

    async def _run(self) -> None:
        assert self._stop is not None
        while not self._stop.is_set():
            try:
                self._callback()
            except Exception:
                logger.exception("Periodic tick failed")
            self.ticks += 1
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                continue
