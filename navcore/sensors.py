"""Sensor input boundary consumed by the positioning pipeline.

Raw accelerometer/magnetometer/gyroscope acquisition lives outside navcore.
The host application pushes discrete readings into a `SensorState`, and the
pipeline reads them through the `SensorSource` protocol.
"""

from __future__ import annotations

import threading
from enum import Enum
from typing import Protocol


class SensorConfidence(str, Enum):
    """Reliability tier reported alongside compass readings."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class WalkingState(str, Enum):
    WALKING = "walking"
    STILL = "still"
    UNKNOWN = "unknown"


class SensorSource(Protocol):
    def walking_state(self) -> WalkingState: ...

    def step_count(self) -> int: ...

    def compass_heading(self) -> float: ...

    def heading_confidence(self) -> SensorConfidence: ...

    def device_tilt(self) -> float: ...


class SensorState:
    """Thread-safe buffer of the latest sensor readings.

    `step_count` is cumulative; the pipeline consumes the delta since its
    previous tick.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._steps = 0
        self._heading = 0.0
        self._confidence = SensorConfidence.MEDIUM
        self._tilt = 0.0
        self._walking = WalkingState.UNKNOWN

    def record_steps(self, count: int = 1) -> None:
        if count < 0:
            raise ValueError("Step increments must be >= 0")
        with self._lock:
            self._steps += int(count)

    def record_heading(self, degrees: float, confidence: SensorConfidence = SensorConfidence.MEDIUM) -> None:
        with self._lock:
            self._heading = float(degrees) % 360.0
            self._confidence = confidence

    def record_tilt(self, degrees: float) -> None:
        with self._lock:
            self._tilt = abs(float(degrees))

    def record_walking_state(self, state: WalkingState) -> None:
        with self._lock:
            self._walking = state

    def walking_state(self) -> WalkingState:
        with self._lock:
            return self._walking

    def step_count(self) -> int:
        with self._lock:
            return self._steps

    def compass_heading(self) -> float:
        with self._lock:
            return self._heading

    def heading_confidence(self) -> SensorConfidence:
        with self._lock:
            return self._confidence

    def device_tilt(self) -> float:
        with self._lock:
            return self._tilt
