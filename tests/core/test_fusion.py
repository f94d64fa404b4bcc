"""Unit tests for navcore.fusion."""

from __future__ import annotations

import pytest

from navcore.fusion import (
    Confidence,
    DeadReckoning,
    FusedPosition,
    FusionEngine,
    LandmarkReset,
    ManualOverride,
    PositioningSource,
    QrReset,
    RailSnapRefinement,
    SimulatedFix,
    smooth_heading,
)
from navcore.graph import NavigationGraph
from navcore.sensors import SensorConfidence, WalkingState


@pytest.fixture()
def engine(corridor_graph: NavigationGraph) -> FusionEngine:
    """Fusion engine over the corridor graph."""
    return FusionEngine(corridor_graph)


def test_qr_reset_is_ground_truth(engine: FusionEngine, corridor_graph: NavigationGraph) -> None:
    """QR scans place the user exactly on the node with HIGH confidence."""
    node = corridor_graph.node_map["B"]
    position = engine.update_from_qr(node, heading=45.0)

    assert position is not None
    assert (position.x, position.y, position.floor_id) == (10.0, 0.0, "ground")
    assert position.heading == pytest.approx(45.0)
    assert position.confidence is Confidence.HIGH
    assert position.source is PositioningSource.QR_SCAN
    assert position.confidence_percent == 90
    assert engine.sensor_factor == 1.0
    assert engine.drift_factor == 1.0


def test_dead_reckoning_before_any_fix_is_ignored(engine: FusionEngine) -> None:
    """Without an initial position there is nothing to advance."""
    assert engine.update_from_sensors(steps=10, heading=90.0) is None
    assert engine.current_position is None


def test_dead_reckoning_zero_steps_does_not_move(engine: FusionEngine, corridor_graph: NavigationGraph) -> None:
    """A zero-step update leaves the position untouched."""
    before = engine.update_from_qr(corridor_graph.node_map["A"])

    assert engine.update_from_sensors(steps=0, heading=90.0) is None
    assert engine.current_position == before


def test_dead_reckoning_ignored_when_not_walking(engine: FusionEngine, corridor_graph: NavigationGraph) -> None:
    """Still or unknown walking state freezes the position."""
    before = engine.update_from_qr(corridor_graph.node_map["A"])

    assert engine.update_from_sensors(steps=5, heading=90.0, walking_state=WalkingState.STILL) is None
    assert engine.update_from_sensors(steps=5, heading=90.0, walking_state=WalkingState.UNKNOWN) is None
    assert engine.current_position == before


def test_dead_reckoning_advances_along_heading(engine: FusionEngine, corridor_graph: NavigationGraph) -> None:
    """Ten 0.7 m steps east from A end at (7, 0)."""
    engine.update_from_qr(corridor_graph.node_map["A"])
    position = engine.update_from_sensors(steps=10, heading=90.0, heading_confidence=SensorConfidence.HIGH)

    assert position is not None
    assert position.x == pytest.approx(7.0)
    assert position.y == pytest.approx(0.0, abs=1e-9)
    assert position.source is PositioningSource.SENSOR_FUSION
    assert engine.sensor_factor == pytest.approx(0.9)
    assert engine.drift_factor == pytest.approx(0.98)


def test_drift_factor_never_increases_under_dead_reckoning(
    engine: FusionEngine, corridor_graph: NavigationGraph
) -> None:
    """Each dead-reckoning update decays the drift factor."""
    engine.update_from_qr(corridor_graph.node_map["A"])
    previous = engine.drift_factor
    for _ in range(20):
        engine.update_from_sensors(steps=1, heading=90.0)
        assert engine.drift_factor <= previous
        previous = engine.drift_factor
    assert engine.overall_confidence is Confidence.LOW


def test_low_sensor_confidence_lowers_overall_confidence(
    engine: FusionEngine, corridor_graph: NavigationGraph
) -> None:
    """LOW compass confidence maps to a LOW fused confidence."""
    engine.update_from_qr(corridor_graph.node_map["A"])
    position = engine.update_from_sensors(steps=1, heading=90.0, heading_confidence=SensorConfidence.LOW)

    assert position is not None
    assert position.confidence is Confidence.LOW
    assert position.confidence_percent == 30


def test_landmark_threshold(engine: FusionEngine, corridor_graph: NavigationGraph) -> None:
    """A 0.79 match is rejected while a 0.81 match resets the position."""
    node = corridor_graph.node_map["C"]

    assert engine.update_from_visual_landmark(node, 0.79) is None
    assert engine.current_position is None

    position = engine.update_from_visual_landmark(node, 0.81)
    assert position is not None
    assert (position.x, position.y) == (20.0, 0.0)
    assert position.source is PositioningSource.VISUAL_LANDMARK
    assert engine.sensor_factor == pytest.approx(0.9)
    assert engine.drift_factor == pytest.approx(0.9)


def test_manual_override_sets_medium_confidence(engine: FusionEngine) -> None:
    """Manual corrections are trusted but not ground truth."""
    position = engine.update_from_manual(3.0, 4.0, "ground", heading=370.0)

    assert position is not None
    assert position.confidence is Confidence.MEDIUM
    assert position.source is PositioningSource.MANUAL_OVERRIDE
    assert position.heading == pytest.approx(10.0)


def test_simulated_fix_uses_demo_source(engine: FusionEngine) -> None:
    """Demo positions are reported with the DEMO source."""
    position = engine.apply(SimulatedFix(x=1.0, y=0.0, floor_id="ground", heading=90.0))

    assert position is not None
    assert position.source is PositioningSource.DEMO_MODE
    assert position.confidence is Confidence.HIGH


def test_rail_snap_projects_and_corrects_heading(engine: FusionEngine) -> None:
    """A drifted position returns onto the corridor with the corridor bearing."""
    engine.update_from_manual(5.0, 1.0, "ground", heading=130.0)
    position = engine.apply_rail_snapping()

    assert position is not None
    assert (position.x, position.y) == pytest.approx((5.0, 0.0))
    assert position.heading == pytest.approx(90.0)
    assert position.source is PositioningSource.RAIL_SNAP

    outcome = engine.last_snap
    assert outcome is not None
    assert outcome.heading_corrected
    assert outcome.deviation == pytest.approx(40.0)


def test_rail_snap_keeps_aligned_heading(engine: FusionEngine) -> None:
    """Headings within the threshold survive snapping."""
    engine.update_from_manual(5.0, 1.0, "ground", heading=260.0)
    position = engine.apply_rail_snapping()

    assert position is not None
    assert position.heading == pytest.approx(260.0)
    assert engine.last_snap is not None and not engine.last_snap.heading_corrected


def test_rail_snap_without_position_is_noop(engine: FusionEngine) -> None:
    """Nothing to snap before the first fix."""
    assert engine.apply(RailSnapRefinement()) is None
    assert engine.apply_rail_snapping() is None


def test_apply_batch_highest_priority_wins(engine: FusionEngine, corridor_graph: NavigationGraph) -> None:
    """When updates collide, QR beats manual and dead reckoning."""
    engine.update_from_manual(5.0, 0.0, "ground")
    position = engine.apply_batch(
        [
            DeadReckoning(steps=3, heading=90.0),
            ManualOverride(x=15.0, y=0.0, floor_id="ground"),
            QrReset(node=corridor_graph.node_map["A"]),
        ]
    )

    assert position is not None
    assert position.source is PositioningSource.QR_SCAN
    assert (position.x, position.y) == (0.0, 0.0)


def test_apply_batch_runs_rail_snap_last(engine: FusionEngine, corridor_graph: NavigationGraph) -> None:
    """Rail snap refines the winning update instead of competing with it."""
    position = engine.apply_batch(
        [
            RailSnapRefinement(),
            LandmarkReset(node=corridor_graph.node_map["B"], score=0.95),
            ManualOverride(x=15.0, y=2.0, floor_id="ground"),
        ]
    )

    assert position is not None
    assert position.source is PositioningSource.RAIL_SNAP
    assert (position.x, position.y) == pytest.approx((10.0, 0.0))


def test_unknown_update_type_raises(engine: FusionEngine) -> None:
    """Only the declared update variants are accepted."""
    with pytest.raises(TypeError, match="Unsupported position update"):
        engine.apply(object())  # type: ignore[arg-type]


def test_updates_are_broadcast(engine: FusionEngine, corridor_graph: NavigationGraph) -> None:
    """Every accepted update reaches position stream subscribers."""
    received: list[FusedPosition] = []
    engine.position_stream.subscribe(received.append)

    engine.update_from_qr(corridor_graph.node_map["A"])
    engine.update_from_visual_landmark(corridor_graph.node_map["C"], 0.5)
    engine.update_from_manual(1.0, 1.0, "ground")

    assert [position.source for position in received] == [
        PositioningSource.QR_SCAN,
        PositioningSource.MANUAL_OVERRIDE,
    ]


def test_reset_clears_state(engine: FusionEngine, corridor_graph: NavigationGraph) -> None:
    """reset() forgets the position and restores initial factors."""
    engine.update_from_qr(corridor_graph.node_map["A"])
    engine.reset()

    assert engine.current_position is None
    assert engine.sensor_factor == pytest.approx(0.7)
    assert engine.drift_factor == pytest.approx(1.0)


def test_smooth_heading_handles_wraparound() -> None:
    """Averaging 350 and 10 stays near north instead of pointing south."""
    smoothed = smooth_heading([350.0, 10.0])
    assert 0.0 <= smoothed < 10.0


def test_smooth_heading_weights_recent_readings() -> None:
    """The most recent reading pulls the mean towards itself."""
    assert smooth_heading([0.0, 90.0]) > 45.0
    assert smooth_heading([90.0]) == pytest.approx(90.0)

    with pytest.raises(ValueError, match="must not be empty"):
        smooth_heading([])


def test_confidence_from_score_thresholds() -> None:
    """Scores map onto HIGH / MEDIUM / LOW tiers."""
    assert Confidence.from_score(0.8) is Confidence.HIGH
    assert Confidence.from_score(0.79) is Confidence.MEDIUM
    assert Confidence.from_score(0.5) is Confidence.MEDIUM
    assert Confidence.from_score(0.49) is Confidence.LOW
