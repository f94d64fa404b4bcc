"""Unit tests for navcore.demo."""

from __future__ import annotations

import pytest

from navcore.demo import DemoSimulator, DemoState
from navcore.fusion import FusionEngine, PositioningSource
from navcore.graph import NavigationGraph
from navcore.pathfinding import Path, astar, build_path


@pytest.fixture()
def corridor_path(corridor_graph: NavigationGraph) -> Path:
    """Route A -> C along the corridor (20 m)."""
    nodes = corridor_graph.node_map
    return build_path(astar(nodes["A"], nodes["C"], nodes, graph=corridor_graph))


def test_demo_walks_along_path(corridor_graph: NavigationGraph, corridor_path: Path) -> None:
    """Positions advance at walking speed and carry the DEMO source."""
    fusion = FusionEngine(corridor_graph)
    demo = DemoSimulator(corridor_path, fusion)

    start = demo.start()
    assert start is not None and (start.x, start.y) == (0.0, 0.0)

    position = demo.advance(5.0)
    assert position is not None
    assert position.x == pytest.approx(7.0)
    assert position.y == pytest.approx(0.0)
    assert position.heading == pytest.approx(90.0)
    assert position.source is PositioningSource.DEMO_MODE
    assert fusion.current_position == position
    assert demo.progress == pytest.approx(0.35)


def test_demo_finishes_at_destination(corridor_graph: NavigationGraph, corridor_path: Path) -> None:
    """Advancing past the end clamps onto the last node."""
    demo = DemoSimulator(corridor_path, FusionEngine(corridor_graph))
    demo.start()

    position = demo.advance(60.0)

    assert position is not None
    assert (position.x, position.y) == pytest.approx((20.0, 0.0))
    assert demo.is_finished
    assert demo.progress == 1.0
    assert demo.advance(1.0) is None


def test_demo_pause_resume_and_stop(corridor_graph: NavigationGraph, corridor_path: Path) -> None:
    """Paused or stopped demos ignore time."""
    demo = DemoSimulator(corridor_path, FusionEngine(corridor_graph))
    assert demo.advance(1.0) is None

    demo.start()
    demo.pause()
    assert demo.state is DemoState.PAUSED
    assert demo.advance(1.0) is None

    demo.resume()
    assert demo.advance(1.0) is not None

    demo.stop()
    assert demo.state is DemoState.STOPPED
    assert demo.advance(1.0) is None


def test_speed_multiplier_is_clamped(corridor_graph: NavigationGraph, corridor_path: Path) -> None:
    """Multipliers stay within [0.5, 5.0]."""
    demo = DemoSimulator(corridor_path, FusionEngine(corridor_graph), speed_multiplier=10.0)
    assert demo.speed_multiplier == 5.0

    demo.speed_multiplier = 0.1
    assert demo.speed_multiplier == 0.5

    demo.speed_multiplier = 2.0
    demo.start()
    position = demo.advance(1.0)
    assert position is not None
    assert position.x == pytest.approx(2.8)


def test_demo_requires_valid_path(corridor_graph: NavigationGraph) -> None:
    """An empty path cannot be simulated."""
    with pytest.raises(ValueError, match="non-empty path"):
        DemoSimulator(Path.empty(), FusionEngine(corridor_graph))


def test_negative_time_step_raises(corridor_graph: NavigationGraph, corridor_path: Path) -> None:
    """Simulated time never runs backwards."""
    demo = DemoSimulator(corridor_path, FusionEngine(corridor_graph))
    demo.start()
    with pytest.raises(ValueError, match="dt_s"):
        demo.advance(-1.0)
