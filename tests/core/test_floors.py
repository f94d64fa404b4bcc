"""Unit tests for navcore.floors."""

from __future__ import annotations

import pytest

from navcore.floors import FloorManager
from navcore.graph import NavigationGraph, Node


def test_same_floor_route_is_direct(corridor_graph: NavigationGraph) -> None:
    """Same-floor requests run a single A* leg."""
    manager = FloorManager(corridor_graph)
    nodes = corridor_graph.node_map

    path = manager.route(nodes["A"], nodes["C"])
    assert [node.id for node in path.nodes] == ["A", "B", "C"]
    assert not FloorManager.path_crosses_floors(path)
    assert FloorManager.floor_transitions(path) == []


def test_cross_floor_route_stitches_through_linked_stairs(two_floor_graph: NavigationGraph) -> None:
    """Ground -> first goes to the stairs, changes floor, then continues."""
    manager = FloorManager(two_floor_graph)
    nodes = two_floor_graph.node_map

    path = manager.route(nodes["G1"], nodes["F1"])
    assert [node.id for node in path.nodes] == ["G1", "S0", "S1", "F1"]
    assert path.crosses_floors
    assert path.total_distance == pytest.approx(30.0)

    transitions = FloorManager.floor_transitions(path)
    assert len(transitions) == 1
    transition = transitions[0]
    assert (transition.from_floor_id, transition.to_floor_id) == ("ground", "first")
    assert transition.node_index == 2
    assert transition.transition_type == "stairs"
    assert transition.instruction == "Take stairs from ground to first"


def test_unlinked_connectors_give_no_route() -> None:
    """Connectors on different floors are not paired by proximity alone."""
    graph = NavigationGraph()
    graph.load_nodes(
        [
            Node("G1", 0, 0, "ground", ("E0",)),
            Node("E0", 5, 0, "ground", ("G1",), is_elevator=True),
            Node("E1", 5, 0, "first", ("F1",), is_elevator=True),
            Node("F1", 5, 9, "first", ("E1",)),
        ]
    )
    manager = FloorManager(graph)
    nodes = graph.node_map
    assert not manager.route(nodes["G1"], nodes["F1"]).is_valid

    graph.link_connectors("E0", "E1")
    path = manager.route(nodes["G1"], nodes["F1"])
    assert [node.id for node in path.nodes] == ["G1", "E0", "E1", "F1"]
    assert FloorManager.floor_transitions(path)[0].transition_type == "elevator"


def test_cross_floor_route_picks_cheapest_connector_pair() -> None:
    """With two staircases the shorter total wins."""
    graph = NavigationGraph()
    graph.load_nodes(
        [
            Node("start", 0, 0, "ground", ("west0", "east0")),
            Node("west0", -5, 0, "ground", ("start",), is_stairs=True, link_group="west"),
            Node("east0", 40, 0, "ground", ("start",), is_stairs=True, link_group="east"),
            Node("west1", -5, 0, "first", ("goal",), is_stairs=True, link_group="west"),
            Node("east1", 40, 0, "first", ("goal",), is_stairs=True, link_group="east"),
            Node("goal", 0, 10, "first", ("west1", "east1")),
        ]
    )
    manager = FloorManager(graph)
    nodes = graph.node_map

    path = manager.route(nodes["start"], nodes["goal"])
    assert [node.id for node in path.nodes] == ["start", "west0", "west1", "goal"]


def test_blocked_stairs_approach_falls_back_to_other_connector() -> None:
    """Blocking the only corridor to one staircase reroutes via the other."""
    graph = NavigationGraph()
    graph.load_nodes(
        [
            Node("start", 0, 0, "ground", ("west0", "east0")),
            Node("west0", -5, 0, "ground", ("start",), is_stairs=True, link_group="west"),
            Node("east0", 40, 0, "ground", ("start",), is_stairs=True, link_group="east"),
            Node("west1", -5, 0, "first", ("goal",), is_stairs=True, link_group="west"),
            Node("east1", 40, 0, "first", ("goal",), is_stairs=True, link_group="east"),
            Node("goal", 0, 10, "first", ("west1", "east1")),
        ]
    )
    graph.block_edge("start", "west0", "Stairwell closed")
    manager = FloorManager(graph)
    nodes = graph.node_map

    path = manager.route(nodes["start"], nodes["goal"])
    assert [node.id for node in path.nodes] == ["start", "east0", "east1", "goal"]


def test_missing_connectors_give_empty_path() -> None:
    """No connectors on either floor means no cross-floor route."""
    graph = NavigationGraph()
    graph.load_nodes([Node("a", 0, 0, "ground"), Node("b", 0, 0, "first")])
    manager = FloorManager(graph)

    assert manager.route(graph.node_map["a"], graph.node_map["b"]).nodes == ()


def test_current_floor_helpers(two_floor_graph: NavigationGraph) -> None:
    """Current floor drives the connector listing."""
    manager = FloorManager(two_floor_graph)
    assert manager.current_floor_connectors() == []
    assert manager.available_floors() == ["first", "ground"]

    manager.set_current_floor("ground")
    assert manager.current_floor_id == "ground"
    assert [node.id for node in manager.current_floor_connectors()] == ["S0"]


def _stairs_with_flight_edge(link_group: str | None) -> NavigationGraph:
    """Two floors whose stair landings are also joined by an S0-S1 edge."""
    graph = NavigationGraph()
    graph.load_nodes(
        [
            Node("G1", 0.0, 0.0, "ground", ("S0",)),
            Node("S0", 10.0, 0.0, "ground", ("G1", "S1"), is_stairs=True, link_group=link_group),
            Node("S1", 10.0, 0.0, "first", ("F1", "S0"), is_stairs=True, link_group=link_group),
            Node("F1", 10.0, 20.0, "first", ("S1",), location_id="lab"),
        ]
    )
    return graph


def test_blocked_flight_edge_closes_linked_stairs() -> None:
    """A blocked edge between linked landings removes the floor transfer."""
    graph = _stairs_with_flight_edge("stairs-1")
    manager = FloorManager(graph)
    nodes = graph.node_map
    assert [node.id for node in manager.route(nodes["G1"], nodes["F1"]).nodes] == ["G1", "S0", "S1", "F1"]

    graph.block_edge("S0", "S1", "Stairwell flooded")
    assert not manager.route(nodes["G1"], nodes["F1"]).is_valid

    graph.unblock_edge("S1", "S0")
    assert manager.route(nodes["G1"], nodes["F1"]).is_valid


def test_flight_edge_links_connectors_without_group() -> None:
    """An open edge between two connectors is enough to change floors."""
    graph = _stairs_with_flight_edge(None)
    manager = FloorManager(graph)
    nodes = graph.node_map

    assert graph.are_connectors_linked(nodes["S0"], nodes["S1"])
    path = manager.route(nodes["G1"], nodes["F1"])
    assert [node.id for node in path.nodes] == ["G1", "S0", "S1", "F1"]
    assert FloorManager.floor_transitions(path)[0].transition_type == "stairs"

    graph.block_edge("S0", "S1", "Closed")
    assert not graph.are_connectors_linked(nodes["S0"], nodes["S1"])
    assert not manager.route(nodes["G1"], nodes["F1"]).is_valid
