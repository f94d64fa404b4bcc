"""Pytest global fixtures and test isolation hooks."""

from __future__ import annotations

import pytest

from navcore.api import STATE
from navcore.graph import NavigationGraph, Node
from navcore.settings import NavigationSettings


@pytest.fixture(autouse=True)
def reset_service_state() -> None:
    """Reset in-memory API engine state before each test."""
    STATE.reset(NavigationSettings())


def corridor_nodes() -> list[Node]:
    """Straight ground-floor corridor A(0,0) - B(10,0) - C(20,0)."""
    return [
        Node("A", 0.0, 0.0, "ground", ("B",), label="Entrance"),
        Node("B", 10.0, 0.0, "ground", ("A", "C"), label="Junction"),
        Node("C", 20.0, 0.0, "ground", ("B",), location_id="room-c", label="Room C"),
    ]


def loop_nodes() -> list[Node]:
    """Corridor plus a longer detour A - D(10,10) - C."""
    return [
        Node("A", 0.0, 0.0, "ground", ("B", "D"), label="Entrance"),
        Node("B", 10.0, 0.0, "ground", ("A", "C"), label="Junction"),
        Node("C", 20.0, 0.0, "ground", ("B", "D"), location_id="room-c", label="Room C"),
        Node("D", 10.0, 10.0, "ground", ("A", "C"), label="Detour"),
    ]


def two_floor_nodes() -> list[Node]:
    """Ground and first floor joined by one staircase (link group `stairs-1`)."""
    return [
        Node("G1", 0.0, 0.0, "ground", ("S0",), label="Lobby"),
        Node("S0", 10.0, 0.0, "ground", ("G1",), is_stairs=True, link_group="stairs-1"),
        Node("S1", 10.0, 0.0, "first", ("F1",), is_stairs=True, link_group="stairs-1"),
        Node("F1", 10.0, 20.0, "first", ("S1",), location_id="lab", label="Lab"),
    ]


def build_graph(nodes: list[Node]) -> NavigationGraph:
    graph = NavigationGraph()
    graph.load_nodes(nodes)
    return graph


@pytest.fixture()
def corridor() -> list[Node]:
    """Provide the three corridor nodes."""
    return corridor_nodes()


@pytest.fixture()
def loop() -> list[Node]:
    """Provide the corridor-with-detour nodes."""
    return loop_nodes()


@pytest.fixture()
def two_floors() -> list[Node]:
    """Provide the two-floor nodes."""
    return two_floor_nodes()


@pytest.fixture()
def corridor_graph() -> NavigationGraph:
    """Provide the three-node corridor graph."""
    return build_graph(corridor_nodes())


@pytest.fixture()
def loop_graph() -> NavigationGraph:
    """Provide the corridor graph with a detour around A-B."""
    return build_graph(loop_nodes())


@pytest.fixture()
def two_floor_graph() -> NavigationGraph:
    """Provide a two-floor graph joined by linked stairs."""
    return build_graph(two_floor_nodes())
