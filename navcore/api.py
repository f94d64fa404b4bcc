"""FastAPI routes exposing the navigation core.

The adapter only translates HTTP payloads into engine calls:
- Graph loading (`/graph`, `/floors`)
- Route navigation and demo walks (`/navigation/*`, `/edges/*`)
- Hybrid positioning (`/positioning/*`), ticked in the background while the app runs
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, model_validator

from navcore.fusion import FusedPosition
from navcore.graph import Node, NodeType
from navcore.navigation import CurrentPosition, Destination, NavigationEngine, NavigationInstruction
from navcore.pathfinding import Path
from navcore.positioning import PeriodicTicker, PositioningMode
from navcore.sensors import SensorConfidence, SensorState, WalkingState
from navcore.settings import NavigationSettings
from navcore.utils import to_serializable_path

logger = logging.getLogger(__name__)

API_VERSION = "0.1.0"


@dataclass
class ServiceState:
    """In-memory engine shared by all requests."""

    settings: NavigationSettings = field(default_factory=NavigationSettings)
    sensors: SensorState = field(default_factory=SensorState)
    engine: NavigationEngine | None = None
    ticker: PeriodicTicker | None = None

    def reset(self, settings: NavigationSettings | None = None) -> None:
        if self.engine is not None:
            self.engine.close()
        self.settings = settings or NavigationSettings()
        self.sensors = SensorState()
        self.engine = NavigationEngine(sensors=self.sensors, settings=self.settings)


STATE = ServiceState()


class NodePayload(BaseModel):
    """Graph node as supplied by the building directory."""

    id: str = Field(..., min_length=1)
    x: float
    y: float
    floor_id: str = Field(..., min_length=1)
    connected_node_ids: list[str] = Field(default_factory=list)
    location_id: str | None = None
    is_walkable: bool = True
    is_stairs: bool = False
    is_elevator: bool = False
    label: str | None = None
    node_type: NodeType = NodeType.CHECKPOINT
    link_group: str | None = None

    def to_node(self) -> Node:
        return Node(
            id=self.id,
            x=self.x,
            y=self.y,
            floor_id=self.floor_id,
            connected_node_ids=tuple(self.connected_node_ids),
            location_id=self.location_id,
            is_walkable=self.is_walkable,
            is_stairs=self.is_stairs,
            is_elevator=self.is_elevator,
            label=self.label,
            node_type=self.node_type,
            link_group=self.link_group,
        )


class GraphRequest(BaseModel):
    nodes: list[NodePayload] = Field(..., min_length=1)
    connector_links: list[tuple[str, str]] = Field(default_factory=list)


class PositionPayload(BaseModel):
    x: float
    y: float
    floor_id: str = Field(..., min_length=1)
    heading: float = 0.0

    def to_position(self) -> CurrentPosition:
        return CurrentPosition(x=self.x, y=self.y, floor_id=self.floor_id, heading=self.heading)


class DestinationPayload(BaseModel):
    id: str = Field(..., min_length=1)
    x: float
    y: float
    floor_id: str = Field(..., min_length=1)
    name: str = ""


class StartNavigationRequest(BaseModel):
    position: PositionPayload
    destination: DestinationPayload


class EdgeRequest(BaseModel):
    from_node_id: str = Field(..., min_length=1)
    to_node_id: str = Field(..., min_length=1)
    reason: str = "blocked"

    @model_validator(mode="after")
    def validate_endpoints(self) -> "EdgeRequest":
        if self.from_node_id == self.to_node_id:
            raise ValueError("from_node_id and to_node_id must differ")
        return self


class QrRequest(BaseModel):
    node_id: str = Field(..., min_length=1)
    heading: float | None = None


class LandmarkRequest(BaseModel):
    node_id: str = Field(..., min_length=1)
    score: float = Field(..., ge=0.0, le=1.0)


class ManualRequest(BaseModel):
    x: float
    y: float
    floor_id: str = Field(..., min_length=1)
    heading: float | None = None


class ModeRequest(BaseModel):
    mode: PositioningMode


class TickRequest(BaseModel):
    """Sensor readings pushed by the client before a positioning tick."""

    steps: int = Field(0, ge=0)
    heading: float | None = None
    heading_confidence: SensorConfidence = SensorConfidence.MEDIUM
    tilt: float | None = None
    walking_state: WalkingState | None = None


class DemoRequest(BaseModel):
    speed_multiplier: float = Field(1.0, gt=0.0)


class DemoAdvanceRequest(BaseModel):
    dt_s: float = Field(..., ge=0.0)


def _record_readings(sensors: SensorState, payload: TickRequest) -> None:
    if payload.walking_state is not None:
        sensors.record_walking_state(payload.walking_state)
    if payload.heading is not None:
        sensors.record_heading(payload.heading, payload.heading_confidence)
    if payload.tilt is not None:
        sensors.record_tilt(payload.tilt)
    if payload.steps:
        sensors.record_steps(payload.steps)


def _background_tick() -> None:
    """Periodic positioning tick; idle until a graph is loaded."""
    engine = STATE.engine
    if engine is None or engine.graph.node_count == 0:
        return
    engine.tick()


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    ticker = PeriodicTicker(_background_tick, STATE.settings.tick_interval_s)
    STATE.ticker = ticker
    ticker.start()
    logger.info("Positioning ticker started every %.2fs", STATE.settings.tick_interval_s)
    try:
        yield
    finally:
        await ticker.stop()
        STATE.ticker = None
        logger.info("Positioning ticker stopped after %d ticks", ticker.ticks)


def _engine_or_400() -> NavigationEngine:
    if STATE.engine is None or STATE.engine.graph.node_count == 0:
        raise HTTPException(status_code=400, detail="Navigation graph is not initialized")
    return STATE.engine


def _node_or_404(engine: NavigationEngine, node_id: str) -> Node:
    node = engine.graph.get_node(node_id)
    if node is None:
        raise HTTPException(status_code=404, detail=f"Node '{node_id}' was not found")
    return node


def _serialize_path(path: Path | None) -> dict[str, Any] | None:
    if path is None:
        return None
    return {
        "nodes": to_serializable_path(path.nodes),
        "total_distance": round(path.total_distance, 3),
        "estimated_time_s": path.estimated_time_s,
        "formatted_distance": path.formatted_distance,
        "formatted_time": path.formatted_time,
        "crosses_floors": path.crosses_floors,
    }


def _serialize_instruction(instruction: NavigationInstruction | None) -> dict[str, Any] | None:
    if instruction is None:
        return None
    return {
        "text": instruction.text,
        "distance": round(instruction.distance, 2),
        "icon": instruction.icon,
        "is_floor_change": instruction.is_floor_change,
    }


def _serialize_position(position: FusedPosition | None) -> dict[str, Any] | None:
    if position is None:
        return None
    return {
        "x": position.x,
        "y": position.y,
        "floor_id": position.floor_id,
        "heading": position.heading,
        "confidence": position.confidence.value,
        "confidence_percent": position.confidence_percent,
        "source": position.source.value,
        "timestamp": position.timestamp.isoformat(),
    }


def _navigation_snapshot(engine: NavigationEngine) -> dict[str, Any]:
    position = engine.current_position
    return {
        "status": engine.status.value,
        "step_index": engine.current_step_index,
        "path": _serialize_path(engine.current_path),
        "instruction": _serialize_instruction(engine.current_instruction()),
        "position": None
        if position is None
        else {"x": position.x, "y": position.y, "floor_id": position.floor_id, "heading": position.heading},
        "destination": None if engine.destination is None else engine.destination.id,
    }


def _positioning_snapshot(engine: NavigationEngine) -> dict[str, Any]:
    return {
        "mode": engine.positioning.mode.value,
        "position": _serialize_position(engine.positioning.current_position),
        "overall_confidence": engine.fusion.overall_confidence.value,
        "correction_count": engine.positioning.correction_count,
    }


def _demo_snapshot(engine: NavigationEngine) -> dict[str, Any] | None:
    demo = engine.demo
    if demo is None:
        return None
    return {
        "state": demo.state.value,
        "progress": round(demo.progress, 3),
        "speed_multiplier": demo.speed_multiplier,
    }


def create_app(settings: NavigationSettings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or NavigationSettings.from_env()
    STATE.reset(settings)

    app = FastAPI(title="navcore API", version=API_VERSION, lifespan=_lifespan)

    cors_origins = settings.cors_origin_list()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=cors_origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health() -> dict[str, Any]:
        """Health endpoint with graph and navigation status."""
        engine = STATE.engine
        return {
            "status": "ok",
            "version": app.version,
            "graph_loaded": engine is not None and engine.graph.node_count > 0,
            "navigation_status": None if engine is None else engine.status.value,
            "ticker_running": STATE.ticker is not None and STATE.ticker.running,
        }

    @app.post("/graph")
    async def load_graph(payload: GraphRequest) -> dict[str, Any]:
        if STATE.engine is None:
            STATE.reset(STATE.settings)
        engine = STATE.engine
        assert engine is not None
        try:
            engine.initialize_graph(node.to_node() for node in payload.nodes)
            for a_id, b_id in payload.connector_links:
                engine.graph.link_connectors(a_id, b_id)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=f"Invalid graph: {exc}") from exc
        except Exception as exc:
            raise HTTPException(status_code=500, detail=f"Unexpected graph loading error: {exc}") from exc

        return {
            "node_count": engine.graph.node_count,
            "edge_count": engine.graph.edge_count,
            "floors": engine.graph.available_floors(),
        }

    @app.get("/floors")
    async def get_floors() -> dict[str, Any]:
        engine = _engine_or_400()
        return {
            "floors": [
                {
                    "floor_id": floor_id,
                    "node_count": len(engine.graph.nodes_by_floor(floor_id)),
                    "connectors": [node.id for node in engine.graph.floor_connectors(floor_id)],
                }
                for floor_id in engine.graph.available_floors()
            ]
        }

    @app.post("/navigation/start")
    async def start_navigation(payload: StartNavigationRequest) -> dict[str, Any]:
        engine = _engine_or_400()
        destination = Destination(
            id=payload.destination.id,
            x=payload.destination.x,
            y=payload.destination.y,
            floor_id=payload.destination.floor_id,
            name=payload.destination.name,
        )
        try:
            path = engine.start_navigation(payload.position.to_position(), destination)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=f"Invalid navigation request: {exc}") from exc

        if path is None:
            raise HTTPException(status_code=404, detail="No navigable route found")
        return _navigation_snapshot(engine)

    @app.post("/navigation/position")
    async def update_position(payload: PositionPayload) -> dict[str, Any]:
        engine = _engine_or_400()
        engine.update_position(payload.to_position())
        return _navigation_snapshot(engine)

    @app.post("/navigation/stop")
    async def stop_navigation() -> dict[str, Any]:
        engine = _engine_or_400()
        engine.stop_navigation()
        return _navigation_snapshot(engine)

    @app.get("/navigation")
    async def get_navigation() -> dict[str, Any]:
        return _navigation_snapshot(_engine_or_400())

    @app.post("/navigation/demo")
    async def start_demo(payload: DemoRequest) -> dict[str, Any]:
        """Walk the active route with a simulated user instead of sensors."""
        engine = _engine_or_400()
        try:
            engine.start_demo(payload.speed_multiplier)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"demo": _demo_snapshot(engine), "navigation": _navigation_snapshot(engine)}

    @app.post("/navigation/demo/advance")
    async def advance_demo(payload: DemoAdvanceRequest) -> dict[str, Any]:
        engine = _engine_or_400()
        if engine.demo is None:
            raise HTTPException(status_code=400, detail="No demo walk is active")
        engine.advance_demo(payload.dt_s)
        return {"demo": _demo_snapshot(engine), "navigation": _navigation_snapshot(engine)}

    @app.post("/edges/block")
    async def block_edge(payload: EdgeRequest) -> dict[str, Any]:
        engine = _engine_or_400()
        if engine.graph.get_edge(payload.from_node_id, payload.to_node_id) is None and (
            engine.graph.get_edge(payload.to_node_id, payload.from_node_id) is None
        ):
            raise HTTPException(status_code=404, detail="Connection was not found")
        engine.block_path_and_reroute(payload.from_node_id, payload.to_node_id, payload.reason)
        return _navigation_snapshot(engine)

    @app.post("/edges/unblock")
    async def unblock_edge(payload: EdgeRequest) -> dict[str, Any]:
        engine = _engine_or_400()
        engine.unblock_path(payload.from_node_id, payload.to_node_id)
        return {"blocked": [edge.id for edge in engine.blocked_edges()]}

    @app.get("/edges/blocked")
    async def get_blocked_edges() -> dict[str, Any]:
        engine = _engine_or_400()
        return {
            "blocked": [
                {
                    "id": edge.id,
                    "from_node_id": edge.from_node_id,
                    "to_node_id": edge.to_node_id,
                    "reason": edge.block_reason,
                    "blocked_at": edge.blocked_at.isoformat() if edge.blocked_at else None,
                }
                for edge in engine.blocked_edges()
            ]
        }

    @app.post("/positioning/qr")
    async def reset_from_qr(payload: QrRequest) -> dict[str, Any]:
        engine = _engine_or_400()
        node = _node_or_404(engine, payload.node_id)
        engine.positioning.reset_from_qr(node, payload.heading)
        return _positioning_snapshot(engine)

    @app.post("/positioning/landmark")
    async def reset_from_landmark(payload: LandmarkRequest) -> dict[str, Any]:
        engine = _engine_or_400()
        node = _node_or_404(engine, payload.node_id)
        accepted = engine.positioning.reset_from_visual_landmark(node, payload.score) is not None
        return {"accepted": accepted, **_positioning_snapshot(engine)}

    @app.post("/positioning/manual")
    async def set_manual_position(payload: ManualRequest) -> dict[str, Any]:
        engine = _engine_or_400()
        engine.positioning.set_manual_position(payload.x, payload.y, payload.floor_id, payload.heading)
        return _positioning_snapshot(engine)

    @app.post("/positioning/mode")
    async def set_mode(payload: ModeRequest) -> dict[str, Any]:
        engine = _engine_or_400()
        engine.positioning.set_mode(payload.mode)
        return _positioning_snapshot(engine)

    @app.post("/positioning/instability")
    async def report_instability() -> dict[str, Any]:
        engine = _engine_or_400()
        switched = engine.positioning.handle_sensor_instability()
        return {"switched": switched, **_positioning_snapshot(engine)}

    @app.post("/positioning/sensors")
    async def record_sensors(payload: TickRequest) -> dict[str, Any]:
        """Buffer readings for the background ticker without ticking."""
        _engine_or_400()
        _record_readings(STATE.sensors, payload)
        return {"recorded": True}

    @app.post("/positioning/tick")
    async def positioning_tick(payload: TickRequest) -> dict[str, Any]:
        engine = _engine_or_400()
        _record_readings(STATE.sensors, payload)

        try:
            engine.tick()
        except Exception as exc:
            logger.exception("Positioning tick failed")
            raise HTTPException(status_code=500, detail=f"Unexpected positioning error: {exc}") from exc
        return {**_positioning_snapshot(engine), "navigation": _navigation_snapshot(engine)}

    @app.get("/positioning")
    async def get_positioning() -> dict[str, Any]:
        return _positioning_snapshot(_engine_or_400())

    @app.get("/positioning/events")
    async def get_positioning_events(
        event_type: str | None = Query(default=None),
        limit: int = Query(default=100, ge=1, le=1000),
    ) -> dict[str, Any]:
        engine = _engine_or_400()
        events = engine.positioning.event_log.entries(event_type)[-limit:]
        return {"events": [event.to_json() for event in events]}

    return app
