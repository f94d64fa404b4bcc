"""Environment-driven runtime settings.

Values come from process environment variables, optionally seeded from a local
`.env` file that never overrides variables already set.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping


def load_local_env(candidates: tuple[Path, ...] = (Path("navcore/.env"), Path(".env"))) -> None:
    """Load key=value pairs from local .env files if present.

    Priority (first existing file wins per key if env var was unset):
    1) navcore/.env
    2) .env
    """
    for env_path in candidates:
        if not env_path.exists():
            continue

        for raw in env_path.read_text(encoding="utf-8").splitlines():
            line = raw.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            key = key.strip()
            if not key or key in os.environ:
                continue
            os.environ[key] = value.strip().strip("'").strip('"')


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(slots=True)
class NavigationSettings:
    step_length_m: float = 0.7
    walking_speed_mps: float = 1.4
    floor_change_penalty: float = 50.0
    arrival_radius: float = 5.0
    waypoint_radius: float = 2.0
    max_edge_distance: float = 3.0
    max_heading_deviation: float = 20.0
    landmark_min_score: float = 0.8
    max_tilt_deg: float = 45.0
    max_corrections: int = 5
    correction_window_s: float = 120.0
    tick_interval_s: float = 0.1
    dynamic_rerouting: bool = True
    log_level: str = "INFO"
    cors_origins: str = "*"
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_reload: bool = True

    def __post_init__(self) -> None:
        for name in ("step_length_m", "walking_speed_mps", "arrival_radius", "waypoint_radius", "tick_interval_s"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")
        if self.floor_change_penalty < 0:
            raise ValueError("floor_change_penalty must be >= 0")
        if not 0.0 <= self.landmark_min_score <= 1.0:
            raise ValueError("landmark_min_score must be within [0, 1]")

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "NavigationSettings":
        """Build settings from `env` (defaults to `os.environ`)."""
        env = os.environ if env is None else env
        return cls(
            step_length_m=_float(env, "NAVCORE_STEP_LENGTH_M", 0.7),
            walking_speed_mps=_float(env, "NAVCORE_WALKING_SPEED_MPS", 1.4),
            floor_change_penalty=_float(env, "NAVCORE_FLOOR_CHANGE_PENALTY", 50.0),
            arrival_radius=_float(env, "NAVCORE_ARRIVAL_RADIUS", 5.0),
            waypoint_radius=_float(env, "NAVCORE_WAYPOINT_RADIUS", 2.0),
            max_edge_distance=_float(env, "NAVCORE_MAX_EDGE_DISTANCE", 3.0),
            max_heading_deviation=_float(env, "NAVCORE_MAX_HEADING_DEVIATION", 20.0),
            landmark_min_score=_float(env, "NAVCORE_LANDMARK_MIN_SCORE", 0.8),
            max_tilt_deg=_float(env, "NAVCORE_MAX_TILT_DEG", 45.0),
            max_corrections=_int(env, "NAVCORE_MAX_CORRECTIONS", 5),
            correction_window_s=_float(env, "NAVCORE_CORRECTION_WINDOW_S", 120.0),
            tick_interval_s=_float(env, "NAVCORE_TICK_INTERVAL_S", 0.1),
            dynamic_rerouting=_bool(env, "NAVCORE_DYNAMIC_REROUTING", True),
            log_level=env.get("NAVCORE_LOG_LEVEL", "INFO").strip().upper() or "INFO",
            cors_origins=env.get("NAVCORE_CORS_ORIGINS", "*").strip() or "*",
            api_host=env.get("API_HOST", "0.0.0.0"),
            api_port=_int(env, "API_PORT", 8000),
            api_reload=_bool(env, "API_RELOAD", True),
        )

    def cors_origin_list(self) -> list[str]:
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]
