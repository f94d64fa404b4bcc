"""Application entry point for the navcore HTTP service.

Run locally:
    uvicorn navcore.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging

import uvicorn

from navcore.api import create_app
from navcore.settings import NavigationSettings, load_local_env

load_local_env()
settings = NavigationSettings.from_env()

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app(settings)


if __name__ == "__main__":
    uvicorn.run("navcore.main:app", host=settings.api_host, port=settings.api_port, reload=settings.api_reload)
