from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .adapters import color_to_wire

if TYPE_CHECKING:
    import uvicorn

    from .server import PresenceServer

logger = logging.getLogger(__name__)


class PositionOut(BaseModel):
    x: float
    y: float


class ColorOut(BaseModel):
    hue: int
    saturation: int
    lightness: int
    css: str


class PresenceOut(BaseModel):
    """Public view of a participant; connection ids are never exposed."""

    user_id: str = Field(serialization_alias="userId")
    color: ColorOut
    position: PositionOut
    intensity: float = Field(ge=0.0, le=1.0)


class PresenceListOut(BaseModel):
    count: int
    participants: list[PresenceOut]


def create_app(server: PresenceServer) -> FastAPI:
    """Read-only HTTP view of a running presence server."""
    from .server import get_version

    app = FastAPI(title="GlowSync Status", version=get_version())

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.get("/")
    def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "version": get_version()}

    @app.get("/v1/presence", response_model=PresenceListOut, response_model_by_alias=True)
    def list_presence() -> PresenceListOut:
        participants = [
            PresenceOut(
                user_id=record.user_id,
                color=ColorOut(**color_to_wire(record.color), css=record.color.to_css()),
                position=PositionOut(x=record.position.x, y=record.position.y),
                intensity=record.intensity,
            )
            for record in server.registry.snapshot()
        ]
        return PresenceListOut(count=len(participants), participants=participants)

    @app.get("/v1/stats")
    def stats() -> dict[str, int]:
        return server.get_stats()

    return app


def run_uvicorn_in_thread(
    app: FastAPI, host: str = "0.0.0.0", port: int = 8870
) -> tuple[threading.Thread, uvicorn.Server]:
    """Spawn a Uvicorn server for the given FastAPI app in a background thread."""
    import uvicorn

    config = uvicorn.Config(
        app=app, host=host, port=port, log_level="warning", lifespan="off"
    )
    server = uvicorn.Server(config=config)
    thread = threading.Thread(target=server.run, name="StatusApiThread", daemon=True)
    thread.start()
    logger.info(f"Status API listening on http://{host}:{port}")
    return thread, server
