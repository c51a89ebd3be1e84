# patchloop/main.py
"""
patchloop service - turn streaming, overlay preview and commit over HTTP/WS.
"""
import asyncio
import os
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from starlette.middleware.cors import CORSMiddleware

from patchloop import __version__
from patchloop.api import health, sessions
from patchloop.core.config import settings
from patchloop.core.exceptions import SessionNotFound
from patchloop.core.logging import log
from patchloop.lib.websocket import ConnectionManager
from patchloop.orchestration.controller import GeneratingCollaborator
from patchloop.orchestration.state import SessionRegistry
from patchloop.utils.path_utils import validate_session_id
from patchloop.validation.tsc import TscTypechecker
from patchloop.validation.typecheck import TypecheckCollaborator


# ---------------------------------------------------------------------------
# LIFESPAN
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    log("SESSION", f"🚀 patchloop {__version__} starting (workspaces: {settings.paths.workspaces_dir})")
    settings.ensure_directories()

    yield

    registry: SessionRegistry = app.state.registry
    running = []
    for session_id in registry.active_ids():
        task = registry.get(session_id).task
        if task is not None and not task.done():
            task.cancel()
            running.append(task)
    if running:
        log("SESSION", f"🔌 Shutting down - cancelling {len(running)} running turns")
        await asyncio.wait(running)


# ---------------------------------------------------------------------------
# APP FACTORY
# ---------------------------------------------------------------------------

def create_app(
    generator: Optional[GeneratingCollaborator] = None,
    typechecker: Optional[TypecheckCollaborator] = None,
) -> FastAPI:
    """
    Build the FastAPI app. Without a generator, turn requests answer 503.
    """
    app = FastAPI(
        title="patchloop",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.registry = SessionRegistry()
    app.state.manager = ConnectionManager()
    app.state.generator = generator
    app.state.typechecker = typechecker or TscTypechecker()

    # In production, set CORS_ORIGINS to comma-separated list of allowed origins
    cors_origins_str = os.getenv("CORS_ORIGINS", "*")
    cors_origins = cors_origins_str.split(",") if cors_origins_str != "*" else ["*"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.websocket("/ws/{session_id}")
    async def websocket_endpoint(websocket: WebSocket, session_id: str):
        if not validate_session_id(session_id):
            await websocket.close(code=1008)
            return

        manager: ConnectionManager = app.state.manager
        await manager.connect(websocket, session_id)
        try:
            while True:
                data = await websocket.receive_json()

                if data.get("type") == "CANCEL":
                    try:
                        app.state.registry.get(session_id).controller.cancel()
                    except SessionNotFound:
                        await websocket.send_json({"type": "error", "detail": f"No active session {session_id}"})

        except WebSocketDisconnect:
            await manager.disconnect(websocket, session_id)

    app.include_router(health.router)
    app.include_router(sessions.router)
    return app


app = create_app()


# ---------------------------------------------------------------------------
# RUN
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    uvicorn.run(
        "patchloop.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.debug,
    )
