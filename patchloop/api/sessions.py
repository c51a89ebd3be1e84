# patchloop/api/sessions.py
"""
Session turn endpoints.
"""
import asyncio
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from patchloop.core.config import settings
from patchloop.core.exceptions import (
    CommitRefused,
    PersistenceError,
    SessionConflict,
    SessionNotFound,
)
from patchloop.core.logging import log
from patchloop.core.types import TurnResult, TurnStatus
from patchloop.orchestration.controller import DiagnosticsLoopController
from patchloop.orchestration.events import EventChannel
from patchloop.orchestration.state import Session, SessionRegistry
from patchloop.persistence.base_tree import DiskBaseTree
from patchloop.persistence.writer import WorkspaceCommitter
from patchloop.utils.path_utils import get_project_path, validate_session_id

# ============================================================================
# SESSIONS API ROUTER
# ============================================================================
# A session is created when a turn starts and removed on commit or cancel.
# Turn events stream back as NDJSON and are mirrored to /ws/{session_id}.
# ============================================================================

router = APIRouter(prefix="/api/sessions", tags=["Sessions"])


class TurnRequest(BaseModel):
    prompt: str
    max_attempts: Optional[int] = Field(default=None, ge=0)


class CommitRequest(BaseModel):
    force: bool = False


def require_session_id(session_id: str) -> str:
    """Raises HTTPException if session_id is not a safe directory name."""
    if not validate_session_id(session_id):
        raise HTTPException(status_code=400, detail="Invalid session ID format")
    return session_id


def get_session(request: Request, session_id: str) -> Session:
    require_session_id(session_id)
    try:
        return request.app.state.registry.get(session_id)
    except SessionNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)


async def run_turn(
    registry: SessionRegistry,
    session: Session,
    channel: EventChannel,
    prompt: str,
) -> Optional[TurnResult]:
    """Background task body: run the turn, drop the session if it was cancelled."""
    try:
        return await session.controller.run(prompt)
    except Exception as e:
        log("TURN", f"❌ Turn crashed: {type(e).__name__}: {e}", session_id=session.session_id)
        raise
    finally:
        channel.close()
        status = session.controller.state.status
        if status == TurnStatus.CANCELLED or not status.is_terminal:
            await registry.end(session.session_id)


@router.get("")
async def list_sessions(request: Request):
    """Active session ids."""
    return {"sessions": request.app.state.registry.active_ids()}


@router.post("/{session_id}/turns")
async def start_turn(session_id: str, body: TurnRequest, request: Request):
    """Start a turn and stream its events as NDJSON."""
    require_session_id(session_id)
    state = request.app.state
    if state.generator is None:
        raise HTTPException(status_code=503, detail="No generating agent configured")

    registry: SessionRegistry = state.registry
    channel = EventChannel()
    controller = DiagnosticsLoopController(
        state.generator,
        state.typechecker,
        DiskBaseTree(get_project_path(session_id), settings.typecheck.ignored_dirs),
        session_id=session_id,
        max_attempts=body.max_attempts,
        sinks=[channel.publish, state.manager.sink_for(session_id)],
    )

    try:
        session = await registry.start(session_id, controller)
    except SessionConflict as e:
        raise HTTPException(status_code=409, detail=e.message)

    session.task = asyncio.create_task(run_turn(registry, session, channel, body.prompt))

    async def event_stream():
        try:
            async for event in channel:
                yield event.to_ndjson()
        finally:
            # Client went away mid-turn
            if not session.task.done():
                log("TRANSPORT", "🔌 Stream closed before turn end - cancelling", session_id=session_id)
                controller.cancel()

    return StreamingResponse(event_stream(), media_type="application/x-ndjson")


@router.get("/{session_id}/files")
async def get_session_files(session_id: str, request: Request):
    """Pending overlay contents for preview."""
    session = get_session(request, session_id)
    overlay = session.overlay
    return {
        "session_id": session_id,
        "status": session.state.status.value,
        "attempt": session.state.attempt,
        "virtual_files": overlay.get_virtual_files(),
        "deleted_files": overlay.get_deleted_files(),
        "renames": dict(overlay.renames),
    }


@router.post("/{session_id}/commit")
async def commit_session(session_id: str, request: Request, body: Optional[CommitRequest] = None):
    """Flush the overlay into the workspace and end the session."""
    session = get_session(request, session_id)
    force = body.force if body else False
    committer = WorkspaceCommitter(session.overlay.base.root)

    try:
        report = await session.controller.commit(committer, force=force)
    except CommitRefused as e:
        raise HTTPException(status_code=409, detail=e.message)
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=e.message)

    await request.app.state.registry.end(session_id)
    return {
        "committed": True,
        "status": session.state.status.value,
        "written": report.written,
        "deleted": report.deleted,
        "dependencies": list(session.state.dependencies),
    }


@router.delete("/{session_id}")
async def cancel_session(session_id: str, request: Request):
    """Cancel a running turn (if any), discard the overlay, end the session."""
    session = get_session(request, session_id)
    controller = session.controller

    controller.cancel()
    if session.task is not None and not session.task.done():
        session.task.cancel()
        await asyncio.wait([session.task])

    controller.discard()
    await request.app.state.registry.end(session_id)
    return {"session_id": session_id, "status": session.state.status.value, "discarded": True}
