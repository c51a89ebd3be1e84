# patchloop/api/health.py
"""
Health check endpoints.
"""
from datetime import datetime, timezone
from fastapi import APIRouter, Request

from patchloop import __version__

router = APIRouter(tags=["Health"])


@router.get("/healthz")
async def healthz():
    """Simple health check."""
    return {"ok": True, "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/api/health")
async def api_health(request: Request):
    """API health check with live session count."""
    state = request.app.state
    return {
        "status": "healthy",
        "version": __version__,
        "active_sessions": len(state.registry),
        "generator_configured": state.generator is not None,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
