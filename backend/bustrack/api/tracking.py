"""Session status, manual refresh and the rendered map."""

from fastapi import APIRouter, HTTPException
from fastapi.responses import HTMLResponse

from bustrack.core.map_engine import EngineState
from bustrack.schemas.vehicle import SessionStatus

router = APIRouter(tags=["tracking"])

# Will be set by main.py
session = None
engine = None
poller = None


def _map_flags() -> tuple[bool, bool]:
    if engine is None:
        return False, True
    return engine.state is EngineState.ready, engine.degraded


@router.get("/api/status", response_model=SessionStatus)
async def get_status():
    if session is None:
        raise HTTPException(status_code=503, detail="Session not initialized")
    ready, degraded = _map_flags()
    return session.status(map_ready=ready, map_degraded=degraded)


@router.post("/api/refresh", response_model=SessionStatus)
async def refresh():
    """Run one poll cycle now instead of waiting for the next tick."""
    if session is None or poller is None:
        raise HTTPException(status_code=503, detail="Session not initialized")
    await poller.poll_once()
    ready, degraded = _map_flags()
    return session.status(map_ready=ready, map_degraded=degraded)


@router.get("/map", response_class=HTMLResponse)
async def get_map():
    """Latest render of the route map."""
    surface = engine.surface if engine is not None else None
    html = getattr(surface, "html", None)
    if not html:
        raise HTTPException(status_code=503, detail="Map not available")
    return HTMLResponse(html)
