"""Stop REST API endpoints."""

from fastapi import APIRouter, HTTPException

from bustrack.core.exceptions import BusTrackError
from bustrack.schemas.route import NearestStop, RouteLine, Stop
from bustrack.schemas.vehicle import EtaRecord

router = APIRouter(prefix="/api/stops", tags=["stops"])

# Will be set by main.py
session = None
client = None


@router.get("", response_model=list[Stop])
async def list_stops():
    """Get the route's stops in travel order."""
    if session is None:
        return []
    return session.stops


@router.get("/line", response_model=RouteLine)
async def get_route_line(bus_no: str | None = None):
    """Every stop labelled relative to a vehicle (default: the selected one) and the target."""
    if session is None:
        raise HTTPException(status_code=503, detail="Session not initialized")
    if bus_no is not None and session.get_vehicle(bus_no) is None:
        raise HTTPException(status_code=404, detail="Vehicle not found")
    return session.route_line(bus_no)


@router.get("/nearest", response_model=NearestStop)
async def get_nearest_stop(lat: float, lon: float):
    """Closest GTFS stop to a coordinate, looked up by the upstream backend."""
    if client is None:
        raise HTTPException(status_code=503, detail="Client not initialized")
    try:
        return await client.fetch_nearest_stop(lat, lon)
    except BusTrackError as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.get("/{stop_id}/eta", response_model=list[EtaRecord])
async def get_stop_eta(stop_id: str):
    """Upcoming arrivals at a stop across all routes."""
    if client is None:
        raise HTTPException(status_code=503, detail="Client not initialized")
    try:
        return await client.fetch_stop_eta(stop_id)
    except BusTrackError as e:
        raise HTTPException(status_code=502, detail=str(e))
