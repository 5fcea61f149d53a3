"""Vehicle REST API endpoints."""

from fastapi import APIRouter, HTTPException

from bustrack.schemas.vehicle import EtaRecord, Vehicle

router = APIRouter(prefix="/api", tags=["vehicles"])

# Will be set by main.py
session = None
engine = None


@router.get("/vehicles", response_model=list[Vehicle])
async def list_vehicles():
    """Get all currently active vehicles with their resolved stops."""
    if session is None:
        return []
    return session.vehicles


@router.get("/vehicles/{bus_no}", response_model=Vehicle)
async def get_vehicle(bus_no: str):
    if session is None or session.get_vehicle(bus_no) is None:
        raise HTTPException(status_code=404, detail="Vehicle not found")
    return session.get_vehicle(bus_no)


@router.post("/vehicles/{bus_no}/select", response_model=Vehicle)
async def select_vehicle(bus_no: str):
    """Select a vehicle, as a click on its map marker does."""
    if session is None:
        raise HTTPException(status_code=503, detail="Session not initialized")
    clicked = engine is not None and engine.click_vehicle(bus_no)
    if not clicked:
        session.select(bus_no)
    if session.selected_bus_no != bus_no:
        raise HTTPException(status_code=404, detail="Vehicle not found")
    if engine is not None:
        await engine.sync(session.map_snapshot())
    return session.get_vehicle(bus_no)


@router.delete("/selection", status_code=204)
async def clear_selection():
    if session is None:
        return
    session.clear_selection()
    if engine is not None:
        await engine.sync(session.map_snapshot())


@router.get("/eta", response_model=list[EtaRecord])
async def list_eta():
    """ETA of each active vehicle to the target stop."""
    if session is None:
        return []
    return session.eta_view()
