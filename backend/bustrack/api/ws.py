"""WebSocket stream of the tracked route's vehicles."""

import logging

import orjson
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from bustrack.schemas.vehicle import VehicleSnapshot, VehicleUpdate

logger = logging.getLogger(__name__)

router = APIRouter()

# Will be set by main.py on startup
broadcaster = None
session = None


async def _initial_snapshot() -> VehicleSnapshot | None:
    """Current vehicles as a snapshot message, from the session or the last broadcast."""
    if session is not None:
        return session.snapshot_message()
    state_data = await broadcaster.get_current_state()
    if not state_data:
        return None
    last = VehicleUpdate.model_validate_json(state_data)
    return VehicleSnapshot(vehicles=last.vehicles, selected_bus_no=last.selected_bus_no)


@router.websocket("/ws/vehicles")
async def vehicle_ws(websocket: WebSocket) -> None:
    """Send one ``snapshot`` message, then an ``update`` per applied poll cycle."""
    await websocket.accept()

    if broadcaster is None:
        await websocket.close(code=1011, reason="Service not ready")
        return

    snapshot = await _initial_snapshot()
    if snapshot is not None:
        await websocket.send_bytes(orjson.dumps(snapshot.model_dump(mode="json")))

    queue = broadcaster.subscribe()
    try:
        while True:
            await websocket.send_bytes(await queue.get())
    except WebSocketDisconnect:
        logger.debug("WebSocket client left")
    except Exception:
        logger.exception("WebSocket error")
    finally:
        broadcaster.unsubscribe(queue)
