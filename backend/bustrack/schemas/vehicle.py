from enum import Enum
from typing import Literal

from pydantic import BaseModel


class ResolutionSource(str, Enum):
    live = "live"
    derived = "derived"
    none = "none"


class Vehicle(BaseModel):
    bus_no: str
    route: str
    lat: float
    lon: float
    speed: float = 0.0
    live_stop_id: str | None = None  # stop reported by the vehicle itself
    resolved_stop_id: str | None = None
    resolved_stop_name: str | None = None
    resolved_sequence: int | None = None
    resolution_source: ResolutionSource = ResolutionSource.none


class ResolvedStop(BaseModel):
    stop_id: str
    sequence: int
    source: ResolutionSource


class EtaRecord(BaseModel):
    route_id: str | None = None
    bus_no: str
    current_stop_id: str
    current_stop_name: str | None = None
    current_sequence: int | None = None
    stop_resolution_source: str | None = None
    stops_away: int = 0
    distance_km: float = 0.0
    speed_kmh: float = 0.0
    eta_minutes: float = 0.0


class VehicleSnapshot(BaseModel):
    type: Literal["snapshot"] = "snapshot"
    vehicles: list[Vehicle]
    selected_bus_no: str | None = None


class VehicleUpdate(BaseModel):
    type: Literal["update"] = "update"
    vehicles: list[Vehicle]
    selected_bus_no: str | None = None


class SessionStatus(BaseModel):
    route_id: str
    vehicle_count: int
    selected_bus_no: str | None = None
    error: str | None = None
    eta_error: str | None = None
    last_updated: str | None = None
    map_ready: bool = False
    map_degraded: bool = False
