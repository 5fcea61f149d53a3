from enum import Enum

from pydantic import BaseModel


class StopState(str, Enum):
    passed = "passed"
    current = "current"
    between = "between"
    target = "target"
    upcoming = "upcoming"
    unknown = "unknown"


class Stop(BaseModel):
    stop_id: str
    stop_name: str = ""
    sequence: int
    stop_desc: str | None = None
    stop_lat: float | None = None
    stop_lon: float | None = None

    @property
    def has_coords(self) -> bool:
        return self.stop_lat is not None and self.stop_lon is not None


class ShapePoint(BaseModel):
    lat: float
    lon: float
    sequence: int


class ClassifiedStop(Stop):
    state: StopState


class RouteStops(BaseModel):
    route_id: str
    route_short_name: str | None = None
    route_long_name: str | None = None
    stops: list[Stop] = []


class RouteShape(BaseModel):
    route_id: str
    shape_id: str | None = None
    points: list[ShapePoint] = []


class RouteLine(BaseModel):
    """Stop line for one vehicle, as drawn next to the map."""
    route_id: str
    route_short_name: str | None = None
    route_long_name: str | None = None
    bus_no: str | None = None
    current_stop_id: str | None = None
    target_stop_id: str | None = None
    target_label: str | None = None
    stops: list[ClassifiedStop] = []


class NearestStop(BaseModel):
    stop_id: str
    stop_name: str = ""
    stop_desc: str | None = None
    stop_lat: float
    stop_lon: float
    distance_km: float
    distance_meters: float
