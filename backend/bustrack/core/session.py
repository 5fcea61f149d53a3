"""Session controller: owns everything the tracker knows about the route."""

import datetime
import logging

from bustrack.core.map_engine import MapSnapshot
from bustrack.core.position_classifier import classify_for_vehicle
from bustrack.core.stop_resolver import resolve_vehicles
from bustrack.schemas.route import RouteLine, RouteShape, RouteStops, ShapePoint, Stop
from bustrack.schemas.vehicle import EtaRecord, SessionStatus, Vehicle, VehicleSnapshot, VehicleUpdate

logger = logging.getLogger(__name__)


class TrackingSession:
    """Vehicles, ETAs, stops, shape, selection and error state for one route view.

    Only the poller writes poll results here; the classifier, the map engine
    and the API read from it.
    """

    def __init__(
        self,
        route_id: str,
        target_stop_id: str | None = None,
        target_label: str = "Target stop",
    ) -> None:
        self.route_id = route_id
        self.target_stop_id = target_stop_id
        self.target_label = target_label

        self.route_short_name: str | None = None
        self.route_long_name: str | None = None
        self.stops: list[Stop] = []
        self.shape: list[ShapePoint] = []
        # stop_id -> stop_name, kept across failed stop fetches
        self.stop_names: dict[str, str] = {}

        self.vehicles: list[Vehicle] = []
        self.etas: list[EtaRecord] = []
        self.selected_bus_no: str | None = None

        self.error: str | None = None
        self.eta_error: str | None = None
        self.last_updated: datetime.datetime | None = None

    # -- poll results --------------------------------------------------

    def apply_stops(self, route_stops: RouteStops) -> None:
        """Replace the stop list, sorted by sequence with duplicate sequences dropped."""
        seen: set[int] = set()
        stops = []
        for s in sorted(route_stops.stops, key=lambda s: s.sequence):
            if s.sequence in seen:
                logger.warning("Route %s: duplicate stop sequence %d (%s) ignored",
                               self.route_id, s.sequence, s.stop_id)
                continue
            seen.add(s.sequence)
            stops.append(s)
        self.stops = stops
        self.route_short_name = route_stops.route_short_name
        self.route_long_name = route_stops.route_long_name
        self.stop_names = {s.stop_id: s.stop_name for s in stops}

    def apply_shape(self, shape: RouteShape | None) -> None:
        self.shape = list(shape.points) if shape is not None else []

    def apply_vehicles(self, vehicles: list[Vehicle]) -> None:
        """Replace the vehicle snapshot wholesale and drop a selection that vanished."""
        self.vehicles = resolve_vehicles(vehicles, self.stops)
        self.error = None
        if self.selected_bus_no is not None and self.get_vehicle(self.selected_bus_no) is None:
            logger.info("Selected bus %s left the snapshot; clearing selection", self.selected_bus_no)
            self.selected_bus_no = None

    def apply_vehicle_failure(self, message: str) -> None:
        self.error = message
        self.eta_error = None

    def apply_eta(self, etas: list[EtaRecord]) -> None:
        self.etas = etas
        self.eta_error = None

    def apply_eta_failure(self, message: str) -> None:
        self.etas = []
        self.eta_error = message

    def mark_updated(self) -> None:
        self.last_updated = datetime.datetime.now(datetime.timezone.utc)

    # -- selection -----------------------------------------------------

    def select(self, bus_no: str) -> bool:
        if self.get_vehicle(bus_no) is None:
            return False
        self.selected_bus_no = bus_no
        return True

    def clear_selection(self) -> None:
        self.selected_bus_no = None

    # -- views ---------------------------------------------------------

    def get_vehicle(self, bus_no: str) -> Vehicle | None:
        for v in self.vehicles:
            if v.bus_no == bus_no:
                return v
        return None

    def stop_name(self, stop_id: str | None) -> str | None:
        if stop_id is None:
            return None
        return self.stop_names.get(stop_id) or stop_id

    def route_line(self, bus_no: str | None = None) -> RouteLine:
        """Classified stop line for ``bus_no``, or for the selected vehicle."""
        vehicle = self.get_vehicle(bus_no or self.selected_bus_no or "")
        return RouteLine(
            route_id=self.route_id,
            route_short_name=self.route_short_name,
            route_long_name=self.route_long_name,
            bus_no=vehicle.bus_no if vehicle else None,
            current_stop_id=vehicle.resolved_stop_id if vehicle else None,
            target_stop_id=self.target_stop_id,
            target_label=self.target_label,
            stops=classify_for_vehicle(self.stops, vehicle, self.target_stop_id),
        )

    def map_snapshot(self) -> MapSnapshot:
        stop_states = {}
        selected = self.get_vehicle(self.selected_bus_no) if self.selected_bus_no else None
        if selected is not None:
            stop_states = {
                s.stop_id: s.state
                for s in classify_for_vehicle(self.stops, selected, self.target_stop_id)
            }
        return MapSnapshot(
            vehicles=list(self.vehicles),
            stops=list(self.stops),
            shape=list(self.shape),
            target_stop_id=self.target_stop_id,
            selected_bus_no=self.selected_bus_no,
            stop_states=stop_states,
            target_label=self.target_label,
        )

    def update_message(self) -> VehicleUpdate:
        return VehicleUpdate(vehicles=list(self.vehicles), selected_bus_no=self.selected_bus_no)

    def snapshot_message(self) -> VehicleSnapshot:
        """Full state sent to a WebSocket client when it connects."""
        return VehicleSnapshot(vehicles=list(self.vehicles), selected_bus_no=self.selected_bus_no)

    def eta_view(self) -> list[EtaRecord]:
        """ETA records with ``current_stop_name`` filled from the stop list when upstream omitted it."""
        records = []
        for e in self.etas:
            if not e.current_stop_name:
                e = e.model_copy(update={"current_stop_name": self.stop_name(e.current_stop_id)})
            records.append(e)
        return records

    def status(self, map_ready: bool = False, map_degraded: bool = False) -> SessionStatus:
        return SessionStatus(
            route_id=self.route_id,
            vehicle_count=len(self.vehicles),
            selected_bus_no=self.selected_bus_no,
            error=self.error,
            eta_error=self.eta_error,
            last_updated=self.last_updated.isoformat() if self.last_updated else None,
            map_ready=map_ready,
            map_degraded=map_degraded,
        )
