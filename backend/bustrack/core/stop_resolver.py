"""Current-stop resolution for a vehicle against the route's stop list.

A stop reported live by the vehicle wins when the route knows it. Otherwise
the stop nearest to the vehicle's GPS position is taken, measured along the
great circle, with the lower sequence winning an exact tie.
"""

import logging
import math

from bustrack.core.exceptions import UnresolvedPosition
from bustrack.schemas.route import Stop
from bustrack.schemas.vehicle import ResolutionSource, ResolvedStop, Vehicle

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6_371_000


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Distance in meters between two lat/lon points."""
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = (math.sin(dlat / 2) ** 2 +
         math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) *
         math.sin(dlon / 2) ** 2)
    return EARTH_RADIUS_M * 2 * math.asin(math.sqrt(a))


def resolve(vehicle: Vehicle, stops: list[Stop]) -> ResolvedStop:
    """Return the vehicle's current stop. Raises UnresolvedPosition."""
    if not stops:
        raise UnresolvedPosition(f"no stops to resolve bus {vehicle.bus_no} against")

    if vehicle.live_stop_id is not None:
        for s in stops:
            if s.stop_id == vehicle.live_stop_id:
                return ResolvedStop(stop_id=s.stop_id, sequence=s.sequence, source=ResolutionSource.live)
        logger.debug("Bus %s reported unknown stop %s", vehicle.bus_no, vehicle.live_stop_id)

    best: Stop | None = None
    best_key: tuple[float, int] | None = None
    for s in stops:
        if not s.has_coords:
            continue
        key = (haversine_m(vehicle.lat, vehicle.lon, s.stop_lat, s.stop_lon), s.sequence)
        if best_key is None or key < best_key:
            best, best_key = s, key

    if best is None:
        raise UnresolvedPosition(f"no stop with coordinates for bus {vehicle.bus_no}")
    return ResolvedStop(stop_id=best.stop_id, sequence=best.sequence, source=ResolutionSource.derived)


def resolve_vehicles(vehicles: list[Vehicle], stops: list[Stop]) -> list[Vehicle]:
    """Copies of ``vehicles`` with their resolved stop filled in."""
    names = {s.stop_id: s.stop_name for s in stops}
    resolved = []
    for v in vehicles:
        try:
            r = resolve(v, stops)
        except UnresolvedPosition:
            resolved.append(v.model_copy(update={
                "resolved_stop_id": None,
                "resolved_stop_name": None,
                "resolved_sequence": None,
                "resolution_source": ResolutionSource.none,
            }))
            continue
        resolved.append(v.model_copy(update={
            "resolved_stop_id": r.stop_id,
            "resolved_stop_name": names.get(r.stop_id) or None,
            "resolved_sequence": r.sequence,
            "resolution_source": r.source,
        }))
    return resolved
