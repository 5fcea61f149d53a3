"""Async client for the upstream T789 transit backend.

Every payload is normalized here into pydantic models, so nothing past this
module has to sniff whether a field is a string, a number, an object or a
list.
"""

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from bustrack.config import settings
from bustrack.core.exceptions import MalformedPayload, NetworkFailure
from bustrack.schemas.route import NearestStop, RouteShape, RouteStops, ShapePoint, Stop
from bustrack.schemas.vehicle import EtaRecord, Vehicle

logger = logging.getLogger(__name__)

VEHICLES_PATH = "/get-route-t789"
ETA_PATH = "/get-t789-eta"

VEHICLES_FALLBACK = "Unable to fetch active T789 buses"
ETA_FALLBACK = "Unable to fetch ETA to KL Gateway"
STOPS_FALLBACK = "Unable to fetch route stops"
SHAPE_FALLBACK = "Unable to fetch route shape"
NEAREST_FALLBACK = "Unable to fetch nearest bus stop"
STOP_ETA_FALLBACK = "Unable to fetch stop ETA"


def _opt_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _opt_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


def _opt_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return float(value)


def normalize_vehicle_payload(payload: Any) -> list[dict]:
    """Bare object -> one-element list, list -> list, anything else -> []."""
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]
    if isinstance(payload, dict) and "bus_no" in payload:
        return [payload]
    logger.debug("Vehicle payload of type %s normalized to empty", type(payload).__name__)
    return []


def parse_vehicle(item: dict, default_route: str = "") -> Vehicle:
    """Build a Vehicle from one raw record. Raises MalformedPayload."""
    try:
        lat = float(item.get("latitude", item.get("lat")))
        lon = float(item.get("longitude", item.get("lon", item.get("lng"))))
        bus_no = str(item["bus_no"])
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedPayload(f"vehicle record: {e}") from e

    live_stop_id = _opt_str(item.get("busstop_id"))
    if live_stop_id is None and item.get("stop_resolution_source") == "live":
        live_stop_id = _opt_str(item.get("resolved_stop_id"))

    try:
        speed = float(item.get("speed") or 0)
    except (TypeError, ValueError):
        speed = 0.0

    return Vehicle(
        bus_no=bus_no,
        route=str(item.get("route") or default_route),
        lat=lat,
        lon=lon,
        speed=speed,
        live_stop_id=live_stop_id,
    )


def parse_vehicles(payload: Any, default_route: str = "") -> list[Vehicle]:
    vehicles = []
    for item in normalize_vehicle_payload(payload):
        try:
            vehicles.append(parse_vehicle(item, default_route))
        except MalformedPayload as e:
            logger.debug("Skipping malformed vehicle record: %s", e)
    return vehicles


def parse_eta_records(payload: Any) -> list[EtaRecord]:
    if not isinstance(payload, list):
        logger.debug("ETA payload of type %s normalized to empty", type(payload).__name__)
        return []
    records = []
    for item in payload:
        if not isinstance(item, dict):
            continue
        try:
            records.append(EtaRecord(
                route_id=_opt_str(item.get("route_id")),
                bus_no=str(item["bus_no"]),
                current_stop_id=str(item["current_stop_id"]),
                current_stop_name=_opt_str(item.get("current_stop_name")),
                current_sequence=_opt_int(item.get("current_sequence")),
                stop_resolution_source=_opt_str(item.get("stop_resolution_source")),
                stops_away=int(item.get("stops_away") or 0),
                distance_km=float(item.get("distance_km") or 0),
                speed_kmh=float(item.get("speed_kmh") or 0),
                eta_minutes=float(item.get("eta_minutes") or 0),
            ))
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            logger.debug("Skipping malformed ETA record: %s", e)
    return records


def parse_stop(item: dict) -> Stop:
    return Stop(
        stop_id=str(item["stop_id"]),
        stop_name=str(item.get("stop_name") or ""),
        sequence=int(item["sequence"]),
        stop_desc=_opt_str(item.get("stop_desc")),
        stop_lat=_opt_float(item.get("stop_lat")),
        stop_lon=_opt_float(item.get("stop_lon")),
    )


def parse_route_stops(payload: Any, route_id: str) -> RouteStops:
    if not isinstance(payload, dict):
        raise MalformedPayload("route stops payload is not an object")
    stops = []
    for item in payload.get("stops") or []:
        try:
            stops.append(parse_stop(item))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.debug("Skipping malformed stop record: %s", e)
    return RouteStops(
        route_id=str(payload.get("route_id") or route_id),
        route_short_name=_opt_str(payload.get("route_short_name")),
        route_long_name=_opt_str(payload.get("route_long_name")),
        stops=stops,
    )


def parse_route_shape(payload: Any, route_id: str) -> RouteShape:
    if not isinstance(payload, dict):
        raise MalformedPayload("route shape payload is not an object")
    points = []
    for item in payload.get("points") or []:
        try:
            points.append(ShapePoint(
                lat=float(item["lat"]),
                lon=float(item["lon"]),
                sequence=int(item["sequence"]),
            ))
        except (KeyError, TypeError, ValueError) as e:
            logger.debug("Skipping malformed shape point: %s", e)
    points.sort(key=lambda p: p.sequence)
    return RouteShape(
        route_id=str(payload.get("route_id") or route_id),
        shape_id=_opt_str(payload.get("shape_id")),
        points=points,
    )


def parse_nearest_stop(payload: Any) -> NearestStop:
    if not isinstance(payload, dict):
        raise MalformedPayload("nearest stop payload is not an object")
    try:
        return NearestStop(
            stop_id=str(payload["stop_id"]),
            stop_name=str(payload.get("stop_name") or ""),
            stop_desc=_opt_str(payload.get("stop_desc")),
            stop_lat=float(payload["stop_lat"]),
            stop_lon=float(payload["stop_lon"]),
            distance_km=float(payload.get("distance_km") or 0),
            distance_meters=float(payload.get("distance_meters") or 0),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedPayload(f"nearest stop: {e}") from e


class TransitApiClient:
    """Fetches vehicles, ETAs, stops and shapes from the upstream backend."""

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=settings.api_base_url,
            timeout=settings.request_timeout_seconds,
            headers={"Accept": "application/json"},
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _get_json(self, path: str, fallback: str, params: dict | None = None) -> Any:
        """GET a JSON document. Raises NetworkFailure on transport error or non-OK status."""
        try:
            resp = await self._client.get(path, params=params)
        except httpx.HTTPError as e:
            logger.warning("GET %s failed: %s", path, type(e).__name__)
            raise NetworkFailure(fallback, endpoint=path) from e

        if not resp.is_success:
            message = fallback
            try:
                body = resp.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and isinstance(body.get("error"), str):
                message = body["error"]
            logger.warning("GET %s returned HTTP %d: %s", path, resp.status_code, message)
            raise NetworkFailure(message, status_code=resp.status_code, endpoint=path)

        try:
            return resp.json()
        except ValueError:
            logger.warning("GET %s returned a non-JSON body", path)
            return None

    async def fetch_vehicles(self) -> list[Vehicle]:
        """Fetch all active vehicles on the route."""
        data = await self._get_json(VEHICLES_PATH, VEHICLES_FALLBACK)
        vehicles = parse_vehicles(data, default_route=settings.route_id)
        logger.debug("Fetched %d active vehicles", len(vehicles))
        return vehicles

    async def fetch_eta(self) -> list[EtaRecord]:
        """Fetch ETA of each active vehicle to the target stop."""
        data = await self._get_json(ETA_PATH, ETA_FALLBACK)
        return parse_eta_records(data)

    async def fetch_route_stops(self, route_id: str) -> RouteStops:
        data = await self._get_json(f"/route/{route_id}/stops", STOPS_FALLBACK)
        return parse_route_stops(data, route_id)

    async def fetch_route_shape(self, route_id: str) -> RouteShape:
        data = await self._get_json(f"/route/{route_id}/shape", SHAPE_FALLBACK)
        return parse_route_shape(data, route_id)

    async def fetch_nearest_stop(self, lat: float, lon: float) -> NearestStop:
        data = await self._get_json(
            "/stops/nearest", NEAREST_FALLBACK, params={"lat": str(lat), "lon": str(lon)},
        )
        return parse_nearest_stop(data)

    async def fetch_stop_eta(self, stop_id: str) -> list[EtaRecord]:
        """ETA records for one stop across all routes serving it."""
        data = await self._get_json(f"/stops/{stop_id}/eta", STOP_ETA_FALLBACK)
        return parse_eta_records(data)
