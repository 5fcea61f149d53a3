"""Map render session: keeps a folium map in step with the latest poll.

The engine is a small state machine (uninitialized -> ready -> disposed).
Each sync clears the overlay group and redraws route, stops and vehicles
from scratch; the camera is fitted once and flies to a vehicle only when the
selection changes.
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable

import folium
from shapely.geometry import MultiPoint

from bustrack.config import settings
from bustrack.core.exceptions import RenderSurfaceUnavailable
from bustrack.schemas.route import ShapePoint, Stop, StopState
from bustrack.schemas.vehicle import Vehicle

logger = logging.getLogger(__name__)

SelectCallback = Callable[[str], None]
LatLon = tuple[float, float]

STOP_COLORS = {
    StopState.passed: "#9e9e9e",
    StopState.current: "#212121",
    StopState.between: "#1e88e5",
    StopState.target: "#1e88e5",
    StopState.upcoming: "#90caf9",
    StopState.unknown: "#616161",
}
ROUTE_COLOR = "#1e88e5"
TARGET_COLOR = "#e53935"


class EngineState(str, Enum):
    uninitialized = "uninitialized"
    ready = "ready"
    disposed = "disposed"


@dataclass
class MapSnapshot:
    vehicles: list[Vehicle] = field(default_factory=list)
    stops: list[Stop] = field(default_factory=list)
    shape: list[ShapePoint] = field(default_factory=list)
    target_stop_id: str | None = None
    selected_bus_no: str | None = None
    # stop_id -> classifier state for the selected vehicle, if any
    stop_states: dict[str, StopState] = field(default_factory=dict)
    target_label: str = "Target stop"


class FoliumSurface:
    """Tile layer plus one overlay group, written as HTML to ``container``.

    The folium document is regenerated from the overlay group and the camera
    on every render, so a redraw never has to patch the previous HTML.
    """

    def __init__(self, container: str, center: LatLon, zoom: int) -> None:
        self.container = container
        self._center = center
        self._zoom = zoom
        self._bounds: list[LatLon] | None = None
        self._overlay = folium.FeatureGroup(name="T789")
        self._click_handlers: dict[str, Callable[[], None]] = {}
        self._html: str | None = None

    @property
    def html(self) -> str | None:
        return self._html

    def clear_overlays(self) -> None:
        self._overlay = folium.FeatureGroup(name="T789")
        self._click_handlers = {}

    def add_polyline(self, points: list[LatLon]) -> None:
        folium.PolyLine(points, color=ROUTE_COLOR, weight=5, opacity=0.8).add_to(self._overlay)

    def add_stop_marker(
        self, lat: float, lon: float, name: str,
        state: StopState | None, is_target: bool, tooltip: str,
    ) -> None:
        color = TARGET_COLOR if is_target else STOP_COLORS.get(state, "#666666")
        folium.CircleMarker(
            (lat, lon),
            radius=9 if is_target else 5,
            color=color,
            weight=3 if is_target else 2,
            fill=True,
            fill_color=color if is_target or state is not None else "#ffffff",
            fill_opacity=0.95,
            tooltip=tooltip,
            popup=name or None,
        ).add_to(self._overlay)

    def add_vehicle_marker(
        self, lat: float, lon: float, label: str, selected: bool,
        on_click: Callable[[], None],
    ) -> None:
        folium.Marker(
            (lat, lon),
            tooltip=f"Bus {label}",
            popup=folium.Popup(f"Bus {label}<br>POST /api/vehicles/{label}/select", max_width=240),
            icon=folium.Icon(color="red" if selected else "blue", icon="bus", prefix="fa"),
        ).add_to(self._overlay)
        self._click_handlers[label] = on_click

    def dispatch_click(self, label: str) -> bool:
        handler = self._click_handlers.get(label)
        if handler is None:
            return False
        handler()
        return True

    def fly_to(self, lat: float, lon: float, zoom: int) -> None:
        self._center = (lat, lon)
        self._zoom = zoom
        self._bounds = None

    def fit_bounds(self, south_west: LatLon, north_east: LatLon) -> None:
        self._bounds = [south_west, north_east]

    @staticmethod
    def _build(overlay: folium.FeatureGroup, center: LatLon, zoom: int, bounds: list[LatLon] | None) -> str:
        m = folium.Map(location=center, zoom_start=zoom, tiles=None, control_scale=True)
        folium.TileLayer("OpenStreetMap").add_to(m)
        overlay.add_to(m)
        if bounds:
            m.fit_bounds(bounds, padding=(30, 30))
        return m.get_root().render()

    async def render(self) -> str:
        """Render the current overlay and camera to HTML off the event loop."""
        bounds = list(self._bounds) if self._bounds else None
        return await asyncio.to_thread(self._build, self._overlay, self._center, self._zoom, bounds)

    def publish(self, html: str) -> None:
        """Write rendered HTML to the container."""
        with open(self.container, "w", encoding="utf-8") as fh:
            fh.write(html)
        self._html = html

    def release(self) -> None:
        self._overlay = folium.FeatureGroup(name="T789")
        self._click_handlers = {}
        self._html = None


async def acquire_folium_surface(container: str) -> FoliumSurface:
    """Mount a folium surface on an output HTML path. Raises RenderSurfaceUnavailable."""
    directory = os.path.dirname(os.path.abspath(container))
    ok = await asyncio.to_thread(lambda: os.path.isdir(directory) and os.access(directory, os.W_OK))
    if not ok:
        raise RenderSurfaceUnavailable(f"map container directory not writable: {directory}")
    return FoliumSurface(
        container,
        center=(settings.map_center_lat, settings.map_center_lon),
        zoom=settings.map_zoom,
    )


def bounds_of(points: list[LatLon]) -> tuple[LatLon, LatLon] | None:
    """(south_west, north_east) covering ``points``, or None when empty."""
    if not points:
        return None
    min_lon, min_lat, max_lon, max_lat = MultiPoint([(lon, lat) for lat, lon in points]).bounds
    return (min_lat, min_lon), (max_lat, max_lon)


class MapSyncEngine:
    """Owns one render surface for a view session and redraws it on demand."""

    def __init__(
        self,
        surface_factory: Callable[[str], Awaitable] = acquire_folium_surface,
        on_select: SelectCallback | None = None,
        fly_zoom: int | None = None,
    ) -> None:
        self._surface_factory = surface_factory
        self._on_select = on_select
        self._fly_zoom = fly_zoom if fly_zoom is not None else settings.map_fly_zoom
        self._surface = None
        self._state = EngineState.uninitialized
        self._disposed = False
        self._acquiring = False
        self._degraded = False
        self._has_fit = False
        self._last_selected: str | None = None
        self._sync_lock = asyncio.Lock()

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def degraded(self) -> bool:
        """True when the surface could not be mounted; the tracker runs map-less."""
        return self._degraded

    @property
    def surface(self):
        return self._surface

    async def acquire(self, container: str) -> bool:
        """Mount the render surface once. Returns True when the engine is ready."""
        if self._state is not EngineState.uninitialized or self._acquiring:
            return self._state is EngineState.ready
        self._acquiring = True
        try:
            surface = await self._surface_factory(container)
        except (RenderSurfaceUnavailable, OSError) as e:
            if not self._disposed:
                self._degraded = True
                logger.warning("Map surface unavailable, continuing without map: %s", e)
            return False
        finally:
            self._acquiring = False

        if self._disposed:
            logger.info("Map engine disposed during acquisition; abandoning setup")
            return False

        self._surface = surface
        self._state = EngineState.ready
        logger.info("Map surface ready at %s", container)
        return True

    async def sync(self, snapshot: MapSnapshot) -> None:
        """Redraw every overlay from ``snapshot`` and move the camera if needed."""
        # One redraw at a time: a poll tick and a selection change may overlap.
        async with self._sync_lock:
            if self._disposed or self._state is not EngineState.ready or self._surface is None:
                return
            surface = self._surface
            surface.clear_overlays()

            self._draw_route(surface, snapshot)
            self._draw_stops(surface, snapshot)
            self._draw_vehicles(surface, snapshot)
            self._update_camera(surface, snapshot)

            html = await surface.render()
            if self._disposed:
                logger.debug("Map engine disposed during render; dropping output")
                return
            surface.publish(html)
        logger.debug(
            "Map synced: %d vehicles, %d stops, %d shape points",
            len(snapshot.vehicles), len(snapshot.stops), len(snapshot.shape),
        )

    def click_vehicle(self, bus_no: str) -> bool:
        """Deliver a click on a vehicle marker. Returns False if no such marker."""
        if self._state is not EngineState.ready or self._surface is None:
            return False
        return self._surface.dispatch_click(bus_no)

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._state = EngineState.disposed
        if self._surface is not None:
            self._surface.release()
            self._surface = None
        self._on_select = None
        logger.info("Map engine disposed")

    # ------------------------------------------------------------------

    @staticmethod
    def _draw_route(surface, snapshot: MapSnapshot) -> None:
        if len(snapshot.shape) > 1:
            surface.add_polyline([(p.lat, p.lon) for p in snapshot.shape])
            return
        stop_points = [
            (s.stop_lat, s.stop_lon)
            for s in sorted(snapshot.stops, key=lambda s: s.sequence)
            if s.has_coords
        ]
        if len(stop_points) > 1:
            surface.add_polyline(stop_points)

    @staticmethod
    def _draw_stops(surface, snapshot: MapSnapshot) -> None:
        for s in snapshot.stops:
            if not s.has_coords:
                continue
            is_target = s.stop_id == snapshot.target_stop_id
            name = s.stop_name or s.stop_id
            tooltip = f"{snapshot.target_label}: {name}" if is_target else name
            surface.add_stop_marker(
                s.stop_lat, s.stop_lon, name,
                snapshot.stop_states.get(s.stop_id), is_target, tooltip,
            )

    def _draw_vehicles(self, surface, snapshot: MapSnapshot) -> None:
        for v in snapshot.vehicles:
            surface.add_vehicle_marker(
                v.lat, v.lon, v.bus_no,
                v.bus_no == snapshot.selected_bus_no,
                self._click_callback(v.bus_no),
            )

    def _click_callback(self, bus_no: str) -> Callable[[], None]:
        def on_click() -> None:
            if self._on_select is not None:
                self._on_select(bus_no)
        return on_click

    def _update_camera(self, surface, snapshot: MapSnapshot) -> None:
        selected = snapshot.selected_bus_no
        if selected is not None:
            if selected != self._last_selected:
                for v in snapshot.vehicles:
                    if v.bus_no == selected:
                        surface.fly_to(v.lat, v.lon, self._fly_zoom)
                        break
        elif not self._has_fit:
            bounds = bounds_of(self._collect_points(snapshot))
            if bounds is not None:
                surface.fit_bounds(*bounds)
                self._has_fit = True
        self._last_selected = selected

    @staticmethod
    def _collect_points(snapshot: MapSnapshot) -> list[LatLon]:
        points = [(p.lat, p.lon) for p in snapshot.shape]
        points.extend((s.stop_lat, s.stop_lon) for s in snapshot.stops if s.has_coords)
        points.extend((v.lat, v.lon) for v in snapshot.vehicles)
        if not snapshot.vehicles and snapshot.target_stop_id is not None:
            for s in snapshot.stops:
                if s.stop_id == snapshot.target_stop_id and s.has_coords:
                    points.append((s.stop_lat, s.stop_lon))
                    break
        return points
