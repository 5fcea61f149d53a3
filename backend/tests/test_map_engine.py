"""Tests for the map render session."""

import asyncio

import pytest

from bustrack.core.exceptions import RenderSurfaceUnavailable
from bustrack.core.map_engine import EngineState, MapSnapshot, MapSyncEngine, bounds_of
from bustrack.schemas.route import ShapePoint, Stop, StopState
from bustrack.schemas.vehicle import Vehicle


class RecordingSurface:
    """Render surface double that records every drawing and camera call."""

    def __init__(self, container: str) -> None:
        self.container = container
        self.polylines = []
        self.stop_markers = []
        self.vehicle_markers = []
        self.handlers = {}
        self.fly_calls = []
        self.fit_calls = []
        self.renders = 0
        self.published = []
        self.clears = 0
        self.released = False

    def clear_overlays(self):
        self.clears += 1
        self.polylines, self.stop_markers, self.vehicle_markers = [], [], []
        self.handlers = {}

    def add_polyline(self, points):
        self.polylines.append(points)

    def add_stop_marker(self, lat, lon, name, state, is_target, tooltip):
        self.stop_markers.append({"name": name, "state": state, "target": is_target, "tooltip": tooltip})

    def add_vehicle_marker(self, lat, lon, label, selected, on_click):
        self.vehicle_markers.append({"label": label, "selected": selected})
        self.handlers[label] = on_click

    def dispatch_click(self, label):
        if label not in self.handlers:
            return False
        self.handlers[label]()
        return True

    def fly_to(self, lat, lon, zoom):
        self.fly_calls.append((lat, lon, zoom))

    def fit_bounds(self, south_west, north_east):
        self.fit_calls.append((south_west, north_east))

    async def render(self):
        self.renders += 1
        return f"<html>{len(self.vehicle_markers)} vehicles</html>"

    def publish(self, html):
        self.published.append(html)

    def release(self):
        self.released = True


def make_stops() -> list[Stop]:
    return [
        Stop(stop_id="1001", stop_name="Kerinchi", sequence=1, stop_lat=3.100, stop_lon=101.600),
        Stop(stop_id="1002", stop_name="Pantai", sequence=2, stop_lat=3.105, stop_lon=101.600),
        Stop(stop_id="1003", stop_name="KL Gateway", sequence=3, stop_lat=3.110, stop_lon=101.600),
    ]


def bus(bus_no: str, lat: float = 3.102, lon: float = 101.601) -> Vehicle:
    return Vehicle(bus_no=bus_no, route="T7890", lat=lat, lon=lon, speed=20)


async def ready_engine(**kwargs) -> tuple[MapSyncEngine, RecordingSurface]:
    surfaces = []

    async def factory(container):
        surface = RecordingSurface(container)
        surfaces.append(surface)
        return surface

    engine = MapSyncEngine(surface_factory=factory, fly_zoom=16, **kwargs)
    assert await engine.acquire("map.html") is True
    return engine, surfaces[0]


@pytest.mark.asyncio
async def test_acquire_reaches_ready():
    engine, surface = await ready_engine()
    assert engine.state is EngineState.ready
    assert surface.container == "map.html"
    # a second acquire is a no-op
    assert await engine.acquire("other.html") is True
    assert engine.surface is surface


@pytest.mark.asyncio
async def test_fit_bounds_only_once():
    """Two syncs with a growing vehicle list and no selection fit exactly once."""
    engine, surface = await ready_engine()
    await engine.sync(MapSnapshot(vehicles=[bus("A")]))
    await engine.sync(MapSnapshot(vehicles=[bus("A"), bus("B", 3.2, 101.7)]))
    assert len(surface.fit_calls) == 1
    assert surface.renders == 2


@pytest.mark.asyncio
async def test_fit_waits_for_first_points():
    engine, surface = await ready_engine()
    await engine.sync(MapSnapshot())
    assert surface.fit_calls == []
    await engine.sync(MapSnapshot(stops=make_stops()))
    assert len(surface.fit_calls) == 1


@pytest.mark.asyncio
async def test_fly_to_on_selection_change_only():
    engine, surface = await ready_engine()
    vehicles = [bus("A", 3.101, 101.601), bus("B", 3.108, 101.602)]
    await engine.sync(MapSnapshot(vehicles=vehicles, selected_bus_no="A"))
    await engine.sync(MapSnapshot(vehicles=vehicles, selected_bus_no="A"))
    assert surface.fly_calls == [(3.101, 101.601, 16)]

    await engine.sync(MapSnapshot(vehicles=vehicles, selected_bus_no="B"))
    assert surface.fly_calls[-1] == (3.108, 101.602, 16)
    assert len(surface.fly_calls) == 2
    assert surface.fit_calls == []


@pytest.mark.asyncio
async def test_route_prefers_shape_then_stops():
    engine, surface = await ready_engine()
    shape = [ShapePoint(lat=3.1, lon=101.6, sequence=1), ShapePoint(lat=3.11, lon=101.61, sequence=2)]
    await engine.sync(MapSnapshot(stops=make_stops(), shape=shape))
    assert surface.polylines == [[(3.1, 101.6), (3.11, 101.61)]]

    stops = list(reversed(make_stops()))
    await engine.sync(MapSnapshot(stops=stops, shape=shape[:1]))
    assert surface.polylines == [[(3.100, 101.600), (3.105, 101.600), (3.110, 101.600)]]

    await engine.sync(MapSnapshot(stops=make_stops()[:1]))
    assert surface.polylines == []


@pytest.mark.asyncio
async def test_markers_emphasize_target_and_selection():
    engine, surface = await ready_engine()
    await engine.sync(MapSnapshot(
        vehicles=[bus("A"), bus("B")],
        stops=make_stops(),
        target_stop_id="1003",
        target_label="KL Gateway",
        selected_bus_no="B",
        stop_states={"1001": StopState.passed, "1002": StopState.current, "1003": StopState.target},
    ))
    assert len(surface.stop_markers) == 3
    target = [m for m in surface.stop_markers if m["target"]]
    assert len(target) == 1
    assert target[0]["tooltip"] == "KL Gateway: KL Gateway"
    assert surface.stop_markers[0]["state"] is StopState.passed
    assert surface.vehicle_markers == [
        {"label": "A", "selected": False},
        {"label": "B", "selected": True},
    ]


@pytest.mark.asyncio
async def test_marker_click_invokes_selection_callback():
    selected = []
    engine, surface = await ready_engine(on_select=selected.append)
    await engine.sync(MapSnapshot(vehicles=[bus("A")]))
    assert engine.click_vehicle("A") is True
    assert engine.click_vehicle("Z") is False
    assert selected == ["A"]


@pytest.mark.asyncio
async def test_target_included_in_bounds_without_vehicles():
    engine, surface = await ready_engine()
    stops = [Stop(stop_id="1003", stop_name="KL Gateway", sequence=3, stop_lat=3.11, stop_lon=101.6)]
    await engine.sync(MapSnapshot(stops=stops, target_stop_id="1003"))
    assert surface.fit_calls == [((3.11, 101.6), (3.11, 101.6))]


def test_bounds_of():
    assert bounds_of([]) is None
    assert bounds_of([(3.1, 101.7), (3.2, 101.6)]) == ((3.1, 101.6), (3.2, 101.7))


@pytest.mark.asyncio
async def test_dispose_is_idempotent_and_stops_sync():
    engine, surface = await ready_engine()
    engine.dispose()
    engine.dispose()
    assert engine.state is EngineState.disposed
    assert surface.released is True
    await engine.sync(MapSnapshot(vehicles=[bus("A")]))
    assert surface.renders == 0
    assert engine.click_vehicle("A") is False


@pytest.mark.asyncio
async def test_dispose_during_acquisition_abandons_setup():
    gate = asyncio.Event()
    created = []

    async def slow_factory(container):
        await gate.wait()
        surface = RecordingSurface(container)
        created.append(surface)
        return surface

    engine = MapSyncEngine(surface_factory=slow_factory)
    task = asyncio.create_task(engine.acquire("map.html"))
    await asyncio.sleep(0)
    engine.dispose()
    gate.set()
    assert await task is False
    assert engine.state is EngineState.disposed
    assert engine.surface is None
    assert created[0].clears == 0
    assert created[0].renders == 0


@pytest.mark.asyncio
async def test_unavailable_surface_degrades_without_raising():
    async def broken_factory(container):
        raise RenderSurfaceUnavailable("no container")

    engine = MapSyncEngine(surface_factory=broken_factory)
    assert await engine.acquire("map.html") is False
    assert engine.state is EngineState.uninitialized
    assert engine.degraded is True
    await engine.sync(MapSnapshot(vehicles=[bus("A")]))


@pytest.mark.asyncio
async def test_folium_surface_writes_html(tmp_path):
    from bustrack.core.map_engine import acquire_folium_surface

    container = tmp_path / "t789.html"
    engine = MapSyncEngine(surface_factory=acquire_folium_surface)
    assert await engine.acquire(str(container)) is True
    await engine.sync(MapSnapshot(
        vehicles=[bus("4321")], stops=make_stops(), target_stop_id="1003", target_label="KL Gateway",
    ))
    html = container.read_text(encoding="utf-8")
    assert "Bus 4321" in html
    assert "KL Gateway" in html
    assert engine.surface.html == html
    engine.dispose()


@pytest.mark.asyncio
async def test_folium_surface_missing_directory(tmp_path):
    from bustrack.core.map_engine import acquire_folium_surface

    engine = MapSyncEngine(surface_factory=acquire_folium_surface)
    assert await engine.acquire(str(tmp_path / "missing" / "t789.html")) is False
    assert engine.degraded is True


@pytest.mark.asyncio
async def test_overlapping_syncs_render_in_turn(tmp_path):
    """A poll redraw and a selection redraw at the same time both complete."""
    from bustrack.core.map_engine import acquire_folium_surface

    container = tmp_path / "t789.html"
    engine = MapSyncEngine(surface_factory=acquire_folium_surface)
    await engine.acquire(str(container))
    first = MapSnapshot(vehicles=[bus(f"A{i}", 3.10 + i * 0.001) for i in range(5)], stops=make_stops())
    second = MapSnapshot(
        vehicles=[bus(f"B{i}", 3.10 + i * 0.001) for i in range(6)], stops=make_stops(), selected_bus_no="B1",
    )
    await asyncio.gather(engine.sync(first), engine.sync(second))
    html = container.read_text(encoding="utf-8")
    assert "Bus B5" in html
    assert "Bus A0" not in html
    engine.dispose()


@pytest.mark.asyncio
async def test_syncs_do_not_interleave():
    engine, surface = await ready_engine()
    await asyncio.gather(
        engine.sync(MapSnapshot(vehicles=[bus("A")])),
        engine.sync(MapSnapshot(vehicles=[bus("A"), bus("B")])),
    )
    assert surface.published == ["<html>1 vehicles</html>", "<html>2 vehicles</html>"]


@pytest.mark.asyncio
async def test_dispose_during_render_writes_nothing(tmp_path):
    from bustrack.core.map_engine import acquire_folium_surface

    container = tmp_path / "t789.html"
    engine = MapSyncEngine(surface_factory=acquire_folium_surface)
    await engine.acquire(str(container))
    task = asyncio.create_task(engine.sync(MapSnapshot(vehicles=[bus("A")], stops=make_stops())))
    await asyncio.sleep(0)
    engine.dispose()
    await task
    assert not container.exists()
