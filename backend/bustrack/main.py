"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from bustrack.api import stops, tracking, vehicles, ws
from bustrack.config import settings
from bustrack.core.broadcaster import Broadcaster
from bustrack.core.map_engine import MapSyncEngine
from bustrack.core.poller import TelemetryPoller
from bustrack.core.session import TrackingSession
from bustrack.core.transit_client import TransitApiClient

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    client = TransitApiClient()
    broadcaster = Broadcaster()
    await broadcaster.connect()

    session = TrackingSession(
        settings.route_id,
        target_stop_id=settings.target_stop_id,
        target_label=settings.target_label,
    )
    engine = MapSyncEngine(on_select=session.select)
    poller = TelemetryPoller(client, session)

    # Wire up API modules
    ws.broadcaster = broadcaster
    ws.session = session
    vehicles.session = session
    vehicles.engine = engine
    stops.session = session
    stops.client = client
    tracking.session = session
    tracking.engine = engine
    tracking.poller = poller

    await engine.acquire(settings.map_output_path)

    async def sync_map(s: TrackingSession) -> None:
        await engine.sync(s.map_snapshot())

    async def broadcast(s: TrackingSession) -> None:
        await broadcaster.publish(s.update_message())

    poller.add_listener(sync_map)
    poller.add_listener(broadcast)
    poller.start()
    logger.info(
        "T789 tracker started - polling %s every %ds",
        settings.api_base_url, settings.poll_interval_seconds,
    )

    yield

    # Shutdown
    poller.stop()
    engine.dispose()
    await client.close()
    await broadcaster.close()
    logger.info("T789 tracker shut down")


app = FastAPI(
    title="T789 Bus Tracker",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(vehicles.router)
app.include_router(stops.router)
app.include_router(tracking.router)
app.include_router(ws.router)


@app.get("/api/health")
async def health():
    return {"status": "ok"}
