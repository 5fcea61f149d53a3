"""Periodic telemetry poll: four concurrent fetches, applied section by section."""

import asyncio
import logging
from typing import Awaitable, Callable

from bustrack.core.exceptions import BusTrackError
from bustrack.core.scheduler import create_scheduler
from bustrack.core.session import TrackingSession
from bustrack.core.transit_client import ETA_FALLBACK, VEHICLES_FALLBACK, TransitApiClient

logger = logging.getLogger(__name__)

Listener = Callable[[TrackingSession], Awaitable[None]]


def _message(exc: BaseException, fallback: str) -> str:
    if isinstance(exc, BusTrackError) and str(exc):
        return str(exc)
    return fallback


class TelemetryPoller:
    """Polls the upstream backend and feeds the session controller.

    Vehicles are the core of a cycle: if they fail nothing is applied. ETA
    failures are reported separately, stop and shape failures are quiet.
    """

    def __init__(
        self,
        client: TransitApiClient,
        session: TrackingSession,
        interval_seconds: int | None = None,
        max_overlap: int | None = None,
    ) -> None:
        self.client = client
        self.session = session
        self.interval_seconds = interval_seconds
        self.max_overlap = max_overlap
        self._listeners: list[Listener] = []
        self._scheduler = None
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def add_listener(self, listener: Listener) -> None:
        """Register a coroutine called with the session after each applied cycle."""
        self._listeners.append(listener)

    async def poll_once(self) -> bool:
        """Run one fetch cycle. Returns True when vehicle data was applied."""
        if self._cancelled:
            return False
        route_id = self.session.route_id
        vehicles, etas, stops, shape = await asyncio.gather(
            self.client.fetch_vehicles(),
            self.client.fetch_eta(),
            self.client.fetch_route_stops(route_id),
            self.client.fetch_route_shape(route_id),
            return_exceptions=True,
        )
        if self._cancelled:
            logger.debug("Poll resolved after cancellation; discarding results")
            return False

        if isinstance(vehicles, BaseException):
            message = _message(vehicles, VEHICLES_FALLBACK)
            logger.warning("Vehicle fetch failed: %s", message)
            self.session.apply_vehicle_failure(message)
            return False

        if isinstance(stops, BaseException):
            logger.debug("Stop fetch failed, keeping %d cached stops: %s", len(self.session.stops), stops)
        else:
            self.session.apply_stops(stops)

        if isinstance(shape, BaseException):
            logger.debug("Shape fetch failed, clearing shape: %s", shape)
            self.session.apply_shape(None)
        else:
            self.session.apply_shape(shape)

        self.session.apply_vehicles(vehicles)

        if isinstance(etas, BaseException):
            message = _message(etas, ETA_FALLBACK)
            logger.warning("ETA fetch failed: %s", message)
            self.session.apply_eta_failure(message)
        else:
            self.session.apply_eta(etas)

        self.session.mark_updated()
        logger.info(
            "Route %s: %d active vehicles, %d ETA records",
            route_id, len(self.session.vehicles), len(self.session.etas),
        )
        await self._notify()
        return True

    async def _notify(self) -> None:
        for listener in list(self._listeners):
            if self._cancelled:
                return
            try:
                await listener(self.session)
            except Exception:
                logger.exception("Poll listener %r failed", listener)

    def start(self) -> None:
        """Poll now, then every interval, until stop()."""
        if self._scheduler is not None or self._cancelled:
            return
        self._scheduler = create_scheduler(self)
        self._scheduler.start()
        logger.info("Telemetry poller started for route %s", self.session.route_id)

    def stop(self) -> None:
        """Cancel the schedule; in-flight cycles resolving later are discarded."""
        if self._cancelled:
            return
        self._cancelled = True
        self._listeners.clear()
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
        logger.info("Telemetry poller stopped")
