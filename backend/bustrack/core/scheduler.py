"""APScheduler setup for the telemetry poll."""

import datetime
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = logging.getLogger(__name__)


def create_scheduler(poller) -> AsyncIOScheduler:
    """Create a scheduler polling immediately and then every interval."""
    from bustrack.config import settings

    scheduler = AsyncIOScheduler()

    # Ticks may overlap a slow previous cycle; the last applied result wins.
    scheduler.add_job(
        poller.poll_once,
        "interval",
        seconds=poller.interval_seconds or settings.poll_interval_seconds,
        id="poll_telemetry",
        name="Poll upstream backend for T789 telemetry",
        max_instances=poller.max_overlap or settings.poll_max_overlap,
        next_run_time=datetime.datetime.now(),
    )

    return scheduler
