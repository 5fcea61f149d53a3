"""Tests for the update broadcaster and the poll schedule."""

import orjson
import pytest

from bustrack.core.broadcaster import Broadcaster
from bustrack.core.poller import TelemetryPoller
from bustrack.core.scheduler import create_scheduler
from bustrack.core.session import TrackingSession
from bustrack.schemas.vehicle import Vehicle, VehicleUpdate


@pytest.mark.asyncio
async def test_publish_without_redis_feeds_subscribers():
    broadcaster = Broadcaster(redis_url="")
    await broadcaster.connect()
    assert await broadcaster.get_current_state() is None

    queue = broadcaster.subscribe()
    await broadcaster.publish(VehicleUpdate(vehicles=[Vehicle(bus_no="1234", route="T7890", lat=3.1, lon=101.6)]))
    message = orjson.loads(queue.get_nowait())
    assert message["type"] == "update"
    assert message["vehicles"][0]["bus_no"] == "1234"
    assert await broadcaster.get_current_state() == orjson.dumps(message)

    broadcaster.unsubscribe(queue)
    await broadcaster.publish(VehicleUpdate(vehicles=[]))
    assert queue.empty()
    await broadcaster.close()


def test_poll_job_runs_immediately_and_allows_overlap():
    poller = TelemetryPoller(client=None, session=TrackingSession("T7890"), interval_seconds=15, max_overlap=3)
    scheduler = create_scheduler(poller)
    job = scheduler.get_job("poll_telemetry")
    assert job.trigger.interval.total_seconds() == 15
    assert job.max_instances == 3
    assert job.next_run_time is not None
