"""Redis pub/sub broadcaster for tracking session updates."""

import asyncio
import logging

import orjson
import redis.asyncio as aioredis

from bustrack.config import settings
from bustrack.schemas.vehicle import VehicleUpdate

logger = logging.getLogger(__name__)

CHANNEL = "t789:vehicles"
STATE_KEY = "t789:state"


class Broadcaster:
    """Publishes session updates to Redis and manages WebSocket subscribers.

    Redis is optional: with an empty ``redis_url`` the latest update is kept
    in memory and only the local subscribers are fed.
    """

    def __init__(self, redis_url: str | None = None) -> None:
        self._redis_url = settings.redis_url if redis_url is None else redis_url
        self._redis: aioredis.Redis | None = None
        self._subscribers: set[asyncio.Queue] = set()
        self._last_payload: bytes | None = None

    async def connect(self) -> None:
        if self._redis_url:
            self._redis = aioredis.from_url(self._redis_url, decode_responses=False)

    async def close(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def publish(self, update: VehicleUpdate) -> None:
        """Store the update as current state and fan it out to subscribers."""
        payload = orjson.dumps(update.model_dump(mode="json"))
        self._last_payload = payload

        if self._redis:
            try:
                await self._redis.set(STATE_KEY, payload)
                await self._redis.publish(CHANNEL, payload)
            except Exception:
                logger.exception("Failed to publish to Redis")

        dead = set()
        for q in self._subscribers:
            try:
                q.put_nowait(payload)
            except asyncio.QueueFull:
                dead.add(q)
        self._subscribers -= dead

    async def get_current_state(self) -> bytes | None:
        """Latest published update, from Redis when connected."""
        if self._redis:
            try:
                data = await self._redis.get(STATE_KEY)
                if data is not None:
                    return data
            except Exception:
                logger.exception("Failed to get state from Redis")
        return self._last_payload

    def subscribe(self) -> asyncio.Queue:
        q: asyncio.Queue = asyncio.Queue(maxsize=10)
        self._subscribers.add(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        self._subscribers.discard(q)
