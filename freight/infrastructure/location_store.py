"""
Redis-backed live driver locations.

Each driver has one hash ``driver:{id}:location``.  Writes go through a Lua
script that compares the incoming client timestamp with the stored one and
only overwrites when the incoming fix is strictly newer, so out-of-order
pings can never move a driver backwards.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import redis.asyncio as aioredis

from freight.domain.entities import GeoLocation
from freight.domain.ports import LocationStore

# KEYS[1] = hash key; ARGV = ts, lat, lng, accuracy, speed, heading, ttl
_RECORD_IF_NEWER = """
local current = redis.call("hget", KEYS[1], "ts")
if current and tonumber(current) >= tonumber(ARGV[1]) then
    return 0
end
redis.call("hset", KEYS[1],
    "ts", ARGV[1], "lat", ARGV[2], "lng", ARGV[3],
    "accuracy", ARGV[4], "speed", ARGV[5], "heading", ARGV[6])
redis.call("expire", KEYS[1], ARGV[7])
return 1
"""


def _encode(value: Optional[float]) -> str:
    return "" if value is None else repr(float(value))


def _decode(value: Optional[str]) -> Optional[float]:
    return float(value) if value else None


class RedisLocationStore(LocationStore):
    def __init__(self, client: aioredis.Redis, ttl_seconds: int = 86400):
        self.redis = client
        self.ttl = ttl_seconds

    @staticmethod
    def key(driver_id: int) -> str:
        return f"driver:{driver_id}:location"

    async def record(self, driver_id: int, location: GeoLocation) -> bool:
        applied = await self.redis.eval(
            _RECORD_IF_NEWER,
            1,
            self.key(driver_id),
            repr(location.timestamp.timestamp()),
            repr(location.latitude),
            repr(location.longitude),
            _encode(location.accuracy),
            _encode(location.speed),
            _encode(location.heading),
            self.ttl,
        )
        return bool(applied)

    async def latest(self, driver_id: int) -> Optional[GeoLocation]:
        data = await self.redis.hgetall(self.key(driver_id))
        if not data or "ts" not in data:
            return None
        return GeoLocation(
            latitude=float(data["lat"]),
            longitude=float(data["lng"]),
            timestamp=datetime.fromtimestamp(float(data["ts"]), tz=timezone.utc),
            accuracy=_decode(data.get("accuracy")),
            speed=_decode(data.get("speed")),
            heading=_decode(data.get("heading")),
        )
