"""
Redis Track Publisher

Mirrors track lifecycle events into Redis for downstream consumers.

Writes to:
    - fusion:track:{id} (hashes)
    - fusion:active_tracks (set)
    - fusion:track_events (stream)
    - fusion:status (hash)
"""

import logging
from typing import Iterable

from .schema import TrackEvent, TrackEventKind

logger = logging.getLogger(__name__)


class RedisTrackPublisher:
    """Publishes track events through a redis.asyncio client"""

    EVENTS_STREAM = "fusion:track_events"
    ACTIVE_TRACKS_KEY = "fusion:active_tracks"
    STATUS_KEY = "fusion:status"
    TRACK_PREFIX = "fusion:track:"

    def __init__(self, redis_client, stream_maxlen: int = 10000):
        self.redis = redis_client
        self.stream_maxlen = stream_maxlen
        self.stats = {"events_published": 0, "batches": 0}

    async def publish_events(self, events: Iterable[TrackEvent]) -> int:
        """Write a batch of events in one pipeline. Returns the count written."""
        events = list(events)
        if not events:
            return 0

        pipeline = self.redis.pipeline()
        for event in events:
            key = f"{self.TRACK_PREFIX}{event.track_id}"

            if event.kind == TrackEventKind.REMOVED:
                pipeline.delete(key)
                pipeline.srem(self.ACTIVE_TRACKS_KEY, event.track_id)
            else:
                if event.previous_track_id:
                    pipeline.delete(f"{self.TRACK_PREFIX}{event.previous_track_id}")
                    pipeline.srem(self.ACTIVE_TRACKS_KEY, event.previous_track_id)
                pipeline.hset(key, mapping=event.track.to_redis_dict())
                pipeline.sadd(self.ACTIVE_TRACKS_KEY, event.track_id)

            pipeline.xadd(self.EVENTS_STREAM, event.to_redis_dict(), maxlen=self.stream_maxlen)

        await pipeline.execute()

        self.stats["events_published"] += len(events)
        self.stats["batches"] += 1
        logger.debug(f"Published {len(events)} track events")
        return len(events)

    async def update_status(self, status: dict):
        """Write the host status hash (values stringified)"""
        await self.redis.hset(
            self.STATUS_KEY,
            mapping={key: str(value) for key, value in status.items()},
        )
