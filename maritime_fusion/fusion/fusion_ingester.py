"""
Sensor Fusion Ingester

Hosts the track manager: accepts detections from any producer thread,
applies them on a single consumer, sweeps inactive tracks on a fixed
cadence and forwards lifecycle events to Redis.

Usage:
    python -m maritime_fusion.fusion.fusion_ingester
    python -m maritime_fusion.fusion.fusion_ingester --rate 2.0 --redis-url redis://localhost:6379
"""

import argparse
import asyncio
import logging
import queue
import threading
import time
from datetime import datetime, timezone
from typing import List, Optional, Tuple, Union

from dotenv import load_dotenv

from ..config import FusionSettings, get_settings
from ..projection.projector import GeoPoint
from ..schema import AISData
from .config import CorrelationGates
from .events import TrackEventChannel
from .redis_publisher import RedisTrackPublisher
from .schema import Detection, SensorKind, TrackEvent
from .track_manager import Clock, TrackManager

logger = logging.getLogger(__name__)

Submission = Tuple[SensorKind, Union[Detection, AISData]]


class FusionIngester:
    """
    Single-consumer fusion host.

    Producers call submit() / submit_ais_data() from any thread; the
    run() loop (or process_pending() when driven manually) is the only
    caller that mutates the track table.
    """

    def __init__(
        self,
        track_manager: Optional[TrackManager] = None,
        publisher: Optional[RedisTrackPublisher] = None,
        rate_hz: float = 2.0,
        max_batch: int = 500,
    ):
        self.track_manager = track_manager or TrackManager()
        self.publisher = publisher
        self.rate_hz = rate_hz
        self.max_batch = max_batch

        self._queue: "queue.Queue[Submission]" = queue.Queue()
        self._submit_lock = threading.Lock()
        self.subscription = self.track_manager.events.subscribe()

        self.running = False
        self.start_time: Optional[datetime] = None
        self._last_sweep = time.monotonic()

        # Statistics
        self.stats = {
            "detections_submitted": 0,
            "detections_processed": 0,
            "events_forwarded": 0,
            "sweeps": 0,
            "errors": 0,
        }

    @classmethod
    def from_settings(
        cls, settings: FusionSettings, redis_client=None, clock: Optional[Clock] = None
    ) -> "FusionIngester":
        """Build an ingester (and its track manager) from settings"""
        reference = None
        if settings.reference_latitude is not None and settings.reference_longitude is not None:
            reference = GeoPoint(settings.reference_latitude, settings.reference_longitude)

        track_manager = TrackManager(
            gates=settings.correlation_gates(),
            events=TrackEventChannel(),
            reference=reference,
            clock=clock,
        )
        publisher = RedisTrackPublisher(redis_client) if redis_client is not None else None
        return cls(track_manager=track_manager, publisher=publisher, rate_hz=settings.rate_hz)

    @property
    def gates(self) -> CorrelationGates:
        return self.track_manager.gates

    # ============ Producer side ============

    def submit(self, sensor_kind: SensorKind, detection: Detection):
        """Queue one detection. Thread-safe, never blocks."""
        self._queue.put_nowait((sensor_kind, detection))
        with self._submit_lock:
            self.stats["detections_submitted"] += 1

    def submit_ais_data(self, ais_data: Optional[AISData]):
        """Queue an AIS batch, applied in order as one unit"""
        if ais_data is None or not ais_data.ships:
            return
        self._queue.put_nowait((SensorKind.AIS, ais_data))
        with self._submit_lock:
            self.stats["detections_submitted"] += len(ais_data.ships)

    def pending(self) -> int:
        return self._queue.qsize()

    # ============ Consumer side ============

    def process_pending(self, max_items: Optional[int] = None) -> int:
        """
        Apply queued submissions in arrival order.

        Bad detections are logged and counted, never propagated.

        Returns:
            Number of detections applied
        """
        limit = max_items if max_items is not None else self.max_batch
        applied = 0
        taken = 0

        while taken < limit:
            try:
                sensor_kind, payload = self._queue.get_nowait()
            except queue.Empty:
                break
            taken += 1

            try:
                if isinstance(payload, AISData):
                    applied += len(self.track_manager.process_ais_data(payload))
                else:
                    if self.track_manager.process_detection(sensor_kind, payload) is not None:
                        applied += 1
            except ValueError as e:
                logger.error(f"Rejected {sensor_kind.name} detection: {e}")
                self.stats["errors"] += 1

        self.stats["detections_processed"] += applied
        return applied

    def sweep(self, now: Optional[datetime] = None) -> List[str]:
        """Run the inactivity sweep now"""
        removed = self.track_manager.remove_inactive_tracks(now)
        self._last_sweep = time.monotonic()
        self.stats["sweeps"] += 1
        if removed:
            logger.info(f"Sweep removed {len(removed)} inactive tracks")
        return removed

    def sweep_if_due(self) -> List[str]:
        if time.monotonic() - self._last_sweep >= self.gates.sweep_interval_s:
            return self.sweep()
        return []

    def drain_events(self) -> List[TrackEvent]:
        return self.subscription.drain()

    async def forward_events(self) -> int:
        """Drain pending lifecycle events to the publisher (discarded without one)"""
        events = self.drain_events()
        if not events or self.publisher is None:
            return 0
        try:
            written = await self.publisher.publish_events(events)
        except Exception as e:
            logger.error(f"Failed to publish {len(events)} track events: {e}")
            self.stats["errors"] += 1
            return 0
        self.stats["events_forwarded"] += written
        return written

    def get_status(self) -> dict:
        now = datetime.now(timezone.utc)
        uptime = (now - self.start_time).total_seconds() if self.start_time else 0
        tm_stats = self.track_manager.get_stats()
        return {
            "running": self.running,
            "active_tracks": tm_stats["active_tracks"],
            "confirmed_tracks": tm_stats["confirmed_tracks"],
            "tracks_created": tm_stats["tracks_created"],
            "tracks_removed": tm_stats["tracks_removed"],
            "pending": self.pending(),
            "detections_processed": self.stats["detections_processed"],
            "errors": self.stats["errors"],
            "uptime_seconds": int(uptime),
            "rate_hz": self.rate_hz,
            "last_update": now.isoformat(),
        }

    async def update_status(self):
        if self.publisher is None:
            return
        try:
            await self.publisher.update_status(self.get_status())
        except Exception as e:
            logger.error(f"Failed to update status: {e}")
            self.stats["errors"] += 1

    async def run_cycle(self):
        """One iteration of the host loop"""
        self.process_pending()
        self.sweep_if_due()
        await self.forward_events()

    async def run(self):
        """Main fusion loop"""
        self.running = True
        self.start_time = datetime.now(timezone.utc)
        self._last_sweep = time.monotonic()

        logger.info(f"Fusion ingester started (rate={self.rate_hz}Hz)")
        if self.publisher is None:
            logger.info("No Redis publisher configured - events stay in process")

        cycle_count = 0

        try:
            while self.running:
                loop_start = time.time()

                await self.run_cycle()

                cycle_count += 1
                if cycle_count % 10 == 0:
                    await self.update_status()

                # Rate limiting
                elapsed = time.time() - loop_start
                sleep_time = max(0, (1.0 / self.rate_hz) - elapsed)
                if sleep_time > 0:
                    await asyncio.sleep(sleep_time)

                # Log stats periodically
                if cycle_count % 50 == 0:
                    tm_stats = self.track_manager.get_stats()
                    logger.info(
                        f"Stats: processed={self.stats['detections_processed']}, "
                        f"tracks={tm_stats['active_tracks']}, "
                        f"confirmed={tm_stats['confirmed_tracks']}, "
                        f"errors={self.stats['errors']}"
                    )

        except asyncio.CancelledError:
            logger.info("Fusion ingester cancelled")
        except Exception as e:
            logger.error(f"Fusion error: {e}")
            raise
        finally:
            self.running = False
            await self.update_status()
            logger.info("Fusion ingester stopped")

    def stop(self):
        """Stop the fusion ingester"""
        self.running = False


async def main():
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - FUSION - %(levelname)s - %(message)s"
    )

    settings = get_settings()

    parser = argparse.ArgumentParser(description="Sensor Fusion Ingester")
    parser.add_argument(
        "--rate", type=float, default=settings.rate_hz,
        help="Processing rate in Hz"
    )
    parser.add_argument(
        "--redis-url", default=settings.redis_url,
        help="Redis URL (events stay in process if omitted)"
    )
    parser.add_argument(
        "--simulate", action="store_true",
        help="Feed the ingester from the built-in sensor simulator"
    )
    parser.add_argument(
        "--ships", type=int, default=10,
        help="Number of simulated ships (with --simulate)"
    )
    args = parser.parse_args()

    redis_client = None
    if args.redis_url:
        import redis.asyncio as redis
        redis_client = redis.from_url(args.redis_url, decode_responses=True)
        try:
            await redis_client.ping()
            logger.info(f"Connected to Redis at {args.redis_url}")
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")
            return

    settings = settings.model_copy(update={"rate_hz": args.rate})
    simulator = None
    clock = None
    if args.simulate:
        from ..simulation.sensor_simulator import SensorSimulator
        simulator = SensorSimulator.from_settings(settings, args.ships)
        clock = simulator.now

    ingester = FusionIngester.from_settings(settings, redis_client=redis_client, clock=clock)

    tasks = [asyncio.create_task(ingester.run())]
    if simulator is not None:
        tasks.append(asyncio.create_task(simulator.run(ingester)))

    try:
        await asyncio.gather(*tasks)
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        if simulator is not None:
            simulator.stop()
        ingester.stop()
        if redis_client is not None:
            await redis_client.close()


if __name__ == "__main__":
    asyncio.run(main())
